"""Typed configuration, loaded once at startup from the environment (and optionally YAML)."""

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Literal, Self

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, model_validator

from trustcore.errors import ConfigError

PLACEHOLDER_POLICY_OID = "1.2.3.4.5.777"

_OID_RE = re.compile(r"^[0-2](\.(0|[1-9][0-9]*))+$")

HsmProvider = Literal["dev", "external_cli", "kms_aws", "kms_azure"]
TsaProvider = Literal["none", "dev", "clock", "rfc3161", "sigstore_bundle"]
SignerMode = Literal["keyless", "key", "kms"]


class TrustSettings(BaseModel):
    """Every setting the trust core reads.

    Field names are the lower-case form of the environment variable
    (``hsm_provider`` <- ``HSM_PROVIDER``). Unknown values for the
    trust-critical enumerations fail validation instead of falling back.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    trust_environment: Literal["development", "production"] = "development"

    hsm_provider: HsmProvider = "dev"
    dev_key_path: Path | None = None

    tsa_provider: TsaProvider = "none"
    tsa_url: str | None = None
    tsa_use_container: bool = False
    tsa_container_image: str = "bitnami/openssl"
    tsa_tsq_encoder: Literal["native", "openssl"] = "native"
    openssl_path: str = "openssl"
    tsa_cert_req: bool = True
    tsa_policy_oid: str = PLACEHOLDER_POLICY_OID
    tsa_dev_fallback: bool = False

    signer_cli_path: str = "cosign"
    signer_mode: SignerMode = "keyless"
    signer_key_path: str | None = None
    signer_kms_uri: str | None = None
    signer_identity_token: SecretStr | None = None
    signer_rekor_url: str | None = None
    signer_fulcio_url: str | None = None
    signer_key_password: SecretStr | None = None
    signer_temp_dir: Path | None = None

    seal_deadline_seconds: float = Field(default=60.0, gt=0)
    database_url: str = "sqlite:///trustcore.db"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] | None = None

    @model_validator(mode="after")
    def _check_combinations(self) -> Self:
        if not _OID_RE.match(self.tsa_policy_oid):
            raise ValueError(f"TSA_POLICY_OID is not a dotted OID: {self.tsa_policy_oid!r}")
        if self.tsa_provider == "rfc3161" and not self.tsa_url:
            raise ValueError("TSA_PROVIDER=rfc3161 requires TSA_URL")
        if self.tsa_provider == "sigstore_bundle" and self.hsm_provider != "external_cli":
            raise ValueError("TSA_PROVIDER=sigstore_bundle requires HSM_PROVIDER=external_cli")
        if self.hsm_provider == "external_cli":
            if self.signer_mode == "key" and not self.signer_key_path:
                raise ValueError("SIGNER_MODE=key requires SIGNER_KEY_PATH")
            if self.signer_mode == "kms" and not self.signer_kms_uri:
                raise ValueError("SIGNER_MODE=kms requires SIGNER_KMS_URI")
        if self.trust_environment == "production":
            if self.hsm_provider == "dev":
                raise ValueError("HSM_PROVIDER=dev is not allowed in production")
            if self.tsa_provider in ("none", "dev", "clock"):
                raise ValueError(f"TSA_PROVIDER={self.tsa_provider} is not allowed in production")
            if self.tsa_dev_fallback:
                raise ValueError("TSA_DEV_FALLBACK is not allowed in production")
            if self.tsa_policy_oid == PLACEHOLDER_POLICY_OID:
                raise ValueError("TSA_POLICY_OID must be set to a real policy in production")
        return self

    @property
    def needs_dev_key(self) -> bool:
        """True when the dev RSA key signs anything (signer, dev TSA or fallback)."""
        return (
            self.hsm_provider == "dev"
            or self.tsa_provider == "dev"
            or (self.tsa_provider == "rfc3161" and self.tsa_dev_fallback)
        )

    @property
    def effective_log_format(self) -> str:
        if self.log_format:
            return self.log_format
        return "json" if self.trust_environment == "production" else "console"


def _from_environ(environ: Mapping[str, str]) -> dict[str, str]:
    values = {}
    for name in TrustSettings.model_fields:
        raw = environ.get(name.upper())
        if raw is not None and raw != "":
            values[name] = raw
    return values


def load_settings(
    config_file: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> TrustSettings:
    """Build settings from the environment, overlaid by an optional YAML file.

    Raises ConfigError on any unknown key, unknown value or unsafe combination.
    """
    data: dict[str, object] = _from_environ(os.environ if environ is None else environ)

    if config_file is not None:
        import yaml

        if not config_file.exists():
            raise ConfigError(f"Config file not found: {config_file}")
        with open(config_file) as f:
            file_data = yaml.safe_load(f) or {}
        if not isinstance(file_data, dict):
            raise ConfigError(f"Config file must contain a mapping: {config_file}")
        data.update({str(k).lower(): v for k, v in file_data.items()})

    try:
        return TrustSettings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid trust core configuration: {e}") from e
