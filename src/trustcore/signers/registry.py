"""Select the one signer provider this process uses."""

from trustcore.config import TrustSettings
from trustcore.errors import ConfigError
from trustcore.signers.base import Signer
from trustcore.signers.dev import DevKey, DevSigner
from trustcore.signers.external_cli import ExternalCliSigner
from trustcore.signers.kms import AwsKmsSigner, AzureKeyVaultSigner


def _secret(value) -> str | None:
    return value.get_secret_value() if value is not None else None


def build_signer(settings: TrustSettings, dev_key: DevKey | None = None) -> Signer:
    """Construct (but do not init) the signer named by HSM_PROVIDER."""
    provider = settings.hsm_provider
    if provider == "dev":
        return DevSigner(key=dev_key, key_path=settings.dev_key_path)
    if provider == "external_cli":
        return ExternalCliSigner(
            cli_path=settings.signer_cli_path,
            mode=settings.signer_mode,
            key_path=settings.signer_key_path,
            kms_uri=settings.signer_kms_uri,
            identity_token=_secret(settings.signer_identity_token),
            rekor_url=settings.signer_rekor_url,
            fulcio_url=settings.signer_fulcio_url,
            key_password=_secret(settings.signer_key_password),
            temp_dir=settings.signer_temp_dir,
        )
    if provider == "kms_aws":
        return AwsKmsSigner()
    if provider == "kms_azure":
        return AzureKeyVaultSigner()
    raise ConfigError(f"Unknown HSM provider: {provider}")
