"""TSA client: one configured mode per process, with an explicit dev fallback."""

from datetime import UTC, datetime

import httpx

from trustcore.canonical import rfc3339
from trustcore.config import TrustSettings
from trustcore.deadline import Deadline
from trustcore.errors import ConfigError, TsaError
from trustcore.log import get_logger
from trustcore.signers.base import SignatureBundle
from trustcore.signers.dev import DevKey
from trustcore.tsa.dev import DevTimestampAuthority
from trustcore.tsa.models import ClockToken, NoneToken, SigstoreBundleToken, TsaToken
from trustcore.tsa.rfc3161 import Rfc3161Client
from trustcore.tsa.tsq import NativeTsqBuilder, OpensslTsqBuilder, TsqBuilder

logger = get_logger(__name__)


class TimestampClient:
    """``stamp(bytes) -> TsaToken`` over none / dev / clock / rfc3161 / sigstore_bundle.

    When rfc3161 fails and dev fallback is enabled, a dev token marked
    ``fallbackFromRfc3161`` is returned instead, so the downgrade is always
    visible in the evidence.
    """

    def __init__(
        self,
        mode: str,
        dev_authority: DevTimestampAuthority | None = None,
        rfc3161: Rfc3161Client | None = None,
        dev_fallback: bool = False,
    ) -> None:
        if mode == "dev" and dev_authority is None:
            raise ConfigError("TSA mode dev requires the dev key")
        if mode == "rfc3161" and rfc3161 is None:
            raise ConfigError("TSA mode rfc3161 requires an RFC 3161 client")
        if mode == "rfc3161" and dev_fallback and dev_authority is None:
            raise ConfigError("TSA dev fallback requires the dev key")
        self.mode = mode
        self.dev_authority = dev_authority
        self.rfc3161 = rfc3161
        self.dev_fallback = dev_fallback

    def stamp(
        self,
        data: bytes,
        signature: SignatureBundle | None = None,
        deadline: Deadline | None = None,
    ) -> TsaToken:
        if self.mode == "none":
            return NoneToken()
        if self.mode == "clock":
            return ClockToken(gen_time=rfc3339(datetime.now(UTC)))
        if self.mode == "dev":
            return self.dev_authority.issue(data)
        if self.mode == "sigstore_bundle":
            if signature is None or signature.transparency_bundle is None:
                return NoneToken()
            return SigstoreBundleToken(bundle=signature.transparency_bundle)
        if self.mode == "rfc3161":
            try:
                return self.rfc3161.timestamp(data, deadline)
            except TsaError as e:
                if not self.dev_fallback:
                    raise
                logger.warning(
                    "tsa_dev_fallback",
                    tsa_url=self.rfc3161.url,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                return self.dev_authority.issue(data, fallback_from_rfc3161=True)
        raise ConfigError(f"Unknown TSA mode: {self.mode}")


def build_tsq_builder(settings: TrustSettings) -> TsqBuilder:
    if settings.tsa_tsq_encoder == "openssl":
        return OpensslTsqBuilder(
            openssl_path=settings.openssl_path,
            policy_oid=settings.tsa_policy_oid,
            cert_req=settings.tsa_cert_req,
            use_container=settings.tsa_use_container,
            container_image=settings.tsa_container_image,
        )
    return NativeTsqBuilder(policy_oid=settings.tsa_policy_oid, cert_req=settings.tsa_cert_req)


def build_timestamp_client(
    settings: TrustSettings,
    dev_key: DevKey | None = None,
    transport: httpx.BaseTransport | None = None,
) -> TimestampClient:
    dev_authority = DevTimestampAuthority(dev_key, settings.tsa_policy_oid) if dev_key else None
    rfc3161 = None
    if settings.tsa_provider == "rfc3161":
        rfc3161 = Rfc3161Client(settings.tsa_url, build_tsq_builder(settings), transport=transport)
    return TimestampClient(
        mode=settings.tsa_provider,
        dev_authority=dev_authority,
        rfc3161=rfc3161,
        dev_fallback=settings.tsa_dev_fallback,
    )
