"""TSA token variants, discriminated on ``type``."""

from typing import Annotated, Any, Literal

from pydantic import Field, TypeAdapter

from trustcore.signers.base import CertEntry
from trustcore.types import CamelModel


class MessageImprint(CamelModel):
    hash_algorithm: str = "sha256"
    hashed_message: str


class NoneToken(CamelModel):
    type: Literal["none"] = "none"


class DevTsaToken(CamelModel):
    """Simulated RFC 3161-like token signed with the dev key. Not a real timestamp."""

    type: Literal["internal_dev_tsa"] = "internal_dev_tsa"
    version: int = 1
    policy_oid: str
    gen_time: str
    nonce: str
    serial: str
    accuracy_ms: int = 1000
    message_imprint: MessageImprint
    issuer: str
    fallback_from_rfc3161: bool | None = None
    signature: str | None = None
    cert_chain: list[CertEntry] = Field(default_factory=list)

    def signed_body(self) -> dict[str, Any]:
        """The part of the token covered by its signature."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude_none=True,
            exclude={"signature", "cert_chain"},
        )


class ClockToken(CamelModel):
    """Wall-clock hint only; verifiers treat it as advisory, never as proof."""

    type: Literal["clock"] = "clock"
    gen_time: str


class Rfc3161Token(CamelModel):
    type: Literal["rfc3161"] = "rfc3161"
    url: str
    request: str
    reply: str
    status: str | None = None
    gen_time: str | None = None


class SigstoreBundleToken(CamelModel):
    type: Literal["sigstore_bundle"] = "sigstore_bundle"
    bundle: dict[str, Any]


TsaToken = Annotated[
    NoneToken | DevTsaToken | ClockToken | Rfc3161Token | SigstoreBundleToken,
    Field(discriminator="type"),
]

tsa_token_adapter: TypeAdapter[TsaToken] = TypeAdapter(TsaToken)


def parse_tsa_token(data: dict[str, Any]) -> TsaToken:
    return tsa_token_adapter.validate_python(data)
