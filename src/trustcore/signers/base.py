"""Signer interface and the signature bundle it produces."""

from abc import ABC, abstractmethod
from typing import Any, Literal

from pydantic import Field

from trustcore.deadline import Deadline
from trustcore.types import CamelModel


class CertEntry(CamelModel):
    pem: str | None = None
    public_key: str | None = None
    algorithm: str | None = None


class SignatureBundle(CamelModel):
    provider: Literal["dev", "external_cli", "kms"]
    algorithm: str
    signature_blob: str
    cert_chain: list[CertEntry] = Field(default_factory=list)
    key_id: str | None = None
    # Bundle JSON emitted by an external signing tool. Handed to the TSA
    # client in sigstore_bundle mode; never serialized with the signature.
    transparency_bundle: dict[str, Any] | None = Field(default=None, exclude=True)


class Signer(ABC):
    """Uniform ``sign(bytes) -> SignatureBundle`` across providers.

    Implementations raise SignerUnavailable, SignerRejected or SignerTimeout.
    """

    name: str = "base"

    def init(self) -> None:
        """Acquire keys or check the provider. Called once before the first sign."""

    @abstractmethod
    def sign(self, data: bytes, deadline: Deadline | None = None) -> SignatureBundle: ...
