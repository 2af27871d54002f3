"""Cloud KMS signers (stubs)."""

from trustcore.deadline import Deadline
from trustcore.errors import SignerUnavailable
from trustcore.signers.base import SignatureBundle, Signer


class AwsKmsSigner(Signer):
    name = "kms_aws"

    def init(self) -> None:
        raise SignerUnavailable("AWS KMS signer is not yet implemented")

    def sign(self, data: bytes, deadline: Deadline | None = None) -> SignatureBundle:
        raise SignerUnavailable("AWS KMS signer is not yet implemented")


class AzureKeyVaultSigner(Signer):
    name = "kms_azure"

    def init(self) -> None:
        raise SignerUnavailable("Azure Key Vault signer is not yet implemented")

    def sign(self, data: bytes, deadline: Deadline | None = None) -> SignatureBundle:
        raise SignerUnavailable("Azure Key Vault signer is not yet implemented")
