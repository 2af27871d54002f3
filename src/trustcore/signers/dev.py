"""In-process RSA signer for development. Evidence it produces is not production grade."""

import base64
from pathlib import Path

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from trustcore.deadline import Deadline
from trustcore.errors import SignerTimeout, SignerUnavailable
from trustcore.signers.base import CertEntry, SignatureBundle, Signer
from trustcore.signers.keys import (
    key_fingerprint,
    load_or_create_private_key,
    load_public_key,
    public_key_pem,
)

ALGORITHM = "RSA-SHA256"


class DevKey:
    """The dev RSA key shared read-only by the dev signer and the dev TSA."""

    def __init__(self, private_key: rsa.RSAPrivateKey) -> None:
        self.private_key = private_key
        self.public_key_pem = public_key_pem(private_key.public_key())
        self.key_id = key_fingerprint(private_key.public_key())

    def sign_b64(self, data: bytes) -> str:
        signature = self.private_key.sign(data, padding.PKCS1v15(), hashes.SHA256())
        return base64.b64encode(signature).decode("ascii")

    def cert_entry(self) -> CertEntry:
        return CertEntry(public_key=self.public_key_pem, algorithm=ALGORITHM)


class DevSigner(Signer):
    """RSA-SHA256 signer backed by a process-local key.

    The key is created in ``init()`` unless one was injected, so signatures are
    only reproducible for the lifetime of that key.
    """

    name = "dev"

    def __init__(self, key: DevKey | None = None, key_path: Path | None = None) -> None:
        self._key = key
        self._key_path = key_path

    @property
    def key(self) -> DevKey | None:
        return self._key

    def init(self) -> None:
        if self._key is None:
            self._key = DevKey(load_or_create_private_key(self._key_path))

    def sign(self, data: bytes, deadline: Deadline | None = None) -> SignatureBundle:
        if self._key is None:
            raise SignerUnavailable("Dev signer used before init()")
        if deadline is not None:
            deadline.check(SignerTimeout, "dev signing")
        return SignatureBundle(
            provider="dev",
            algorithm=ALGORITHM,
            signature_blob=self._key.sign_b64(data),
            cert_chain=[self._key.cert_entry()],
            key_id=self._key.key_id,
        )


def verify_signature(public_key_pem_text: str, data: bytes, signature_b64: str) -> bool:
    """Check an RSA-SHA256 signature produced by the dev signer or dev TSA."""
    try:
        public_key = load_public_key(public_key_pem_text)
        signature = base64.b64decode(signature_b64, validate=True)
    except (ValueError, TypeError):
        return False

    try:
        public_key.verify(signature, data, padding.PKCS1v15(), hashes.SHA256())
        return True
    except InvalidSignature:
        return False
