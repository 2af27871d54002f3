"""Dev RSA key generation, PEM storage and fingerprints."""

import hashlib
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import (
    BestAvailableEncryption,
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_pem_private_key,
    load_pem_public_key,
)

RSA_KEY_SIZE = 2048


def generate_rsa_key() -> rsa.RSAPrivateKey:
    """Generate a new RSA-2048 private key."""
    return rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE)


def private_key_pem(private_key: rsa.RSAPrivateKey, password: bytes | None = None) -> bytes:
    encryption = BestAvailableEncryption(password) if password else NoEncryption()
    return private_key.private_bytes(
        encoding=Encoding.PEM,
        format=PrivateFormat.PKCS8,
        encryption_algorithm=encryption,
    )


def public_key_pem(public_key: rsa.RSAPublicKey) -> str:
    return public_key.public_bytes(
        encoding=Encoding.PEM,
        format=PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


def key_fingerprint(public_key: rsa.RSAPublicKey) -> str:
    """Return the sha256 hex fingerprint of the SPKI DER encoding."""
    der = public_key.public_bytes(encoding=Encoding.DER, format=PublicFormat.SubjectPublicKeyInfo)
    return hashlib.sha256(der).hexdigest()


def write_private_key(
    private_key: rsa.RSAPrivateKey,
    path: Path,
    password: bytes | None = None,
) -> Path:
    """Write private key to PEM file with owner-read-only permissions (0o400)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(private_key_pem(private_key, password))
    path.chmod(0o400)
    return path


def write_public_key(public_key: rsa.RSAPublicKey, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(public_key_pem(public_key))
    return path


def load_private_key(path: Path, password: bytes | None = None) -> rsa.RSAPrivateKey:
    """Load an RSA private key from a PEM file."""
    if not path.exists():
        raise FileNotFoundError(f"Dev private key not found: {path}")

    key = load_pem_private_key(path.read_bytes(), password=password)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise TypeError(f"Expected RSA private key, got {type(key).__name__}")
    return key


def load_public_key(pem: str | bytes) -> rsa.RSAPublicKey:
    """Load an RSA public key from PEM text."""
    data = pem.encode("ascii") if isinstance(pem, str) else pem
    key = load_pem_public_key(data)
    if not isinstance(key, rsa.RSAPublicKey):
        raise TypeError(f"Expected RSA public key, got {type(key).__name__}")
    return key


def load_or_create_private_key(path: Path | None) -> rsa.RSAPrivateKey:
    """Load the persisted dev key, creating it on first use.

    With no path the key is ephemeral and lives only for this process.
    """
    if path is None:
        return generate_rsa_key()
    if path.exists():
        return load_private_key(path)
    key = generate_rsa_key()
    write_private_key(key, path)
    write_public_key(key.public_key(), path.with_suffix(".pub.pem"))
    return key
