"""Signer that shells out to a cosign-compatible ``sign-blob`` tool."""

import hashlib
import json
import os
import secrets
import shutil
import signal
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Literal

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from cryptography.hazmat.primitives.serialization import Encoding

from trustcore.deadline import Deadline
from trustcore.errors import SignerRejected, SignerTimeout, SignerUnavailable
from trustcore.log import get_logger
from trustcore.signers.base import CertEntry, SignatureBundle, Signer

logger = get_logger(__name__)

TEMP_PREFIX = "trustcore-"
STDERR_LIMIT = 4096
DEFAULT_ALGORITHM = "ECDSA-P256-SHA256"
# Interval at which a running tool is checked for cancellation.
_POLL_SECONDS = 0.1


def _algorithm_from_cert(cert: x509.Certificate) -> str:
    key = cert.public_key()
    if isinstance(key, ec.EllipticCurvePublicKey):
        curve = {"secp256r1": "P256", "secp384r1": "P384", "secp521r1": "P521"}.get(key.curve.name, key.curve.name)
        return f"ECDSA-{curve}-SHA256"
    if isinstance(key, rsa.RSAPublicKey):
        return "RSA-SHA256"
    if isinstance(key, ed25519.Ed25519PublicKey):
        return "Ed25519"
    return DEFAULT_ALGORITHM


class ExternalCliSigner(Signer):
    """Sign by running ``<cli> sign-blob`` over a private temp file.

    Modes:
      keyless -- the tool performs an OIDC / ambient identity flow
      key     -- a local key file, optionally password protected
      kms     -- an opaque KMS URI passed as the key reference

    Every call gets its own 0o700 work directory holding the blob, bundle and
    certificate. The directory is removed on every exit path.
    """

    name = "external_cli"

    def __init__(
        self,
        cli_path: str = "cosign",
        mode: Literal["keyless", "key", "kms"] = "keyless",
        key_path: str | None = None,
        kms_uri: str | None = None,
        identity_token: str | None = None,
        rekor_url: str | None = None,
        fulcio_url: str | None = None,
        key_password: str | None = None,
        temp_dir: Path | None = None,
    ) -> None:
        self.cli_path = cli_path
        self.mode = mode
        self.key_path = key_path
        self.kms_uri = kms_uri
        self.identity_token = identity_token
        self.rekor_url = rekor_url
        self.fulcio_url = fulcio_url
        self.key_password = key_password
        self.temp_dir = temp_dir

    def init(self) -> None:
        if shutil.which(self.cli_path) is None:
            raise SignerUnavailable(f"Signing tool not found: {self.cli_path}")
        if self.mode == "key" and not self.key_path:
            raise SignerUnavailable("Key mode requires a key path")
        if self.mode == "kms" and not self.kms_uri:
            raise SignerUnavailable("KMS mode requires a KMS URI")

    def build_args(self, blob: Path, bundle: Path, cert: Path) -> list[str]:
        args = [
            self.cli_path,
            "sign-blob",
            "--yes",
            "--bundle",
            str(bundle),
            "--output-certificate",
            str(cert),
        ]
        if self.rekor_url:
            args += ["--rekor-url", self.rekor_url]
        if self.fulcio_url:
            args += ["--fulcio-url", self.fulcio_url]

        if self.mode == "key":
            args += ["--key", str(self.key_path)]
        elif self.mode == "kms":
            args += ["--key", str(self.kms_uri)]
        elif self.identity_token:
            args += ["--identity-token", self.identity_token]

        args.append(str(blob))
        return args

    def build_env(self) -> dict[str, str]:
        env = dict(os.environ)
        if self.mode == "keyless":
            env.setdefault("COSIGN_EXPERIMENTAL", "1")
        if self.key_password:
            env["COSIGN_PASSWORD"] = self.key_password
        return env

    def sign(self, data: bytes, deadline: Deadline | None = None) -> SignatureBundle:
        deadline = deadline or Deadline()
        deadline.check(SignerTimeout, "external signing")

        try:
            workdir = Path(
                tempfile.mkdtemp(prefix=f"{TEMP_PREFIX}{secrets.token_hex(8)}-", dir=self.temp_dir)
            )
        except OSError as e:
            raise SignerUnavailable(f"Cannot create signing work directory: {e}") from e

        try:
            blob = workdir / "payload.bin"
            bundle_path = workdir / "bundle.json"
            cert_path = workdir / "cert.pem"
            try:
                fd = os.open(blob, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
            except OSError as e:
                raise SignerUnavailable(f"Cannot write signing payload: {e}") from e

            stdout = self._run(self.build_args(blob, bundle_path, cert_path), deadline)
            signature = stdout.decode("utf-8", errors="replace").strip()
            if not signature:
                raise SignerRejected("Signing tool produced no signature")

            transparency_bundle = self._read_bundle(bundle_path)
            cert_pem = self._read_text(cert_path)
        finally:
            self._cleanup(workdir)

        return self._bundle(signature, transparency_bundle, cert_pem)

    def _run(self, args: list[str], deadline: Deadline) -> bytes:
        try:
            proc = subprocess.Popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self.build_env(),
                start_new_session=True,
            )
        except OSError as e:
            raise SignerUnavailable(f"Cannot start signing tool {self.cli_path}: {e}") from e

        try:
            while True:
                try:
                    stdout, stderr = proc.communicate(timeout=deadline.timeout(_POLL_SECONDS))
                    break
                except subprocess.TimeoutExpired:
                    if deadline.expired:
                        raise SignerTimeout(
                            "Signing tool cancelled" if deadline.cancelled else "Signing tool timed out"
                        ) from None
        finally:
            if proc.poll() is None:
                _kill_group(proc)
                proc.communicate()

        if proc.returncode != 0:
            err = stderr[:STDERR_LIMIT].decode("utf-8", errors="replace")
            logger.warning("external_signer_rejected", returncode=proc.returncode, mode=self.mode)
            raise SignerRejected(f"Signing tool exited with status {proc.returncode}", stderr=err)
        return stdout

    @staticmethod
    def _read_bundle(path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise SignerUnavailable(f"Cannot read signing bundle: {e}") from e
        except json.JSONDecodeError as e:
            raise SignerRejected(f"Signing tool wrote an unreadable bundle: {e}") from e

    @staticmethod
    def _read_text(path: Path) -> str | None:
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise SignerUnavailable(f"Cannot read signing certificate: {e}") from e

    @staticmethod
    def _cleanup(workdir: Path) -> None:
        try:
            shutil.rmtree(workdir)
        except OSError:
            logger.error("signing_workdir_cleanup_failed", path=str(workdir), exc_info=True)

    def _bundle(
        self,
        signature: str,
        transparency_bundle: dict[str, Any] | None,
        cert_pem: str | None,
    ) -> SignatureBundle:
        algorithm = DEFAULT_ALGORITHM
        key_id = self.kms_uri if self.mode == "kms" else self.key_path if self.mode == "key" else None
        cert_chain: list[CertEntry] = []

        # Without a bundle the certificate cannot be tied to a transparency
        # log entry, so the chain is left empty.
        if transparency_bundle is not None and cert_pem:
            try:
                cert = x509.load_pem_x509_certificate(cert_pem.encode("ascii"))
            except ValueError:
                logger.warning("external_signer_certificate_unparseable")
                cert = None
            if cert is not None:
                algorithm = _algorithm_from_cert(cert)
                key_id = hashlib.sha256(cert.public_bytes(Encoding.DER)).hexdigest()
            cert_chain.append(CertEntry(pem=cert_pem, algorithm=algorithm))

        return SignatureBundle(
            provider="external_cli",
            algorithm=algorithm,
            signature_blob=signature,
            cert_chain=cert_chain,
            key_id=key_id,
            transparency_bundle=transparency_bundle,
        )


def _kill_group(proc: subprocess.Popen) -> None:
    """Kill the tool and anything it spawned; it runs in its own session."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        proc.kill()
