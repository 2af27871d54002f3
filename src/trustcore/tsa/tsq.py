"""
RFC 3161 TimeStampReq (TSQ) construction.

Both builders are a pure ``digest_hex -> DER bytes`` function as far as the
rest of the core is concerned: one encodes natively with asn1crypto, the
other delegates to ``openssl ts -query`` (locally or in a container).
"""

import os
import subprocess
from typing import Protocol

from asn1crypto import algos, core, tsp  # type: ignore[import-untyped]

from trustcore.deadline import Deadline
from trustcore.errors import TsaTimeout, TsaUnavailable

TOOL_TIMEOUT_SECONDS = 30.0
MAX_TOOL_OUTPUT = 10 * 1024 * 1024


class TsqBuilder(Protocol):
    def __call__(self, digest_hex: str, deadline: Deadline | None = None) -> bytes: ...


class NativeTsqBuilder:
    """Encode the TimeStampReq directly.

    SEQUENCE { version INTEGER (1), messageImprint, reqPolicy OID OPTIONAL,
    nonce INTEGER OPTIONAL, certReq BOOLEAN DEFAULT FALSE }
    """

    def __init__(self, policy_oid: str | None = None, cert_req: bool = True, nonce: bool = True) -> None:
        self.policy_oid = policy_oid
        self.cert_req = cert_req
        self.nonce = nonce

    def __call__(self, digest_hex: str, deadline: Deadline | None = None) -> bytes:
        digest = bytes.fromhex(digest_hex)
        message_imprint = tsp.MessageImprint(
            {
                "hash_algorithm": algos.DigestAlgorithm({"algorithm": "sha256"}),
                "hashed_message": core.OctetString(digest),
            }
        )
        fields: dict[str, object] = {
            "version": 1,
            "message_imprint": message_imprint,
            "cert_req": self.cert_req,
        }
        if self.policy_oid:
            fields["req_policy"] = self.policy_oid
        if self.nonce:
            fields["nonce"] = int.from_bytes(os.urandom(8), "big")
        return bytes(tsp.TimeStampReq(fields).dump())


class OpensslTsqBuilder:
    """Build the TSQ with ``openssl ts -query``, optionally inside a container."""

    def __init__(
        self,
        openssl_path: str = "openssl",
        policy_oid: str | None = None,
        cert_req: bool = True,
        use_container: bool = False,
        container_image: str = "bitnami/openssl",
    ) -> None:
        self.openssl_path = openssl_path
        self.policy_oid = policy_oid
        self.cert_req = cert_req
        self.use_container = use_container
        self.container_image = container_image

    def build_args(self, digest_hex: str) -> list[str]:
        args = ["ts", "-query", "-sha256", "-digest", digest_hex]
        if self.cert_req:
            args.append("-cert")
        if self.policy_oid:
            args += ["-policy", self.policy_oid]
        args += ["-out", "-"]

        if self.use_container:
            return ["docker", "run", "--rm", self.container_image, *args]
        return [self.openssl_path, *args]

    def __call__(self, digest_hex: str, deadline: Deadline | None = None) -> bytes:
        deadline = deadline or Deadline(TOOL_TIMEOUT_SECONDS)
        deadline.check(TsaTimeout, "TSQ encoding")
        args = self.build_args(digest_hex)
        try:
            result = subprocess.run(
                args,
                capture_output=True,
                timeout=deadline.timeout(TOOL_TIMEOUT_SECONDS),
                check=False,
            )
        except FileNotFoundError as e:
            raise TsaUnavailable(f"TSQ encoder not found: {args[0]}") from e
        except subprocess.TimeoutExpired as e:
            raise TsaTimeout("TSQ encoder timed out") from e
        except OSError as e:
            raise TsaUnavailable(f"TSQ encoder failed to start: {e}") from e

        if result.returncode != 0:
            stderr = result.stderr[:4096].decode("utf-8", errors="replace")
            raise TsaUnavailable(f"TSQ encoder exited with status {result.returncode}: {stderr}")
        if not result.stdout or len(result.stdout) > MAX_TOOL_OUTPUT:
            raise TsaUnavailable("TSQ encoder produced no usable output")
        return result.stdout
