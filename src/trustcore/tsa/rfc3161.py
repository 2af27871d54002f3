"""
RFC 3161 Timestamp Authority client.

Builds a TSQ over SHA-256 of the stamped bytes, POSTs it as
``application/timestamp-query`` and keeps both request and reply (base64).
"""

import base64

import httpx
from asn1crypto import cms, tsp  # type: ignore[import-untyped]

from trustcore.canonical import hash_hex, rfc3339, sha256_digest
from trustcore.deadline import Deadline
from trustcore.errors import TsaRejected, TsaTimeout, TsaUnavailable
from trustcore.log import get_logger
from trustcore.tsa.models import Rfc3161Token
from trustcore.tsa.tsq import TsqBuilder

logger = get_logger(__name__)

CONNECT_TIMEOUT_SECONDS = 10.0
TOTAL_TIMEOUT_SECONDS = 30.0
MAX_REPLY_BYTES = 10 * 1024 * 1024

_GRANTED = ("granted", "granted_with_mods")


class TimeStampResp(tsp.TimeStampResp):
    """TimeStampResp whose token may be absent, as in RFC 3161 rejections."""

    _fields = [
        ("status", tsp.PKIStatusInfo),
        ("time_stamp_token", cms.ContentInfo, {"optional": True}),
    ]


def request_nonce(tsq: bytes) -> int | None:
    try:
        return tsp.TimeStampReq.load(tsq)["nonce"].native
    except (ValueError, TypeError, KeyError) as e:
        raise TsaRejected(f"Malformed TSA request: {e}") from e


def parse_reply(reply: bytes, digest: bytes, nonce: int | None = None) -> tuple[str, str | None]:
    """Return (status, genTime) from a DER TimeStampResp.

    Raises TsaRejected when the reply is malformed, not granted, or its
    token covers a different digest or answers a different nonce.
    """
    try:
        resp = TimeStampResp.load(reply)
        status_info = resp["status"]
        status = status_info["status"].native
        if status not in _GRANTED:
            detail = " ".join(status_info["status_string"].native or [])
            raise TsaRejected(f"TSA refused the request: {status} {detail}".strip())

        token = resp["time_stamp_token"]
        if token.native is None:
            return status, None
        tst_info = token["content"]["encap_content_info"]["content"].parsed
        imprint = tst_info["message_imprint"]["hashed_message"].native
        if imprint != digest:
            raise TsaRejected("TSA token covers a different message imprint")
        if nonce is not None and tst_info["nonce"].native != nonce:
            raise TsaRejected("TSA token nonce does not match the request")
        return status, rfc3339(tst_info["gen_time"].native)
    except TsaRejected:
        raise
    except (ValueError, TypeError, KeyError, OverflowError) as e:
        raise TsaRejected(f"Malformed TSA reply: {e}") from e


class Rfc3161Client:
    def __init__(
        self,
        url: str,
        tsq_builder: TsqBuilder,
        transport: httpx.BaseTransport | None = None,
        connect_timeout: float = CONNECT_TIMEOUT_SECONDS,
        total_timeout: float = TOTAL_TIMEOUT_SECONDS,
        max_reply_bytes: int = MAX_REPLY_BYTES,
    ) -> None:
        self.url = url
        self.tsq_builder = tsq_builder
        self.transport = transport
        self.connect_timeout = connect_timeout
        self.total_timeout = total_timeout
        self.max_reply_bytes = max_reply_bytes

    def timestamp(self, data: bytes, deadline: Deadline | None = None) -> Rfc3161Token:
        deadline = deadline or Deadline(self.total_timeout)
        tsq = self.tsq_builder(hash_hex(data), deadline)
        reply = self._post(tsq, deadline)
        status, gen_time = parse_reply(reply, sha256_digest(data), request_nonce(tsq))
        return Rfc3161Token(
            url=self.url,
            request=base64.b64encode(tsq).decode("ascii"),
            reply=base64.b64encode(reply).decode("ascii"),
            status=status,
            gen_time=gen_time,
        )

    def _post(self, tsq: bytes, deadline: Deadline) -> bytes:
        deadline.check(TsaTimeout, "TSA request")
        budget = Deadline(deadline.timeout(self.total_timeout))
        timeout = httpx.Timeout(budget.seconds, connect=min(self.connect_timeout, budget.seconds))

        try:
            with httpx.Client(transport=self.transport, timeout=timeout) as client:
                with client.stream(
                    "POST",
                    self.url,
                    content=tsq,
                    headers={"Content-Type": "application/timestamp-query"},
                ) as response:
                    if response.status_code >= 500:
                        raise TsaUnavailable(f"TSA returned HTTP {response.status_code}")
                    if response.status_code >= 400:
                        raise TsaRejected(f"TSA returned HTTP {response.status_code}")

                    chunks: list[bytes] = []
                    size = 0
                    for chunk in response.iter_bytes():
                        size += len(chunk)
                        if size > self.max_reply_bytes:
                            raise TsaRejected(f"TSA reply exceeds {self.max_reply_bytes} bytes")
                        deadline.check(TsaTimeout, "TSA request")
                        budget.check(TsaTimeout, "TSA request")
                        chunks.append(chunk)
        except httpx.TimeoutException as e:
            raise TsaTimeout(f"TSA request to {self.url} timed out") from e
        except httpx.HTTPError as e:
            logger.warning("tsa_request_failed", tsa_url=self.url, error=str(e))
            raise TsaUnavailable(f"TSA request to {self.url} failed: {e}") from e

        return b"".join(chunks)
