"""Tests for the TSA client modes, the RFC 3161 transport and dev fallback."""

import base64
import hashlib

import httpx
import pytest
from asn1crypto import tsp

from conftest import build_tsr, tsa_reply
from trustcore.deadline import Deadline
from trustcore.errors import ConfigError, TsaRejected, TsaTimeout, TsaUnavailable
from trustcore.signers.dev import DevKey
from trustcore.tsa.client import TimestampClient
from trustcore.tsa.dev import DevTimestampAuthority, verify_dev_token
from trustcore.tsa.models import ClockToken, DevTsaToken, NoneToken, Rfc3161Token, parse_tsa_token
from trustcore.tsa.rfc3161 import Rfc3161Client, parse_reply
from trustcore.tsa.tsq import NativeTsqBuilder

TSA_URL = "https://tsa.test/tsr"
DATA = b'{"envelopeId":"E1"}'
DIGEST = hashlib.sha256(DATA).digest()


def _client(handler, **kwargs) -> Rfc3161Client:
    return Rfc3161Client(TSA_URL, NativeTsqBuilder(), transport=httpx.MockTransport(handler), **kwargs)


def _unreachable(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


class TestSimpleModes:
    def test_none(self):
        assert isinstance(TimestampClient("none").stamp(DATA), NoneToken)

    def test_clock(self):
        token = TimestampClient("clock").stamp(DATA)
        assert isinstance(token, ClockToken)
        assert token.gen_time.endswith("Z")

    def test_dev_token(self, dev_key: DevKey):
        authority = DevTimestampAuthority(dev_key, "1.2.3.4.5.777")
        token = TimestampClient("dev", dev_authority=authority).stamp(DATA)

        assert isinstance(token, DevTsaToken)
        assert token.message_imprint.hash_algorithm == "sha256"
        assert token.message_imprint.hashed_message == base64.b64encode(DIGEST).decode()
        assert token.policy_oid == "1.2.3.4.5.777"
        assert token.fallback_from_rfc3161 is None
        assert verify_dev_token(token, DATA)
        assert not verify_dev_token(token, DATA + b" ")

    def test_dev_token_signature_covers_body(self, dev_key: DevKey):
        token = DevTimestampAuthority(dev_key, "1.2.3.4.5.777").issue(DATA)
        forged = token.model_copy(update={"gen_time": "2000-01-01T00:00:00.000Z"})
        assert not verify_dev_token(forged, DATA)

    def test_dev_mode_needs_key(self):
        with pytest.raises(ConfigError):
            TimestampClient("dev")

    def test_tokens_parse_back_by_type(self, dev_key: DevKey):
        token = DevTimestampAuthority(dev_key, "1.2.3.4.5.777").issue(DATA)
        assert parse_tsa_token(token.to_json_dict()) == token
        assert isinstance(parse_tsa_token({"type": "none"}), NoneToken)


class TestRfc3161:
    def test_granted(self):
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["content_type"] = request.headers["content-type"]
            seen["body"] = request.content
            seen["reply"] = tsa_reply(request.content)
            return httpx.Response(200, content=seen["reply"])

        token = _client(handler).timestamp(DATA)

        assert isinstance(token, Rfc3161Token)
        assert token.url == TSA_URL
        assert token.status == "granted"
        assert token.gen_time == "2025-01-01T00:00:01.000Z"
        assert token.reply == base64.b64encode(seen["reply"]).decode()
        assert seen["content_type"] == "application/timestamp-query"
        assert base64.b64decode(token.request) == seen["body"]
        req = tsp.TimeStampReq.load(seen["body"])
        assert req["message_imprint"]["hashed_message"].native == DIGEST

    def test_rejection_status(self):
        client = _client(lambda request: httpx.Response(200, content=build_tsr(DIGEST, status="rejection")))
        with pytest.raises(TsaRejected, match="rejection request refused"):
            client.timestamp(DATA)

    def test_rejection_without_token_keeps_status(self):
        with pytest.raises(TsaRejected, match="TSA refused the request: rejection"):
            parse_reply(build_tsr(DIGEST, status="rejection"), DIGEST)

    def test_replayed_reply_is_rejected(self):
        stale = build_tsr(DIGEST, nonce=1)
        client = _client(lambda request: httpx.Response(200, content=stale))
        with pytest.raises(TsaRejected, match="nonce"):
            client.timestamp(DATA)

    def test_reply_without_nonce_is_rejected(self):
        client = _client(lambda request: httpx.Response(200, content=build_tsr(DIGEST)))
        with pytest.raises(TsaRejected, match="nonce"):
            client.timestamp(DATA)

    def test_request_without_nonce(self):
        client = Rfc3161Client(
            TSA_URL,
            NativeTsqBuilder(nonce=False),
            transport=httpx.MockTransport(lambda request: httpx.Response(200, content=build_tsr(DIGEST))),
        )
        assert client.timestamp(DATA).status == "granted"

    def test_imprint_mismatch(self):
        other = hashlib.sha256(b"something else").digest()
        client = _client(lambda request: httpx.Response(200, content=build_tsr(other)))
        with pytest.raises(TsaRejected, match="imprint"):
            client.timestamp(DATA)

    def test_malformed_reply(self):
        client = _client(lambda request: httpx.Response(200, content=b"not der"))
        with pytest.raises(TsaRejected, match="Malformed"):
            client.timestamp(DATA)

    def test_granted_without_token(self):
        status, gen_time = parse_reply(build_tsr(DIGEST, with_token=False), DIGEST)
        assert status == "granted"
        assert gen_time is None

    def test_server_error(self):
        with pytest.raises(TsaUnavailable, match="503"):
            _client(lambda request: httpx.Response(503)).timestamp(DATA)

    def test_client_error(self):
        with pytest.raises(TsaRejected, match="400"):
            _client(lambda request: httpx.Response(400)).timestamp(DATA)

    def test_unreachable(self):
        with pytest.raises(TsaUnavailable):
            _client(_unreachable).timestamp(DATA)

    def test_transport_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TsaTimeout):
            _client(handler).timestamp(DATA)

    def test_reply_size_cap(self):
        client = _client(lambda request: httpx.Response(200, content=b"x" * 100), max_reply_bytes=10)
        with pytest.raises(TsaRejected, match="exceeds"):
            client.timestamp(DATA)

    def test_cancelled_deadline_sends_nothing(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, content=build_tsr(DIGEST))

        deadline = Deadline(30)
        deadline.cancel()
        with pytest.raises(TsaTimeout):
            _client(handler).timestamp(DATA, deadline)
        assert calls == []


class TestDevFallback:
    def test_fallback_disabled_surfaces_error(self, dev_key: DevKey):
        client = TimestampClient(
            "rfc3161",
            dev_authority=DevTimestampAuthority(dev_key, "1.2.3.4.5.777"),
            rfc3161=_client(_unreachable),
            dev_fallback=False,
        )
        with pytest.raises(TsaUnavailable):
            client.stamp(DATA)

    def test_fallback_enabled_marks_token(self, dev_key: DevKey):
        client = TimestampClient(
            "rfc3161",
            dev_authority=DevTimestampAuthority(dev_key, "1.2.3.4.5.777"),
            rfc3161=_client(_unreachable),
            dev_fallback=True,
        )

        token = client.stamp(DATA)

        assert isinstance(token, DevTsaToken)
        assert token.fallback_from_rfc3161 is True
        assert token.to_json_dict()["fallbackFromRfc3161"] is True
        assert verify_dev_token(token, DATA)

    def test_fallback_requires_dev_key(self):
        with pytest.raises(ConfigError, match="fallback"):
            TimestampClient("rfc3161", rfc3161=_client(_unreachable), dev_fallback=True)
