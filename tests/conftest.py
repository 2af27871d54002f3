"""Shared fixtures: dev keys, sqlite stores, signing requests and a fake cosign."""

import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import sqlalchemy as sa
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.oid import NameOID

from trustcore.audit.chain import AuditChain
from trustcore.audit.store import EvidenceStore
from trustcore.config import TrustSettings, load_settings
from trustcore.sealing.models import SigningRequest
from trustcore.signers.dev import DevKey
from trustcore.signers.keys import generate_rsa_key

DIGEST = "ab" * 32

SAMPLE_REQUEST = {
    "envelopeId": "E1",
    "recipientId": "R1",
    "documentDigest": DIGEST,
    "fields": [{"name": "full_name", "value": "Alice"}],
    "actor": {"displayName": "Alice", "email": "alice@example.com", "ipAddress": "203.0.113.7"},
    "intent": {
        "declarationText": "I agree to sign this document electronically.",
        "consentGivenAt": "2025-01-01T00:00:00Z",
    },
    "clientProvidedAt": "2025-01-01T00:00:00Z",
}

FAKE_COSIGN = """#!{python}
import json
import os
import sys
import time

args = sys.argv[1:]
log = os.environ.get("FAKE_COSIGN_LOG")
if log:
    with open(log, "a") as f:
        f.write(json.dumps(args) + "\\n")

mode = os.environ.get("FAKE_COSIGN_MODE", "ok")
if mode == "sleep":
    time.sleep(float(os.environ.get("FAKE_COSIGN_SLEEP", "30")))
if mode == "fail":
    sys.stderr.write("error: signing refused by policy\\n")
    sys.exit(1)


def opt(name):
    return args[args.index(name) + 1]


with open(args[-1], "rb") as f:
    data = f.read()
copy = os.environ.get("FAKE_COSIGN_COPY")
if copy:
    with open(copy, "wb") as f:
        f.write(data)

if mode != "nobundle":
    with open(opt("--bundle"), "w") as f:
        json.dump({{"mediaType": "application/vnd.dev.sigstore.bundle+json;version=0.1",
                   "payloadSize": len(data)}}, f)
    cert = os.environ.get("FAKE_COSIGN_CERT")
    if cert:
        with open(cert) as src, open(opt("--output-certificate"), "w") as dst:
            dst.write(src.read())

print("MEUCIQDfakesignature" + str(len(data)))
"""


@pytest.fixture(scope="session")
def dev_key() -> DevKey:
    return DevKey(generate_rsa_key())


@pytest.fixture
def store(tmp_path: Path) -> EvidenceStore:
    store = EvidenceStore.from_url(f"sqlite:///{tmp_path / 'evidence.db'}")
    store.create_schema()
    return store


@pytest.fixture
def chain(store: EvidenceStore) -> AuditChain:
    return AuditChain(store)


@pytest.fixture
def sample_request() -> SigningRequest:
    return SigningRequest.model_validate(SAMPLE_REQUEST)


@pytest.fixture
def dev_settings(tmp_path: Path) -> TrustSettings:
    return load_settings(
        environ={
            "HSM_PROVIDER": "dev",
            "TSA_PROVIDER": "dev",
            "DATABASE_URL": f"sqlite:///{tmp_path / 'evidence.db'}",
        }
    )


@pytest.fixture(scope="session")
def signing_cert(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """A self-signed ECDSA P-256 certificate standing in for a Fulcio cert."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "signer@example.com")])
    now = datetime.now(UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=1))
        .not_valid_after(now + timedelta(minutes=10))
        .sign(key, hashes.SHA256())
    )
    path = tmp_path_factory.mktemp("cert") / "cert.pem"
    path.write_bytes(cert.public_bytes(Encoding.PEM))
    return path


@pytest.fixture
def fake_cosign(tmp_path: Path, signing_cert: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Executable cosign stand-in; behaviour is driven by FAKE_COSIGN_* variables."""
    script = tmp_path / "bin" / "cosign"
    script.parent.mkdir()
    script.write_text(FAKE_COSIGN.format(python=sys.executable))
    script.chmod(0o755)
    monkeypatch.setenv("FAKE_COSIGN_CERT", str(signing_cert))
    monkeypatch.delenv("FAKE_COSIGN_MODE", raising=False)
    return script


@pytest.fixture
def signer_tmp(tmp_path: Path) -> Path:
    path = tmp_path / "signer-tmp"
    path.mkdir()
    return path


def leftover_workdirs(path: Path) -> list[Path]:
    return [p for p in path.iterdir() if p.name.startswith("trustcore-")]


def tamper(store: EvidenceStore, sql: str, **params) -> None:
    """Bypass the append-only triggers and modify stored rows directly."""
    with store.engine.begin() as conn:
        conn.execute(sa.text("DROP TRIGGER IF EXISTS audit_events_no_update"))
        conn.execute(sa.text("DROP TRIGGER IF EXISTS audit_events_no_delete"))
        conn.execute(sa.text(sql), params)


def build_tsr(digest: bytes, status: str = "granted", with_token: bool = True, nonce: int | None = None) -> bytes:
    """DER TimeStampResp whose token's TSTInfo covers ``digest``."""
    from asn1crypto import cms, tsp

    from trustcore.tsa.rfc3161 import TimeStampResp

    resp: dict = {"status": {"status": status}}
    if status not in ("granted", "granted_with_mods"):
        resp["status"]["status_string"] = ["request refused"]
    elif with_token:
        fields = {
            "version": 1,
            "policy": "1.2.3.4.5.777",
            "message_imprint": {
                "hash_algorithm": {"algorithm": "sha256"},
                "hashed_message": digest,
            },
            "serial_number": 42,
            "gen_time": datetime(2025, 1, 1, 0, 0, 1, tzinfo=UTC),
        }
        if nonce is not None:
            fields["nonce"] = nonce
        tst_info = tsp.TSTInfo(fields)
        signed_data = cms.SignedData(
            {
                "version": "v3",
                "digest_algorithms": [{"algorithm": "sha256"}],
                "encap_content_info": {"content_type": "tst_info", "content": tst_info},
                "signer_infos": [],
            }
        )
        resp["time_stamp_token"] = cms.ContentInfo({"content_type": "signed_data", "content": signed_data})
    return TimeStampResp(resp).dump()


def tsa_reply(tsq: bytes, **kwargs) -> bytes:
    """Granted reply answering a TimeStampReq with its own imprint and nonce."""
    from asn1crypto import tsp

    req = tsp.TimeStampReq.load(tsq)
    kwargs.setdefault("digest", req["message_imprint"]["hashed_message"].native)
    kwargs.setdefault("nonce", req["nonce"].native)
    return build_tsr(**kwargs)
