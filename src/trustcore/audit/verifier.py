"""Audit chain verification."""

import base64
from typing import Any

from asn1crypto import tsp  # type: ignore[import-untyped]
from pydantic import ValidationError

from trustcore.audit.models import AuditKind, ChainVerification, StoredEvent
from trustcore.canonical import GENESIS_HASH, canonicalize, chain_hash, hash_hex, sha256_digest
from trustcore.errors import CanonicalizationError
from trustcore.signers.dev import verify_signature
from trustcore.tsa.dev import verify_dev_token
from trustcore.tsa.models import DevTsaToken, Rfc3161Token, parse_tsa_token

# Members of a signature_sealed payload that together are the signed request.
SEALED_REQUEST_KEYS = (
    "envelopeId",
    "recipientId",
    "documentDigest",
    "fields",
    "actor",
    "intent",
    "clientProvidedAt",
)


def sealed_request(payload: dict[str, Any]) -> dict[str, Any]:
    """Rebuild the signing request from a sealed payload."""
    return {key: payload[key] for key in SEALED_REQUEST_KEYS if key in payload}


class ChainVerifier:
    """Verify an envelope's audit chain.

    Checks, in seq order:
    1. seq runs 0, 1, 2, ... without gaps
    2. each prevEventHash equals the previous eventHash (GENESIS for seq 0)
    3. each eventHash matches the re-canonicalized event body (envelope, seq,
       kind, occurredAt and payload)

    The first failure stops verification. Sealed events additionally get
    advisory warnings: dev provenance, missing or clock-only timestamps, and
    dev signatures or tokens that no longer verify against the request.
    """

    def verify(self, envelope_id: str, events: list[StoredEvent]) -> ChainVerification:
        prev_hash = GENESIS_HASH
        warnings: list[str] = []

        for index, event in enumerate(events):
            if event.seq != index:
                return self._failed(
                    envelope_id, index, index, f"seq {index}: missing, found seq {event.seq} instead"
                )
            if event.prev_event_hash != prev_hash:
                return self._failed(
                    envelope_id,
                    index,
                    event.seq,
                    f"seq {event.seq}: prevEventHash mismatch. "
                    f"Expected {prev_hash}, got {event.prev_event_hash}",
                )
            try:
                body = event.body()
                computed = chain_hash(event.prev_event_hash, body)
            except (ValueError, CanonicalizationError) as e:
                return self._failed(
                    envelope_id, index, event.seq, f"seq {event.seq}: unreadable payload: {e}"
                )
            if computed != event.event_hash:
                return self._failed(
                    envelope_id,
                    index,
                    event.seq,
                    f"seq {event.seq}: eventHash mismatch. Expected {computed}, got {event.event_hash}",
                )

            if event.kind == AuditKind.SIGNATURE_SEALED.value and isinstance(body["data"], dict):
                warnings.extend(self._inspect_sealed(event.seq, body["data"]))
            prev_hash = event.event_hash

        return ChainVerification(
            envelope_id=envelope_id, ok=True, events_checked=len(events), warnings=warnings
        )

    @staticmethod
    def _failed(envelope_id: str, checked: int, seq: int, error: str) -> ChainVerification:
        return ChainVerification(
            envelope_id=envelope_id,
            ok=False,
            events_checked=checked,
            first_bad_seq=seq,
            error=error,
        )

    def _inspect_sealed(self, seq: int, payload: dict[str, Any]) -> list[str]:
        warnings: list[str] = []
        try:
            canonical = canonicalize(sealed_request(payload))
        except CanonicalizationError as e:
            return [f"seq {seq}: sealed request cannot be canonicalized: {e}"]

        if payload.get("requestHash") != hash_hex(canonical):
            warnings.append(f"seq {seq}: requestHash does not match the sealed request")

        sig = payload.get("sig")
        if not isinstance(sig, dict):
            warnings.append(f"seq {seq}: no signature bundle")
        elif sig.get("provider") == "dev":
            warnings.append(f"seq {seq}: signed with the development key, not production evidence")
            if not self._dev_signature_verifies(sig, canonical):
                warnings.append(f"seq {seq}: dev signature does not verify")

        raw_tsa = payload.get("tsa")
        if not raw_tsa:
            warnings.append(f"seq {seq}: no timestamp token")
            return warnings
        try:
            token = parse_tsa_token(raw_tsa)
        except ValidationError:
            warnings.append(f"seq {seq}: unrecognized timestamp token")
            return warnings

        if token.type == "none":
            warnings.append(f"seq {seq}: no timestamp token")
        elif token.type == "clock":
            warnings.append(f"seq {seq}: clock time is advisory only, not a timestamp proof")
        elif isinstance(token, DevTsaToken):
            warnings.append(f"seq {seq}: dev TSA token, not a trusted timestamp")
            if token.fallback_from_rfc3161:
                warnings.append(f"seq {seq}: RFC 3161 TSA failed, dev fallback token used")
            if not verify_dev_token(token, canonical):
                warnings.append(f"seq {seq}: dev TSA token does not verify")
        elif isinstance(token, Rfc3161Token) and not self._imprint_matches(token, canonical):
            warnings.append(f"seq {seq}: RFC 3161 request imprint does not match the sealed request")
        return warnings

    @staticmethod
    def _dev_signature_verifies(sig: dict[str, Any], canonical: bytes) -> bool:
        chain = sig.get("certChain")
        leaf = chain[0] if isinstance(chain, list) and chain else None
        public_key = leaf.get("publicKey") if isinstance(leaf, dict) else None
        blob = sig.get("signatureBlob")
        if not isinstance(public_key, str) or not isinstance(blob, str):
            return False
        return verify_signature(public_key, canonical, blob)

    @staticmethod
    def _imprint_matches(token: Rfc3161Token, canonical: bytes) -> bool:
        try:
            request = tsp.TimeStampReq.load(base64.b64decode(token.request))
            imprint = request["message_imprint"]["hashed_message"].native
        except (ValueError, TypeError, KeyError):
            return False
        return imprint == sha256_digest(canonical)
