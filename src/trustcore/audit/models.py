"""Pydantic models for audit chain events, evidence rows and verification results."""

import json
from enum import Enum
from typing import Any

from pydantic import Field

from trustcore.errors import ChainCorrupt
from trustcore.types import CamelModel


class AuditKind(str, Enum):
    ENVELOPE_CREATED = "envelope_created"
    RECIPIENT_ADDED = "recipient_added"
    DOCUMENT_VIEWED = "document_viewed"
    SIGNATURE_REQUESTED = "signature_requested"
    SIGNATURE_SEALED = "signature_sealed"
    EVIDENCE_RETRIEVED = "evidence_retrieved"
    ENVELOPE_VOIDED = "envelope_voided"


def event_body(envelope_id: str, seq: int, kind: str, occurred_at: str, payload: Any) -> dict[str, Any]:
    """The hashed form of an event: its payload plus every column that places it."""
    return {
        "envelopeId": envelope_id,
        "seq": seq,
        "kind": kind,
        "occurredAt": occurred_at,
        "data": payload,
    }


class AuditEvent(CamelModel):
    seq: int
    envelope_id: str
    kind: str
    occurred_at: str
    payload: Any
    prev_event_hash: str
    event_hash: str


class StoredEvent(CamelModel):
    """An ``audit_events`` row exactly as persisted, payload still serialized."""

    envelope_id: str
    seq: int
    kind: str
    occurred_at: str
    payload_json: str
    prev_event_hash: str
    event_hash: str

    def body(self) -> dict[str, Any]:
        return event_body(self.envelope_id, self.seq, self.kind, self.occurred_at, json.loads(self.payload_json))

    def to_event(self) -> AuditEvent:
        return AuditEvent(
            seq=self.seq,
            envelope_id=self.envelope_id,
            kind=self.kind,
            occurred_at=self.occurred_at,
            payload=json.loads(self.payload_json),
            prev_event_hash=self.prev_event_hash,
            event_hash=self.event_hash,
        )


class EvidenceRecord(CamelModel):
    """A ``signature_evidence`` row; ``evidence_id`` is the sealing event's hash."""

    evidence_id: str | None = None
    envelope_id: str
    recipient_id: str
    provider: str
    algorithm: str
    signature_blob: str
    cert_chain_json: str
    tsa_token_json: str
    created_at: str


class ChainVerification(CamelModel):
    envelope_id: str
    ok: bool
    events_checked: int
    first_bad_seq: int | None = None
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)

    def raise_for_status(self) -> None:
        if not self.ok:
            raise ChainCorrupt(self.error or "audit chain is corrupt", first_bad_seq=self.first_bad_seq)
