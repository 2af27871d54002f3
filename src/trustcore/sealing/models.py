"""Signing requests, sealed evidence and export bundles."""

from typing import Any

from pydantic import Field

from trustcore.audit.models import AuditEvent
from trustcore.signers.base import SignatureBundle
from trustcore.tsa.models import TsaToken
from trustcore.types import CamelModel


class FieldValue(CamelModel):
    name: str
    value: str


class Actor(CamelModel):
    display_name: str | None = None
    email: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


class Intent(CamelModel):
    declaration_text: str = Field(min_length=1)
    consent_given_at: str


class SigningRequest(CamelModel):
    """What a recipient signs. Its canonical JSON is the signed byte string."""

    envelope_id: str = Field(min_length=1)
    recipient_id: str = Field(min_length=1)
    document_digest: str = Field(pattern=r"^[0-9a-f]{64}$")
    fields: tuple[FieldValue, ...] = ()
    actor: Actor
    intent: Intent
    client_provided_at: str | None = None


class SigningEvidence(CamelModel):
    """Result of one seal: the chained event plus what it commits to."""

    evidence_id: str
    request_hash: str
    event: AuditEvent
    signature: SignatureBundle
    tsa: TsaToken


class ChainEntry(CamelModel):
    seq: int
    kind: str
    occurred_at: str
    payload: Any
    prev_event_hash: str
    event_hash: str

    @classmethod
    def from_event(cls, event: AuditEvent) -> "ChainEntry":
        return cls(
            seq=event.seq,
            kind=event.kind,
            occurred_at=event.occurred_at,
            payload=event.payload,
            prev_event_hash=event.prev_event_hash,
            event_hash=event.event_hash,
        )


class EvidenceSignature(CamelModel):
    evidence_id: str
    recipient_id: str
    signature: SignatureBundle
    tsa: TsaToken


class EvidenceBundle(CamelModel):
    """Everything a third party needs to re-verify an envelope offline."""

    envelope_id: str
    document_digest: str | None = None
    chain: list[ChainEntry]
    signatures: list[EvidenceSignature]
