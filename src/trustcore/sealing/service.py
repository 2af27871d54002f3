"""Evidence assembler: sign, timestamp and chain a signing request."""

from datetime import UTC, datetime
from typing import Any

import httpx
from pydantic import ValidationError

from trustcore.audit.chain import AuditChain
from trustcore.audit.models import AuditEvent, AuditKind, ChainVerification, EvidenceRecord
from trustcore.audit.store import EvidenceStore
from trustcore.canonical import canonicalize, hash_hex, rfc3339
from trustcore.config import TrustSettings
from trustcore.deadline import DEFAULT_DEADLINE_SECONDS, Deadline
from trustcore.errors import ChainError, DeadlineExceeded
from trustcore.log import get_logger
from trustcore.sealing.models import (
    ChainEntry,
    EvidenceBundle,
    EvidenceSignature,
    SigningEvidence,
    SigningRequest,
)
from trustcore.signers.base import SignatureBundle, Signer
from trustcore.signers.dev import DevKey
from trustcore.signers.keys import load_or_create_private_key
from trustcore.signers.registry import build_signer
from trustcore.tsa.client import TimestampClient, build_timestamp_client
from trustcore.tsa.models import parse_tsa_token

logger = get_logger(__name__)


class SealingService:
    """Seals signing requests into the envelope's audit chain.

    Nothing is persisted unless signing and timestamping both succeed; the
    evidence row and its chain event are written in one transaction.
    """

    def __init__(
        self,
        signer: Signer,
        timestamps: TimestampClient,
        chain: AuditChain,
        deadline_seconds: float = DEFAULT_DEADLINE_SECONDS,
    ) -> None:
        self.signer = signer
        self.timestamps = timestamps
        self.chain = chain
        self.deadline_seconds = deadline_seconds

    def seal(self, request: SigningRequest, deadline: Deadline | float | None = None) -> SigningEvidence:
        deadline = Deadline.coerce(deadline, self.deadline_seconds)
        canonical = canonicalize(request)
        request_hash = hash_hex(canonical)
        log = logger.bind(
            envelope_id=request.envelope_id,
            recipient_id=request.recipient_id,
            request_hash=request_hash,
        )

        signature = self.signer.sign(canonical, deadline)
        deadline.check(DeadlineExceeded, "seal")
        token = self.timestamps.stamp(canonical, signature=signature, deadline=deadline)
        deadline.check(DeadlineExceeded, "seal")

        sig_json = signature.to_json_dict()
        tsa_json = token.to_json_dict()
        payload = {"requestHash": request_hash, **request.to_json_dict(), "sig": sig_json, "tsa": tsa_json}
        record = EvidenceRecord(
            envelope_id=request.envelope_id,
            recipient_id=request.recipient_id,
            provider=signature.provider,
            algorithm=signature.algorithm,
            signature_blob=signature.signature_blob,
            cert_chain_json=canonicalize(sig_json.get("certChain", [])).decode("utf-8"),
            tsa_token_json=canonicalize(tsa_json).decode("utf-8"),
            created_at=rfc3339(datetime.now(UTC)),
        )
        event = self.chain.append(
            request.envelope_id,
            AuditKind.SIGNATURE_SEALED,
            payload,
            evidence=record,
            deadline=deadline,
        )

        log.info(
            "signature_sealed",
            seq=event.seq,
            provider=signature.provider,
            tsa_type=token.type,
        )
        return SigningEvidence(
            evidence_id=event.event_hash,
            request_hash=request_hash,
            event=event,
            signature=signature,
            tsa=token,
        )

    def record(self, envelope_id: str, kind: AuditKind | str, payload: Any) -> AuditEvent:
        """Chain a non-signature lifecycle event."""
        if kind == AuditKind.SIGNATURE_SEALED:
            raise ChainError("signature_sealed events carry evidence and are only written by seal()")
        return self.chain.append(envelope_id, kind, payload)

    def verify(self, envelope_id: str) -> ChainVerification:
        result = self.chain.verify(envelope_id)
        if not result.ok:
            logger.error(
                "chain_verification_failed",
                envelope_id=envelope_id,
                first_bad_seq=result.first_bad_seq,
                error=result.error,
            )
        return result

    def export(self, envelope_id: str, record_retrieval: bool = True) -> EvidenceBundle:
        return export_bundle(self.chain, envelope_id, record_retrieval=record_retrieval)


def export_bundle(chain: AuditChain, envelope_id: str, record_retrieval: bool = True) -> EvidenceBundle:
    """Assemble the evidence bundle; the retrieval itself is chained first."""
    if record_retrieval and chain.head(envelope_id) is not None:
        chain.append(
            envelope_id,
            AuditKind.EVIDENCE_RETRIEVED,
            {"envelopeId": envelope_id, "retrievedAt": rfc3339(datetime.now(UTC))},
        )

    events = chain.export_chain(envelope_id)
    document_digest = None
    signatures = []
    for event in events:
        if event.kind != AuditKind.SIGNATURE_SEALED.value or not isinstance(event.payload, dict):
            continue
        try:
            entry = EvidenceSignature(
                evidence_id=event.event_hash,
                recipient_id=event.payload.get("recipientId", ""),
                signature=SignatureBundle.model_validate(event.payload.get("sig")),
                tsa=parse_tsa_token(event.payload.get("tsa")),
            )
        except ValidationError:
            logger.warning("sealed_event_without_evidence", envelope_id=envelope_id, seq=event.seq)
            continue
        document_digest = event.payload.get("documentDigest", document_digest)
        signatures.append(entry)

    return EvidenceBundle(
        envelope_id=envelope_id,
        document_digest=document_digest,
        chain=[ChainEntry.from_event(event) for event in events],
        signatures=signatures,
    )


def export_json(bundle: EvidenceBundle) -> bytes:
    """Canonical JSON bytes of an evidence bundle."""
    return canonicalize(bundle)


def build_sealing_service(
    settings: TrustSettings,
    store: EvidenceStore | None = None,
    dev_key: DevKey | None = None,
    transport: httpx.BaseTransport | None = None,
) -> SealingService:
    """Wire the configured signer, TSA client and store; init the signer once."""
    if dev_key is None and settings.needs_dev_key:
        dev_key = DevKey(load_or_create_private_key(settings.dev_key_path))

    signer = build_signer(settings, dev_key)
    signer.init()
    timestamps = build_timestamp_client(settings, dev_key=dev_key, transport=transport)

    if store is None:
        store = EvidenceStore.from_url(settings.database_url)
    store.create_schema()

    logger.info(
        "sealing_service_ready",
        environment=settings.trust_environment,
        signer=signer.name,
        tsa_provider=settings.tsa_provider,
    )
    return SealingService(signer, timestamps, AuditChain(store), settings.seal_deadline_seconds)
