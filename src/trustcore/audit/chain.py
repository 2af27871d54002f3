"""Per-envelope hash-chained audit log."""

import json
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from trustcore.audit.models import (
    AuditEvent,
    AuditKind,
    ChainVerification,
    EvidenceRecord,
    StoredEvent,
    event_body,
)
from trustcore.audit.store import EvidenceStore
from trustcore.audit.verifier import ChainVerifier
from trustcore.canonical import GENESIS_HASH, canonicalize, chain_hash, rfc3339
from trustcore.deadline import Deadline
from trustcore.errors import ChainConflict, DeadlineExceeded
from trustcore.log import get_logger

logger = get_logger(__name__)


class AuditChain:
    """Append-only event chain, one chain per envelope.

    Each event's ``prevEventHash`` points to the previous event's
    ``eventHash``, so any edit or deletion is detectable. Appends to one
    envelope are serialized in-process; the store's (envelope_id, seq) key
    catches writers in other processes, and one such conflict is retried
    against the fresh head.
    """

    def __init__(self, store: EvidenceStore, verifier: ChainVerifier | None = None) -> None:
        self.store = store
        self.verifier = verifier or ChainVerifier()
        # envelope_id -> (lock, number of appenders holding or waiting on it)
        self._locks: dict[str, tuple[threading.Lock, int]] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _envelope_lock(self, envelope_id: str) -> Iterator[None]:
        with self._locks_guard:
            lock, users = self._locks.get(envelope_id, (threading.Lock(), 0))
            self._locks[envelope_id] = (lock, users + 1)
        try:
            with lock:
                yield
        finally:
            with self._locks_guard:
                lock, users = self._locks[envelope_id]
                if users == 1:
                    del self._locks[envelope_id]
                else:
                    self._locks[envelope_id] = (lock, users - 1)

    def append(
        self,
        envelope_id: str,
        kind: AuditKind | str,
        payload: Any,
        evidence: EvidenceRecord | None = None,
        deadline: Deadline | None = None,
    ) -> AuditEvent:
        """Append one event; ``evidence`` is written in the same transaction."""
        kind = kind.value if isinstance(kind, AuditKind) else kind
        # Stored payloads are plain JSON so re-canonicalization on verify is exact.
        payload_json = canonicalize(payload).decode("utf-8")
        plain_payload = json.loads(payload_json)

        with self._envelope_lock(envelope_id):
            retried = False
            while True:
                if deadline is not None:
                    deadline.check(DeadlineExceeded, "audit append")
                event = self._next_event(envelope_id, kind, plain_payload, payload_json)
                try:
                    self.store.insert(event, evidence)
                except ChainConflict:
                    if retried:
                        raise
                    retried = True
                    logger.warning("chain_conflict_retry", envelope_id=envelope_id, seq=event.seq)
                    continue
                logger.debug("audit_event_appended", envelope_id=envelope_id, seq=event.seq, kind=kind)
                return event.to_event()

    def _next_event(self, envelope_id: str, kind: str, payload: Any, payload_json: str) -> StoredEvent:
        head = self.store.head(envelope_id)
        occurred_at = rfc3339(datetime.now(UTC))
        if head is None:
            seq, prev_hash = 0, GENESIS_HASH
        else:
            seq, prev_hash = head.seq + 1, head.event_hash
            # occurredAt never goes backwards within a chain, even if the clock does
            occurred_at = max(occurred_at, head.occurred_at)
        return StoredEvent(
            envelope_id=envelope_id,
            seq=seq,
            kind=kind,
            occurred_at=occurred_at,
            payload_json=payload_json,
            prev_event_hash=prev_hash,
            event_hash=chain_hash(prev_hash, event_body(envelope_id, seq, kind, occurred_at, payload)),
        )

    def head(self, envelope_id: str) -> AuditEvent | None:
        stored = self.store.head(envelope_id)
        return stored.to_event() if stored is not None else None

    def verify(self, envelope_id: str) -> ChainVerification:
        return self.verifier.verify(envelope_id, self.store.events(envelope_id))

    def export_chain(self, envelope_id: str) -> list[AuditEvent]:
        return [stored.to_event() for stored in self.store.events(envelope_id)]
