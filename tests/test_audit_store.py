"""Tests for the evidence store: append-only schema, grants and atomic writes."""

from pathlib import Path

import pytest
import sqlalchemy as sa
from sqlalchemy.exc import DBAPIError

from trustcore.audit.chain import AuditChain
from trustcore.audit.models import EvidenceRecord
from trustcore.audit.store import APPEND_ONLY_PRIVILEGES, EvidenceStore, grant_statements
from trustcore.errors import ChainConflict, StoreUnavailable


def _evidence(envelope_id: str = "E1") -> EvidenceRecord:
    return EvidenceRecord(
        envelope_id=envelope_id,
        recipient_id="R1",
        provider="dev",
        algorithm="RSA-SHA256",
        signature_blob="c2ln",
        cert_chain_json="[]",
        tsa_token_json='{"type":"none"}',
        created_at="2025-01-01T00:00:00.000Z",
    )


class TestImmutability:
    def test_update_is_rejected(self, chain: AuditChain, store: EvidenceStore):
        chain.append("E1", "envelope_created", {"title": "NDA"})

        with pytest.raises(DBAPIError, match="append-only"):
            with store.engine.begin() as conn:
                conn.execute(sa.text("UPDATE audit_events SET kind = 'x' WHERE seq = 0"))

        assert store.events("E1")[0].kind == "envelope_created"

    def test_delete_is_rejected(self, chain: AuditChain, store: EvidenceStore):
        chain.append("E1", "envelope_created", {})

        with pytest.raises(DBAPIError, match="append-only"):
            with store.engine.begin() as conn:
                conn.execute(sa.text("DELETE FROM audit_events"))

        assert len(store.events("E1")) == 1

    def test_evidence_rows_are_append_only(self, chain: AuditChain, store: EvidenceStore):
        chain.append("E1", "signature_sealed", {}, evidence=_evidence())

        with pytest.raises(DBAPIError, match="append-only"):
            with store.engine.begin() as conn:
                conn.execute(sa.text("UPDATE signature_evidence SET signature_blob = 'forged'"))

    def test_schema_creation_is_idempotent(self, store: EvidenceStore):
        store.create_schema()
        store.create_schema()

    def test_grant_set_is_select_and_insert_only(self):
        assert APPEND_ONLY_PRIVILEGES == {
            "audit_events": ("SELECT", "INSERT"),
            "signature_evidence": ("SELECT", "INSERT"),
        }
        statements = grant_statements("trustcore_app")
        assert "GRANT SELECT, INSERT ON audit_events TO trustcore_app" in statements
        assert "GRANT SELECT, INSERT ON signature_evidence TO trustcore_app" in statements
        assert "REVOKE ALL ON audit_events FROM trustcore_app" in statements
        grants = [s for s in statements if s.startswith("GRANT")]
        assert not any("UPDATE" in s or "DELETE" in s for s in grants)

    def test_grant_role_must_be_identifier(self):
        with pytest.raises(ValueError):
            grant_statements("app; DROP TABLE audit_events")


class TestWrites:
    def test_evidence_is_written_with_its_event(self, chain: AuditChain, store: EvidenceStore):
        event = chain.append("E1", "signature_sealed", {"requestHash": "0" * 64}, evidence=_evidence())

        rows = store.evidence("E1")
        assert len(rows) == 1
        assert rows[0].evidence_id == event.event_hash
        assert rows[0].recipient_id == "R1"

    def test_duplicate_seq_is_a_conflict(self, chain: AuditChain, store: EvidenceStore):
        chain.append("E1", "envelope_created", {})
        stored = store.events("E1")[0]

        with pytest.raises(ChainConflict):
            store.insert(stored.model_copy(update={"event_hash": "f" * 64}))

    def test_failed_insert_writes_no_evidence(self, chain: AuditChain, store: EvidenceStore):
        chain.append("E1", "envelope_created", {})
        stored = store.events("E1")[0]

        with pytest.raises(ChainConflict):
            store.insert(stored.model_copy(update={"event_hash": "f" * 64}), _evidence())
        assert store.evidence("E1") == []

    def test_unreachable_database(self, tmp_path: Path):
        store = EvidenceStore.from_url(f"sqlite:///{tmp_path / 'missing' / 'dir' / 'x.db'}")
        with pytest.raises(StoreUnavailable):
            store.create_schema()

    def test_in_memory_store(self):
        store = EvidenceStore.from_url("sqlite://")
        store.create_schema()
        event = AuditChain(store).append("E1", "envelope_created", {})
        assert store.head("E1").event_hash == event.event_hash
