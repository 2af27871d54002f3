"""
Persistent store for audit events and signature evidence (SQLAlchemy Core).

Both tables are append-only: the application role only ever holds SELECT
and INSERT, and on sqlite triggers abort any UPDATE or DELETE.
"""

import re

import sqlalchemy as sa
from sqlalchemy import event as sa_event
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from trustcore.audit.models import EvidenceRecord, StoredEvent
from trustcore.errors import ChainConflict, StoreUnavailable

metadata = sa.MetaData()

audit_events = sa.Table(
    "audit_events",
    metadata,
    sa.Column("envelope_id", sa.String(255), primary_key=True),
    sa.Column("seq", sa.BigInteger, primary_key=True, autoincrement=False),
    sa.Column("kind", sa.String(100), nullable=False),
    sa.Column("occurred_at", sa.String(40), nullable=False),
    sa.Column("payload_json", sa.Text, nullable=False),
    sa.Column("prev_event_hash", sa.String(64), nullable=False),
    sa.Column("event_hash", sa.String(64), nullable=False),
    sa.UniqueConstraint("envelope_id", "event_hash", name="uq_audit_events_envelope_hash"),
)

signature_evidence = sa.Table(
    "signature_evidence",
    metadata,
    sa.Column("evidence_id", sa.String(64), primary_key=True),
    sa.Column("envelope_id", sa.String(255), nullable=False, index=True),
    sa.Column("recipient_id", sa.String(255), nullable=False),
    sa.Column("provider", sa.String(50), nullable=False),
    sa.Column("algorithm", sa.String(50), nullable=False),
    sa.Column("signature_blob", sa.Text, nullable=False),
    sa.Column("cert_chain_json", sa.Text, nullable=False),
    sa.Column("tsa_token_json", sa.Text, nullable=False),
    sa.Column("created_at", sa.String(40), nullable=False),
)

APPEND_ONLY_PRIVILEGES: dict[str, tuple[str, ...]] = {
    "audit_events": ("SELECT", "INSERT"),
    "signature_evidence": ("SELECT", "INSERT"),
}

_SQLITE_TRIGGERS = [
    f"CREATE TRIGGER IF NOT EXISTS {table}_no_{op.lower()} BEFORE {op} ON {table} "
    f"BEGIN SELECT RAISE(ABORT, '{table} is append-only'); END"
    for table in APPEND_ONLY_PRIVILEGES
    for op in ("UPDATE", "DELETE")
]

for _ddl in _SQLITE_TRIGGERS:
    sa_event.listen(metadata, "after_create", sa.DDL(_ddl).execute_if(dialect="sqlite"))

_ROLE_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def grant_statements(role: str) -> list[str]:
    """PostgreSQL statements giving ``role`` append-only access to the evidence tables."""
    if not _ROLE_RE.match(role):
        raise ValueError(f"Invalid role name: {role!r}")
    statements = []
    for table, privileges in APPEND_ONLY_PRIVILEGES.items():
        statements.append(f"REVOKE ALL ON {table} FROM PUBLIC")
        statements.append(f"REVOKE ALL ON {table} FROM {role}")
        statements.append(f"GRANT {', '.join(privileges)} ON {table} TO {role}")
    return statements


def create_store_engine(url: str) -> sa.Engine:
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"timeout": 30, "check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return sa.create_engine(url, **kwargs)
    return sa.create_engine(url, pool_pre_ping=True)


class EvidenceStore:
    """Reads and appends chain events; writes an event and its evidence atomically."""

    def __init__(self, engine: sa.Engine) -> None:
        self.engine = engine

    @classmethod
    def from_url(cls, url: str) -> "EvidenceStore":
        return cls(create_store_engine(url))

    def create_schema(self) -> None:
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Cannot create evidence schema: {e}") from e

    def head(self, envelope_id: str) -> StoredEvent | None:
        query = (
            sa.select(audit_events)
            .where(audit_events.c.envelope_id == envelope_id)
            .order_by(audit_events.c.seq.desc())
            .limit(1)
        )
        try:
            with self.engine.connect() as conn:
                row = conn.execute(query).mappings().first()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Cannot read chain head: {e}") from e
        return StoredEvent(**row) if row is not None else None

    def events(self, envelope_id: str) -> list[StoredEvent]:
        query = (
            sa.select(audit_events)
            .where(audit_events.c.envelope_id == envelope_id)
            .order_by(audit_events.c.seq.asc())
        )
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(query).mappings().all()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Cannot read chain: {e}") from e
        return [StoredEvent(**row) for row in rows]

    def evidence(self, envelope_id: str) -> list[EvidenceRecord]:
        query = (
            sa.select(signature_evidence)
            .where(signature_evidence.c.envelope_id == envelope_id)
            .order_by(signature_evidence.c.created_at.asc())
        )
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(query).mappings().all()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Cannot read signature evidence: {e}") from e
        return [EvidenceRecord(**row) for row in rows]

    def insert(self, event: StoredEvent, evidence: EvidenceRecord | None = None) -> None:
        """Insert the event (and its evidence row) in one transaction.

        A duplicate (envelope_id, seq) means another writer moved the head
        first and surfaces as ChainConflict.
        """
        try:
            with self.engine.begin() as conn:
                conn.execute(audit_events.insert().values(**event.model_dump()))
                if evidence is not None:
                    row = evidence.model_dump()
                    row["evidence_id"] = event.event_hash
                    conn.execute(signature_evidence.insert().values(**row))
        except IntegrityError as e:
            raise ChainConflict(
                f"Envelope {event.envelope_id}: seq {event.seq} was already written"
            ) from e
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Cannot persist audit event: {e}") from e
