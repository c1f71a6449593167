"""
SQL storage backend (SQLAlchemy).

Each record write, together with its backup copy and backup pruning, runs
in one transaction. Defaults to a local SQLite file; any SQLAlchemy URL with
a sync driver works.

Usage:
    storage = SqlStorage("sqlite:///multisig.db", clock)
    storage.initialize()  # create tables, resume the audit chain
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Iterator

from sqlalchemy import create_engine, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from guild_multisig.core.clock import Clock
from guild_multisig.core.errors import StorageUnavailable
from guild_multisig.core.schema import AuditEntry
from guild_multisig.ledger.models import (
    AuditEntryDB,
    Base,
    GroupRecordDB,
    ProposalRecordDB,
    RecordBackupDB,
)
from guild_multisig.ledger.storage import RecordKind, Storage, StorageStats, local_day

logger = logging.getLogger(__name__)

_RECORD_MODELS = {RecordKind.GROUP: GroupRecordDB, RecordKind.PROPOSAL: ProposalRecordDB}


class SqlStorage(Storage):
    """Relational backend for hosts that already run a database."""

    backend_name = "sql"

    def __init__(self, database_url: str, clock: Clock, **options: Any) -> None:
        super().__init__(clock, **options)
        self.database_url = database_url
        self.engine = create_engine(database_url, echo=False)
        self.SessionLocal = sessionmaker(bind=self.engine)

    def initialize(self) -> None:
        """Create tables and pick up the audit chain where it left off."""
        try:
            Base.metadata.create_all(self.engine)
            with self.SessionLocal() as session:
                last = session.execute(
                    select(AuditEntryDB).order_by(AuditEntryDB.sequence.desc()).limit(1)
                ).scalar_one_or_none()
                if last is not None:
                    self._resume_audit_chain(AuditEntry.model_validate_json(last.payload))
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"Cannot initialize {self.database_url}: {exc}") from exc
        logger.info("SQL storage ready at %s", self.engine.url.render_as_string(hide_password=True))

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self.SessionLocal() as session, session.begin():
                yield session
        except SQLAlchemyError as exc:
            raise StorageUnavailable(f"Database error: {exc}") from exc

    # ── Records ────────────────────────────────────────────────

    def _write_record(self, kind: RecordKind, record_id: str, raw: bytes) -> None:
        model = _RECORD_MODELS[kind]
        now = self.clock.now()
        payload = raw.decode("utf-8")
        with self._session() as session:
            row = session.get(model, record_id)
            if row is None:
                row = model(id=record_id, payload=payload, updated_at=now)
                if kind == RecordKind.PROPOSAL:
                    row.group_id = self._group_of(raw)
                session.add(row)
                return
            if self.enable_backups:
                session.add(
                    RecordBackupDB(
                        kind=kind.value,
                        record_id=record_id,
                        created_at=now,
                        payload=row.payload,
                    )
                )
                session.flush()
                self._prune(session, kind, record_id)
            row.payload = payload
            row.updated_at = now

    @staticmethod
    def _group_of(raw: bytes) -> str:
        return json.loads(raw)["data"]["group_id"]

    def _prune(self, session: Session, kind: RecordKind, record_id: str) -> int:
        ids = session.execute(
            select(RecordBackupDB.id)
            .where(RecordBackupDB.kind == kind.value, RecordBackupDB.record_id == record_id)
            .order_by(RecordBackupDB.id.asc())
        ).scalars().all()
        surplus = ids[: max(0, len(ids) - self.max_backups_per_record)]
        if surplus:
            session.execute(delete(RecordBackupDB).where(RecordBackupDB.id.in_(surplus)))
        return len(surplus)

    def _read_record(self, kind: RecordKind, record_id: str) -> bytes | None:
        with self._session() as session:
            row = session.get(_RECORD_MODELS[kind], record_id)
            return None if row is None else row.payload.encode("utf-8")

    def _record_ids(self, kind: RecordKind) -> list[str]:
        model = _RECORD_MODELS[kind]
        with self._session() as session:
            return list(session.execute(select(model.id).order_by(model.id)).scalars().all())

    def _backup_rows(self, session: Session, kind: RecordKind, record_id: str) -> list[RecordBackupDB]:
        return list(
            session.execute(
                select(RecordBackupDB)
                .where(RecordBackupDB.kind == kind.value, RecordBackupDB.record_id == record_id)
                .order_by(RecordBackupDB.id.asc())
            ).scalars().all()
        )

    def _backup_payloads(self, kind: RecordKind, record_id: str) -> list[bytes]:
        with self._session() as session:
            return [row.payload.encode("utf-8") for row in self._backup_rows(session, kind, record_id)]

    def backups(self, kind: RecordKind, record_id: str) -> list[str]:
        with self._session() as session:
            return [
                f"{kind.value}:{record_id}:{row.id}"
                for row in self._backup_rows(session, kind, record_id)
            ]

    # ── Audit ──────────────────────────────────────────────────

    def _write_audit(self, entry: AuditEntry) -> None:
        with self._session() as session:
            session.add(
                AuditEntryDB(
                    sequence=entry.sequence,
                    day=local_day(entry.timestamp).isoformat(),
                    timestamp=entry.timestamp,
                    action=entry.action.value,
                    group_id=entry.group_id,
                    proposal_id=entry.proposal_id,
                    actor=entry.actor,
                    details=entry.details,
                    previous_hash=entry.previous_hash,
                    entry_hash=entry.entry_hash,
                    payload=entry.model_dump_json(),
                )
            )

    def read_audit(self, day: date | None = None) -> list[AuditEntry]:
        stmt = select(AuditEntryDB.payload).order_by(AuditEntryDB.sequence.asc())
        if day is not None:
            stmt = stmt.where(AuditEntryDB.day == day.isoformat())
        with self._session() as session:
            return [AuditEntry.model_validate_json(p) for p in session.execute(stmt).scalars()]

    # ── Maintenance ────────────────────────────────────────────

    def cleanup(self, now: datetime | None = None) -> int:
        cutoff = self._audit_cutoff(now).isoformat()
        with self._session() as session:
            result = session.execute(delete(AuditEntryDB).where(AuditEntryDB.day < cutoff))
            removed = result.rowcount or 0
            for kind, model in _RECORD_MODELS.items():
                for record_id in session.execute(select(model.id)).scalars().all():
                    removed += self._prune(session, kind, record_id)
        return removed

    def stats(self) -> StorageStats:
        with self._session() as session:
            def count(model: Any) -> int:
                return session.execute(select(func.count()).select_from(model)).scalar() or 0

            return StorageStats(
                backend=self.backend_name,
                groups=count(GroupRecordDB),
                proposals=count(ProposalRecordDB),
                audit_entries=count(AuditEntryDB),
                audit_partitions=session.execute(
                    select(func.count(func.distinct(AuditEntryDB.day)))
                ).scalar() or 0,
                backups=count(RecordBackupDB),
            )
