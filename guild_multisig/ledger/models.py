"""
SQLAlchemy models for the SQL storage backend.

Group and proposal rows hold the same checksummed JSON envelopes the file
backend writes, so both backends share decoding and backup fallback.
Audit rows are append-only and hash-chained.
"""

from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Declarative base for all multisig storage tables."""
    pass


class GroupRecordDB(Base):
    __tablename__ = "multisig_groups"

    id = Column(String(64), primary_key=True)
    payload = Column(Text, nullable=False, comment="Checksummed record envelope")
    updated_at = Column(DateTime(timezone=True), nullable=False)


class ProposalRecordDB(Base):
    __tablename__ = "multisig_proposals"

    id = Column(String(64), primary_key=True)
    group_id = Column(String(64), nullable=False, index=True)
    payload = Column(Text, nullable=False, comment="Checksummed record envelope")
    updated_at = Column(DateTime(timezone=True), nullable=False)


class RecordBackupDB(Base):
    """Previous versions of group and proposal records."""

    __tablename__ = "multisig_record_backups"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String(20), nullable=False)
    record_id = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    payload = Column(Text, nullable=False)

    __table_args__ = (Index("ix_backup_kind_record", "kind", "record_id"),)


class AuditEntryDB(Base):
    """
    One line of the audit journal.

    ``day`` is the local calendar day of ``timestamp`` and plays the role
    of the file backend's daily partition. ``payload`` keeps the entry
    exactly as sealed; the other columns exist for querying.
    """

    __tablename__ = "multisig_audit"

    sequence = Column(Integer, primary_key=True, autoincrement=False)
    day = Column(String(10), nullable=False, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    action = Column(String(50), nullable=False, index=True)
    group_id = Column(String(64), nullable=True, index=True)
    proposal_id = Column(String(64), nullable=True)
    actor = Column(String(200), nullable=True)
    details = Column(JSON, nullable=False, default=dict)
    previous_hash = Column(String(64), nullable=False)
    entry_hash = Column(String(64), nullable=False, unique=True)
    payload = Column(Text, nullable=False, comment="Entry as written, for hash verification")

    def __repr__(self) -> str:
        return (
            f"<AuditEntry seq={self.sequence} "
            f"action={self.action} hash={self.entry_hash[:12]}...>"
        )
