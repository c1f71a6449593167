"""
Multisig Storage — durable records for groups, proposals and the audit journal.

Every backend implements the same contract:

- one record per group and per proposal, saved whole
- the previous version of a record is copied to a backup before overwrite
  (capped per record, oldest evicted first)
- an append-only, hash-chained audit journal partitioned by local day

Records are written as envelopes carrying a schema version and a SHA-256
checksum of the payload. A record that fails to parse or whose checksum does
not match is treated as a partial write and recovered from the newest valid
backup; only when no backup is usable does loading raise ``StorageCorrupt``.
A missing record is not an error: loaders return ``None``.
"""

from __future__ import annotations

import enum
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Any, Iterable

from pydantic import BaseModel, ValidationError

from guild_multisig.core.clock import Clock
from guild_multisig.core.errors import InvalidConfig, StorageCorrupt
from guild_multisig.core.schema import GENESIS_HASH, AuditEntry, Group, Proposal

logger = logging.getLogger(__name__)

RECORD_VERSION = "1.0"


class RecordKind(str, enum.Enum):
    GROUP = "group"
    PROPOSAL = "proposal"


class StorageStats(BaseModel):
    backend: str
    groups: int = 0
    proposals: int = 0
    audit_entries: int = 0
    audit_partitions: int = 0
    backups: int = 0
    total_bytes: int = 0


# ════════════════════════════════════════════════════════════════
# Record envelopes
# ════════════════════════════════════════════════════════════════


class DamagedRecord(ValueError):
    """A stored envelope that cannot be trusted (truncated, edited, wrong kind)."""
    pass


def payload_checksum(data: dict[str, Any]) -> str:
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def seal_record(kind: RecordKind, data: dict[str, Any]) -> bytes:
    envelope = {
        "version": RECORD_VERSION,
        "kind": kind.value,
        "checksum": payload_checksum(data),
        "data": data,
    }
    return json.dumps(envelope, indent=2).encode("utf-8")


def open_record(raw: bytes, kind: RecordKind) -> dict[str, Any]:
    """Unwrap an envelope, raising DamagedRecord when it cannot be trusted."""
    try:
        envelope = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DamagedRecord(f"unreadable envelope: {exc}") from exc
    if not isinstance(envelope, dict) or not isinstance(envelope.get("data"), dict):
        raise DamagedRecord("envelope has no data section")
    if envelope.get("kind") != kind.value:
        raise DamagedRecord(f"expected a {kind.value} record, found {envelope.get('kind')!r}")
    if envelope.get("checksum") != payload_checksum(envelope["data"]):
        raise DamagedRecord("checksum mismatch")
    return envelope["data"]


def local_day(instant: datetime) -> date:
    """Calendar day of ``instant`` in the host's local time zone."""
    return instant.astimezone().date()


# ════════════════════════════════════════════════════════════════
# Storage contract
# ════════════════════════════════════════════════════════════════


class Storage(ABC):
    """
    Abstract storage backend.

    Subclasses provide raw record I/O; this base class owns envelope
    decoding, backup fallback, audit chaining and export/import.
    """

    backend_name = "abstract"

    def __init__(
        self,
        clock: Clock,
        enable_backups: bool = True,
        max_backups_per_record: int = 10,
        audit_retention_days: int = 30,
    ) -> None:
        if max_backups_per_record < 1:
            raise InvalidConfig("max_backups_per_record must be a positive integer")
        if audit_retention_days < 1:
            raise InvalidConfig("audit_retention_days must be a positive integer")
        self.clock = clock
        self.enable_backups = enable_backups
        self.max_backups_per_record = max_backups_per_record
        self.audit_retention_days = audit_retention_days
        self._audit_sequence = -1
        self._audit_head = GENESIS_HASH

    def initialize(self) -> None:
        """Prepare the backend before first use."""
        return None

    # ── Raw record I/O (backend specific) ──────────────────────

    @abstractmethod
    def _write_record(self, kind: RecordKind, record_id: str, raw: bytes) -> None:
        """Write ``raw``, backing up any previous version first."""

    @abstractmethod
    def _read_record(self, kind: RecordKind, record_id: str) -> bytes | None: ...

    @abstractmethod
    def _record_ids(self, kind: RecordKind) -> list[str]: ...

    @abstractmethod
    def _backup_payloads(self, kind: RecordKind, record_id: str) -> list[bytes]:
        """Backups of one record, oldest first."""

    @abstractmethod
    def backups(self, kind: RecordKind, record_id: str) -> list[str]:
        """Identifiers of the backups held for one record, oldest first."""

    @abstractmethod
    def _write_audit(self, entry: AuditEntry) -> None: ...

    @abstractmethod
    def read_audit(self, day: date | None = None) -> list[AuditEntry]:
        """Audit entries in sequence order, optionally for one local day."""

    @abstractmethod
    def cleanup(self, now: datetime | None = None) -> int:
        """Drop expired audit partitions and surplus backups; returns items removed."""

    @abstractmethod
    def stats(self) -> StorageStats: ...

    # ── Groups ─────────────────────────────────────────────────

    def save_group(self, group: Group) -> None:
        self._write_record(
            RecordKind.GROUP, group.id, seal_record(RecordKind.GROUP, group.model_dump(mode="json"))
        )

    def load_group(self, group_id: str) -> Group | None:
        data = self._load(RecordKind.GROUP, group_id)
        if data is None:
            return None
        try:
            return Group.model_validate(data)
        except ValidationError as exc:
            raise StorageCorrupt(f"Group record {group_id} does not match the schema") from exc

    def group_ids(self) -> list[str]:
        return self._record_ids(RecordKind.GROUP)

    def list_groups(self) -> list[Group]:
        groups = [self.load_group(gid) for gid in self.group_ids()]
        return sorted((g for g in groups if g is not None), key=lambda g: (g.created_at, g.id))

    # ── Proposals ──────────────────────────────────────────────

    def save_proposal(self, proposal: Proposal) -> None:
        self._write_record(
            RecordKind.PROPOSAL,
            proposal.id,
            seal_record(RecordKind.PROPOSAL, proposal.model_dump(mode="json")),
        )

    def load_proposal(self, proposal_id: str) -> Proposal | None:
        data = self._load(RecordKind.PROPOSAL, proposal_id)
        if data is None:
            return None
        try:
            return Proposal.model_validate(data)
        except ValidationError as exc:
            raise StorageCorrupt(f"Proposal record {proposal_id} does not match the schema") from exc

    def proposal_ids(self) -> list[str]:
        return self._record_ids(RecordKind.PROPOSAL)

    def list_proposals(self, group_id: str | None = None) -> list[Proposal]:
        proposals = [self.load_proposal(pid) for pid in self.proposal_ids()]
        selected = [
            p for p in proposals
            if p is not None and (group_id is None or p.group_id == group_id)
        ]
        return sorted(selected, key=lambda p: (p.created_at, p.id))

    def _load(self, kind: RecordKind, record_id: str) -> dict[str, Any] | None:
        raw = self._read_record(kind, record_id)
        if raw is None:
            return None
        try:
            return open_record(raw, kind)
        except DamagedRecord as exc:
            logger.warning(
                "Damaged %s record %s (%s); trying backups", kind.value, record_id, exc
            )
            for backup in reversed(self._backup_payloads(kind, record_id)):
                try:
                    data = open_record(backup, kind)
                except DamagedRecord:
                    continue
                logger.warning("Recovered %s record %s from backup", kind.value, record_id)
                return data
            raise StorageCorrupt(
                f"{kind.value} record {record_id} is damaged and no usable backup exists"
            ) from exc

    # ── Audit journal ──────────────────────────────────────────

    def append_audit(self, entry: AuditEntry) -> AuditEntry:
        """Link ``entry`` after the current head of the chain and persist it."""
        sealed = entry.sealed(self._audit_sequence + 1, self._audit_head)
        self._write_audit(sealed)
        self._audit_sequence = sealed.sequence
        self._audit_head = sealed.entry_hash
        logger.debug(
            "Audit entry appended: seq=%d action=%s hash=%s",
            sealed.sequence, sealed.action.value, sealed.entry_hash[:16],
        )
        return sealed

    def _resume_audit_chain(self, last: AuditEntry | None) -> None:
        if last is not None:
            self._audit_sequence = last.sequence
            self._audit_head = last.entry_hash

    def _audit_cutoff(self, now: datetime | None) -> date:
        return local_day(now or self.clock.now()) - timedelta(days=self.audit_retention_days)

    # ── Export / import ────────────────────────────────────────

    def export_group(self, group_id: str) -> bytes:
        """Serialize a group and all of its proposals into one portable blob."""
        group = self.load_group(group_id)
        if group is None:
            raise StorageCorrupt(f"Cannot export missing group {group_id}")
        payload = {
            "version": RECORD_VERSION,
            "exported_at": self.clock.now().isoformat(),
            "group": group.model_dump(mode="json"),
            "proposals": [p.model_dump(mode="json") for p in self.list_proposals(group_id)],
        }
        return json.dumps(payload, indent=2).encode("utf-8")

    def import_group(self, blob: bytes | str) -> tuple[Group, list[Proposal]]:
        """Load a blob produced by ``export_group`` and save its records."""
        group, proposals = parse_export(blob)
        self.save_group(group)
        for proposal in proposals:
            self.save_proposal(proposal)
        logger.info("Imported group %s with %d proposal(s)", group.id, len(proposals))
        return group, proposals


def parse_export(blob: bytes | str) -> tuple[Group, list[Proposal]]:
    try:
        payload = json.loads(blob)
    except (TypeError, ValueError) as exc:
        raise InvalidConfig(f"Export blob is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict) or payload.get("version") != RECORD_VERSION:
        raise InvalidConfig("Export blob has an unsupported version")
    try:
        group = Group.model_validate(payload["group"])
        proposals = [Proposal.model_validate(p) for p in payload.get("proposals", [])]
    except (KeyError, ValidationError) as exc:
        raise InvalidConfig(f"Export blob is malformed: {exc}") from exc
    foreign = [p.id for p in proposals if p.group_id != group.id]
    if foreign:
        raise InvalidConfig(f"Export blob holds proposals of another group: {', '.join(foreign)}")
    return group, proposals


# ════════════════════════════════════════════════════════════════
# In-memory backend
# ════════════════════════════════════════════════════════════════


class MemoryStorage(Storage):
    """Process-local backend with the same semantics as the durable ones."""

    backend_name = "memory"

    def __init__(self, clock: Clock, **options: Any) -> None:
        super().__init__(clock, **options)
        self._records: dict[tuple[RecordKind, str], bytes] = {}
        self._backups: dict[tuple[RecordKind, str], list[tuple[str, bytes]]] = defaultdict(list)
        self._audit: list[AuditEntry] = []
        self._backup_counter = 0

    def _write_record(self, kind: RecordKind, record_id: str, raw: bytes) -> None:
        key = (kind, record_id)
        previous = self._records.get(key)
        if previous is not None and self.enable_backups:
            self._backup_counter += 1
            stamp = self.clock.now().strftime("%Y%m%dT%H%M%S%fZ")
            self._backups[key].append((f"{stamp}_{self._backup_counter:06d}", previous))
            self._prune(key)
        self._records[key] = raw

    def _prune(self, key: tuple[RecordKind, str]) -> int:
        surplus = len(self._backups[key]) - self.max_backups_per_record
        if surplus <= 0:
            return 0
        del self._backups[key][:surplus]
        return surplus

    def _read_record(self, kind: RecordKind, record_id: str) -> bytes | None:
        return self._records.get((kind, record_id))

    def _record_ids(self, kind: RecordKind) -> list[str]:
        return sorted(rid for k, rid in self._records if k == kind)

    def _backup_payloads(self, kind: RecordKind, record_id: str) -> list[bytes]:
        return [raw for _, raw in self._backups.get((kind, record_id), [])]

    def backups(self, kind: RecordKind, record_id: str) -> list[str]:
        return [name for name, _ in self._backups.get((kind, record_id), [])]

    def corrupt(self, kind: RecordKind, record_id: str, raw: bytes) -> None:
        """Overwrite a record's bytes directly, bypassing backups."""
        self._records[(kind, record_id)] = raw

    def _write_audit(self, entry: AuditEntry) -> None:
        self._audit.append(entry)

    def read_audit(self, day: date | None = None) -> list[AuditEntry]:
        if day is None:
            return list(self._audit)
        return [e for e in self._audit if local_day(e.timestamp) == day]

    def cleanup(self, now: datetime | None = None) -> int:
        cutoff = self._audit_cutoff(now)
        kept = [e for e in self._audit if local_day(e.timestamp) >= cutoff]
        removed = len(self._audit) - len(kept)
        self._audit = kept
        for key in list(self._backups):
            removed += self._prune(key)
        return removed

    def stats(self) -> StorageStats:
        return StorageStats(
            backend=self.backend_name,
            groups=len(self._record_ids(RecordKind.GROUP)),
            proposals=len(self._record_ids(RecordKind.PROPOSAL)),
            audit_entries=len(self._audit),
            audit_partitions=len({local_day(e.timestamp) for e in self._audit}),
            backups=sum(len(b) for b in self._backups.values()),
            total_bytes=sum(len(raw) for raw in self._records.values()),
        )


def latest_entry(entries: Iterable[AuditEntry]) -> AuditEntry | None:
    last = None
    for entry in entries:
        if last is None or entry.sequence > last.sequence:
            last = entry
    return last
