"""
Filesystem storage backend.

Layout under ``root``::

    groups/multisig_<id>.json
    proposals/proposal_<id>.json
    audit/audit_YYYY-MM-DD.jsonl
    backups/groups/<timestamp>_<seq>_multisig_<id>.json
    backups/proposals/<timestamp>_<seq>_proposal_<id>.json
    exports/export_<id>_<epochMillis>.json

Record writes go to a temp file in the target directory, are fsynced and
then renamed over the old file, so readers only ever see a whole record.
"""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import date, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from guild_multisig.core.clock import Clock, epoch_millis
from guild_multisig.core.errors import StorageUnavailable
from guild_multisig.core.schema import AuditEntry
from guild_multisig.ledger.storage import (
    RecordKind,
    Storage,
    StorageStats,
    latest_entry,
    local_day,
)

logger = logging.getLogger(__name__)

_RECORD_DIRS = {RecordKind.GROUP: "groups", RecordKind.PROPOSAL: "proposals"}
_RECORD_PREFIX = {RecordKind.GROUP: "multisig_", RecordKind.PROPOSAL: "proposal_"}
_AUDIT_PREFIX = "audit_"
_AUDIT_SUFFIX = ".jsonl"


def _fsync_dir(path: Path) -> None:
    try:
        fd = os.open(str(path), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` via temp file, fsync and rename."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
        _fsync_dir(path.parent)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class FileStorage(Storage):
    """JSON files on local disk; the coordinator is the only writer."""

    backend_name = "file"

    def __init__(self, root: str | Path, clock: Clock, **options: Any) -> None:
        super().__init__(clock, **options)
        self.root = Path(root)
        self.groups_dir = self.root / "groups"
        self.proposals_dir = self.root / "proposals"
        self.audit_dir = self.root / "audit"
        self.backups_dir = self.root / "backups"
        self.exports_dir = self.root / "exports"
        try:
            for directory in (
                self.groups_dir,
                self.proposals_dir,
                self.audit_dir,
                self.backups_dir / "groups",
                self.backups_dir / "proposals",
                self.exports_dir,
            ):
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageUnavailable(f"Cannot create storage under {self.root}: {exc}") from exc
        self._resume_audit_chain(self._last_audit_entry())
        logger.info("File storage ready at %s", self.root)

    # ── Paths ──────────────────────────────────────────────────

    def record_path(self, kind: RecordKind, record_id: str) -> Path:
        return self.root / _RECORD_DIRS[kind] / f"{_RECORD_PREFIX[kind]}{record_id}.json"

    def _backup_dir(self, kind: RecordKind) -> Path:
        return self.backups_dir / _RECORD_DIRS[kind]

    def _backup_files(self, kind: RecordKind, record_id: str) -> list[tuple[str, int, Path]]:
        """``(stamp, seq, path)`` for one record's backups, oldest first."""
        filename = self.record_path(kind, record_id).name
        found = []
        for path in self._backup_dir(kind).glob(f"*_{filename}"):
            parts = path.name.split("_", 2)
            if len(parts) != 3 or parts[2] != filename or not parts[1].isdigit():
                continue
            found.append((parts[0], int(parts[1]), path))
        return sorted(found)

    # ── Records ────────────────────────────────────────────────

    def _write_record(self, kind: RecordKind, record_id: str, raw: bytes) -> None:
        path = self.record_path(kind, record_id)
        try:
            if self.enable_backups and path.exists():
                self._backup(kind, record_id, path)
            atomic_write_bytes(path, raw)
        except OSError as exc:
            raise StorageUnavailable(f"Cannot write {path}: {exc}") from exc

    def _backup(self, kind: RecordKind, record_id: str, path: Path) -> None:
        stamp = self.clock.now().strftime("%Y%m%dT%H%M%S%fZ")
        existing = self._backup_files(kind, record_id)
        seq = 1 + max((s for st, s, _ in existing if st == stamp), default=0)
        target = self._backup_dir(kind) / f"{stamp}_{seq:04d}_{path.name}"
        atomic_write_bytes(target, path.read_bytes())
        self._prune(kind, record_id)

    def _prune(self, kind: RecordKind, record_id: str) -> int:
        files = self._backup_files(kind, record_id)
        surplus = files[: max(0, len(files) - self.max_backups_per_record)]
        for _, _, path in surplus:
            path.unlink()
        return len(surplus)

    def _read_record(self, kind: RecordKind, record_id: str) -> bytes | None:
        path = self.record_path(kind, record_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageUnavailable(f"Cannot read {path}: {exc}") from exc

    def _record_ids(self, kind: RecordKind) -> list[str]:
        prefix = _RECORD_PREFIX[kind]
        directory = self.root / _RECORD_DIRS[kind]
        return sorted(
            path.name[len(prefix):-len(".json")]
            for path in directory.glob(f"{prefix}*.json")
        )

    def _backup_payloads(self, kind: RecordKind, record_id: str) -> list[bytes]:
        payloads = []
        for _, _, path in self._backup_files(kind, record_id):
            try:
                payloads.append(path.read_bytes())
            except OSError as exc:
                logger.warning("Skipping unreadable backup %s: %s", path, exc)
        return payloads

    def backups(self, kind: RecordKind, record_id: str) -> list[str]:
        return [path.name for _, _, path in self._backup_files(kind, record_id)]

    # ── Audit ──────────────────────────────────────────────────

    def audit_path(self, day: date) -> Path:
        return self.audit_dir / f"{_AUDIT_PREFIX}{day.isoformat()}{_AUDIT_SUFFIX}"

    def _partitions(self) -> list[tuple[date, Path]]:
        partitions = []
        for path in self.audit_dir.glob(f"{_AUDIT_PREFIX}*{_AUDIT_SUFFIX}"):
            stem = path.name[len(_AUDIT_PREFIX):-len(_AUDIT_SUFFIX)]
            try:
                partitions.append((date.fromisoformat(stem), path))
            except ValueError:
                continue
        return sorted(partitions)

    def _drop_torn_tail(self, path: Path) -> None:
        """Cut a partial last line left by an interrupted append."""
        try:
            with path.open("r+b") as handle:
                size = handle.seek(0, os.SEEK_END)
                if size == 0:
                    return
                handle.seek(size - 1)
                if handle.read(1) == b"\n":
                    return
                handle.seek(0)
                keep = handle.read().rfind(b"\n") + 1
                handle.truncate(keep)
                handle.flush()
                os.fsync(handle.fileno())
        except FileNotFoundError:
            return
        except OSError as exc:
            raise StorageUnavailable(f"Cannot repair {path}: {exc}") from exc
        logger.warning("Dropped %d torn bytes at the end of %s", size - keep, path.name)

    def _write_audit(self, entry: AuditEntry) -> None:
        path = self.audit_path(local_day(entry.timestamp))
        line = entry.model_dump_json() + "\n"
        self._drop_torn_tail(path)
        try:
            with path.open("a", encoding="utf-8") as handle:
                handle.write(line)
                handle.flush()
                os.fsync(handle.fileno())
        except OSError as exc:
            raise StorageUnavailable(f"Cannot append to {path}: {exc}") from exc

    def _read_partition(self, path: Path) -> list[AuditEntry]:
        entries = []
        with path.open("r", encoding="utf-8") as handle:
            for lineno, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                try:
                    entries.append(AuditEntry.model_validate_json(line))
                except ValidationError:
                    logger.warning("Skipping unreadable audit line %s:%d", path.name, lineno)
        return entries

    def read_audit(self, day: date | None = None) -> list[AuditEntry]:
        if day is not None:
            path = self.audit_path(day)
            return self._read_partition(path) if path.exists() else []
        entries: list[AuditEntry] = []
        for _, path in self._partitions():
            entries.extend(self._read_partition(path))
        return sorted(entries, key=lambda e: e.sequence)

    def _last_audit_entry(self) -> AuditEntry | None:
        partitions = self._partitions()
        if not partitions:
            return None
        return latest_entry(self._read_partition(partitions[-1][1]))

    # ── Export ─────────────────────────────────────────────────

    def export_group(self, group_id: str) -> bytes:
        blob = super().export_group(group_id)
        path = self.exports_dir / f"export_{group_id}_{epoch_millis(self.clock.now())}.json"
        try:
            atomic_write_bytes(path, blob)
        except OSError as exc:
            raise StorageUnavailable(f"Cannot write export {path}: {exc}") from exc
        logger.info("Exported group %s to %s", group_id, path)
        return blob

    # ── Maintenance ────────────────────────────────────────────

    def cleanup(self, now: datetime | None = None) -> int:
        cutoff = self._audit_cutoff(now)
        removed = 0
        try:
            for day, path in self._partitions():
                if day < cutoff:
                    path.unlink()
                    removed += 1
                    logger.info("Removed audit partition %s", path.name)
            for kind in RecordKind:
                for record_id in self._record_ids(kind):
                    removed += self._prune(kind, record_id)
        except OSError as exc:
            raise StorageUnavailable(f"Cleanup failed under {self.root}: {exc}") from exc
        return removed

    def stats(self) -> StorageStats:
        files = [p for p in self.root.rglob("*") if p.is_file()]
        return StorageStats(
            backend=self.backend_name,
            groups=len(self._record_ids(RecordKind.GROUP)),
            proposals=len(self._record_ids(RecordKind.PROPOSAL)),
            audit_entries=sum(len(self._read_partition(p)) for _, p in self._partitions()),
            audit_partitions=len(self._partitions()),
            backups=sum(
                1 for kind in RecordKind for _ in self._backup_dir(kind).glob("*.json")
            ),
            total_bytes=sum(p.stat().st_size for p in files),
        )
