"""Clock and ID generation for the coordination core."""

from __future__ import annotations

import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Protocol

_ID_ALPHABET = string.digits + string.ascii_lowercase


class Clock(Protocol):
    """Source of the current instant (timezone-aware, UTC)."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock that never goes backwards within a process."""

    def __init__(self) -> None:
        self._last: datetime | None = None

    def now(self) -> datetime:
        current = datetime.now(timezone.utc)
        if self._last is not None and current < self._last:
            return self._last
        self._last = current
        return current


class ManualClock:
    """Clock that only moves when told to. Used by tests and simulations."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta: float) -> datetime:
        """Move forward by ``timedelta(**delta)``; returns the new instant."""
        step = timedelta(**delta)
        if step < timedelta(0):
            raise ValueError("ManualClock cannot move backwards")
        self._now = self._now + step
        return self._now

    def set(self, instant: datetime) -> None:
        if instant < self._now:
            raise ValueError("ManualClock cannot move backwards")
        self._now = instant


def epoch_millis(instant: datetime) -> int:
    return int(instant.timestamp() * 1000)


class IdGenerator:
    """
    Opaque IDs of the form ``<prefix>_<epochMillis>_<rand6>``.

    The random suffix is six characters from ``[0-9a-z]`` (36^6 > 2^30
    values per millisecond).
    """

    def __init__(self, clock: Clock) -> None:
        self.clock = clock

    def _next(self, prefix: str) -> str:
        suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
        return f"{prefix}_{epoch_millis(self.clock.now())}_{suffix}"

    def group_id(self) -> str:
        return self._next("group")

    def proposal_id(self) -> str:
        return self._next("prop")
