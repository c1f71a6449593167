"""
Notification fan-out — dispatches each event to every registered sink.

Sinks run concurrently and in isolation: an exception or a False result
from one sink is logged and recorded, and never prevents delivery to the
others or fails the operation that produced the event.

Recent deliveries are kept in a bounded in-memory queue for inspection.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

from guild_multisig.notifications.events import NotificationEvent
from guild_multisig.notifications.sinks import NotificationSink

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000


@dataclass
class DeliveryRecord:
    """One event and how each sink fared with it."""

    event: NotificationEvent
    results: dict[str, bool] = field(default_factory=dict)
    dispatched_at: datetime | None = None

    @property
    def delivered_everywhere(self) -> bool:
        return all(self.results.values())


class NotificationFanout:
    """Routes events to sinks. Replaceable by a message bus without touching callers."""

    def __init__(
        self,
        sinks: list[NotificationSink] | None = None,
        max_queue: int = DEFAULT_QUEUE_SIZE,
    ) -> None:
        self.sinks: dict[str, NotificationSink] = {}
        for sink in sinks or []:
            self.register(sink)
        self._queue: deque[DeliveryRecord] = deque(maxlen=max_queue)

    def register(self, sink: NotificationSink, name: str | None = None) -> None:
        key = name or sink.name
        if key in self.sinks:
            suffix = 2
            while f"{key}_{suffix}" in self.sinks:
                suffix += 1
            key = f"{key}_{suffix}"
        self.sinks[key] = sink
        logger.info("Notification sink registered: %s", key)

    def unregister(self, name: str) -> None:
        if self.sinks.pop(name, None) is not None:
            logger.info("Notification sink removed: %s", name)

    async def emit(self, event: NotificationEvent) -> DeliveryRecord:
        """Deliver ``event`` to every sink; never raises for sink failures."""
        record = DeliveryRecord(event=event, dispatched_at=event.timestamp)
        self._queue.append(record)
        if not self.sinks:
            return record

        names = list(self.sinks)
        outcomes = await asyncio.gather(
            *(self._deliver_one(name, self.sinks[name], event) for name in names)
        )
        record.results = dict(zip(names, outcomes))
        failed = [name for name, ok in record.results.items() if not ok]
        if failed:
            logger.warning(
                "Event %s for %s not delivered to: %s",
                event.kind.value, event.proposal_id or event.group_id, ", ".join(failed),
            )
        return record

    async def _deliver_one(self, name: str, sink: NotificationSink, event: NotificationEvent) -> bool:
        try:
            return bool(await sink.deliver(event))
        except Exception:
            logger.exception("Notification sink %s raised while delivering %s", name, event.kind.value)
            return False

    def history(self, limit: int = 50) -> list[DeliveryRecord]:
        """Most recent deliveries, oldest first."""
        if limit <= 0:
            return []
        return list(self._queue)[-limit:]

    def __len__(self) -> int:
        return len(self._queue)

    async def close(self) -> None:
        for sink in self.sinks.values():
            await sink.close()
