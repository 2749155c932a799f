"""
Tick events and the channel that carries them to the coordinator.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class TickKind(str, Enum):
    """Kinds of scheduled work."""

    RATE_CHECK = "rate_check"
    DAILY_SUMMARY = "daily_summary"
    WEEKLY_SUMMARY = "weekly_summary"
    CLEANUP = "cleanup"


@dataclass(frozen=True)
class TickEvent:
    """One scheduled wake-up."""

    kind: TickKind
    fired_at: datetime = field(default_factory=datetime.now)


class TickChannel:
    """
    Queue of tick events consumed by a single coordinator task.

    A kind that is already queued or still being handled is not queued
    again: the new wake-up is dropped rather than backlogged. The consumer
    must call ``done(kind)`` once it has finished handling an event.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._busy: set[TickKind] = set()
        self.skipped: dict[TickKind, int] = {kind: 0 for kind in TickKind}

    def offer(self, kind: TickKind, fired_at: Optional[datetime] = None) -> bool:
        """
        Queue a tick unless one of the same kind is pending or running.

        Returns:
            True if queued, False if skipped
        """
        if kind in self._busy:
            self.skipped[kind] += 1
            logger.info(f"Skipping {kind.value} tick: previous one still in progress")
            return False

        self._busy.add(kind)
        self._queue.put_nowait(TickEvent(kind=kind, fired_at=fired_at or datetime.now()))
        return True

    async def get(self) -> Optional[TickEvent]:
        """Wait for the next event; None means the channel was closed."""
        return await self._queue.get()

    def done(self, kind: TickKind) -> None:
        """Mark a kind as finished so its next wake-up can be queued."""
        self._busy.discard(kind)

    def is_busy(self, kind: TickKind) -> bool:
        return kind in self._busy

    def close(self) -> None:
        """Wake the consumer with a stop marker."""
        self._queue.put_nowait(None)
