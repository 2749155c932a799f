"""
Named periodic wake-ups that push tick events onto the channel.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.alerts.models import AlertSettings, parse_hhmm
from .channel import TickChannel, TickKind

logger = logging.getLogger(__name__)

RATE_CHECK_JOB = "rateCheck"
DAILY_SUMMARY_JOB = "dailySummary"
WEEKLY_SUMMARY_JOB = "weeklySummary"
CLEANUP_JOB = "cleanup"

MINUTES_PER_DAY = 24 * 60
MINUTES_PER_WEEK = 7 * MINUTES_PER_DAY
SUNDAY = 6


def next_occurrence(
    wall_clock: str, now: datetime, weekday: Optional[int] = None
) -> datetime:
    """
    Next time strictly after `now` that matches an "HH:MM" wall-clock time.

    Args:
        wall_clock: Time of day, "HH:MM"
        now: Reference time
        weekday: Optional day of week (Monday=0) the occurrence must fall on
    """
    at = parse_hhmm(wall_clock)
    candidate = now.replace(hour=at.hour, minute=at.minute, second=0, microsecond=0)
    if weekday is not None:
        candidate += timedelta(days=(weekday - candidate.weekday()) % 7)
    if candidate <= now:
        candidate += timedelta(days=7 if weekday is not None else 1)
    return candidate


class Scheduler:
    """Registers named wake-ups; re-registering a name replaces the prior schedule."""

    def __init__(
        self,
        channel: TickChannel,
        timezone: str = "UTC",
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.channel = channel
        self.timezone = timezone
        self._scheduler = scheduler or AsyncIOScheduler(timezone=timezone)

    async def _fire(self, kind: TickKind) -> None:
        self.channel.offer(kind)

    def _now(self) -> datetime:
        return datetime.now(ZoneInfo(self.timezone)).replace(tzinfo=None)

    def schedule(self, name: str, interval_minutes: int, kind: TickKind) -> None:
        """Fire `kind` every `interval_minutes`, first after one interval."""
        self._scheduler.add_job(
            self._fire,
            trigger=IntervalTrigger(minutes=interval_minutes, timezone=self.timezone),
            args=[kind],
            id=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.debug(f"Scheduled {name} every {interval_minutes} min")

    def schedule_at(
        self,
        name: str,
        wall_clock: str,
        period_minutes: int,
        kind: TickKind,
        weekday: Optional[int] = None,
    ) -> datetime:
        """
        Fire `kind` at the next `wall_clock` time, then every `period_minutes`.

        Returns:
            The first fire time (local to the scheduler timezone)
        """
        first = next_occurrence(wall_clock, self._now(), weekday)
        self._scheduler.add_job(
            self._fire,
            trigger=IntervalTrigger(
                minutes=period_minutes, start_date=first, timezone=self.timezone
            ),
            args=[kind],
            id=name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.debug(f"Scheduled {name} at {first.isoformat()} every {period_minutes} min")
        return first

    def unschedule(self, name: str) -> None:
        if self._scheduler.get_job(name) is not None:
            self._scheduler.remove_job(name)

    def configure(self, settings: AlertSettings) -> None:
        """(Re)register every wake-up from the current settings."""
        self.schedule(RATE_CHECK_JOB, settings.check_interval_minutes, TickKind.RATE_CHECK)

        if settings.enable_daily_summary:
            self.schedule_at(
                DAILY_SUMMARY_JOB,
                settings.summary_time,
                MINUTES_PER_DAY,
                TickKind.DAILY_SUMMARY,
            )
        else:
            self.unschedule(DAILY_SUMMARY_JOB)

        if settings.enable_weekly_summary:
            self.schedule_at(
                WEEKLY_SUMMARY_JOB,
                settings.summary_time,
                MINUTES_PER_WEEK,
                TickKind.WEEKLY_SUMMARY,
                weekday=SUNDAY,
            )
        else:
            self.unschedule(WEEKLY_SUMMARY_JOB)

        self.schedule(CLEANUP_JOB, MINUTES_PER_DAY, TickKind.CLEANUP)
        logger.info("Alarms set up successfully")

    def job_names(self) -> list[str]:
        return sorted(job.id for job in self._scheduler.get_jobs())

    def start(self) -> None:
        self._scheduler.start()

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
