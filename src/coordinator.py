"""
Coordinator: runs rate-check, summary and cleanup ticks and exposes the
alert query surface.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from src.alerts.errors import PersistenceError, RateFetchError
from src.alerts.models import (
    Alert,
    AlertHistoryEntry,
    AlertSettings,
    AlertSpec,
    RateHistoryEntry,
    TrendEntry,
    TrendSnapshot,
    normalize_currency,
)
from src.analysis.trends import analyze_trends
from src.data.fetcher import RateSource
from src.database.repository import (
    DEFAULT_MAX_ALERT_HISTORY,
    DEFAULT_MAX_ALERTS,
    DEFAULT_MAX_RATE_HISTORY,
    AlertHistoryRepository,
    AlertRepository,
    RateHistoryRepository,
    SettingsRepository,
    TrendRepository,
    new_id,
)
from src.database.store import KeyValueStore
from src.notifiers.base import KIND_ALERT, KIND_SUMMARY, NotificationSink
from src.rules.engine import AlertEvaluator
from src.rules.gate import NotificationGate
from src.scheduling.channel import TickChannel, TickEvent, TickKind
from src.scheduling.scheduler import Scheduler

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 90
WEEKLY_TREND_DAYS = 7

# Settings whose change requires re-registering wake-ups
SCHEDULE_FIELDS = {
    "check_interval_minutes",
    "summary_time",
    "enable_daily_summary",
    "enable_weekly_summary",
}


@dataclass
class CheckResult:
    """Outcome of one rate-check tick."""

    checked: list[str] = field(default_factory=list)
    triggered: list[str] = field(default_factory=list)
    denied: dict[str, str] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)


@dataclass
class Summary:
    """A dispatched daily or weekly summary."""

    period: str
    total_alerts: int
    currency_pairs: list[str]
    trends_analyzed: int = 0


class Coordinator:
    """Orchestrates the alert engine; one instance per process."""

    def __init__(
        self,
        rate_source: RateSource,
        alerts: AlertRepository,
        rate_history: RateHistoryRepository,
        alert_history: AlertHistoryRepository,
        settings: SettingsRepository,
        trends: TrendRepository,
        sink: NotificationSink,
        evaluator: Optional[AlertEvaluator] = None,
        gate: Optional[NotificationGate] = None,
        scheduler: Optional[Scheduler] = None,
        fetch_timeout: float = 10.0,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        clock: Callable[[], datetime] = datetime.now,
        id_factory: Callable[[], str] = new_id,
    ):
        """
        Initialize the coordinator.

        Args:
            rate_source: Source of current exchange rates
            alerts: Alert definitions
            rate_history: Sampled rate time series
            alert_history: Fired-alert log
            settings: Alert settings
            trends: Cached trend snapshots
            sink: Notification sink
            evaluator: Alert condition evaluator
            gate: Notification throttling policy
            scheduler: Wake-up registry, re-configured on settings changes
            fetch_timeout: Seconds to wait for one rate before giving up on it
            retention_days: Age after which history is pruned by cleanup
            clock: Local wall-clock time source
            id_factory: Id generator for history entries
        """
        self.rate_source = rate_source
        self.alerts = alerts
        self.rate_history = rate_history
        self.alert_history = alert_history
        self.settings = settings
        self.trends = trends
        self.sink = sink
        self.evaluator = evaluator or AlertEvaluator()
        self.gate = gate or NotificationGate()
        self.scheduler = scheduler
        self.fetch_timeout = fetch_timeout
        self.retention_days = retention_days
        self.clock = clock
        self.id_factory = id_factory

        # Guards the alert collection against mutation mid-tick
        self._alerts_lock = asyncio.Lock()

    @classmethod
    def from_store(
        cls,
        store: KeyValueStore,
        rate_source: RateSource,
        sink: NotificationSink,
        max_alerts: int = DEFAULT_MAX_ALERTS,
        max_rate_history: int = DEFAULT_MAX_RATE_HISTORY,
        max_alert_history: int = DEFAULT_MAX_ALERT_HISTORY,
        clock: Callable[[], datetime] = datetime.now,
        id_factory: Callable[[], str] = new_id,
        **kwargs: Any,
    ) -> "Coordinator":
        """Build a coordinator with repositories over a single store."""
        return cls(
            rate_source=rate_source,
            alerts=AlertRepository(
                store, max_alerts=max_alerts, clock=clock, id_factory=id_factory
            ),
            rate_history=RateHistoryRepository(store, capacity=max_rate_history),
            alert_history=AlertHistoryRepository(store, capacity=max_alert_history),
            settings=SettingsRepository(store),
            trends=TrendRepository(store),
            sink=sink,
            clock=clock,
            id_factory=id_factory,
            **kwargs,
        )

    # Ticks

    async def run(self, channel: TickChannel) -> None:
        """Consume tick events until the channel is closed."""
        while True:
            event = await channel.get()
            if event is None:
                break
            try:
                await self.handle(event)
            finally:
                channel.done(event.kind)

    async def handle(self, event: TickEvent) -> None:
        """Run one tick; errors are logged, never raised."""
        logger.debug(f"Handling {event.kind.value} tick fired at {event.fired_at}")
        try:
            if event.kind == TickKind.RATE_CHECK:
                await self.check_rates()
            elif event.kind == TickKind.DAILY_SUMMARY:
                await self.daily_summary()
            elif event.kind == TickKind.WEEKLY_SUMMARY:
                await self.weekly_summary()
            elif event.kind == TickKind.CLEANUP:
                await self.cleanup()
        except Exception as e:
            logger.error(f"Error handling {event.kind.value} tick: {e}")

    async def check_rates(self) -> CheckResult:
        """Sample the rate for every enabled alert and fire satisfied ones."""
        result = CheckResult()
        async with self._alerts_lock:
            enabled = await self.alerts.list_enabled()
            if not enabled:
                logger.info("No enabled alerts to check")
                return result

            logger.info(f"Checking rates for {len(enabled)} alerts")
            settings = await self.settings.get()

            for alert in enabled:
                await self._check_alert(alert, settings, result)

            await self._persist(self.alerts, self.rate_history, self.alert_history)

        logger.info(
            f"Rate check completed: {len(result.checked)} checked, "
            f"{len(result.triggered)} triggered, {len(result.failed)} failed"
        )
        return result

    async def _check_alert(
        self, alert: Alert, settings: AlertSettings, result: CheckResult
    ) -> None:
        """Check one alert; a failed fetch leaves the alert untouched."""
        try:
            current_rate = await asyncio.wait_for(
                self.rate_source.get_rate(alert.from_currency, alert.to_currency),
                timeout=self.fetch_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Timed out after {self.fetch_timeout}s getting rate for {alert.pair}"
            )
            result.failed.append(alert.id)
            return
        except RateFetchError as e:
            logger.warning(f"Failed to get rate for {alert.pair}: {e}")
            result.failed.append(alert.id)
            return
        except Exception as e:
            logger.error(f"Unexpected rate source error for {alert.pair}: {e}")
            result.failed.append(alert.id)
            return

        if (
            isinstance(current_rate, bool)
            or not isinstance(current_rate, (int, float))
            or not math.isfinite(current_rate)
            or current_rate <= 0
        ):
            logger.warning(f"Ignoring invalid rate for {alert.pair}: {current_rate!r}")
            result.failed.append(alert.id)
            return

        now = self.clock()
        previous_rate = alert.current_rate

        await self.rate_history.append(
            RateHistoryEntry(
                id=self.id_factory(),
                from_currency=alert.from_currency,
                to_currency=alert.to_currency,
                rate=current_rate,
                timestamp=now,
            )
        )

        should_trigger = self.evaluator.should_trigger(alert, current_rate, previous_rate)
        alert.current_rate = current_rate
        alert.last_checked = now
        result.checked.append(alert.id)

        if should_trigger:
            await self._trigger(alert, current_rate, previous_rate, settings, now, result)

    async def _trigger(
        self,
        alert: Alert,
        current_rate: float,
        previous_rate: Optional[float],
        settings: AlertSettings,
        now: datetime,
        result: CheckResult,
    ) -> None:
        decision = self.gate.decide(
            alert, settings, await self.alert_history.entries(), now
        )
        if not decision.allowed:
            logger.info(f"Alert {alert.name} satisfied but not sent: {decision.reason}")
            result.denied[alert.id] = decision.reason
            return

        message = self.evaluator.create_message(alert, current_rate, previous_rate)
        await self._dispatch(alert.id, message.title, message.body)

        alert.last_triggered = now
        alert.trigger_count += 1
        await self.alert_history.append(
            AlertHistoryEntry(
                id=self.id_factory(),
                alert_id=alert.id,
                alert_name=alert.name,
                from_currency=alert.from_currency,
                to_currency=alert.to_currency,
                condition=alert.condition_type,
                target_rate=alert.target_rate,
                threshold=alert.threshold,
                current_rate=current_rate,
                previous_rate=previous_rate,
                triggered_at=now,
            )
        )
        result.triggered.append(alert.id)
        logger.info(f"Alert triggered: {alert.name}")

    async def _dispatch(
        self, notification_id: str, title: str, body: str, kind: str = KIND_ALERT
    ) -> None:
        try:
            await asyncio.to_thread(
                self.sink.notify, notification_id, title, body, kind=kind
            )
        except Exception as e:
            logger.error(f"Failed to dispatch notification {notification_id}: {e}")

    async def _persist(self, *repositories: Any) -> bool:
        """Save each repository; failures are logged and retried on the next tick."""
        ok = True
        for repository in repositories:
            try:
                await repository.save()
            except PersistenceError as e:
                ok = False
                logger.error(f"Failed to persist {type(repository).__name__}: {e}")
        return ok

    async def daily_summary(self) -> Optional[Summary]:
        """Notify how many alerts fired today; skipped when disabled or empty."""
        settings = await self.settings.get()
        if not settings.enable_daily_summary:
            return None

        today = self.clock().date()
        entries = await self.alert_history.on_day(today)
        if not entries:
            logger.info("No alerts triggered today")
            return None

        summary = Summary(
            period="1 day",
            total_alerts=len(entries),
            currency_pairs=sorted({e.pair for e in entries}),
        )
        await self._dispatch(
            f"daily-summary-{today.isoformat()}",
            "Daily Rate Summary",
            f"{summary.total_alerts} alerts triggered today for "
            f"{len(summary.currency_pairs)} currency pairs",
            kind=KIND_SUMMARY,
        )
        logger.info(f"Daily summary generated: {summary}")
        return summary

    async def weekly_summary(self) -> Optional[Summary]:
        """Notify the week's alert count and trend coverage; skipped when disabled or empty."""
        settings = await self.settings.get()
        if not settings.enable_weekly_summary:
            return None

        now = self.clock()
        entries = await self.alert_history.since(now - timedelta(days=7))
        trends = await self.analyze_trends(WEEKLY_TREND_DAYS)
        if not entries and not trends:
            logger.info("Nothing to report for weekly summary")
            return None

        summary = Summary(
            period="7 days",
            total_alerts=len(entries),
            currency_pairs=sorted({e.pair for e in entries}),
            trends_analyzed=len(trends),
        )
        await self._dispatch(
            f"weekly-summary-{now.date().isoformat()}",
            "Weekly Rate Summary",
            f"{summary.total_alerts} alerts triggered this week. "
            f"{summary.trends_analyzed} currency pairs analyzed.",
            kind=KIND_SUMMARY,
        )
        logger.info(f"Weekly summary generated: {summary}")
        return summary

    async def cleanup(self, days: Optional[int] = None) -> tuple[int, int]:
        """
        Drop history older than the retention window.

        Returns:
            (rate entries removed, alert entries removed)
        """
        days = self.retention_days if days is None else days
        cutoff = self.clock() - timedelta(days=days)
        rate_removed = await self.rate_history.prune_to_capacity(cutoff)
        alert_removed = await self.alert_history.prune_to_capacity(cutoff)
        await self._persist(self.rate_history, self.alert_history)
        logger.info(
            f"Cleanup completed: {rate_removed} rate entries, "
            f"{alert_removed} alert entries removed"
        )
        return rate_removed, alert_removed

    # Trends

    async def analyze_trends(self, days: int) -> dict[str, TrendEntry]:
        """Recompute trends for a period and replace its cached snapshot."""
        now = self.clock()
        trends = analyze_trends(await self.rate_history.entries(), days, now=now)
        snapshot = TrendSnapshot(generated_at=now, period=days, trends=trends)
        try:
            await self.trends.put(snapshot)
        except PersistenceError as e:
            logger.error(f"Failed to persist trend snapshot for {days}d: {e}")
        logger.info(f"Trend analysis completed for {days} days: {len(trends)} pairs")
        return trends

    async def get_trend(self, period_days: int, refresh: bool = False) -> TrendSnapshot:
        """Cached snapshot for a period, generated if missing or on request."""
        if not refresh:
            cached = await self.trends.get(period_days)
            if cached is not None:
                return cached
        await self.analyze_trends(period_days)
        return await self.trends.get(period_days)

    # Query surface

    async def list_alerts(self) -> list[Alert]:
        return await self.alerts.list_all()

    async def create_alert(self, spec: AlertSpec) -> Alert:
        async with self._alerts_lock:
            alert = await self.alerts.create(spec)
        logger.info(f"Rate alert created: {alert.name} ({alert.id})")
        return alert

    async def update_alert(self, alert_id: str, patch: dict[str, Any]) -> Alert:
        async with self._alerts_lock:
            alert = await self.alerts.update(alert_id, patch)
        logger.info(f"Rate alert updated: {alert.name} ({alert.id})")
        return alert

    async def delete_alert(self, alert_id: str) -> Alert:
        async with self._alerts_lock:
            alert = await self.alerts.delete(alert_id)
        logger.info(f"Rate alert deleted: {alert.name} ({alert.id})")
        return alert

    async def get_alert_history(self, limit: int = 100) -> list[AlertHistoryEntry]:
        return await self.alert_history.query(limit=limit)

    async def get_rate_history(
        self,
        from_currency: Optional[str] = None,
        to_currency: Optional[str] = None,
        limit: int = 1000,
    ) -> list[RateHistoryEntry]:
        """Rate samples, newest first; currency codes are matched case-insensitively."""
        if from_currency:
            from_currency = normalize_currency(from_currency, "From currency")
        if to_currency:
            to_currency = normalize_currency(to_currency, "To currency")
        return await self.rate_history.query(from_currency, to_currency, limit=limit)

    async def get_settings(self) -> AlertSettings:
        return await self.settings.get()

    async def update_settings(self, patch: dict[str, Any]) -> AlertSettings:
        """
        Update alert settings and re-register wake-ups when timing changed.

        Raises:
            ValidationError: If the patch is invalid
        """
        settings = await self.settings.update(patch)
        if self.scheduler is not None and SCHEDULE_FIELDS & set(patch):
            self.scheduler.configure(settings)
        logger.info(f"Alert settings updated: {settings}")
        return settings
