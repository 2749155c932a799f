"""
Notification throttling: quiet hours and the per-day cap.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from src.alerts.models import Alert, AlertHistoryEntry, AlertSettings, QuietHours, parse_hhmm

QUIET_HOURS = "quiet_hours"
DAILY_LIMIT = "daily_limit"
NOTIFICATIONS_DISABLED = "notifications_disabled"


@dataclass
class GateDecision:
    """Outcome of a gate check; `reason` is set when denied."""

    allowed: bool
    reason: Optional[str] = None

    @classmethod
    def allow(cls) -> "GateDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str) -> "GateDecision":
        return cls(allowed=False, reason=reason)


class NotificationGate:
    """Decides whether a satisfied alert may notify now."""

    def is_quiet_hours(self, now: datetime, quiet_hours: QuietHours) -> bool:
        """
        Check whether `now` falls inside the quiet window.

        Both bounds are inclusive at minute resolution. A window whose start
        is later than its end spans midnight.
        """
        if not quiet_hours.enabled:
            return False

        current = now.time().replace(second=0, microsecond=0)
        start = parse_hhmm(quiet_hours.start)
        end = parse_hhmm(quiet_hours.end)

        if start > end:
            return current >= start or current <= end
        return start <= current <= end

    def has_reached_daily_limit(
        self,
        alert_history: Iterable[AlertHistoryEntry],
        settings: AlertSettings,
        now: datetime,
    ) -> bool:
        """Check whether today's fired alerts already meet the daily cap."""
        today = now.date()
        count = sum(1 for entry in alert_history if entry.triggered_at.date() == today)
        return count >= settings.max_notifications_per_day

    def decide(
        self,
        alert: Alert,
        settings: AlertSettings,
        alert_history: Iterable[AlertHistoryEntry],
        now: datetime,
    ) -> GateDecision:
        """
        Decide whether a satisfied alert may notify.

        Args:
            alert: The satisfied alert
            settings: Current alert settings
            alert_history: Fired-alert log
            now: Local wall-clock time

        Returns:
            GateDecision allowing or denying with a reason
        """
        if not settings.enable_notifications:
            return GateDecision.deny(NOTIFICATIONS_DISABLED)
        if self.is_quiet_hours(now, settings.quiet_hours):
            return GateDecision.deny(QUIET_HOURS)
        if self.has_reached_daily_limit(alert_history, settings, now):
            return GateDecision.deny(DAILY_LIMIT)
        return GateDecision.allow()
