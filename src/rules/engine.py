"""
Alert evaluation engine.
"""

from dataclasses import dataclass
from typing import Optional

from src.alerts.models import (
    AboveCondition,
    Alert,
    BelowCondition,
    ChangeCondition,
)

__all__ = ["AlertEvaluator", "AlertMessage", "percent_change"]


def percent_change(current: float, previous: float) -> float:
    """Signed percent change from previous to current."""
    return (current - previous) / previous * 100


@dataclass
class AlertMessage:
    """Title and body of a fired-alert notification."""

    title: str
    body: str


class AlertEvaluator:
    """Decides whether an alert condition is satisfied by a sampled rate."""

    def should_trigger(
        self,
        alert: Alert,
        current_rate: Optional[float],
        previous_rate: Optional[float],
    ) -> bool:
        """
        Evaluate an alert against a freshly sampled rate.

        Args:
            alert: Alert to evaluate (not modified)
            current_rate: Rate just sampled
            previous_rate: Rate sampled on the previous check, if any

        Returns:
            True if the alert condition is satisfied
        """
        if not current_rate:
            return False

        condition = alert.condition
        if isinstance(condition, AboveCondition):
            return current_rate >= condition.target_rate

        elif isinstance(condition, BelowCondition):
            return current_rate <= condition.target_rate

        elif isinstance(condition, ChangeCondition):
            # The first sample only establishes the baseline
            if not previous_rate:
                return False
            return abs(percent_change(current_rate, previous_rate)) >= condition.threshold

        return False

    def create_message(
        self,
        alert: Alert,
        current_rate: float,
        previous_rate: Optional[float],
    ) -> AlertMessage:
        """Build the notification text for a fired alert."""
        title = f"Rate Alert: {alert.name}"
        condition = alert.condition

        if isinstance(condition, AboveCondition):
            body = (
                f"{alert.pair} is now {current_rate:.4f} "
                f"(above {condition.target_rate:g})"
            )
        elif isinstance(condition, BelowCondition):
            body = (
                f"{alert.pair} is now {current_rate:.4f} "
                f"(below {condition.target_rate:g})"
            )
        else:
            change = percent_change(current_rate, previous_rate)
            direction = "increased" if change > 0 else "decreased"
            body = f"{alert.pair} {direction} by {abs(change):.2f}%"

        return AlertMessage(title=title, body=body)
