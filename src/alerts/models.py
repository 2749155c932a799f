"""
Data models for rate alerts, history and settings.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, time
from enum import Enum
from typing import Optional, Union

from .errors import ValidationError

CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")
HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class ConditionType(str, Enum):
    """Kinds of alert condition."""

    ABOVE = "above"
    BELOW = "below"
    CHANGE = "change"


class TrendDirection(str, Enum):
    """Rate movement classification."""

    RISING = "rising"
    FALLING = "falling"
    STABLE = "stable"


@dataclass(frozen=True)
class AboveCondition:
    """Fires when the rate reaches or exceeds the target."""

    target_rate: float
    type = ConditionType.ABOVE


@dataclass(frozen=True)
class BelowCondition:
    """Fires when the rate reaches or falls under the target."""

    target_rate: float
    type = ConditionType.BELOW


@dataclass(frozen=True)
class ChangeCondition:
    """Fires when the rate moves by at least `threshold` percent between samples."""

    threshold: float
    type = ConditionType.CHANGE


Condition = Union[AboveCondition, BelowCondition, ChangeCondition]


def _positive(value: Optional[float], label: str) -> float:
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{label} is required for this condition")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number: {value!r}")
    if not math.isfinite(number) or number <= 0:
        raise ValidationError(f"{label} must be greater than 0")
    return number


def make_condition(
    condition: Union[str, ConditionType],
    target_rate: Optional[float] = None,
    threshold: Optional[float] = None,
) -> Condition:
    """
    Build a typed condition from its loose field representation.

    Args:
        condition: "above", "below" or "change"
        target_rate: Target for above/below conditions
        threshold: Minimum percent delta for change conditions

    Returns:
        The matching condition variant

    Raises:
        ValidationError: If the condition is unknown or its payload is invalid
    """
    try:
        kind = ConditionType(condition)
    except ValueError:
        raise ValidationError(f"Unknown condition: {condition!r}")

    if kind == ConditionType.ABOVE:
        return AboveCondition(target_rate=_positive(target_rate, "Target rate"))
    elif kind == ConditionType.BELOW:
        return BelowCondition(target_rate=_positive(target_rate, "Target rate"))
    else:
        return ChangeCondition(threshold=_positive(threshold, "Threshold"))


def normalize_currency(code: Optional[str], label: str = "Currency") -> str:
    """Upper-case and validate a 3-letter currency code."""
    if not code or not isinstance(code, str):
        raise ValidationError(f"{label} is required")
    normalized = code.strip().upper()
    if not CURRENCY_PATTERN.match(normalized):
        raise ValidationError(f"{label} must be a 3-letter code: {code!r}")
    return normalized


def parse_hhmm(value: str) -> time:
    """
    Parse an "HH:MM" string.

    Raises:
        ValueError: If the string is not a valid 24-hour time
    """
    match = HHMM_PATTERN.match(value) if isinstance(value, str) else None
    if not match:
        raise ValueError(f"Invalid time (expected HH:MM): {value!r}")
    return time(int(match.group(1)), int(match.group(2)))


def pair_key(from_currency: str, to_currency: str) -> str:
    """Key used to group a currency pair, e.g. "USD/EUR"."""
    return f"{from_currency}/{to_currency}"


@dataclass
class AlertSpec:
    """User input for creating an alert."""

    from_currency: str
    to_currency: str
    condition: str
    target_rate: Optional[float] = None
    threshold: Optional[float] = None
    enabled: bool = True
    name: Optional[str] = None
    description: Optional[str] = None


@dataclass
class Alert:
    """A user-defined rate alert and its monitoring state."""

    id: str
    from_currency: str
    to_currency: str
    condition: Condition
    name: str
    description: str
    enabled: bool = True
    current_rate: Optional[float] = None
    last_checked: Optional[datetime] = None
    last_triggered: Optional[datetime] = None
    trigger_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def pair(self) -> str:
        return pair_key(self.from_currency, self.to_currency)

    @property
    def condition_type(self) -> ConditionType:
        return self.condition.type

    @property
    def target_rate(self) -> Optional[float]:
        return getattr(self.condition, "target_rate", None)

    @property
    def threshold(self) -> Optional[float]:
        return getattr(self.condition, "threshold", None)


@dataclass
class RateHistoryEntry:
    """One sampled rate for a currency pair."""

    id: str
    from_currency: str
    to_currency: str
    rate: float
    timestamp: datetime

    @property
    def pair(self) -> str:
        return pair_key(self.from_currency, self.to_currency)


@dataclass
class AlertHistoryEntry:
    """Record of a fired alert, with a snapshot of its definition."""

    id: str
    alert_id: str
    alert_name: str
    from_currency: str
    to_currency: str
    condition: ConditionType
    target_rate: Optional[float]
    threshold: Optional[float]
    current_rate: float
    previous_rate: Optional[float]
    triggered_at: datetime

    @property
    def pair(self) -> str:
        return pair_key(self.from_currency, self.to_currency)


@dataclass
class QuietHours:
    """Daily window during which notifications are suppressed."""

    enabled: bool = False
    start: str = "22:00"
    end: str = "08:00"


@dataclass
class AlertSettings:
    """Process-wide alert preferences."""

    enable_notifications: bool = True
    enable_daily_summary: bool = True
    enable_weekly_summary: bool = True
    check_interval_minutes: int = 60
    summary_time: str = "09:00"
    max_notifications_per_day: int = 10
    quiet_hours: QuietHours = field(default_factory=QuietHours)
    trend_analysis_period_days: int = 30


@dataclass
class TrendEntry:
    """Rate movement of one pair over an analysis window."""

    start_rate: float
    end_rate: float
    percent_change: float
    volatility: float
    data_points: int
    trend: TrendDirection


@dataclass
class TrendSnapshot:
    """Cached trend analysis for a period."""

    generated_at: datetime
    period: int
    trends: dict[str, TrendEntry] = field(default_factory=dict)
