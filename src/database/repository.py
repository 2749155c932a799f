"""
Repository classes over the key-value store.

Each repository hydrates its collection from the store on first use,
serves reads from memory afterwards and writes the full collection back
on save.
"""

import logging
import uuid
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Callable, Generic, Optional, TypeVar

from src.alerts.errors import (
    LimitExceededError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from src.alerts.models import (
    Alert,
    AlertHistoryEntry,
    AlertSettings,
    AlertSpec,
    ChangeCondition,
    Condition,
    ConditionType,
    RateHistoryEntry,
    TrendSnapshot,
    make_condition,
    normalize_currency,
    parse_hhmm,
)
from . import serialization
from .store import (
    ALERT_HISTORY_KEY,
    ALERTS_KEY,
    RATE_HISTORY_KEY,
    SETTINGS_KEY,
    TREND_DATA_KEY,
    KeyValueStore,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ALERTS = 20
DEFAULT_MAX_RATE_HISTORY = 10_000
DEFAULT_MAX_ALERT_HISTORY = 1_000

ALERT_PATCH_FIELDS = {
    "name",
    "description",
    "from_currency",
    "to_currency",
    "condition",
    "target_rate",
    "threshold",
    "enabled",
}


def new_id() -> str:
    """Generate an opaque unique id."""
    return uuid.uuid4().hex


def describe_condition(
    condition: ConditionType,
    target_rate: Optional[float],
    threshold: Optional[float],
) -> str:
    """Default alert description for a condition."""
    if condition == ConditionType.ABOVE:
        return f"Alert when rate goes above {target_rate:g}"
    elif condition == ConditionType.BELOW:
        return f"Alert when rate goes below {target_rate:g}"
    else:
        return f"Alert when rate changes by {threshold:g}%"


def default_name(from_currency: str, to_currency: str) -> str:
    return f"{from_currency}/{to_currency} Alert"


def build_condition(
    kind: Any,
    target_rate: Optional[float],
    threshold: Optional[float],
) -> Condition:
    """
    Build a condition from user input, rejecting the other kind's payload.

    Raises:
        ValidationError: If the payload is missing, invalid or belongs to another kind
    """
    condition = make_condition(kind, target_rate=target_rate, threshold=threshold)
    if isinstance(condition, ChangeCondition):
        if target_rate is not None:
            raise ValidationError("Target rate does not apply to change conditions")
    elif threshold is not None:
        raise ValidationError("Threshold does not apply to above/below conditions")
    return condition


async def _load_payload(store: KeyValueStore, key: str) -> Optional[Any]:
    """Read and migrate a stored payload; unreadable data is logged and treated as absent."""
    try:
        raw = await store.get(key)
        if raw is None:
            return None
        return serialization.decode(raw)
    except PersistenceError as e:
        logger.error(f"Failed to load {key}: {e}")
        return None


class AlertRepository:
    """CRUD operations for alert definitions."""

    def __init__(
        self,
        store: KeyValueStore,
        max_alerts: int = DEFAULT_MAX_ALERTS,
        clock: Callable[[], datetime] = datetime.now,
        id_factory: Callable[[], str] = new_id,
    ):
        self.store = store
        self.max_alerts = max_alerts
        self.clock = clock
        self.id_factory = id_factory
        self._alerts: Optional[list[Alert]] = None

    async def _ensure_loaded(self) -> list[Alert]:
        if self._alerts is None:
            alerts = []
            for item in await _load_payload(self.store, ALERTS_KEY) or []:
                try:
                    alerts.append(serialization.alert_from_dict(item))
                except (KeyError, TypeError, ValueError, ValidationError) as e:
                    logger.warning(f"Skipping unreadable stored alert: {e}")
            self._alerts = alerts
        return self._alerts

    async def create(self, spec: AlertSpec) -> Alert:
        """
        Validate and create an alert.

        Args:
            spec: Alert definition

        Returns:
            The created alert

        Raises:
            ValidationError: If the definition is invalid
            LimitExceededError: If the alert cap has been reached
        """
        alerts = await self._ensure_loaded()

        from_currency = normalize_currency(spec.from_currency, "From currency")
        to_currency = normalize_currency(spec.to_currency, "To currency")
        condition = build_condition(spec.condition, spec.target_rate, spec.threshold)

        if len(alerts) >= self.max_alerts:
            raise LimitExceededError(self.max_alerts)

        now = self.clock()
        alert = Alert(
            id=self.id_factory(),
            from_currency=from_currency,
            to_currency=to_currency,
            condition=condition,
            name=spec.name or default_name(from_currency, to_currency),
            description=spec.description
            or describe_condition(
                condition.type,
                getattr(condition, "target_rate", None),
                getattr(condition, "threshold", None),
            ),
            enabled=bool(spec.enabled),
            created_at=now,
            updated_at=now,
        )
        await self._commit(alerts + [alert])
        return alert

    async def get(self, alert_id: str) -> Alert:
        """Get alert by ID, raising NotFoundError if absent."""
        for alert in await self._ensure_loaded():
            if alert.id == alert_id:
                return alert
        raise NotFoundError(alert_id)

    async def update(self, alert_id: str, patch: dict[str, Any]) -> Alert:
        """
        Apply a partial update to an alert.

        The patch is validated in full before anything is changed.

        Raises:
            NotFoundError: If the alert does not exist
            ValidationError: If the patch is invalid
        """
        alerts = await self._ensure_loaded()
        index = self._index_of(alerts, alert_id)
        current = alerts[index]

        unknown = set(patch) - ALERT_PATCH_FIELDS
        if unknown:
            raise ValidationError(f"Unknown alert fields: {', '.join(sorted(unknown))}")

        changes: dict[str, Any] = {}
        if "from_currency" in patch:
            changes["from_currency"] = normalize_currency(
                patch["from_currency"], "From currency"
            )
        if "to_currency" in patch:
            changes["to_currency"] = normalize_currency(
                patch["to_currency"], "To currency"
            )
        if {"condition", "target_rate", "threshold"} & set(patch):
            kind = patch.get("condition", current.condition_type)
            # Switching condition kind drops the old payload
            same_kind = kind == current.condition_type
            changes["condition"] = build_condition(
                kind,
                target_rate=patch.get(
                    "target_rate", current.target_rate if same_kind else None
                ),
                threshold=patch.get(
                    "threshold", current.threshold if same_kind else None
                ),
            )
        if "name" in patch:
            if not patch["name"]:
                raise ValidationError("Name cannot be empty")
            changes["name"] = str(patch["name"])
        if "description" in patch:
            changes["description"] = str(patch["description"] or "")
        if "enabled" in patch:
            if not isinstance(patch["enabled"], bool):
                raise ValidationError("Enabled must be true or false")
            changes["enabled"] = patch["enabled"]

        from_currency = changes.get("from_currency", current.from_currency)
        to_currency = changes.get("to_currency", current.to_currency)
        if (from_currency, to_currency) != (current.from_currency, current.to_currency):
            # The last sampled rate belongs to the old pair
            changes["current_rate"] = None
            changes["last_checked"] = None
            if "name" not in patch and current.name == default_name(
                current.from_currency, current.to_currency
            ):
                changes["name"] = default_name(from_currency, to_currency)

        updated = replace(current, **changes, updated_at=self.clock())
        await self._commit(alerts[:index] + [updated] + alerts[index + 1:])
        return updated

    async def delete(self, alert_id: str) -> Alert:
        """
        Delete an alert.

        Returns:
            The deleted alert

        Raises:
            NotFoundError: If the alert does not exist
        """
        alerts = await self._ensure_loaded()
        index = self._index_of(alerts, alert_id)
        deleted = alerts[index]
        await self._commit(alerts[:index] + alerts[index + 1:])
        return deleted

    async def list_all(self) -> list[Alert]:
        """List all alerts in creation order."""
        return list(await self._ensure_loaded())

    async def list_enabled(self) -> list[Alert]:
        """List only enabled alerts, in creation order."""
        return [a for a in await self._ensure_loaded() if a.enabled]

    async def save(self) -> None:
        """
        Persist the full alert collection.

        Raises:
            PersistenceError: If the store write fails
        """
        await self._write(await self._ensure_loaded())

    async def _commit(self, alerts: list[Alert]) -> None:
        """Persist a new collection, then make it current; a failed write changes nothing."""
        await self._write(alerts)
        self._alerts = alerts

    async def _write(self, alerts: list[Alert]) -> None:
        await self.store.set(
            ALERTS_KEY,
            serialization.encode([serialization.alert_to_dict(a) for a in alerts]),
        )

    def _index_of(self, alerts: list[Alert], alert_id: str) -> int:
        for i, alert in enumerate(alerts):
            if alert.id == alert_id:
                return i
        raise NotFoundError(alert_id)


class _HistoryRepository(Generic[T]):
    """Bounded, append-only log persisted under a single key."""

    key: str
    to_dict: Callable[[T], dict[str, Any]]
    from_dict: Callable[[dict[str, Any]], T]

    def __init__(self, store: KeyValueStore, capacity: int):
        self.store = store
        self.capacity = capacity
        self._entries: Optional[list[T]] = None

    def _timestamp(self, entry: T) -> datetime:
        raise NotImplementedError

    async def _ensure_loaded(self) -> list[T]:
        if self._entries is None:
            entries = []
            for item in await _load_payload(self.store, self.key) or []:
                try:
                    entries.append(type(self).from_dict(item))
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping unreadable {self.key} entry: {e}")
            self._entries = entries[-self.capacity:] if self.capacity else []
        return self._entries

    async def append(self, entry: T) -> None:
        """Append an entry, dropping the oldest entries past capacity."""
        entries = await self._ensure_loaded()
        entries.append(entry)
        overflow = len(entries) - self.capacity
        if overflow > 0:
            del entries[:overflow]

    async def query(
        self,
        from_currency: Optional[str] = None,
        to_currency: Optional[str] = None,
        limit: int = 100,
    ) -> list[T]:
        """
        Get entries most-recent-first.

        Args:
            from_currency: Only entries with this source currency
            to_currency: Only entries with this target currency
            limit: Maximum number of entries

        Returns:
            Matching entries, newest first
        """
        entries = await self._ensure_loaded()
        results = []
        for entry in reversed(entries):
            if len(results) >= limit:
                break
            if from_currency and entry.from_currency != from_currency:
                continue
            if to_currency and entry.to_currency != to_currency:
                continue
            results.append(entry)
        return results

    async def entries(self) -> list[T]:
        """All entries in chronological (append) order."""
        return list(await self._ensure_loaded())

    async def since(self, cutoff: datetime) -> list[T]:
        """Entries stamped at or after the cutoff, chronological."""
        return [e for e in await self._ensure_loaded() if self._timestamp(e) >= cutoff]

    async def prune_to_capacity(self, cutoff: Optional[datetime] = None) -> int:
        """
        Enforce the capacity and optionally drop entries older than a cutoff.

        Returns:
            Number of entries removed
        """
        entries = await self._ensure_loaded()
        before = len(entries)
        kept = entries
        if cutoff is not None:
            kept = [e for e in kept if self._timestamp(e) >= cutoff]
        kept = kept[-self.capacity:] if self.capacity else []
        entries[:] = kept
        return before - len(entries)

    async def save(self) -> None:
        """
        Persist the full log.

        Raises:
            PersistenceError: If the store write fails
        """
        entries = await self._ensure_loaded()
        to_dict = type(self).to_dict
        await self.store.set(
            self.key, serialization.encode([to_dict(e) for e in entries])
        )


class RateHistoryRepository(_HistoryRepository[RateHistoryEntry]):
    """Time series of sampled rates."""

    key = RATE_HISTORY_KEY
    to_dict = staticmethod(serialization.rate_entry_to_dict)
    from_dict = staticmethod(serialization.rate_entry_from_dict)

    def __init__(
        self, store: KeyValueStore, capacity: int = DEFAULT_MAX_RATE_HISTORY
    ):
        super().__init__(store, capacity)

    def _timestamp(self, entry: RateHistoryEntry) -> datetime:
        return entry.timestamp


class AlertHistoryRepository(_HistoryRepository[AlertHistoryEntry]):
    """Log of fired alerts."""

    key = ALERT_HISTORY_KEY
    to_dict = staticmethod(serialization.alert_entry_to_dict)
    from_dict = staticmethod(serialization.alert_entry_from_dict)

    def __init__(
        self, store: KeyValueStore, capacity: int = DEFAULT_MAX_ALERT_HISTORY
    ):
        super().__init__(store, capacity)

    def _timestamp(self, entry: AlertHistoryEntry) -> datetime:
        return entry.triggered_at

    async def on_day(self, day: date) -> list[AlertHistoryEntry]:
        """Entries triggered on the given calendar day."""
        return [
            e for e in await self._ensure_loaded() if e.triggered_at.date() == day
        ]


class SettingsRepository:
    """The single AlertSettings record."""

    def __init__(self, store: KeyValueStore):
        self.store = store
        self._settings: Optional[AlertSettings] = None

    async def get(self) -> AlertSettings:
        """Current settings, created with defaults on first run."""
        if self._settings is None:
            data = await _load_payload(self.store, SETTINGS_KEY)
            if data is None:
                self._settings = AlertSettings()
            else:
                try:
                    self._settings = validate_settings(
                        serialization.settings_from_dict(data)
                    )
                except (AttributeError, ValidationError) as e:
                    logger.warning(f"Stored settings invalid, using defaults: {e}")
                    self._settings = AlertSettings()
        return self._settings

    async def update(self, patch: dict[str, Any]) -> AlertSettings:
        """
        Merge a partial update into the settings.

        Raises:
            ValidationError: If the merged settings are invalid
            PersistenceError: If the store write fails
        """
        current = await self.get()
        allowed = set(serialization.settings_to_dict(current))
        unknown = set(patch) - allowed
        if unknown:
            raise ValidationError(
                f"Unknown settings fields: {', '.join(sorted(unknown))}"
            )

        merged = serialization.settings_to_dict(current)
        for key, value in patch.items():
            if key == "quiet_hours":
                if not isinstance(value, dict):
                    raise ValidationError("quiet_hours must be a mapping")
                extra = set(value) - {"enabled", "start", "end"}
                if extra:
                    raise ValidationError(
                        f"Unknown quiet_hours fields: {', '.join(sorted(extra))}"
                    )
                merged["quiet_hours"] = {**merged["quiet_hours"], **value}
            else:
                merged[key] = value

        updated = validate_settings(serialization.settings_from_dict(merged))
        self._settings = updated
        await self.save()
        return updated

    async def save(self) -> None:
        settings = await self.get()
        await self.store.set(
            SETTINGS_KEY, serialization.encode(serialization.settings_to_dict(settings))
        )


def validate_settings(settings: AlertSettings) -> AlertSettings:
    """
    Check settings invariants.

    Raises:
        ValidationError: If any value is out of range or malformed
    """
    for flag in ("enable_notifications", "enable_daily_summary", "enable_weekly_summary"):
        if not isinstance(getattr(settings, flag), bool):
            raise ValidationError(f"{flag} must be true or false")
    if not isinstance(settings.quiet_hours.enabled, bool):
        raise ValidationError("quiet_hours.enabled must be true or false")

    for name, minimum in (
        ("check_interval_minutes", 1),
        ("max_notifications_per_day", 0),
        ("trend_analysis_period_days", 1),
    ):
        value = getattr(settings, name)
        if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
            raise ValidationError(f"{name} must be an integer >= {minimum}")

    for label, value in (
        ("summary_time", settings.summary_time),
        ("quiet_hours.start", settings.quiet_hours.start),
        ("quiet_hours.end", settings.quiet_hours.end),
    ):
        try:
            parse_hhmm(value)
        except ValueError:
            raise ValidationError(f"{label} must be HH:MM, got {value!r}")
    return settings


class TrendRepository:
    """Cached trend snapshots keyed by period, e.g. "7d"."""

    def __init__(self, store: KeyValueStore):
        self.store = store
        self._snapshots: Optional[dict[str, TrendSnapshot]] = None

    async def _ensure_loaded(self) -> dict[str, TrendSnapshot]:
        if self._snapshots is None:
            snapshots = {}
            for period_key, item in (
                await _load_payload(self.store, TREND_DATA_KEY) or {}
            ).items():
                try:
                    snapshots[period_key] = serialization.snapshot_from_dict(item)
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Skipping unreadable trend snapshot {period_key}: {e}")
            self._snapshots = snapshots
        return self._snapshots

    async def get(self, period_days: int) -> Optional[TrendSnapshot]:
        return (await self._ensure_loaded()).get(f"{period_days}d")

    async def put(self, snapshot: TrendSnapshot) -> None:
        """Replace the snapshot for its period and persist."""
        snapshots = await self._ensure_loaded()
        snapshots[f"{snapshot.period}d"] = snapshot
        await self.store.set(
            TREND_DATA_KEY,
            serialization.encode(
                {k: serialization.snapshot_to_dict(s) for k, s in snapshots.items()}
            ),
        )
