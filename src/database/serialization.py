"""
Schema-versioned (de)serialization of persisted records.

Every stored value is wrapped as ``{"schema_version": N, "data": ...}``.
Values written before versioning (flat camelCase JSON) are read as
version 0 and migrated forward.
"""

from datetime import datetime
from typing import Any, Callable, Optional

from src.alerts.errors import PersistenceError
from src.alerts.models import (
    Alert,
    AlertHistoryEntry,
    AlertSettings,
    ConditionType,
    QuietHours,
    RateHistoryEntry,
    TrendDirection,
    TrendEntry,
    TrendSnapshot,
    make_condition,
)

SCHEMA_VERSION = 1

# camelCase field names used by version 0 payloads
_LEGACY_FIELDS = {
    "fromCurrency": "from_currency",
    "toCurrency": "to_currency",
    "targetRate": "target_rate",
    "currentRate": "current_rate",
    "previousRate": "previous_rate",
    "lastChecked": "last_checked",
    "lastTriggered": "last_triggered",
    "triggerCount": "trigger_count",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "alertId": "alert_id",
    "alertName": "alert_name",
    "triggeredAt": "triggered_at",
    "enableNotifications": "enable_notifications",
    "enableDailySummary": "enable_daily_summary",
    "enableWeeklySummary": "enable_weekly_summary",
    "checkInterval": "check_interval_minutes",
    "summaryTime": "summary_time",
    "maxNotificationsPerDay": "max_notifications_per_day",
    "quietHours": "quiet_hours",
    "trendAnalysisPeriod": "trend_analysis_period_days",
    "generatedAt": "generated_at",
    "startRate": "start_rate",
    "endRate": "end_rate",
    "percentChange": "percent_change",
    "dataPoints": "data_points",
}


def _rename_legacy(value: Any) -> Any:
    # Only known field names are renamed; pair keys like "USD/EUR" are kept
    if isinstance(value, dict):
        return {_LEGACY_FIELDS.get(k, k): _rename_legacy(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_rename_legacy(item) for item in value]
    return value


_MIGRATIONS: dict[int, Callable[[Any], Any]] = {
    0: _rename_legacy,
}


def encode(data: Any) -> dict[str, Any]:
    """Wrap a payload in the current schema envelope."""
    return {"schema_version": SCHEMA_VERSION, "data": data}


def decode(payload: Any) -> Any:
    """
    Unwrap a stored payload, migrating it to the current schema.

    Raises:
        PersistenceError: If the payload was written by a newer schema
    """
    if isinstance(payload, dict) and "schema_version" in payload:
        version = payload["schema_version"]
        data = payload.get("data")
    else:
        version = 0
        data = payload

    if not isinstance(version, int) or version > SCHEMA_VERSION:
        raise PersistenceError(f"Unsupported schema version: {version!r}")

    while version < SCHEMA_VERSION:
        data = _MIGRATIONS[version](data)
        version += 1
    return data


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    # Legacy timestamps carry a trailing "Z"
    if value.endswith("Z"):
        value = value[:-1]
    parsed = datetime.fromisoformat(value)
    return parsed.replace(tzinfo=None)


def alert_to_dict(alert: Alert) -> dict[str, Any]:
    """Convert Alert to a JSON-ready dict."""
    return {
        "id": alert.id,
        "name": alert.name,
        "description": alert.description,
        "from_currency": alert.from_currency,
        "to_currency": alert.to_currency,
        "condition": alert.condition_type.value,
        "target_rate": alert.target_rate,
        "threshold": alert.threshold,
        "enabled": alert.enabled,
        "current_rate": alert.current_rate,
        "last_checked": _dt(alert.last_checked),
        "last_triggered": _dt(alert.last_triggered),
        "trigger_count": alert.trigger_count,
        "created_at": _dt(alert.created_at),
        "updated_at": _dt(alert.updated_at),
    }


def alert_from_dict(data: dict[str, Any]) -> Alert:
    """
    Convert stored dict to Alert.

    Raises:
        ValidationError: If the stored condition is inconsistent
    """
    condition = make_condition(
        data.get("condition"),
        target_rate=data.get("target_rate"),
        threshold=data.get("threshold"),
    )
    return Alert(
        id=data["id"],
        name=data.get("name") or "",
        description=data.get("description") or "",
        from_currency=data["from_currency"],
        to_currency=data["to_currency"],
        condition=condition,
        enabled=bool(data.get("enabled", True)),
        current_rate=data.get("current_rate"),
        last_checked=_parse_dt(data.get("last_checked")),
        last_triggered=_parse_dt(data.get("last_triggered")),
        trigger_count=int(data.get("trigger_count") or 0),
        created_at=_parse_dt(data.get("created_at")),
        updated_at=_parse_dt(data.get("updated_at")),
    )


def rate_entry_to_dict(entry: RateHistoryEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "from_currency": entry.from_currency,
        "to_currency": entry.to_currency,
        "rate": entry.rate,
        "timestamp": _dt(entry.timestamp),
    }


def rate_entry_from_dict(data: dict[str, Any]) -> RateHistoryEntry:
    return RateHistoryEntry(
        id=data["id"],
        from_currency=data["from_currency"],
        to_currency=data["to_currency"],
        rate=float(data["rate"]),
        timestamp=_parse_dt(data["timestamp"]),
    )


def alert_entry_to_dict(entry: AlertHistoryEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "alert_id": entry.alert_id,
        "alert_name": entry.alert_name,
        "from_currency": entry.from_currency,
        "to_currency": entry.to_currency,
        "condition": entry.condition.value,
        "target_rate": entry.target_rate,
        "threshold": entry.threshold,
        "current_rate": entry.current_rate,
        "previous_rate": entry.previous_rate,
        "triggered_at": _dt(entry.triggered_at),
    }


def alert_entry_from_dict(data: dict[str, Any]) -> AlertHistoryEntry:
    return AlertHistoryEntry(
        id=data["id"],
        alert_id=data["alert_id"],
        alert_name=data.get("alert_name") or "",
        from_currency=data["from_currency"],
        to_currency=data["to_currency"],
        condition=ConditionType(data["condition"]),
        target_rate=data.get("target_rate"),
        threshold=data.get("threshold"),
        current_rate=float(data["current_rate"]),
        previous_rate=data.get("previous_rate"),
        triggered_at=_parse_dt(data["triggered_at"]),
    )


def settings_to_dict(settings: AlertSettings) -> dict[str, Any]:
    return {
        "enable_notifications": settings.enable_notifications,
        "enable_daily_summary": settings.enable_daily_summary,
        "enable_weekly_summary": settings.enable_weekly_summary,
        "check_interval_minutes": settings.check_interval_minutes,
        "summary_time": settings.summary_time,
        "max_notifications_per_day": settings.max_notifications_per_day,
        "quiet_hours": {
            "enabled": settings.quiet_hours.enabled,
            "start": settings.quiet_hours.start,
            "end": settings.quiet_hours.end,
        },
        "trend_analysis_period_days": settings.trend_analysis_period_days,
    }


def settings_from_dict(data: dict[str, Any]) -> AlertSettings:
    """Build settings from a stored dict; missing keys take defaults, unknown keys are ignored."""
    defaults = AlertSettings()
    quiet = data.get("quiet_hours") or {}
    return AlertSettings(
        enable_notifications=data.get(
            "enable_notifications", defaults.enable_notifications
        ),
        enable_daily_summary=data.get(
            "enable_daily_summary", defaults.enable_daily_summary
        ),
        enable_weekly_summary=data.get(
            "enable_weekly_summary", defaults.enable_weekly_summary
        ),
        check_interval_minutes=data.get(
            "check_interval_minutes", defaults.check_interval_minutes
        ),
        summary_time=data.get("summary_time", defaults.summary_time),
        max_notifications_per_day=data.get(
            "max_notifications_per_day", defaults.max_notifications_per_day
        ),
        quiet_hours=QuietHours(
            enabled=quiet.get("enabled", defaults.quiet_hours.enabled),
            start=quiet.get("start", defaults.quiet_hours.start),
            end=quiet.get("end", defaults.quiet_hours.end),
        ),
        trend_analysis_period_days=data.get(
            "trend_analysis_period_days", defaults.trend_analysis_period_days
        ),
    )


def snapshot_to_dict(snapshot: TrendSnapshot) -> dict[str, Any]:
    return {
        "generated_at": _dt(snapshot.generated_at),
        "period": snapshot.period,
        "trends": {
            pair: {
                "start_rate": t.start_rate,
                "end_rate": t.end_rate,
                "percent_change": t.percent_change,
                "volatility": t.volatility,
                "data_points": t.data_points,
                "trend": t.trend.value,
            }
            for pair, t in snapshot.trends.items()
        },
    }


def snapshot_from_dict(data: dict[str, Any]) -> TrendSnapshot:
    return TrendSnapshot(
        generated_at=_parse_dt(data["generated_at"]),
        period=int(data["period"]),
        trends={
            pair: TrendEntry(
                start_rate=t["start_rate"],
                end_rate=t["end_rate"],
                percent_change=t["percent_change"],
                volatility=t["volatility"],
                data_points=t["data_points"],
                trend=TrendDirection(t["trend"]),
            )
            for pair, t in (data.get("trends") or {}).items()
        },
    )
