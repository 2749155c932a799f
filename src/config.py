"""
Configuration loading and validation.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

RATE_PROVIDERS = {"exchangerate_api", "yahoo_finance", "fallback"}


class ConfigValidationError(Exception):
    """Raised when configuration is invalid."""

    pass


@dataclass
class DatabaseConfig:
    """Database configuration."""

    path: str = "data/ratewatch.db"


@dataclass
class RateSourceConfig:
    """Exchange rate source configuration."""

    provider: str = "yahoo_finance"
    api_key: Optional[str] = None
    timeout_seconds: float = 10.0
    fallback_order: list[str] = field(
        default_factory=lambda: ["exchangerate_api", "yahoo_finance"]
    )


@dataclass
class ScheduleConfig:
    """Schedule configuration."""

    timezone: str = "UTC"


@dataclass
class LimitsConfig:
    """Collection caps and retention."""

    max_alerts: int = 20
    max_rate_history: int = 10_000
    max_alert_history: int = 1_000
    retention_days: int = 90


@dataclass
class DiscordNotificationConfig:
    """Discord notification settings."""

    webhook_url: Optional[str] = None
    mention_on_alert: bool = False


@dataclass
class EmailNotificationConfig:
    """Email notification settings."""

    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    from_address: Optional[str] = None
    to_addresses: list[str] = field(default_factory=list)
    timeout_seconds: float = 30.0


@dataclass
class NotificationsConfig:
    """Notifications configuration."""

    discord: DiscordNotificationConfig = field(
        default_factory=DiscordNotificationConfig
    )
    email: EmailNotificationConfig = field(default_factory=EmailNotificationConfig)


@dataclass
class AdvancedConfig:
    """Advanced configuration."""

    log_level: str = "INFO"


@dataclass
class AppConfig:
    """Main application configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    rate_source: RateSourceConfig = field(default_factory=RateSourceConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    advanced: AdvancedConfig = field(default_factory=AdvancedConfig)


def _substitute_env_vars(value: Any) -> Any:
    """Substitute environment variables in string values."""
    if isinstance(value, str):
        # Match ${VAR_NAME} pattern
        pattern = r"\$\{([^}]+)\}"
        matches = re.findall(pattern, value)
        for var_name in matches:
            env_value = os.environ.get(var_name, "")
            value = value.replace(f"${{{var_name}}}", env_value)
        return value
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _validate_config(config_dict: dict[str, Any]) -> None:
    """Validate configuration values."""
    db_config = config_dict.get("database") or {}
    db_path = db_config.get("path", DatabaseConfig.path)
    if not db_path:
        raise ConfigValidationError("Database path is required")

    if db_path != ":memory:":
        parent = Path(db_path).parent
        if parent.exists() and not os.access(parent, os.W_OK):
            raise ConfigValidationError(f"Database path not writable: {parent}")

    source = config_dict.get("rate_source") or {}
    provider = source.get("provider", RateSourceConfig.provider)
    if provider not in RATE_PROVIDERS:
        raise ConfigValidationError(f"Unknown rate provider: {provider}")
    for name in source.get("fallback_order") or []:
        if name not in RATE_PROVIDERS - {"fallback"}:
            raise ConfigValidationError(f"Unknown fallback provider: {name}")
    timeout = source.get("timeout_seconds", RateSourceConfig.timeout_seconds)
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigValidationError("Rate source timeout must be positive")

    limits = config_dict.get("limits") or {}
    for key, value in limits.items():
        if not isinstance(value, int) or value <= 0:
            raise ConfigValidationError(f"Limit {key} must be a positive integer")

    schedule = config_dict.get("schedule") or {}
    if not schedule.get("timezone", ScheduleConfig.timezone):
        raise ConfigValidationError("Timezone cannot be empty")


def build_config(config_dict: dict[str, Any]) -> AppConfig:
    """
    Build configuration objects from a raw dict.

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    _validate_config(config_dict)

    try:
        notif_dict = config_dict.get("notifications") or {}
        return AppConfig(
            database=DatabaseConfig(**(config_dict.get("database") or {})),
            rate_source=RateSourceConfig(**(config_dict.get("rate_source") or {})),
            schedule=ScheduleConfig(**(config_dict.get("schedule") or {})),
            limits=LimitsConfig(**(config_dict.get("limits") or {})),
            notifications=NotificationsConfig(
                discord=DiscordNotificationConfig(**(notif_dict.get("discord") or {})),
                email=EmailNotificationConfig(**(notif_dict.get("email") or {})),
            ),
            advanced=AdvancedConfig(**(config_dict.get("advanced") or {})),
        )
    except TypeError as e:
        raise ConfigValidationError(f"Unknown configuration key: {e}")


def load_config(config_path: str) -> AppConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        AppConfig instance

    Raises:
        ConfigValidationError: If configuration is invalid
        FileNotFoundError: If config file doesn't exist
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path) as f:
        raw_config = yaml.safe_load(f) or {}

    # Substitute environment variables
    config_dict = _substitute_env_vars(raw_config)

    return build_config(config_dict)
