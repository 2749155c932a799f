"""
Pytest configuration and shared fixtures.
"""

import itertools
from datetime import datetime
from unittest.mock import Mock

import pytest

from src.alerts.models import Alert, AboveCondition, AlertSettings
from src.database.store import MemoryStore


class FakeClock:
    """Settable wall clock for deterministic tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def store():
    """Empty in-memory key-value store."""
    return MemoryStore()


@pytest.fixture
def clock():
    """Clock fixed at 2024-03-15 12:00 (a Friday)."""
    return FakeClock(datetime(2024, 3, 15, 12, 0))


@pytest.fixture
def id_factory():
    """Sequential ids: id-1, id-2, ..."""
    counter = itertools.count(1)
    return lambda: f"id-{next(counter)}"


@pytest.fixture
def sample_alert():
    """USD/EUR alert that fires at or above 0.95."""
    return Alert(
        id="alert-1",
        from_currency="USD",
        to_currency="EUR",
        condition=AboveCondition(target_rate=0.95),
        name="USD/EUR Alert",
        description="Alert when rate goes above 0.95",
    )


@pytest.fixture
def default_settings():
    """Default alert settings."""
    return AlertSettings()


@pytest.fixture
def sample_exchangerate_response():
    """Sample ExchangeRate-API v6 latest response."""
    return {
        "result": "success",
        "base_code": "USD",
        "conversion_rates": {"USD": 1, "EUR": 0.9213, "GBP": 0.7891, "JPY": 149.52},
    }


@pytest.fixture
def sample_discord_webhook_url():
    """Sample Discord webhook URL for testing."""
    return "https://discord.com/api/webhooks/123456789/abcdefghijklmnop"


@pytest.fixture
def sample_smtp_config():
    """Sample SMTP configuration for testing."""
    return {
        "host": "smtp.gmail.com",
        "port": 587,
        "user": "test@gmail.com",
        "password": "test-app-password",
        "from_address": "alerts@ratewatch.app",
        "to_addresses": ["recipient@example.com"],
    }


@pytest.fixture
def mock_sink():
    """Notification sink that records calls."""
    return Mock()
