"""
Asynchronous key-value stores for persisted collections.
"""

import json
import sqlite3
from abc import ABC, abstractmethod
from typing import Any, Optional

from src.alerts.errors import PersistenceError
from .connection import Database

# Keys of the persisted collections
ALERTS_KEY = "rate_alerts"
RATE_HISTORY_KEY = "rate_history"
ALERT_HISTORY_KEY = "alert_history"
SETTINGS_KEY = "alert_settings"
TREND_DATA_KEY = "trend_data"


class KeyValueStore(ABC):
    """Abstract async store of named JSON-serializable values."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """
        Read a value.

        Args:
            key: Collection key

        Returns:
            Decoded JSON value, or None if the key is absent

        Raises:
            PersistenceError: If the backend cannot be read
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """
        Write a value, replacing any previous one.

        Raises:
            PersistenceError: If the value cannot be encoded or written
        """
        pass


def _encode(key: str, value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as e:
        raise PersistenceError(f"Value for {key!r} is not JSON serializable: {e}")


def _decode(key: str, text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError as e:
        raise PersistenceError(f"Stored value for {key!r} is corrupt: {e}")


class SQLiteStore(KeyValueStore):
    """Key-value store backed by the kv_store table."""

    def __init__(self, db: Database):
        self.db = db

    async def get(self, key: str) -> Optional[Any]:
        try:
            cursor = self.db.connection.cursor()
            cursor.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
            row = cursor.fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read {key!r}: {e}")
        if row is None:
            return None
        return _decode(key, row["value"])

    async def set(self, key: str, value: Any) -> None:
        text = _encode(key, value)
        try:
            cursor = self.db.connection.cursor()
            cursor.execute(
                """
                INSERT INTO kv_store (key, value)
                VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (key, text),
            )
            self.db.connection.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to write {key!r}: {e}")


class MemoryStore(KeyValueStore):
    """In-process store; values are JSON round-tripped so callers never share state."""

    def __init__(self):
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> Optional[Any]:
        text = self._data.get(key)
        if text is None:
            return None
        return _decode(key, text)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = _encode(key, value)
