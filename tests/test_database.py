"""
Database tests.
Tests for key-value stores, serialization and repositories.
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from src.alerts.errors import (
    LimitExceededError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from src.alerts.models import (
    AlertHistoryEntry,
    AlertSettings,
    AlertSpec,
    ChangeCondition,
    ConditionType,
    RateHistoryEntry,
    TrendDirection,
    TrendEntry,
    TrendSnapshot,
)
from src.database import serialization
from src.database.connection import Database
from src.database.repository import (
    AlertHistoryRepository,
    AlertRepository,
    RateHistoryRepository,
    SettingsRepository,
    TrendRepository,
)
from src.database.store import (
    ALERTS_KEY,
    RATE_HISTORY_KEY,
    SETTINGS_KEY,
    MemoryStore,
    SQLiteStore,
)


def rate_entry(n: int, at: datetime, pair=("USD", "EUR"), rate=0.9) -> RateHistoryEntry:
    return RateHistoryEntry(
        id=f"r{n}",
        from_currency=pair[0],
        to_currency=pair[1],
        rate=rate,
        timestamp=at,
    )


def alert_entry(n: int, at: datetime) -> AlertHistoryEntry:
    return AlertHistoryEntry(
        id=f"h{n}",
        alert_id="a1",
        alert_name="USD/EUR Alert",
        from_currency="USD",
        to_currency="EUR",
        condition=ConditionType.ABOVE,
        target_rate=0.95,
        threshold=None,
        current_rate=0.96,
        previous_rate=0.94,
        triggered_at=at,
    )


@pytest.fixture
def db():
    """Create in-memory database."""
    database = Database(":memory:")
    database.initialize()
    yield database
    database.close()


class TestDatabase:
    """Test database connection and initialization."""

    def test_initialize_creates_kv_table(self, db: Database):
        """Should create the kv_store table."""
        cursor = db.connection.cursor()
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
        tables = {row["name"] for row in cursor.fetchall()}
        assert "kv_store" in tables

    def test_initialize_is_idempotent(self, db: Database):
        """Should not fail when run twice."""
        db.initialize()

    def test_creates_parent_directory(self, tmp_path):
        """Should create missing parent directories for file databases."""
        path = tmp_path / "nested" / "dir" / "ratewatch.db"
        database = Database(str(path))
        database.initialize()
        database.close()
        assert path.exists()


class TestSQLiteStore:
    """Test the SQLite-backed store."""

    @pytest.mark.asyncio
    async def test_get_missing_key(self, db: Database):
        """Should return None for absent keys."""
        assert await SQLiteStore(db).get("nope") is None

    @pytest.mark.asyncio
    async def test_set_and_overwrite(self, db: Database):
        """Should upsert values."""
        store = SQLiteStore(db)
        await store.set("k", {"a": 1})
        await store.set("k", {"a": 2})
        assert await store.get("k") == {"a": 2}

    @pytest.mark.asyncio
    async def test_unserializable_value(self, db: Database):
        """Should wrap encoding failures."""
        with pytest.raises(PersistenceError):
            await SQLiteStore(db).set("k", {"when": datetime.now()})

    @pytest.mark.asyncio
    async def test_closed_connection(self, db: Database):
        """Should wrap sqlite errors."""
        store = SQLiteStore(db)
        db.connection.close()
        with pytest.raises(PersistenceError):
            await store.set("k", 1)

    @pytest.mark.asyncio
    async def test_corrupt_value(self, db: Database):
        """Should report unreadable JSON."""
        db.connection.execute(
            "INSERT INTO kv_store (key, value) VALUES (?, ?)", ("k", "{not json")
        )
        with pytest.raises(PersistenceError, match="corrupt"):
            await SQLiteStore(db).get("k")


class TestMemoryStore:
    """Test the in-memory store."""

    @pytest.mark.asyncio
    async def test_values_are_copied(self):
        """Mutating a read value should not change the stored one."""
        store = MemoryStore()
        await store.set("k", [1, 2])
        value = await store.get("k")
        value.append(3)
        assert await store.get("k") == [1, 2]


class TestSerialization:
    """Test schema-versioned payloads."""

    def test_encode_wraps_with_version(self):
        assert serialization.encode([1]) == {
            "schema_version": serialization.SCHEMA_VERSION,
            "data": [1],
        }

    def test_decode_current(self):
        assert serialization.decode(serialization.encode({"x": 1})) == {"x": 1}

    def test_decode_newer_version(self):
        """Should refuse payloads from a newer schema."""
        with pytest.raises(PersistenceError, match="Unsupported schema version"):
            serialization.decode({"schema_version": 99, "data": []})

    def test_migrates_legacy_alert(self):
        """Unversioned camelCase alerts should load as the current schema."""
        legacy = [
            {
                "id": "1700000000000",
                "name": "Euro watch",
                "description": "",
                "fromCurrency": "USD",
                "toCurrency": "EUR",
                "condition": "above",
                "targetRate": 0.95,
                "enabled": True,
                "currentRate": 0.93,
                "lastChecked": "2024-01-01T10:00:00.000Z",
                "lastTriggered": None,
                "triggerCount": 2,
                "createdAt": "2023-12-01T08:00:00.000Z",
            }
        ]
        data = serialization.decode(legacy)
        alert = serialization.alert_from_dict(data[0])

        assert alert.from_currency == "USD"
        assert alert.target_rate == 0.95
        assert alert.current_rate == 0.93
        assert alert.trigger_count == 2
        assert alert.last_checked == datetime(2024, 1, 1, 10, 0)

    def test_legacy_trend_pair_keys_kept(self):
        """Pair keys inside legacy trend data should not be renamed."""
        legacy = {"7d": {"generatedAt": "2024-01-01T00:00:00Z", "period": 7, "trends": {
            "USD/EUR": {
                "startRate": 0.9,
                "endRate": 0.92,
                "percentChange": 2.22,
                "volatility": 0.01,
                "dataPoints": 3,
                "trend": "rising",
            }
        }}}
        data = serialization.decode(legacy)
        snapshot = serialization.snapshot_from_dict(data["7d"])
        assert snapshot.trends["USD/EUR"].trend == TrendDirection.RISING

    def test_legacy_settings(self):
        """Should map legacy setting names, including the check interval."""
        data = serialization.decode(
            {"checkInterval": 15, "quietHours": {"enabled": True, "start": "23:00", "end": "07:00"}}
        )
        settings = serialization.settings_from_dict(data)
        assert settings.check_interval_minutes == 15
        assert settings.quiet_hours.enabled is True
        assert settings.summary_time == "09:00"

    def test_alert_round_trip(self):
        """Should preserve a change alert through dict conversion."""
        spec_dict = {
            "id": "a1",
            "name": "GBP swings",
            "description": "d",
            "from_currency": "GBP",
            "to_currency": "USD",
            "condition": "change",
            "threshold": 1.5,
            "trigger_count": 0,
        }
        alert = serialization.alert_from_dict(spec_dict)
        assert alert.condition == ChangeCondition(threshold=1.5)
        assert serialization.alert_to_dict(alert)["threshold"] == 1.5
        assert serialization.alert_to_dict(alert)["target_rate"] is None


class TestAlertRepository:
    """Test alert CRUD."""

    @pytest.fixture
    def repo(self, store, clock, id_factory):
        return AlertRepository(store, max_alerts=3, clock=clock, id_factory=id_factory)

    @pytest.mark.asyncio
    async def test_create_applies_defaults(self, repo: AlertRepository, clock):
        """Should normalize codes and fill name and description."""
        alert = await repo.create(
            AlertSpec(from_currency="usd", to_currency="eur", condition="above", target_rate=0.95)
        )
        assert alert.id == "id-1"
        assert alert.pair == "USD/EUR"
        assert alert.name == "USD/EUR Alert"
        assert alert.description == "Alert when rate goes above 0.95"
        assert alert.created_at == clock.now
        assert alert.trigger_count == 0

    @pytest.mark.asyncio
    async def test_create_change_description(self, repo: AlertRepository):
        alert = await repo.create(
            AlertSpec(from_currency="GBP", to_currency="USD", condition="change", threshold=2)
        )
        assert alert.description == "Alert when rate changes by 2%"

    @pytest.mark.asyncio
    async def test_create_invalid(self, repo: AlertRepository):
        """Should reject invalid definitions without storing them."""
        with pytest.raises(ValidationError):
            await repo.create(
                AlertSpec(from_currency="USD", to_currency="EUR", condition="above")
            )
        assert await repo.list_all() == []

    @pytest.mark.asyncio
    async def test_create_respects_cap(self, repo: AlertRepository):
        """Should refuse to exceed the alert cap."""
        for _ in range(3):
            await repo.create(
                AlertSpec(from_currency="USD", to_currency="EUR", condition="below", target_rate=1)
            )
        with pytest.raises(LimitExceededError):
            await repo.create(
                AlertSpec(from_currency="USD", to_currency="EUR", condition="below", target_rate=1)
            )
        assert len(await repo.list_all()) == 3

    @pytest.mark.asyncio
    async def test_persists_and_reloads(self, store, clock, id_factory):
        """A fresh repository should see previously saved alerts."""
        repo = AlertRepository(store, clock=clock, id_factory=id_factory)
        created = await repo.create(
            AlertSpec(from_currency="USD", to_currency="JPY", condition="above", target_rate=150)
        )
        raw = await store.get(ALERTS_KEY)
        assert raw["schema_version"] == serialization.SCHEMA_VERSION

        reloaded = await AlertRepository(store).get(created.id)
        assert reloaded == created

    @pytest.mark.asyncio
    async def test_get_missing(self, repo: AlertRepository):
        with pytest.raises(NotFoundError):
            await repo.get("missing")

    @pytest.mark.asyncio
    async def test_update_partial(self, repo: AlertRepository, clock):
        """Should change only the given fields and bump updated_at."""
        alert = await repo.create(
            AlertSpec(from_currency="USD", to_currency="EUR", condition="above", target_rate=0.95)
        )
        clock.now = clock.now + timedelta(minutes=5)

        updated = await repo.update(alert.id, {"target_rate": 0.97, "name": "Tighter"})

        assert updated.target_rate == 0.97
        assert updated.name == "Tighter"
        assert updated.pair == "USD/EUR"
        assert updated.created_at == alert.created_at
        assert updated.updated_at == clock.now

    @pytest.mark.asyncio
    async def test_update_switch_condition(self, repo: AlertRepository):
        """Switching kind requires the new kind's payload."""
        alert = await repo.create(
            AlertSpec(from_currency="USD", to_currency="EUR", condition="above", target_rate=0.95)
        )
        with pytest.raises(ValidationError):
            await repo.update(alert.id, {"condition": "change"})

        updated = await repo.update(alert.id, {"condition": "change", "threshold": 1.0})
        assert updated.condition == ChangeCondition(threshold=1.0)
        assert updated.target_rate is None

    @pytest.mark.asyncio
    async def test_update_invalid_leaves_alert(self, repo: AlertRepository):
        """A rejected patch should not change anything."""
        alert = await repo.create(
            AlertSpec(from_currency="USD", to_currency="EUR", condition="above", target_rate=0.95)
        )
        with pytest.raises(ValidationError):
            await repo.update(alert.id, {"name": "ok", "to_currency": "EURO"})
        with pytest.raises(ValidationError):
            await repo.update(alert.id, {"colour": "red"})
        assert (await repo.get(alert.id)).name == "USD/EUR Alert"

    @pytest.mark.asyncio
    async def test_update_missing(self, repo: AlertRepository):
        with pytest.raises(NotFoundError):
            await repo.update("missing", {"enabled": False})

    @pytest.mark.asyncio
    async def test_update_pair_resets_baseline(self, repo: AlertRepository, clock):
        """Changing the pair should drop the previous pair's last rate."""
        alert = await repo.create(
            AlertSpec(from_currency="USD", to_currency="EUR", condition="change", threshold=5)
        )
        alert.current_rate = 0.92
        alert.last_checked = clock.now
        await repo.save()

        updated = await repo.update(alert.id, {"to_currency": "jpy"})

        assert updated.pair == "USD/JPY"
        assert updated.current_rate is None
        assert updated.last_checked is None

    @pytest.mark.asyncio
    async def test_update_keeps_baseline_for_same_pair(self, repo: AlertRepository, clock):
        alert = await repo.create(
            AlertSpec(from_currency="USD", to_currency="EUR", condition="change", threshold=5)
        )
        alert.current_rate = 0.92
        await repo.save()

        updated = await repo.update(alert.id, {"to_currency": "EUR", "threshold": 2})
        assert updated.current_rate == 0.92

    @pytest.mark.asyncio
    async def test_update_pair_renames_default_name(self, repo: AlertRepository):
        """A generated name should follow the pair; a custom one should not."""
        generated = await repo.create(
            AlertSpec(from_currency="USD", to_currency="EUR", condition="above", target_rate=1)
        )
        custom = await repo.create(
            AlertSpec(
                from_currency="USD",
                to_currency="EUR",
                condition="above",
                target_rate=1,
                name="Holiday money",
            )
        )

        assert (await repo.update(generated.id, {"from_currency": "GBP"})).name == (
            "GBP/EUR Alert"
        )
        assert (await repo.update(custom.id, {"from_currency": "GBP"})).name == (
            "Holiday money"
        )
        renamed = await repo.update(generated.id, {"to_currency": "JPY", "name": "Yen"})
        assert renamed.name == "Yen"

    @pytest.mark.asyncio
    async def test_rejects_payload_of_other_kind(self, repo: AlertRepository):
        """A threshold on an above alert, or a target on a change alert, is an error."""
        alert = await repo.create(
            AlertSpec(from_currency="USD", to_currency="EUR", condition="above", target_rate=0.95)
        )
        with pytest.raises(ValidationError):
            await repo.update(alert.id, {"threshold": 2})
        with pytest.raises(ValidationError):
            await repo.update(alert.id, {"condition": "change", "threshold": 1, "target_rate": 1})
        assert (await repo.get(alert.id)).condition == alert.condition

        with pytest.raises(ValidationError):
            await repo.create(
                AlertSpec(
                    from_currency="USD",
                    to_currency="EUR",
                    condition="above",
                    target_rate=0.95,
                    threshold=2,
                )
            )
        with pytest.raises(ValidationError):
            await repo.create(
                AlertSpec(
                    from_currency="USD",
                    to_currency="EUR",
                    condition="change",
                    target_rate=0.95,
                    threshold=2,
                )
            )
        assert len(await repo.list_all()) == 1

    @pytest.mark.asyncio
    async def test_failed_write_leaves_alerts_unchanged(self, repo: AlertRepository, store):
        """Create, update and delete should have no effect when the store write fails."""
        alert = await repo.create(
            AlertSpec(from_currency="USD", to_currency="EUR", condition="above", target_rate=0.95)
        )
        working_set = store.set
        store.set = AsyncMock(side_effect=PersistenceError("disk full"))

        with pytest.raises(PersistenceError):
            await repo.create(
                AlertSpec(from_currency="USD", to_currency="GBP", condition="below", target_rate=1)
            )
        with pytest.raises(PersistenceError):
            await repo.update(alert.id, {"name": "Renamed", "enabled": False})
        with pytest.raises(PersistenceError):
            await repo.delete(alert.id)

        assert await repo.list_all() == [alert]
        assert (await repo.get(alert.id)).name == "USD/EUR Alert"

        store.set = working_set
        await repo.create(
            AlertSpec(from_currency="USD", to_currency="GBP", condition="below", target_rate=1)
        )
        assert [a.pair for a in await repo.list_all()] == ["USD/EUR", "USD/GBP"]

    @pytest.mark.asyncio
    async def test_delete_and_list_enabled(self, repo: AlertRepository):
        """Deleted alerts disappear; disabled alerts are not listed as enabled."""
        a = await repo.create(
            AlertSpec(from_currency="USD", to_currency="EUR", condition="above", target_rate=1)
        )
        b = await repo.create(
            AlertSpec(
                from_currency="USD",
                to_currency="GBP",
                condition="above",
                target_rate=1,
                enabled=False,
            )
        )
        c = await repo.create(
            AlertSpec(from_currency="USD", to_currency="JPY", condition="above", target_rate=1)
        )

        await repo.delete(a.id)

        assert [x.id for x in await repo.list_all()] == [b.id, c.id]
        assert [x.id for x in await repo.list_enabled()] == [c.id]
        with pytest.raises(NotFoundError):
            await repo.delete(a.id)

    @pytest.mark.asyncio
    async def test_skips_unreadable_items(self, store):
        """Corrupt alerts in storage should be skipped, not fatal."""
        await store.set(
            ALERTS_KEY,
            serialization.encode(
                [
                    {"id": "bad", "condition": "above"},
                    {
                        "id": "good",
                        "from_currency": "USD",
                        "to_currency": "EUR",
                        "condition": "below",
                        "target_rate": 0.9,
                    },
                ]
            ),
        )
        alerts = await AlertRepository(store).list_all()
        assert [a.id for a in alerts] == ["good"]


class TestHistoryRepositories:
    """Test bounded history logs."""

    @pytest.mark.asyncio
    async def test_append_caps_fifo(self, store):
        """Should drop the oldest entries beyond capacity."""
        repo = RateHistoryRepository(store, capacity=3)
        start = datetime(2024, 1, 1)
        for n in range(5):
            await repo.append(rate_entry(n, start + timedelta(hours=n)))

        assert [e.id for e in await repo.entries()] == ["r2", "r3", "r4"]

    @pytest.mark.asyncio
    async def test_append_is_not_persisted_until_save(self, store):
        repo = RateHistoryRepository(store)
        await repo.append(rate_entry(1, datetime(2024, 1, 1)))
        assert await store.get(RATE_HISTORY_KEY) is None

        await repo.save()
        reloaded = RateHistoryRepository(store)
        assert [e.id for e in await reloaded.entries()] == ["r1"]

    @pytest.mark.asyncio
    async def test_query_newest_first_with_filters(self, store):
        """Should return newest first, filtered by either currency."""
        repo = RateHistoryRepository(store)
        start = datetime(2024, 1, 1)
        await repo.append(rate_entry(1, start, ("USD", "EUR")))
        await repo.append(rate_entry(2, start + timedelta(hours=1), ("USD", "GBP")))
        await repo.append(rate_entry(3, start + timedelta(hours=2), ("GBP", "EUR")))
        await repo.append(rate_entry(4, start + timedelta(hours=3), ("USD", "EUR")))

        assert [e.id for e in await repo.query()] == ["r4", "r3", "r2", "r1"]
        assert [e.id for e in await repo.query("USD", "EUR")] == ["r4", "r1"]
        assert [e.id for e in await repo.query(to_currency="EUR")] == ["r4", "r3", "r1"]
        assert [e.id for e in await repo.query("USD", limit=2)] == ["r4", "r2"]

    @pytest.mark.asyncio
    async def test_prune_by_cutoff(self, store):
        """Should drop entries older than the cutoff."""
        repo = AlertHistoryRepository(store)
        now = datetime(2024, 6, 1)
        await repo.append(alert_entry(1, now - timedelta(days=100)))
        await repo.append(alert_entry(2, now - timedelta(days=10)))

        removed = await repo.prune_to_capacity(now - timedelta(days=90))

        assert removed == 1
        assert [e.id for e in await repo.entries()] == ["h2"]

    @pytest.mark.asyncio
    async def test_on_day_and_since(self, store):
        repo = AlertHistoryRepository(store)
        day = datetime(2024, 3, 15, 8, 0)
        await repo.append(alert_entry(1, day - timedelta(days=1)))
        await repo.append(alert_entry(2, day))
        await repo.append(alert_entry(3, day + timedelta(hours=10)))

        assert [e.id for e in await repo.on_day(day.date())] == ["h2", "h3"]
        assert [e.id for e in await repo.since(day)] == ["h2", "h3"]

    @pytest.mark.asyncio
    async def test_load_failure_treated_as_empty(self):
        """An unreadable store should yield an empty log."""
        store = AsyncMock()
        store.get.side_effect = PersistenceError("disk on fire")
        repo = AlertHistoryRepository(store)
        assert await repo.entries() == []


class TestSettingsRepository:
    """Test the settings record."""

    @pytest.mark.asyncio
    async def test_defaults_on_first_run(self, store):
        assert await SettingsRepository(store).get() == AlertSettings()

    @pytest.mark.asyncio
    async def test_update_merges_and_persists(self, store):
        """Should merge a partial patch, including nested quiet hours."""
        repo = SettingsRepository(store)
        updated = await repo.update(
            {"check_interval_minutes": 15, "quiet_hours": {"enabled": True}}
        )

        assert updated.check_interval_minutes == 15
        assert updated.quiet_hours.enabled is True
        assert updated.quiet_hours.start == "22:00"

        reloaded = await SettingsRepository(store).get()
        assert reloaded == updated

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "patch",
        [
            {"check_interval_minutes": 0},
            {"check_interval_minutes": "often"},
            {"max_notifications_per_day": -1},
            {"trend_analysis_period_days": True},
            {"summary_time": "25:00"},
            {"quiet_hours": {"start": "late"}},
            {"quiet_hours": {"volume": 0}},
            {"quiet_hours": "on"},
            {"enable_notifications": "yes"},
            {"theme": "dark"},
        ],
    )
    async def test_update_rejects_invalid(self, store, patch):
        """Invalid patches should leave settings untouched."""
        repo = SettingsRepository(store)
        with pytest.raises(ValidationError):
            await repo.update(patch)
        assert await repo.get() == AlertSettings()
        assert await store.get(SETTINGS_KEY) is None

    @pytest.mark.asyncio
    async def test_zero_daily_cap_allowed(self, store):
        updated = await SettingsRepository(store).update({"max_notifications_per_day": 0})
        assert updated.max_notifications_per_day == 0

    @pytest.mark.asyncio
    async def test_invalid_stored_settings_fall_back(self, store):
        await store.set(
            SETTINGS_KEY, serialization.encode({"check_interval_minutes": -5})
        )
        assert await SettingsRepository(store).get() == AlertSettings()


class TestTrendRepository:
    """Test trend snapshot cache."""

    @pytest.mark.asyncio
    async def test_put_and_get_by_period(self, store):
        repo = TrendRepository(store)
        snapshot = TrendSnapshot(
            generated_at=datetime(2024, 1, 7),
            period=7,
            trends={
                "USD/EUR": TrendEntry(
                    start_rate=0.9,
                    end_rate=0.95,
                    percent_change=5.56,
                    volatility=0.02,
                    data_points=4,
                    trend=TrendDirection.RISING,
                )
            },
        )
        await repo.put(snapshot)

        assert await repo.get(30) is None
        assert await TrendRepository(store).get(7) == snapshot
