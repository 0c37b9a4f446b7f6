"""Wiring tests for the composition root and persistence selection."""
import asyncio
from contextlib import asynccontextmanager
from datetime import timezone

import pytest

from apibox.core.config import Settings
from apibox.core.container import build_container, build_persistent_store
from apibox.core.persistence.base import HistoryPoint, NullStore
from apibox.core.persistence.sql import SqlHistoryStore, _to_datetime, _to_ms
from apibox.core.scheduler.collector import COLLECTOR_JOB_ID

from conftest import ms


def make_settings(**overrides) -> Settings:
    base = {"collector_enabled": False, "apis_config_path": "/nonexistent/apis.json"}
    base.update(overrides)
    return Settings(**base)


class TestPersistenceSelection:

    def test_disabled_by_default(self):
        store = build_persistent_store(make_settings())
        assert isinstance(store, NullStore)
        assert store.enabled is False

    def test_sql_store_when_enabled(self):
        store = build_persistent_store(make_settings(enable_db_persistence=True))
        assert isinstance(store, SqlHistoryStore)
        assert store.enabled is True

    def test_timestamp_conversion(self):
        t = ms(2026, 10, 18, 11, 0)
        dt = _to_datetime(t)
        assert dt.tzinfo is timezone.utc
        assert _to_ms(dt) == t
        assert _to_ms(dt.replace(tzinfo=None)) == t

    def test_history_point_bucket(self):
        assert HistoryPoint(ms(2026, 10, 18, 11, 59), None).hour_bucket == HistoryPoint(ms(2026, 10, 18, 11, 0), None).hour_bucket
        assert HistoryPoint(ms(2026, 10, 18, 12, 0), None).hour_bucket != HistoryPoint(ms(2026, 10, 18, 11, 59), None).hour_bucket


class FakeConnection:

    def __init__(self, engine):
        self.engine = engine

    async def run_sync(self, fn):
        self.engine.schema_runs += 1
        await asyncio.sleep(0.01)


class FakeEngine:
    """Counts schema creations; yields inside each so concurrent callers interleave."""

    def __init__(self):
        self.schema_runs = 0

    @asynccontextmanager
    async def begin(self):
        yield FakeConnection(self)

    async def dispose(self):
        return None


class TestSqlSchema:

    @pytest.mark.asyncio
    async def test_concurrent_first_writes_create_schema_once(self):
        engine = FakeEngine()
        store = SqlHistoryStore("postgresql+asyncpg://unused", engine=engine)
        await asyncio.gather(*(store.ensure_schema() for _ in range(5)))
        assert engine.schema_runs == 1

        await store.ensure_schema()
        assert engine.schema_runs == 1


class TestContainer:

    def test_history_store_is_separate_from_response_cache(self, transport):
        container = build_container(make_settings(cache_max_size=2), transport=transport)
        assert container.ledger.store is not container.cache
        for i in range(5):
            container.cache.set(f"k{i}", i)
        container.ledger.append("forex:history:XAU", {"bid": 1})
        assert len(container.cache) == 2
        assert len(container.ledger.series("forex:history:XAU")) == 1

    def test_registry_falls_back_to_defaults(self, transport):
        container = build_container(make_settings(), transport=transport)
        assert container.registry.api_names() == ["forex", "httpbin"]

    @pytest.mark.asyncio
    async def test_start_registers_collector_and_close_releases(self, transport, persistent):
        container = build_container(make_settings(collector_enabled=True), transport=transport, persistent=persistent)
        await container.start()
        assert container.scheduler.is_running(COLLECTOR_JOB_ID)

        await container.close()
        assert not container.scheduler.is_running(COLLECTOR_JOB_ID)
        assert transport.closed
        assert len(container.cache) == 0

    @pytest.mark.asyncio
    async def test_collector_not_registered_when_disabled(self, transport):
        container = build_container(make_settings(), transport=transport)
        await container.start()
        assert container.scheduler.get_status(COLLECTOR_JOB_ID) is None
        await container.close()
