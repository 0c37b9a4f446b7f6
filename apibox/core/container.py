"""Composition root — builds exactly one instance of every component.

Nothing in apibox holds process-wide singletons; the FastAPI lifespan builds
a Container and every route reaches components through it.
"""
from dataclasses import dataclass

import structlog

from apibox.core.apis.registry import ApiRegistry
from apibox.core.cache.history import HistoryLedger
from apibox.core.cache.store import CacheStore, Clock
from apibox.core.config import Settings
from apibox.core.persistence.base import NullStore, PersistentStore
from apibox.core.proxy.executor import HistoryTracking, ProxyExecutor
from apibox.core.proxy.transport import AiohttpTransport, Transport
from apibox.core.scheduler.collector import HistoryCollector
from apibox.core.scheduler.scheduler import Scheduler

logger = structlog.get_logger()


@dataclass
class Container:
    settings:   Settings
    registry:   ApiRegistry
    cache:      CacheStore
    ledger:     HistoryLedger
    persistent: PersistentStore
    transport:  Transport
    executor:   ProxyExecutor
    scheduler:  Scheduler
    collector:  HistoryCollector
    tracking:   HistoryTracking

    async def start(self) -> None:
        if self.settings.collector_enabled:
            self.collector.register(
                self.scheduler,
                interval_ms=self.settings.collector_interval_ms,
                max_errors=self.settings.collector_max_errors,
            )
        self.scheduler.start_all()

    async def close(self) -> None:
        await self.scheduler.shutdown()
        await self.ledger.drain()
        await self.transport.close()
        await self.persistent.close()
        self.cache.clear()
        logger.info("container.closed")


def build_persistent_store(settings: Settings) -> PersistentStore:
    if not settings.enable_db_persistence:
        return NullStore()
    from apibox.core.persistence.sql import SqlHistoryStore

    logger.info("persistence.enabled", backend="sql")
    return SqlHistoryStore(settings.database_url)


def build_container(
    settings: Settings,
    transport: Transport | None = None,
    persistent: PersistentStore | None = None,
    registry: ApiRegistry | None = None,
    clock: Clock | None = None,
) -> Container:
    if registry is None:
        registry = ApiRegistry(settings.apis_config_path)
        registry.load()

    cache = CacheStore(settings.cache_max_size, settings.cache_default_ttl_ms, clock=clock)
    # History series get their own store so response churn never evicts them.
    history_store = CacheStore(settings.history_cache_max_size, default_ttl_ms=0, clock=clock)
    persistent = persistent or build_persistent_store(settings)
    ledger = HistoryLedger(history_store, persistent, max_points=settings.history_max_points, clock=clock)

    transport = transport or AiohttpTransport(
        timeout_s=settings.upstream_timeout_s,
        rate_limit=settings.upstream_rate_limit,
        rate_period_s=settings.upstream_rate_period_s,
        user_agent=settings.user_agent,
    )
    tracking = HistoryTracking(
        api_name=settings.history_api,
        endpoint=settings.history_endpoint,
        instrument=settings.history_instrument,
        namespace=settings.history_namespace,
    )
    executor = ProxyExecutor(registry, cache, transport, ledger=ledger, tracking=tracking, clock=clock)
    scheduler = Scheduler(clock=clock, wait_cap_ms=settings.scheduler_wait_cap_ms, tz=settings.scheduler_timezone)
    collector = HistoryCollector(
        executor,
        api_name=settings.history_api,
        endpoint=settings.history_endpoint,
        instrument=settings.history_instrument,
        currency=settings.history_currency,
    )

    return Container(
        settings=settings,
        registry=registry,
        cache=cache,
        ledger=ledger,
        persistent=persistent,
        transport=transport,
        executor=executor,
        scheduler=scheduler,
        collector=collector,
        tracking=tracking,
    )
