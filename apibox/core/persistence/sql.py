"""SQL-backed PersistentStore (SQLAlchemy async engine, PostgreSQL by default)."""
import asyncio
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import JSON, BigInteger, Column, DateTime, Index, MetaData, String, Table, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from apibox.core.errors import PersistenceError
from apibox.core.persistence.base import HistoryPoint, PersistentStore

logger = structlog.get_logger()

metadata = MetaData()

forex_history = Table(
    "forex_history",
    metadata,
    Column("id", BigInteger, primary_key=True, autoincrement=True),
    Column("instrument", String(16), nullable=False),
    Column("ts", DateTime(timezone=True), nullable=False),
    Column("value", JSON().with_variant(JSONB, "postgresql"), nullable=False),
    Index("idx_forex_history_instrument_ts", "instrument", "ts"),
)


def _to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def _to_ms(ts: datetime) -> int:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return int(ts.timestamp() * 1000)


class SqlHistoryStore(PersistentStore):
    """Append-only history table; the schema is created on first use."""

    def __init__(self, database_url: str, engine: AsyncEngine | None = None):
        self._url = database_url
        self._engine = engine
        self._schema_ready = False
        self._schema_lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return True

    def _get_engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(self._url, pool_pre_ping=True)
        return self._engine

    async def ensure_schema(self) -> None:
        if self._schema_ready:
            return
        # Concurrent first writes share a single create_all.
        async with self._schema_lock:
            if self._schema_ready:
                return
            try:
                async with self._get_engine().begin() as conn:
                    await conn.run_sync(metadata.create_all)
            except SQLAlchemyError as e:
                raise PersistenceError(f"Failed to create history schema: {e}") from e
            self._schema_ready = True
        logger.info("persistence.schema_ready", table=forex_history.name)

    async def append(self, subject: str, timestamp_ms: int, value: Any) -> None:
        await self.ensure_schema()
        stmt = forex_history.insert().values(
            instrument=subject,
            ts=_to_datetime(timestamp_ms),
            value=value,
        )
        try:
            async with self._get_engine().begin() as conn:
                await conn.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to insert snapshot for {subject}: {e}") from e

    async def query(
        self,
        subject: str,
        start_ms: int | None = None,
        end_ms: int | None = None,
    ) -> list[HistoryPoint]:
        await self.ensure_schema()
        stmt = select(forex_history.c.ts, forex_history.c.value).where(forex_history.c.instrument == subject)
        if start_ms is not None:
            stmt = stmt.where(forex_history.c.ts >= _to_datetime(start_ms))
        if end_ms is not None:
            stmt = stmt.where(forex_history.c.ts <= _to_datetime(end_ms))
        stmt = stmt.order_by(forex_history.c.ts.asc())

        try:
            async with self._get_engine().connect() as conn:
                rows = (await conn.execute(stmt)).all()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to query history for {subject}: {e}") from e

        return [HistoryPoint(timestamp=_to_ms(ts), value=value) for ts, value in rows]

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._schema_ready = False
