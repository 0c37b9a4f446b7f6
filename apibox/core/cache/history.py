"""HistoryLedger — hour-bucketed, capped time series stored in a CacheStore.

Each tracked subject keeps at most one point per calendar hour (the latest
write for that hour wins) and at most ``max_points`` points overall. The
series lives as an ordinary cache entry written without TTL, so its length
is governed by point count rather than age.
"""
import asyncio
from typing import Any

import structlog

from apibox.core.cache.store import CacheStore, Clock, now_ms
from apibox.core.persistence.base import HistoryPoint, NullStore, PersistentStore

logger = structlog.get_logger()

HOUR_MS = 3_600_000
DEFAULT_MAX_POINTS = 24 * 7


class HistoryLedger:

    def __init__(
        self,
        store: CacheStore,
        persistent: PersistentStore | None = None,
        max_points: int = DEFAULT_MAX_POINTS,
        clock: Clock | None = None,
    ):
        if max_points <= 0:
            raise ValueError(f"max_points must be > 0, got {max_points}")
        self.store = store
        self.persistent = persistent or NullStore()
        self.max_points = max_points
        self._clock = clock or now_ms
        self._pending: set[asyncio.Task] = set()

    @staticmethod
    def subject_for(key: str) -> str:
        """``forex:history:XAU`` -> ``XAU``."""
        return key.rsplit(":", 1)[-1]

    def series(self, key: str) -> list[HistoryPoint]:
        # Ledger keys carry no TTL, so read with age expiry disabled.
        data = self.store.get(key, 0)
        return list(data) if isinstance(data, list) else []

    def append_point(self, key: str, point: HistoryPoint | dict) -> None:
        if isinstance(point, dict):
            point = HistoryPoint(timestamp=int(point["timestamp"]), value=point.get("value"))

        history = self.series(key)
        last = history[-1] if history else None

        if last is not None and last.hour_bucket == point.hour_bucket:
            history[-1] = point
        elif last is not None and point.timestamp < last.timestamp:
            # Late arrival: drop any point sharing its hour, then restore order.
            history = [p for p in history if p.hour_bucket != point.hour_bucket]
            history.append(point)
            history.sort(key=lambda p: p.timestamp)
        else:
            history.append(point)

        if len(history) > self.max_points:
            history = history[-self.max_points:]

        self.store.set(key, history)
        logger.debug("history.appended", key=key, ts=point.timestamp, points=len(history))

        # Forward the point just written; a late point is not the newest. Skip it if trimmed away.
        if self.persistent.enabled and any(p is point for p in history):
            self._submit(key, point)

    def append(self, key: str, value: Any, timestamp_ms: int | None = None) -> HistoryPoint:
        ts = self._clock() if timestamp_ms is None else timestamp_ms
        point = HistoryPoint(timestamp=ts, value=value)
        self.append_point(key, point)
        return point

    async def get_history(
        self,
        key: str,
        start_ms: int | None = None,
        end_ms: int | None = None,
    ) -> list[HistoryPoint]:
        memory = self.series(key)

        if not self.persistent.enabled:
            return _select(memory, start_ms, end_ms)

        try:
            rows = await self.persistent.query(self.subject_for(key), start_ms, end_ms)
        except Exception as e:
            logger.warning("history.query_failed", key=key, error=str(e))
            return _select(memory, start_ms, end_ms)

        merged: dict[int, HistoryPoint] = {p.timestamp: p for p in memory}
        # Persisted rows win on equal timestamps.
        merged.update({p.timestamp: p for p in rows})
        return _select(merged.values(), start_ms, end_ms)

    async def drain(self) -> None:
        """Wait for every in-flight write-behind task."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _submit(self, key: str, point: HistoryPoint) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("history.persist_skipped", key=key, reason="no running event loop")
            return
        task = loop.create_task(self._persist(self.subject_for(key), point))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(self, subject: str, point: HistoryPoint) -> None:
        try:
            await self.persistent.append(subject, point.timestamp, point.value)
        except Exception as e:
            logger.warning("history.persist_failed", subject=subject, ts=point.timestamp, error=str(e))


def _select(points, start_ms: int | None, end_ms: int | None) -> list[HistoryPoint]:
    out = [
        p for p in points
        if (start_ms is None or p.timestamp >= start_ms)
        and (end_ms is None or p.timestamp <= end_ms)
    ]
    out.sort(key=lambda p: p.timestamp)
    return out
