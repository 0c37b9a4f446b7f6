"""In-memory response cache with FIFO eviction and two TTL mechanisms.

Entries expire lazily when read past their TTL, and entries written with an
explicit TTL also get a one-shot timer on the running event loop so that
never-read keys are reclaimed too.
"""
import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

logger = structlog.get_logger()

Clock = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class CacheEntry:
    key: str
    value: Any
    written_at: int
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class CacheStore:
    """Bounded key/value store. Eviction is by insertion order, not access order."""

    def __init__(self, capacity: int = 1000, default_ttl_ms: int = 300_000, clock: Clock | None = None):
        if capacity <= 0:
            raise ValueError(f"capacity must be > 0, got {capacity}")
        self.capacity = capacity
        self.default_ttl_ms = default_ttl_ms
        self._clock = clock or now_ms
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def keys(self) -> list[str]:
        return list(self._entries)

    def set(self, key: str, value: Any, ttl_ms: int | None = None) -> None:
        existing = self._entries.get(key)
        if existing is not None:
            existing.cancel_timer()
        elif len(self._entries) >= self.capacity:
            self._evict_oldest()

        entry = CacheEntry(key=key, value=value, written_at=self._clock())
        # Overwrites keep the key's original insertion position.
        self._entries[key] = entry

        if ttl_ms and ttl_ms > 0:
            entry.timer = self._schedule_expiry(entry, ttl_ms)

    def get(self, key: str, ttl_ms: int | None = None) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None

        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
        if ttl > 0 and self._clock() - entry.written_at > ttl:
            self._remove(key)
            return None
        return entry.value

    def has(self, key: str, ttl_ms: int | None = None) -> bool:
        return self.get(key, ttl_ms) is not None

    def written_at(self, key: str) -> int | None:
        entry = self._entries.get(key)
        return entry.written_at if entry else None

    def delete(self, key: str) -> bool:
        return self._remove(key)

    def clear(self) -> None:
        for entry in self._entries.values():
            entry.cancel_timer()
        self._entries.clear()

    def cleanup(self, ttl_ms: int | None = None) -> int:
        """Delete every entry older than the effective TTL. Returns the count deleted."""
        ttl = self.default_ttl_ms if ttl_ms is None else ttl_ms
        if ttl <= 0:
            return 0
        now = self._clock()
        expired = [k for k, e in list(self._entries.items()) if now - e.written_at > ttl]
        for key in expired:
            self._remove(key)
        if expired:
            logger.debug("cache.cleanup", removed=len(expired), remaining=len(self._entries))
        return len(expired)

    def stats(self) -> dict:
        size = len(self._entries)
        return {
            "size": size,
            "capacity": self.capacity,
            "usage_percent": f"{size / self.capacity * 100:.2f}%",
        }

    @staticmethod
    def generate_key(
        namespace: str,
        endpoint: str,
        path_params: dict[str, str] | None = None,
        query_params: dict[str, str] | None = None,
    ) -> str:
        path = json.dumps(path_params or {}, sort_keys=True, separators=(",", ":"))
        query = json.dumps(query_params or {}, sort_keys=True, separators=(",", ":"))
        return f"{namespace}:{endpoint}:{path}:{query}"

    # ── internals ───────────────────────────────────────────────────────

    def _evict_oldest(self) -> None:
        oldest = next(iter(self._entries), None)
        if oldest is not None:
            self._remove(oldest)
            logger.debug("cache.evicted", key=oldest, capacity=self.capacity)

    def _remove(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        entry.cancel_timer()
        return True

    def _schedule_expiry(self, entry: CacheEntry, ttl_ms: int) -> asyncio.TimerHandle | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (sync caller): lazy expiry in get() still applies.
            return None
        return loop.call_later(ttl_ms / 1000, self._expire, entry)

    def _expire(self, entry: CacheEntry) -> None:
        # Only drop the entry this timer was armed for, never a newer write.
        if self._entries.get(entry.key) is entry:
            entry.timer = None
            del self._entries[entry.key]
            logger.debug("cache.expired", key=entry.key)
