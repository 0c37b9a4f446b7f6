"""Shared test doubles: a controllable clock, a scripted transport, an in-memory store."""
from datetime import datetime, timezone
from typing import Any

import pytest

from apibox.core.apis.registry import DEFAULT_APIS, ApiRegistry, parse_apis
from apibox.core.errors import PersistenceError
from apibox.core.persistence.base import HistoryPoint, PersistentStore
from apibox.core.proxy.transport import Transport, TransportResponse

QUOTE_BODY = [
    {
        "topo": {"platform": "SwissquoteLtd", "server": "Live5"},
        "spreadProfilePrices": [{"spreadProfile": "prime", "bid": 2650.12, "ask": 2650.48}],
        "ts": 1760781600000,
    },
    {
        "topo": {"platform": "AT", "server": "Live1"},
        "spreadProfilePrices": [{"spreadProfile": "prime", "bid": 2650.10, "ask": 2650.50}],
        "ts": 1760781600000,
    },
]


def ms(*args) -> int:
    """UTC datetime components -> ms since epoch."""
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


class FakeClock:

    def __init__(self, start: int = ms(2026, 10, 18, 10, 17)):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, delta_ms: int) -> None:
        self.now += delta_ms


class FakeTransport(Transport):
    """Returns queued responses in order, then the default; queued exceptions are raised."""

    def __init__(self, default: TransportResponse | None = None):
        self.default = default or TransportResponse(status=200, body=QUOTE_BODY, reason="OK")
        self.queue: list[TransportResponse | Exception] = []
        self.calls: list[tuple[str, str, dict]] = []
        self.closed = False

    async def send(self, method: str, url: str, headers: dict[str, str]) -> TransportResponse:
        self.calls.append((method, url, dict(headers)))
        item = self.queue.pop(0) if self.queue else self.default
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


class FakePersistentStore(PersistentStore):

    def __init__(self, fail_append: bool = False, fail_query: bool = False):
        self.rows: dict[str, list[HistoryPoint]] = {}
        self.fail_append = fail_append
        self.fail_query = fail_query
        self.appended: list[tuple[str, int, Any]] = []

    @property
    def enabled(self) -> bool:
        return True

    async def append(self, subject: str, timestamp_ms: int, value: Any) -> None:
        if self.fail_append:
            raise PersistenceError("database unavailable")
        self.appended.append((subject, timestamp_ms, value))
        self.rows.setdefault(subject, []).append(HistoryPoint(timestamp_ms, value))

    async def query(self, subject: str, start_ms: int | None = None, end_ms: int | None = None) -> list[HistoryPoint]:
        if self.fail_query:
            raise PersistenceError("database unavailable")
        return sorted(
            (
                p for p in self.rows.get(subject, [])
                if (start_ms is None or p.timestamp >= start_ms)
                and (end_ms is None or p.timestamp <= end_ms)
            ),
            key=lambda p: p.timestamp,
        )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def persistent() -> FakePersistentStore:
    return FakePersistentStore()


@pytest.fixture
def registry() -> ApiRegistry:
    apis = dict(DEFAULT_APIS)
    apis["secure"] = {
        "name": "Auth test API",
        "baseUrl": "https://api.example.com/v1",
        "auth": {"type": "bearer", "value": "tok-123"},
        "endpoints": {
            "item": {
                "path": "/items/{id}",
                "method": "GET",
                "cacheDuration": 1000,
                "parameters": {
                    "id": {"type": "path", "required": True},
                    "X-Tenant": {"type": "header", "required": True},
                    "lang": {"type": "query", "required": False},
                },
                "headers": {"User-Agent": "ApiBox/2.0", "Accept": "application/json"},
            },
        },
    }
    apis["keyed"] = {
        "baseUrl": "https://weather.example.com/data/2.5",
        "auth": {"type": "apikey", "key": "appid", "value": "k-1"},
        "endpoints": {
            "current": {
                "path": "/weather",
                "cacheDuration": 0,
                "parameters": {"q": {"type": "query", "required": True}},
            },
        },
    }
    apis["header_keyed"] = {
        "baseUrl": "https://api.example.com",
        "auth": {"type": "apikey", "header": "X-Api-Key", "value": "k-2"},
        "endpoints": {"ping": {"path": "/ping"}},
    }
    apis["basic"] = {
        "baseUrl": "https://api.example.com",
        "auth": {"type": "basic", "value": "dXNlcjpwYXNz"},
        "endpoints": {"ping": {"path": "/ping"}},
    }
    return ApiRegistry(apis=parse_apis(apis))
