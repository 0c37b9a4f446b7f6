"""Outbound HTTP transport — aiohttp client behind a shared rate limiter."""
import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import aiohttp
import structlog
from aiolimiter import AsyncLimiter

from apibox.core.errors import TransportError

logger = structlog.get_logger()


@dataclass(frozen=True)
class TransportResponse:
    status: int
    body: Any
    reason: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class Transport(ABC):

    @abstractmethod
    async def send(self, method: str, url: str, headers: dict[str, str]) -> TransportResponse:
        """Raises TransportError on network failure or timeout."""
        ...

    async def close(self) -> None:
        return None


class AiohttpTransport(Transport):

    def __init__(
        self,
        timeout_s: float = 10.0,
        rate_limit: int = 60,
        rate_period_s: float = 60.0,
        user_agent: str | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        self._timeout = aiohttp.ClientTimeout(total=timeout_s)
        # Endpoint headers override this default per request.
        self._default_headers = {"User-Agent": user_agent} if user_agent else None
        self._limiter = AsyncLimiter(rate_limit, rate_period_s)
        self._session = session

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout, headers=self._default_headers)
        return self._session

    async def send(self, method: str, url: str, headers: dict[str, str]) -> TransportResponse:
        try:
            async with self._limiter:
                async with self._get_session().request(method, url, headers=headers) as resp:
                    text = await resp.text()
                    return TransportResponse(status=resp.status, body=_decode(text), reason=resp.reason or "")
        except asyncio.TimeoutError as e:
            raise TransportError(f"Upstream timeout after {self._timeout.total}s", url=url) from e
        except aiohttp.ClientError as e:
            raise TransportError(f"Upstream request failed: {e}", url=url) from e

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


def _decode(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text
