"""ProxyExecutor — cache-first forwarding of parameterized requests to upstream APIs.

Flow for ``run()``:
  1. resolve the endpoint descriptor (ConfigNotFound on miss)
  2. check required parameters (ValidationError lists every missing one)
  3. serve from the response cache when the endpoint caches and the entry is fresh
  4. otherwise build URL + headers, call the transport, cache the body
  5. feed fresh responses for the tracked instrument into the history ledger
"""
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import structlog

from apibox.core.apis.models import EndpointDescriptor
from apibox.core.apis.registry import ApiRegistry
from apibox.core.cache.history import HistoryLedger
from apibox.core.cache.store import CacheStore, Clock, now_ms
from apibox.core.errors import ConfigNotFound, TransportError, ValidationError
from apibox.core.proxy.params import RequestParams
from apibox.core.proxy.transport import Transport

logger = structlog.get_logger()


@dataclass(frozen=True)
class HistoryTracking:
    """Which responses feed the history ledger, and under which key."""
    api_name:   str = "forex"
    endpoint:   str = "quote"
    instrument: str = "XAU"
    param:      str = "instrument"
    namespace:  str = "forex:history"

    @property
    def key(self) -> str:
        return f"{self.namespace}:{self.instrument.upper()}"

    def matches(self, api_name: str, endpoint: str, params: RequestParams) -> bool:
        value = params.path_params.get(self.param) or params.query_params.get(self.param)
        return (
            api_name == self.api_name
            and endpoint == self.endpoint
            and value is not None
            and value.upper() == self.instrument.upper()
        )


class ProxyExecutor:

    def __init__(
        self,
        registry: ApiRegistry,
        cache: CacheStore,
        transport: Transport,
        ledger: HistoryLedger | None = None,
        tracking: HistoryTracking | None = None,
        clock: Clock | None = None,
    ):
        self.registry = registry
        self.cache = cache
        self.transport = transport
        self.ledger = ledger
        self.tracking = tracking
        self._clock = clock or now_ms

    def validate(self, api_name: str, endpoint: str, params: RequestParams) -> list[str]:
        descriptor = self._resolve(api_name, endpoint)
        return _missing_params(descriptor, params)

    async def run(
        self,
        api_name: str,
        endpoint: str,
        params: RequestParams | None = None,
        extra_headers: dict[str, str] | None = None,
    ) -> Any:
        params = params or RequestParams()
        descriptor = self._resolve(api_name, endpoint)

        missing = _missing_params(descriptor, params)
        if missing:
            raise ValidationError(missing)

        cache_key = CacheStore.generate_key(api_name, endpoint, params.path_params, params.query_params)
        if descriptor.caching_enabled:
            cached = self.cache.get(cache_key, descriptor.cache_duration_ms)
            if cached is not None:
                logger.info("cache.hit", key=cache_key)
                return cached

        url = build_url(descriptor, params.path_params, params.query_params)
        headers = build_headers(descriptor, {**params.headers, **(extra_headers or {})})

        log = logger.bind(api=api_name, endpoint=endpoint, method=descriptor.method)
        log.info("proxy.request", url=url)
        try:
            resp = await self.transport.send(descriptor.method, url, headers)
        except TransportError as e:
            log.warning("proxy.failed", error=str(e))
            raise

        if not resp.ok:
            message = _upstream_message(resp.body) or resp.reason
            log.warning("proxy.bad_status", status=resp.status, message=message)
            detail = f"HTTP {resp.status}: {message}" if message else f"HTTP {resp.status}"
            raise TransportError(detail, status=resp.status, url=url)

        body = resp.body
        # get() reports None as a miss.
        if descriptor.caching_enabled and body is not None:
            self.cache.set(cache_key, body, descriptor.cache_duration_ms)
            logger.info("cache.stored", key=cache_key, ttl_ms=descriptor.cache_duration_ms)

        self._record_history(api_name, endpoint, params, body)
        return body

    def _resolve(self, api_name: str, endpoint: str) -> EndpointDescriptor:
        if not self.registry.has_api(api_name):
            raise ConfigNotFound(api_name)
        descriptor = self.registry.resolve(api_name, endpoint)
        if descriptor is None:
            raise ConfigNotFound(api_name, endpoint)
        return descriptor

    def _record_history(self, api_name: str, endpoint: str, params: RequestParams, body: Any) -> None:
        if self.ledger is None or self.tracking is None:
            return
        try:
            if not self.tracking.matches(api_name, endpoint, params):
                return
            snapshot = body[0] if isinstance(body, list) and body else body
            if snapshot is None or snapshot == []:
                return
            point = self.ledger.append(self.tracking.key, snapshot, self._clock())
            logger.info("history.snapshot", key=self.tracking.key, ts=point.timestamp)
        except Exception as e:
            logger.warning("history.snapshot_failed", key=self.tracking.key, error=str(e))


def _missing_params(descriptor: EndpointDescriptor, params: RequestParams) -> list[str]:
    return [
        f"Missing required {location} parameter: {name}"
        for name, location in descriptor.required_params.items()
        if name not in params.location(location)
    ]


def _upstream_message(body: Any) -> str:
    if isinstance(body, dict):
        for k in ("message", "error", "detail"):
            if body.get(k):
                return str(body[k])
        return ""
    if isinstance(body, str):
        return body[:200]
    return ""


def build_url(descriptor: EndpointDescriptor, path_params: dict[str, str], query_params: dict[str, str]) -> str:
    path = descriptor.path_template
    for name, value in path_params.items():
        path = path.replace("{" + name + "}", quote(str(value), safe=""))

    scheme, netloc, base_path, base_query, fragment = urlsplit(descriptor.base_url.rstrip("/") + path)
    query = dict(parse_qsl(base_query, keep_blank_values=True))
    query.update(query_params)

    auth = descriptor.auth
    if auth.type == "apikey" and auth.key and auth.value:
        query[auth.key] = auth.value

    return urlunsplit((scheme, netloc, base_path, urlencode(query), fragment))


def build_headers(descriptor: EndpointDescriptor, custom: dict[str, str] | None = None) -> dict[str, str]:
    headers = {**descriptor.headers, **(custom or {})}

    auth = descriptor.auth
    if auth.type == "bearer" and auth.value:
        headers["Authorization"] = f"Bearer {auth.value}"
    elif auth.type == "apikey" and auth.header and auth.value:
        headers[auth.header] = auth.value
    elif auth.type == "basic" and auth.value:
        headers["Authorization"] = f"Basic {auth.value}"

    return headers
