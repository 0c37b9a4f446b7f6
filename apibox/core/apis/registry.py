"""ApiRegistry — loads upstream API definitions and resolves endpoint descriptors."""
import json
import os
from pathlib import Path

import structlog
from pydantic import ValidationError as PydanticValidationError

from apibox.core.apis.models import ApiConfig, EndpointDescriptor

logger = structlog.get_logger()

ENV_PREFIX = "ENV:"

DEFAULT_APIS: dict[str, dict] = {
    "forex": {
        "name": "Forex data API",
        "description": "Swissquote forex quotes",
        "baseUrl": "https://forex-data-feed.swissquote.com/public-quotes/bboquotes",
        "auth": {"type": "none"},
        "endpoints": {
            "quote": {
                "path": "/instrument/{instrument}/{currency}",
                "method": "GET",
                "cacheDuration": 5000,
                "description": "Quote for an instrument/currency pair",
                "parameters": {
                    "instrument": {"type": "path", "required": True, "description": "Instrument (XAU, EUR, GBP)"},
                    "currency": {"type": "path", "required": True, "description": "Quote currency (USD, EUR)"},
                },
                "headers": {"User-Agent": "ApiBox/2.0"},
            },
        },
    },
    "httpbin": {
        "name": "HTTP test API",
        "description": "httpbin.org",
        "baseUrl": "https://httpbin.org",
        "auth": {"type": "none"},
        "endpoints": {
            "get": {"path": "/get", "method": "GET", "cacheDuration": 0, "description": "Echo GET request"},
        },
    },
}


def parse_apis(raw: dict) -> dict[str, ApiConfig]:
    return {name: ApiConfig.model_validate(cfg) for name, cfg in raw.items()}


class ApiRegistry:

    def __init__(self, config_path: str | None = None, apis: dict[str, ApiConfig] | None = None):
        self.config_path = config_path
        self._apis: dict[str, ApiConfig] = dict(apis) if apis else {}

    def load(self) -> None:
        """Load the registry file, falling back to the built-in registry."""
        try:
            if not self.config_path:
                raise FileNotFoundError("no registry path configured")
            raw = json.loads(Path(self.config_path).read_text(encoding="utf-8"))
            apis = parse_apis(raw)
            logger.info("registry.loaded", path=self.config_path, apis=len(apis))
        except (OSError, json.JSONDecodeError, PydanticValidationError, AttributeError) as e:
            logger.warning("registry.load_failed", path=self.config_path, error=str(e))
            apis = parse_apis(DEFAULT_APIS)
            logger.info("registry.defaults", apis=list(apis))

        self._apis = apis
        self._resolve_env_credentials()

    def reload(self) -> None:
        self.load()

    def _resolve_env_credentials(self) -> None:
        for name, cfg in self._apis.items():
            value = cfg.auth.value
            if not value or not value.startswith(ENV_PREFIX):
                continue
            env_key = value[len(ENV_PREFIX):]
            env_value = os.environ.get(env_key)
            if env_value:
                cfg.auth.value = env_value
            else:
                logger.warning("registry.env_missing", api=name, env=env_key)

    def api_names(self) -> list[str]:
        return list(self._apis)

    def get_config(self, api_name: str) -> ApiConfig | None:
        return self._apis.get(api_name)

    def get_configs(self) -> dict[str, ApiConfig]:
        return dict(self._apis)

    def has_api(self, api_name: str) -> bool:
        return api_name in self._apis

    def has_endpoint(self, api_name: str, endpoint: str) -> bool:
        cfg = self._apis.get(api_name)
        return cfg is not None and endpoint in cfg.endpoints

    def resolve(self, api_name: str, endpoint: str) -> EndpointDescriptor | None:
        cfg = self._apis.get(api_name)
        if cfg is None:
            return None
        ep = cfg.endpoints.get(endpoint)
        if ep is None:
            return None
        return EndpointDescriptor(
            api_name=api_name,
            endpoint=endpoint,
            base_url=cfg.base_url,
            path_template=ep.path,
            method=ep.method.upper(),
            cache_duration_ms=ep.cache_duration,
            auth=cfg.auth,
            parameters=dict(ep.parameters),
            headers=dict(ep.headers),
        )
