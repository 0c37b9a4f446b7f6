"""Unit tests for the API registry and request parameter parsing."""
import json

import pytest

from apibox.core.apis.registry import ApiRegistry
from apibox.core.proxy.params import parse_request_params


@pytest.fixture
def registry_file(tmp_path):
    path = tmp_path / "apis.json"
    path.write_text(json.dumps({
        "weather": {
            "name": "OpenWeather API",
            "baseUrl": "https://api.openweathermap.org/data/2.5",
            "auth": {"type": "apikey", "key": "appid", "value": "ENV:TEST_WEATHER_KEY"},
            "endpoints": {
                "current": {
                    "path": "/weather",
                    "method": "get",
                    "cacheDuration": 600000,
                    "parameters": {"q": {"type": "query", "required": True}},
                },
            },
        },
    }))
    return path


class TestLoading:

    def test_load_from_file(self, registry_file, monkeypatch):
        monkeypatch.setenv("TEST_WEATHER_KEY", "secret")
        registry = ApiRegistry(str(registry_file))
        registry.load()

        assert registry.api_names() == ["weather"]
        assert registry.get_config("weather").auth.value == "secret"

    def test_missing_env_keeps_placeholder(self, registry_file, monkeypatch):
        monkeypatch.delenv("TEST_WEATHER_KEY", raising=False)
        registry = ApiRegistry(str(registry_file))
        registry.load()
        assert registry.get_config("weather").auth.value == "ENV:TEST_WEATHER_KEY"

    def test_missing_file_falls_back_to_defaults(self, tmp_path):
        registry = ApiRegistry(str(tmp_path / "absent.json"))
        registry.load()
        assert registry.api_names() == ["forex", "httpbin"]

    def test_invalid_json_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "apis.json"
        path.write_text("{not json")
        registry = ApiRegistry(str(path))
        registry.load()
        assert registry.has_api("forex")

    def test_schema_error_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "apis.json"
        path.write_text(json.dumps({"broken": {"endpoints": {}}}))  # no baseUrl
        registry = ApiRegistry(str(path))
        registry.load()
        assert not registry.has_api("broken")
        assert registry.has_api("httpbin")

    def test_reload_picks_up_changes(self, registry_file):
        registry = ApiRegistry(str(registry_file))
        registry.load()
        registry_file.write_text(json.dumps({"other": {"baseUrl": "https://x.example", "endpoints": {}}}))
        registry.reload()
        assert registry.api_names() == ["other"]


class TestResolve:

    def test_resolve_descriptor(self, registry):
        descriptor = registry.resolve("forex", "quote")
        assert descriptor.method == "GET"
        assert descriptor.cache_duration_ms == 5000
        assert descriptor.caching_enabled
        assert descriptor.required_params == {"instrument": "path", "currency": "path"}
        assert descriptor.path_param_names == ["instrument", "currency"]

    def test_method_is_upper_cased(self, registry_file):
        registry = ApiRegistry(str(registry_file))
        registry.load()
        assert registry.resolve("weather", "current").method == "GET"

    def test_resolve_misses(self, registry):
        assert registry.resolve("nope", "quote") is None
        assert registry.resolve("forex", "nope") is None

    def test_has_api_and_endpoint(self, registry):
        assert registry.has_api("forex")
        assert not registry.has_api("nope")
        assert registry.has_endpoint("forex", "quote")
        assert not registry.has_endpoint("forex", "bid")
        assert not registry.has_endpoint("nope", "quote")

    def test_uncached_endpoint(self, registry):
        assert not registry.resolve("httpbin", "get").caching_enabled


class TestParseRequestParams:

    def test_segments_fill_path_params_in_order(self, registry):
        descriptor = registry.resolve("forex", "quote")
        params = parse_request_params(descriptor, ["XAU", "USD"], {}, {})
        assert params.path_params == {"instrument": "XAU", "currency": "USD"}

    def test_surplus_segments_ignored(self, registry):
        descriptor = registry.resolve("forex", "quote")
        params = parse_request_params(descriptor, ["XAU", "USD", "extra"], {}, {})
        assert params.path_params == {"instrument": "XAU", "currency": "USD"}

    def test_only_declared_headers_are_read(self, registry):
        descriptor = registry.resolve("secure", "item")
        params = parse_request_params(
            descriptor,
            ["7"],
            {"lang": "en"},
            {"x-tenant": "acme", "cookie": "session=1"},
        )
        assert params.headers == {"X-Tenant": "acme"}
        assert params.query_params == {"lang": "en"}
