"""Pydantic models for the upstream API registry file (config/apis.json)."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ── Registry file ────────────────────────────────────────────────────────


class AuthConfig(_CamelModel):
    type: Literal["none", "bearer", "apikey", "basic"] = "none"
    key: str | None = None          # query-string name for apikey auth
    header: str | None = None       # header name for apikey auth
    value: str | None = None        # may be "ENV:NAME" in the file


class ParameterConfig(_CamelModel):
    type: Literal["path", "query", "header"]
    required: bool = False
    description: str = ""


class EndpointConfig(_CamelModel):
    path: str
    method: str = "GET"
    cache_duration: int = Field(0, alias="cacheDuration")  # ms; 0 disables caching
    description: str = ""
    parameters: dict[str, ParameterConfig] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)


class ApiConfig(_CamelModel):
    name: str = ""
    description: str = ""
    base_url: str = Field(alias="baseUrl")
    auth: AuthConfig = Field(default_factory=AuthConfig)
    endpoints: dict[str, EndpointConfig] = Field(default_factory=dict)


# ── Resolved view handed to the proxy executor ───────────────────────────


@dataclass(frozen=True)
class EndpointDescriptor:
    api_name:          str
    endpoint:          str
    base_url:          str
    path_template:     str
    method:            str
    cache_duration_ms: int
    auth:              AuthConfig
    parameters:        dict[str, ParameterConfig] = field(default_factory=dict)
    headers:           dict[str, str] = field(default_factory=dict)

    @property
    def required_params(self) -> dict[str, str]:
        """name -> location for every required parameter."""
        return {name: p.type for name, p in self.parameters.items() if p.required}

    @property
    def path_param_names(self) -> list[str]:
        return [name for name, p in self.parameters.items() if p.type == "path"]

    @property
    def header_param_names(self) -> list[str]:
        return [name for name, p in self.parameters.items() if p.type == "header"]

    @property
    def caching_enabled(self) -> bool:
        return self.cache_duration_ms > 0
