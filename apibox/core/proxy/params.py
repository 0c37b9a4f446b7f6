"""Request parameters for a proxied call."""
from dataclasses import dataclass, field
from typing import Mapping

from apibox.core.apis.models import EndpointDescriptor


@dataclass
class RequestParams:
    path_params:  dict[str, str] = field(default_factory=dict)
    query_params: dict[str, str] = field(default_factory=dict)
    headers:      dict[str, str] = field(default_factory=dict)

    def location(self, kind: str) -> dict[str, str]:
        return {"path": self.path_params, "query": self.query_params, "header": self.headers}[kind]


def parse_request_params(
    descriptor: EndpointDescriptor,
    segments: list[str],
    query: Mapping[str, str],
    headers: Mapping[str, str],
) -> RequestParams:
    """
    Extra path segments fill path-type parameters in declaration order; the
    whole query string becomes query params; only header params the endpoint
    declares are read from the incoming headers.
    """
    path_params = dict(zip(descriptor.path_param_names, segments))
    lowered = {k.lower(): v for k, v in headers.items()}
    header_params = {
        name: lowered[name.lower()]
        for name in descriptor.header_param_names
        if name.lower() in lowered
    }
    return RequestParams(path_params=path_params, query_params=dict(query), headers=header_params)
