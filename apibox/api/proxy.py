"""Proxy endpoint — /api/{api_name}/{endpoint}/{...path params}."""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from apibox.api.deps import get_container
from apibox.core.container import Container
from apibox.core.errors import ConfigNotFound
from apibox.core.proxy.params import parse_request_params

router = APIRouter(tags=["Proxy"])

METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


async def _proxy(request: Request, api_name: str, endpoint: str, extra: str, container: Container):
    descriptor = container.registry.resolve(api_name, endpoint)
    if descriptor is None:
        raise ConfigNotFound(api_name, endpoint if container.registry.has_api(api_name) else None)

    if request.method != descriptor.method:
        return JSONResponse(
            status_code=405,
            content={
                "error": "Method not allowed",
                "code": "METHOD_NOT_ALLOWED",
                "details": {"expected": descriptor.method, "received": request.method},
            },
        )

    segments = [s for s in extra.split("/") if s]
    params = parse_request_params(descriptor, segments, request.query_params, request.headers)
    data = await container.executor.run(api_name, endpoint, params)
    return {"status": "success", "data": data}


@router.api_route("/api/{api_name}/{endpoint}", methods=METHODS)
async def proxy_root(request: Request, api_name: str, endpoint: str, container: Container = Depends(get_container)):
    """Forward a request to an endpoint without path parameters."""
    return await _proxy(request, api_name, endpoint, "", container)


@router.api_route("/api/{api_name}/{endpoint}/{extra:path}", methods=METHODS)
async def proxy_with_params(
    request: Request,
    api_name: str,
    endpoint: str,
    extra: str,
    container: Container = Depends(get_container),
):
    """Forward a request; extra path segments fill the endpoint's path parameters in order."""
    return await _proxy(request, api_name, endpoint, extra, container)
