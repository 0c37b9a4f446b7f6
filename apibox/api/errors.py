"""Global error handlers."""
from fastapi import Request
from fastapi.responses import JSONResponse

from apibox.core.errors import ConfigNotFound, TransportError, ValidationError


async def config_not_found_handler(request: Request, exc: ConfigNotFound):
    container = getattr(request.app.state, "container", None)
    details: dict = {"api": exc.api_name}
    if exc.endpoint is not None:
        details["endpoint"] = exc.endpoint
        cfg = container.registry.get_config(exc.api_name) if container else None
        if cfg is not None:
            details["available_endpoints"] = list(cfg.endpoints)
    elif container is not None:
        details["available_apis"] = container.registry.api_names()
    return JSONResponse(
        status_code=404,
        content={"error": str(exc), "code": "NOT_FOUND", "details": details},
    )


async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Parameter validation failed", "code": "VALIDATION_ERROR", "details": {"errors": exc.errors}},
    )


async def transport_error_handler(request: Request, exc: TransportError):
    return JSONResponse(
        status_code=502,
        content={"error": str(exc), "code": "UPSTREAM_ERROR", "details": {"status": exc.status}},
    )


async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(
        status_code=422,
        content={"error": str(exc), "code": "VALIDATION_ERROR", "details": {}},
    )
