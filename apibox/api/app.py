"""FastAPI application — apibox proxy service."""
from contextlib import asynccontextmanager
from typing import Callable

import structlog
from fastapi import FastAPI

from apibox import __version__
from apibox.api import history, proxy, system
from apibox.api.errors import (
    config_not_found_handler,
    transport_error_handler,
    validation_error_handler,
    value_error_handler,
)
from apibox.core.config import Settings, settings as default_settings
from apibox.core.container import Container, build_container
from apibox.core.errors import ConfigNotFound, TransportError, ValidationError
from apibox.core.logging import configure_logging

logger = structlog.get_logger()


def create_app(
    settings: Settings | None = None,
    container_factory: Callable[[Settings], Container] = build_container,
) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings)
        container = container_factory(settings)
        app.state.container = container
        await container.start()
        logger.info(
            "startup",
            version=__version__,
            apis=container.registry.api_names(),
            collector=settings.collector_enabled,
            persistence=container.persistent.enabled,
        )
        yield
        await container.close()
        logger.info("shutdown")

    app = FastAPI(
        title="ApiBox",
        version=__version__,
        description="Caching reverse proxy for upstream HTTP APIs",
        lifespan=lifespan,
    )

    # History and system routes come first; /api/{name}/{endpoint} is a catch-all.
    app.include_router(system.router)
    app.include_router(history.router)
    app.include_router(proxy.router)

    app.add_exception_handler(ConfigNotFound, config_not_found_handler)
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(TransportError, transport_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    return app


app = create_app()
