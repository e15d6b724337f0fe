from __future__ import annotations

"""Application factory for the FastAPI app.

Centralizes app construction (logging, lifespan, middleware, handlers,
routers) so tests can build fresh instances.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from admission.api.routes import health_router, limits_router
from admission.core.config import settings
from admission.core.exception_handlers import setup_exception_handlers
from admission.core.logging import configure_logging
from admission.core.middleware import rate_limit_refund_middleware, request_id_middleware
from admission.core.rate_limit import get_local_backend, get_policy_registry, get_rate_limiter
from admission.services.reaper import Reaper


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the limiter eagerly and run the local-counter reaper."""
    # Fail startup on bad policy configuration, not on the first request
    get_policy_registry()
    get_rate_limiter()

    reaper = Reaper(get_local_backend(), interval_seconds=settings.app.reaper_interval_seconds)
    reaper.start()
    app.state.reaper = reaper
    try:
        yield
    finally:
        await reaper.stop()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance.

    Returns:
        Configured FastAPI app with middleware, handlers and routers.
    """
    # Logging first so subsequent init logs are formatted as desired
    configure_logging(settings.log)

    app = FastAPI(
        title="Admission Control API",
        description=(
            "Per-principal fixed-window rate limiting with burst allowances, "
            "shared across instances through Redis and degrading to "
            "per-instance limits when the shared store is unreachable."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )

    app.middleware("http")(rate_limit_refund_middleware)
    app.middleware("http")(request_id_middleware)

    setup_exception_handlers(app)

    app.include_router(limits_router, prefix="/v1")
    app.include_router(health_router)

    return app
