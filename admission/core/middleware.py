"""HTTP middleware for request correlation and access logging.

The middleware:
- Accepts an incoming request id header or generates a UUID
- Stores it in contextvars so every log line of the request carries it
- Echoes it, plus the total duration, on the response
- Emits one ``request.completed`` log per request with the admission outcome
- Gives back the admission unit of successful requests on scopes that only
  count failures

Usage:
    app.middleware("http")(rate_limit_refund_middleware)
    app.middleware("http")(request_id_middleware)
"""

from __future__ import annotations

import logging
import time
import uuid

from fastapi import Request, Response
from starlette.concurrency import run_in_threadpool

from admission.core.config import settings
from admission.core.logging import clear_request_id, set_request_id

logger = logging.getLogger(__name__)


async def request_id_middleware(request: Request, call_next) -> Response:
    """Propagate a correlation id and log the completed request.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        The downstream response with the request id and
        ``X-Request-Duration-ms`` headers added.
    """

    header_name = settings.log.request_id_header
    request_id = request.headers.get(header_name) or str(uuid.uuid4())
    set_request_id(request_id)
    start = time.perf_counter()
    try:
        response: Response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        decision = getattr(request.state, "rate_limit", None)
        logger.info(
            "request.completed",
            extra={
                "request_method": request.method,
                "request_path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
                "rate_limit_scope": decision.scope if decision else None,
                "used_burst": decision.used_burst if decision else None,
            },
        )
    finally:
        clear_request_id()

    response.headers[header_name] = request_id
    response.headers.setdefault("X-Request-Duration-ms", f"{duration_ms:.2f}")
    return response


async def rate_limit_refund_middleware(request: Request, call_next) -> Response:
    """Give back the admission unit of successful requests on opt-in scopes.

    ``enforce`` leaves a ``rate_limit_refund`` callable on the request state
    for policies with ``skip_successful_requests``; it runs only when the
    handler answered below 400. The store call may block on Redis, so it runs
    in the threadpool like the admission dependency itself.
    """

    response: Response = await call_next(request)

    refund = getattr(request.state, "rate_limit_refund", None)
    if refund is not None and response.status_code < 400:
        await run_in_threadpool(refund)
    return response
