"""Global exception handlers for consistent error responses.

Design:
- RateLimitExceeded -> 429 with X-RateLimit-*/Retry-After and {error, retryAfter}
- AuthenticationAppError -> 403 (no caller could be determined)
- ConfigurationError -> 500 (an unregistered scope reached request time)
- Other AppError -> 400
- Unexpected Exception -> generic 500 (safety net)
- Error responses other than 429 carry the request_id for tracing
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from admission.core.admission import rate_limit_headers
from admission.core.errors import AppError, AuthenticationAppError, ConfigurationError, RateLimitExceeded
from admission.core.logging import get_request_id
from admission.schemas.rate_limit import RateLimitErrorResponse

logger = logging.getLogger(__name__)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Render a denial as the documented 429 contract.

    Args:
        request: FastAPI request object.
        exc: Denial carrying the limiter decision.

    Returns:
        JSONResponse with status 429, rate limit headers and Retry-After.
    """
    headers = rate_limit_headers(exc.decision)
    body = RateLimitErrorResponse(error=exc.message, retry_after=int(headers["Retry-After"]))

    return JSONResponse(
        status_code=429,
        content=body.model_dump(by_alias=True),
        headers=headers,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with appropriate status code and error details.
    """
    status_code = 400
    if isinstance(exc, AuthenticationAppError):
        status_code = 403
    elif isinstance(exc, ConfigurationError):
        status_code = 500

    log = logger.error if status_code >= 500 else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_msg": exc.message,
            "status_code": status_code,
            "request_path": request.url.path,
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    # Configuration details describe the server, not the request
    if exc.details and status_code < 500:
        error_content["details"] = exc.details

    return JSONResponse(status_code=status_code, content={"error": error_content})


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors.

    Logs the failure and returns a generic message; no exception text or
    traceback reaches the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the app."""
    app.exception_handler(RateLimitExceeded)(rate_limit_exceeded_handler)
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
