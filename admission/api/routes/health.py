from __future__ import annotations

from fastapi import APIRouter

from admission.core.rate_limit import get_rate_limiter, remote_store_status
from admission.schemas.rate_limit import HealthResponse

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
def health_check() -> HealthResponse:
    """Health check endpoint.

    Reports liveness together with the limiter's operator metrics. A
    ``remote_store`` of ``down`` with growing ``fallback_events`` means limits
    are currently enforced per instance only.
    """

    return HealthResponse(
        remote_store=remote_store_status(),
        rate_limit=get_rate_limiter().stats(),
    )
