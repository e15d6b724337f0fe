from __future__ import annotations

from fastapi import APIRouter, Depends

from admission.core.admission import require_admission
from admission.core.policies import Scope
from admission.core.rate_limit import get_policy_registry
from admission.schemas.rate_limit import PolicyListResponse, PolicyOut, RateLimitErrorResponse

router = APIRouter(tags=["Rate limits"])


@router.get(
    "/limits",
    response_model=PolicyListResponse,
    dependencies=[Depends(require_admission(Scope.IP))],
    responses={429: {"model": RateLimitErrorResponse}},
)
def list_policies() -> PolicyListResponse:
    """List the rate limit policy table loaded at startup."""

    return PolicyListResponse(
        policies=[PolicyOut.from_policy(policy) for policy in get_policy_registry()]
    )
