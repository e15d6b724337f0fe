"""Admission control at the HTTP boundary.

Routes opt in with a dependency naming their scope::

    @router.get("/time-entries", dependencies=[Depends(require_admission(Scope.API_TIME_ENTRIES))])

The scope is resolved when the route is declared, so a typo in a scope name
fails at import time rather than on the first request. At request time the
dependency resolves the caller, asks the limiter, annotates the response
with the ``X-RateLimit-*`` headers and, on denial, short-circuits with
``RateLimitExceeded`` before the route handler runs.

The dependency is a plain ``def``: FastAPI runs it in the threadpool, so the
bounded Redis round trip never blocks the event loop.
"""

from __future__ import annotations

import math
import time
from functools import partial
from typing import Callable

from fastapi import Request, Response

from admission.core.config import settings
from admission.core.errors import RateLimitExceeded
from admission.core.identity import resolve_identity
from admission.core.policies import Policy, PolicyRegistry, Scope
from admission.core.rate_limit import get_policy_registry, get_rate_limiter
from admission.services.rate_limiter import Decision, RateLimiter


def rate_limit_headers(decision: Decision, *, now: float | None = None) -> dict[str, str]:
    """Build the rate limit headers for a decision.

    ``Retry-After`` is only included for denials.
    """
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.reset_at),
    }
    if not decision.allowed:
        if decision.retry_after_seconds is not None:
            retry_after = decision.retry_after_seconds
        else:
            current = time.time() if now is None else now
            retry_after = max(1, math.ceil(decision.reset_at_ms / 1000 - current))
        headers["Retry-After"] = str(retry_after)
    return headers


class AdmissionMiddleware:
    """Resolves callers and policies and asks the limiter for a decision."""

    def __init__(self, limiter: RateLimiter, registry: PolicyRegistry) -> None:
        self._limiter = limiter
        self._registry = registry

    @property
    def registry(self) -> PolicyRegistry:
        return self._registry

    def admit(self, request: Request, policy: Policy) -> Decision:
        """Decide whether ``request`` may proceed under ``policy``.

        Raises:
            AuthenticationAppError: If the policy needs a principal and none is present.
        """
        identity = resolve_identity(request, policy)
        return self._limiter.check(identity, policy)

    def enforce(self, request: Request, response: Response, scope: Scope | str) -> Decision:
        """Admit or reject; annotate ``response`` when admitted.

        Raises:
            RateLimitExceeded: If the decision is a denial.
        """
        policy = self._registry.resolve(scope)
        decision = self.admit(request, policy)
        request.state.rate_limit = decision
        if not decision.allowed:
            raise RateLimitExceeded(decision, policy.message)

        if policy.skip_successful_requests:
            # Settled by rate_limit_refund_middleware once the status is known
            request.state.rate_limit_refund = partial(self._limiter.refund, policy, decision)

        response.headers.update(rate_limit_headers(decision))
        return decision


def get_admission() -> AdmissionMiddleware:
    return AdmissionMiddleware(get_rate_limiter(), get_policy_registry())


def require_admission(scope: Scope | str) -> Callable[[Request, Response], None]:
    """Create a FastAPI dependency enforcing the policy of ``scope``.

    Raises:
        ConfigurationError: Immediately, if ``scope`` is not registered.
    """
    policy = get_policy_registry().resolve(scope)

    def enforce_admission(request: Request, response: Response) -> None:
        # Disabled: the route answers without any X-RateLimit-* headers
        if not settings.app.rate_limit_enabled:
            return
        get_admission().enforce(request, response, policy.scope_name)

    return enforce_admission
