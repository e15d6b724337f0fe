"""Pydantic schemas for admission-control responses."""

from __future__ import annotations

from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field

from admission.core.policies import Policy


class RateLimitErrorResponse(BaseModel):
    """Body of a 429 response."""

    model_config = ConfigDict(populate_by_name=True)

    error: str = Field(..., description="Human-readable reason for the rejection.")
    retry_after: int = Field(
        ...,
        alias="retryAfter",
        description="Seconds until the limiting window resets (mirrors Retry-After).",
    )


class PolicyOut(BaseModel):
    """Public view of one rate limit policy."""

    scope: str = Field(..., description="Route/action class the policy governs.")
    requests: int = Field(..., description="Requests allowed per window.")
    window_ms: int = Field(..., description="Window length in milliseconds.")
    burst_requests: int = Field(
        0, description="Additional requests allowed once the window is exhausted."
    )
    burst_window_ms: int | None = Field(
        None, description="Window of the burst allowance in milliseconds."
    )
    requires_principal: bool = Field(
        False, description="Whether anonymous (IP-only) callers are rejected."
    )
    skip_successful: bool = Field(
        False, description="Whether only unsuccessful (status >= 400) requests are counted."
    )

    @classmethod
    def from_policy(cls, policy: Policy) -> "PolicyOut":
        return cls(
            scope=policy.scope_name,
            requests=policy.max_requests,
            window_ms=policy.window_ms,
            burst_requests=policy.burst_max_requests,
            burst_window_ms=policy.burst_window_ms if policy.has_burst else None,
            requires_principal=policy.requires_principal,
            skip_successful=policy.skip_successful_requests,
        )


class PolicyListResponse(BaseModel):
    policies: List[PolicyOut] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Liveness plus operator-facing limiter metrics."""

    status: Literal["ok"] = "ok"
    remote_store: Literal["up", "down", "disabled"] = Field(
        ..., description="Reachability of the shared counter store."
    )
    rate_limit: Dict[str, Any] = Field(
        default_factory=dict,
        description="Decision counters, fallback events and local map size.",
    )
