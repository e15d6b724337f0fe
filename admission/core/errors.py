"""Application-level exception types.

Only ``ConfigurationError`` is allowed to surface as a hard failure, and only
while policies are being registered at startup. ``BackendUnavailableError``
is recovered inside the rate limiter and never reaches a caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, NotRequired, TypedDict

if TYPE_CHECKING:
    from admission.services.rate_limiter import Decision


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    hint: str
    scope: str
    backend: str
    field: str
    value: Any
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationError(AppError):
    """Raised when a policy is invalid or an unregistered scope is requested."""


class AuthenticationAppError(AppError):
    """Raised when no caller can be determined for a policy that needs one."""


class BackendUnavailableError(AppError):
    """Raised by the remote counter store on timeouts and connection failures."""


class RateLimitExceeded(Exception):
    """Short-circuits a request whose admission decision was a denial.

    Not an ``AppError``: a denial is an expected outcome. It exists only so the
    HTTP layer can skip the downstream handler and render the 429 contract.
    """

    def __init__(self, decision: "Decision", message: str) -> None:
        super().__init__(message)
        self.decision = decision
        self.message = message
