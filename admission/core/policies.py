"""Rate limit policies and the registry that resolves them.

The registry is built once at startup from the built-in table plus optional
overrides from settings. Every lookup of an unknown scope raises
``ConfigurationError``: an unregistered route must never be served with an
implicit or permissive default.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping

from admission.core.errors import ConfigurationError

BURST_SUFFIX = ":burst"
DEFAULT_DENIAL_MESSAGE = "Rate limit exceeded. Try again later."


class Scope(str, Enum):
    """Known route/action classes."""

    AUTH_LOGIN = "auth:login"
    AUTH_SIGNUP = "auth:signup"
    PASSWORD_RESET = "password:reset"
    API_CLIENTS = "api:clients"
    API_PROJECTS = "api:projects"
    API_TIME_ENTRIES = "api:time-entries"
    API_INVOICES = "api:invoices"
    UPLOADS = "uploads"
    EXPORTS = "exports"
    IP = "ip"


@dataclass(frozen=True)
class Policy:
    """Limits applied to one scope.

    Attributes:
        scope_name: Route/action class the policy governs.
        max_requests: Requests allowed per window (inclusive).
        window_ms: Fixed window length in milliseconds.
        burst_max_requests: Extra requests allowed once the window is exhausted.
        burst_window_ms: Window of the burst counter; shorter than ``window_ms``.
        requires_principal: Whether an authenticated caller is mandatory.
        skip_successful_requests: Give the unit back when the handler answers
            with a status below 400, so only failed attempts use up the budget.
        message: Error text returned with a 429.
    """

    scope_name: str
    max_requests: int
    window_ms: int
    burst_max_requests: int = 0
    burst_window_ms: int | None = None
    requires_principal: bool = False
    skip_successful_requests: bool = False
    message: str = DEFAULT_DENIAL_MESSAGE

    def __post_init__(self) -> None:
        if not self.scope_name:
            self._invalid("scope_name", self.scope_name, "scope_name must be a non-empty string")
        if self.max_requests < 1:
            self._invalid("max_requests", self.max_requests, "max_requests must be >= 1")
        if self.window_ms < 1:
            self._invalid("window_ms", self.window_ms, "window_ms must be >= 1")
        if self.burst_max_requests < 0:
            self._invalid("burst_max_requests", self.burst_max_requests, "burst_max_requests must be >= 0")
        if self.burst_max_requests > 0:
            if self.burst_window_ms is None or self.burst_window_ms < 1:
                self._invalid("burst_window_ms", self.burst_window_ms, "burst_window_ms must be >= 1 when a burst is configured")
            if self.burst_window_ms >= self.window_ms:
                self._invalid("burst_window_ms", self.burst_window_ms, "burst_window_ms must be shorter than window_ms")

    def _invalid(self, field: str, value: Any, message: str) -> None:
        raise ConfigurationError(
            code="invalid_policy",
            message=f"{self.scope_name or '<unnamed>'}: {message}",
            details={"scope": self.scope_name, "field": field, "value": value},
        )

    @property
    def has_burst(self) -> bool:
        return self.burst_max_requests > 0

    @property
    def burst_scope(self) -> str:
        return self.scope_name + BURST_SUFFIX

    @classmethod
    def from_mapping(cls, scope_name: str, raw: Mapping[str, Any], *, base: "Policy | None" = None) -> "Policy":
        """Build a policy from a ``{requests, window_ms, burst_requests?, burst_window_ms?}`` mapping.

        Fields absent from ``raw`` are taken from ``base`` when given.
        """
        known = {
            "requests", "window_ms", "burst_requests", "burst_window_ms",
            "requires_principal", "skip_successful", "message",
        }
        unknown = set(raw) - known
        if unknown:
            raise ConfigurationError(
                code="invalid_policy",
                message=f"{scope_name}: unknown policy fields {sorted(unknown)}",
                details={"scope": scope_name, "field": ",".join(sorted(unknown))},
            )

        def pick(name: str, attr: str, default: Any) -> Any:
            if name in raw:
                return raw[name]
            return getattr(base, attr) if base is not None else default

        try:
            burst_window_ms = pick("burst_window_ms", "burst_window_ms", None)
            return cls(
                scope_name=scope_name,
                max_requests=int(pick("requests", "max_requests", 0)),
                window_ms=int(pick("window_ms", "window_ms", 0)),
                burst_max_requests=int(pick("burst_requests", "burst_max_requests", 0)),
                burst_window_ms=int(burst_window_ms) if burst_window_ms is not None else None,
                requires_principal=bool(pick("requires_principal", "requires_principal", False)),
                skip_successful_requests=bool(pick("skip_successful", "skip_successful_requests", False)),
                message=str(pick("message", "message", DEFAULT_DENIAL_MESSAGE)),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                code="invalid_policy",
                message=f"{scope_name}: {exc}",
                details={"scope": scope_name},
            ) from exc


_API_BURST = {"burst_max_requests": 10, "burst_window_ms": 5_000, "requires_principal": True}

DEFAULT_POLICIES: tuple[Policy, ...] = (
    Policy(
        Scope.AUTH_LOGIN.value, 5, 300_000,
        skip_successful_requests=True,
        message="Too many authentication attempts, please try again later.",
    ),
    Policy(
        Scope.AUTH_SIGNUP.value, 3, 3_600_000,
        message="Too many sign-up attempts, please try again later.",
    ),
    Policy(
        Scope.PASSWORD_RESET.value, 3, 3_600_000,
        message="Too many password reset requests, please try again later.",
    ),
    Policy(Scope.API_CLIENTS.value, 200, 60_000, **_API_BURST),
    Policy(Scope.API_PROJECTS.value, 200, 60_000, **_API_BURST),
    Policy(Scope.API_TIME_ENTRIES.value, 300, 60_000, **_API_BURST),
    Policy(Scope.API_INVOICES.value, 100, 60_000, **_API_BURST),
    Policy(Scope.UPLOADS.value, 20, 60_000, requires_principal=True),
    Policy(
        Scope.EXPORTS.value, 10, 60_000, requires_principal=True,
        message="Export rate limit exceeded, please slow down.",
    ),
    Policy(
        Scope.IP.value, 60, 60_000,
        message="Too many requests from this IP address.",
    ),
)


class PolicyRegistry:
    """Immutable mapping of scope name to policy."""

    def __init__(self, policies: Iterable[Policy]) -> None:
        table: dict[str, Policy] = {}
        for policy in policies:
            if policy.scope_name in table:
                raise ConfigurationError(
                    code="duplicate_policy",
                    message=f"Policy for scope '{policy.scope_name}' registered twice",
                    details={"scope": policy.scope_name},
                )
            table[policy.scope_name] = policy
        self._policies: Mapping[str, Policy] = MappingProxyType(table)

    def resolve(self, scope: Scope | str) -> Policy:
        """Return the policy registered for ``scope``.

        Raises:
            ConfigurationError: If no policy is registered under that name.
        """
        name = scope.value if isinstance(scope, Scope) else scope
        policy = self._policies.get(name)
        if policy is None:
            raise ConfigurationError(
                code="unknown_scope",
                message=f"No rate limit policy registered for scope '{name}'",
                details={"scope": name, "hint": "Add the scope to the policy table before routing to it"},
            )
        return policy

    def scopes(self) -> list[str]:
        return sorted(self._policies)

    def __contains__(self, scope: object) -> bool:
        name = scope.value if isinstance(scope, Scope) else scope
        return name in self._policies

    def __iter__(self) -> Iterator[Policy]:
        return iter(self._policies[name] for name in self.scopes())

    def __len__(self) -> int:
        return len(self._policies)


def build_registry(overrides: Mapping[str, Mapping[str, Any]] | None = None) -> PolicyRegistry:
    """Build the registry from the built-in table plus configured overrides.

    Args:
        overrides: Scope name -> partial policy mapping. Only known scopes may
            be overridden; missing fields keep their built-in values.

    Raises:
        ConfigurationError: On unknown scopes or invalid policy values.
    """
    policies = {policy.scope_name: policy for policy in DEFAULT_POLICIES}
    for scope_name, raw in (overrides or {}).items():
        if scope_name not in policies:
            raise ConfigurationError(
                code="unknown_scope",
                message=f"Override given for unregistered scope '{scope_name}'",
                details={"scope": scope_name},
            )
        policies[scope_name] = Policy.from_mapping(scope_name, raw, base=policies[scope_name])
    return PolicyRegistry(policies.values())
