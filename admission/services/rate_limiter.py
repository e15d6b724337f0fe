"""Fixed-window rate limiter with an optional burst allowance.

The limiter turns a (identity, policy) pair into a ``Decision``. It never
raises because of the counter store: the configured store is expected to
fall back internally, and if a failure still escapes, the check fails open.

Algorithm:
1. Count the call in the primary window ``(scope, identity, window_start)``.
2. ``count <= max_requests`` -> allowed (the Nth call is allowed, N+1th is not).
3. Otherwise, when the policy has a burst, count the call in the shorter
   ``scope:burst`` window and allow it if that count is within the burst.
4. Otherwise deny, with the reset time of the *primary* window.

Concurrent callers that push a counter past the ceiling are all denied for
the units above it; the store's atomic increment gives every caller a
distinct count, so no locking happens here.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from admission.adapters.counters.base import AbstractCounterStore, CounterKey
from admission.core.errors import BackendUnavailableError
from admission.core.identity import hash_identifier
from admission.core.policies import Policy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decision:
    """Outcome of an admission check.

    Attributes:
        allowed: Whether the request may proceed.
        limit: The policy's ``max_requests``.
        remaining: ``max(0, limit - count)`` of the primary window.
        reset_at_ms: Epoch milliseconds when the primary window closes.
        used_burst: True only when the call was admitted by the burst allowance.
        retry_after_seconds: Seconds until ``reset_at_ms`` when denied, else None.
        scope: Scope of the policy that produced the decision.
        backend: Name of the counter store that served the check.
        counter_key: Counter this check was charged to; None when nothing
            was counted (fail-open or denial).
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at_ms: int
    used_burst: bool = False
    retry_after_seconds: int | None = None
    scope: str = ""
    backend: str = ""
    counter_key: CounterKey | None = field(default=None, repr=False, compare=False)

    @property
    def reset_at(self) -> int:
        """UNIX epoch seconds when the primary window resets."""
        return math.ceil(self.reset_at_ms / 1000)


class RateLimiter:
    """Checks identities against policies using a counter store."""

    def __init__(
        self,
        store: AbstractCounterStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            store: Counter store (usually a FallbackCounterStore or the local backend).
            clock: Time source returning UNIX time in seconds.
        """
        self._store = store
        self._clock = clock
        self._lock = threading.Lock()
        self._counters = {"allowed": 0, "denied": 0, "burst_allowed": 0, "refunded": 0, "backend_errors": 0}

    @property
    def store(self) -> AbstractCounterStore:
        return self._store

    def _bump(self, name: str) -> None:
        with self._lock:
            self._counters[name] += 1

    def _count(self, key: CounterKey, window_ms: int) -> int | None:
        """Increment ``key``; None when the store failed."""
        try:
            return self._store.increment_and_get(key, window_ms)
        except BackendUnavailableError as exc:
            self._bump("backend_errors")
            logger.error(
                "rate_limit.backend_error",
                extra={"error_code": exc.code, "error_msg": exc.message, "scope": key.scope},
            )
            return None

    def check(self, identity: str, policy: Policy) -> Decision:
        """Count one request for ``identity`` under ``policy`` and decide.

        Args:
            identity: Caller principal (``user:..``, ``key:..``, ``ip:..``).
            policy: Policy of the route being admitted.

        Returns:
            Decision with allowance and header metadata.
        """
        now_ms = int(self._clock() * 1000)
        primary_key = CounterKey.for_window(policy.scope_name, identity, now_ms, policy.window_ms)
        reset_at_ms = primary_key.reset_at_ms(policy.window_ms)
        log_fields = {
            "scope": policy.scope_name,
            "identity_hash": hash_identifier(identity),
            "limit": policy.max_requests,
            "backend": self._store.name,
        }

        count = self._count(primary_key, policy.window_ms)
        if count is None:
            # Fail open: a store outage must not reject traffic.
            self._bump("allowed")
            return Decision(
                allowed=True,
                limit=policy.max_requests,
                remaining=policy.max_requests,
                reset_at_ms=reset_at_ms,
                scope=policy.scope_name,
                backend=self._store.name,
            )

        remaining = max(0, policy.max_requests - count)
        if count <= policy.max_requests:
            self._bump("allowed")
            logger.debug("rate_limit.allowed", extra={**log_fields, "remaining": remaining})
            return Decision(
                allowed=True,
                limit=policy.max_requests,
                remaining=remaining,
                reset_at_ms=reset_at_ms,
                scope=policy.scope_name,
                backend=self._store.name,
                counter_key=primary_key,
            )

        if policy.has_burst:
            burst_key = CounterKey.for_window(policy.burst_scope, identity, now_ms, policy.burst_window_ms)
            burst_count = self._count(burst_key, policy.burst_window_ms)
            if burst_count is not None and burst_count <= policy.burst_max_requests:
                self._bump("burst_allowed")
                logger.warning(
                    "rate_limit.burst_allowed",
                    extra={
                        **log_fields,
                        "burst_limit": policy.burst_max_requests,
                        "burst_remaining": policy.burst_max_requests - burst_count,
                    },
                )
                return Decision(
                    allowed=True,
                    limit=policy.max_requests,
                    remaining=0,
                    reset_at_ms=reset_at_ms,
                    used_burst=True,
                    scope=policy.scope_name,
                    backend=self._store.name,
                    counter_key=burst_key,
                )

        retry_after = max(1, math.ceil((reset_at_ms - now_ms) / 1000))
        self._bump("denied")
        logger.info(
            "rate_limit.exceeded",
            extra={**log_fields, "remaining": remaining, "retry_after_s": retry_after},
        )
        return Decision(
            allowed=False,
            limit=policy.max_requests,
            remaining=remaining,
            reset_at_ms=reset_at_ms,
            retry_after_seconds=retry_after,
            scope=policy.scope_name,
            backend=self._store.name,
        )

    def refund(self, policy: Policy, decision: Decision) -> None:
        """Give back the unit an admitted request was charged.

        Used for policies that only count unsuccessful requests. Store
        failures are logged, never raised.
        """
        if not decision.allowed or decision.counter_key is None:
            return

        window_ms = policy.burst_window_ms if decision.used_burst else policy.window_ms
        try:
            self._store.decrement(decision.counter_key, window_ms)
        except BackendUnavailableError as exc:
            self._bump("backend_errors")
            logger.error(
                "rate_limit.refund_failed",
                extra={"error_code": exc.code, "scope": policy.scope_name},
            )
            return

        self._bump("refunded")
        logger.debug(
            "rate_limit.refunded",
            extra={"scope": decision.counter_key.scope, "used_burst": decision.used_burst},
        )

    def reset(self, identity: str, policy: Policy) -> None:
        """Forget the current-window counters of ``identity`` under ``policy``.

        Clears the primary counter and, when configured, the burst counter.
        Store failures are logged, never raised.
        """
        now_ms = int(self._clock() * 1000)
        keys = [CounterKey.for_window(policy.scope_name, identity, now_ms, policy.window_ms)]
        if policy.has_burst:
            keys.append(CounterKey.for_window(policy.burst_scope, identity, now_ms, policy.burst_window_ms))

        for key in keys:
            try:
                self._store.delete(key)
            except BackendUnavailableError as exc:
                self._bump("backend_errors")
                logger.error("rate_limit.reset_failed", extra={"error_code": exc.code, "scope": key.scope})

        logger.info(
            "rate_limit.reset",
            extra={"scope": policy.scope_name, "identity_hash": hash_identifier(identity)},
        )

    def stats(self) -> dict[str, object]:
        """Return decision counters and the store's own metrics."""
        with self._lock:
            counters: dict[str, object] = dict(self._counters)
        counters["store"] = self._store.stats()
        return counters
