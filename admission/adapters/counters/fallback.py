"""Remote-then-local counter store.

Wraps the shared store and the process-local store behind the same
interface. A failing shared store degrades limiting to per-process precision
instead of rejecting traffic. Every degraded call is counted and logged,
because sustained fallback means cross-instance limits are not enforced.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from admission.adapters.counters.base import AbstractCounterStore, CounterKey
from admission.core.errors import BackendUnavailableError

logger = logging.getLogger(__name__)


class FallbackCounterStore(AbstractCounterStore):
    """Serve increments from ``primary`` and fall back to ``fallback`` on failure.

    After a primary failure the primary is skipped for ``cooldown_seconds`` so
    an outage costs one timeout per cooldown period rather than one per
    request. Calls served during the cooldown still count as fallback events.
    """

    name = "fallback"

    def __init__(
        self,
        primary: AbstractCounterStore,
        fallback: AbstractCounterStore,
        *,
        cooldown_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if cooldown_seconds < 0:
            raise ValueError("cooldown_seconds must be >= 0")

        self._primary = primary
        self._fallback = fallback
        self._cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._skip_primary_until = 0.0
        self._degraded = False
        self._fallback_events = 0
        self._primary_failures = 0

    @property
    def primary(self) -> AbstractCounterStore:
        return self._primary

    @property
    def fallback(self) -> AbstractCounterStore:
        return self._fallback

    @property
    def degraded(self) -> bool:
        return self._degraded

    def _primary_available(self) -> bool:
        return self._clock() >= self._skip_primary_until

    def _record_failure(self, key: CounterKey, exc: BackendUnavailableError) -> None:
        with self._lock:
            self._primary_failures += 1
            self._skip_primary_until = self._clock() + self._cooldown_seconds
            self._degraded = True
            failures = self._primary_failures

        logger.warning(
            "counter_store.primary_failed",
            extra={
                "error_code": exc.code,
                "error_msg": exc.message,
                "scope": key.scope,
                "primary_failures": failures,
                "cooldown_s": self._cooldown_seconds,
            },
        )

    def _record_success(self) -> None:
        if not self._degraded:
            return
        with self._lock:
            was_degraded, self._degraded = self._degraded, False
        if was_degraded:
            logger.info("counter_store.recovered", extra={"backend": self._primary.name})

    def increment_and_get(self, key: CounterKey, window_ms: int) -> int:
        if self._primary_available():
            try:
                count = self._primary.increment_and_get(key, window_ms)
            except BackendUnavailableError as exc:
                self._record_failure(key, exc)
            else:
                self._record_success()
                return count

        with self._lock:
            self._fallback_events += 1
            events = self._fallback_events

        logger.warning(
            "counter_store.fallback",
            extra={"scope": key.scope, "backend": self._fallback.name, "fallback_events": events},
        )
        return self._fallback.increment_and_get(key, window_ms)

    def decrement(self, key: CounterKey, window_ms: int) -> None:
        if self._primary_available():
            try:
                self._primary.decrement(key, window_ms)
            except BackendUnavailableError as exc:
                self._record_failure(key, exc)
            else:
                return
        self._fallback.decrement(key, window_ms)

    def delete(self, key: CounterKey) -> None:
        try:
            self._primary.delete(key)
        except BackendUnavailableError as exc:
            logger.warning(
                "counter_store.delete_failed",
                extra={"error_code": exc.code, "scope": key.scope, "backend": self._primary.name},
            )
        self._fallback.delete(key)

    def stats(self) -> dict[str, object]:
        with self._lock:
            return {
                "backend": self.name,
                "primary": self._primary.stats(),
                "fallback": self._fallback.stats(),
                "fallback_events": self._fallback_events,
                "primary_failures": self._primary_failures,
                "degraded": self._degraded,
            }
