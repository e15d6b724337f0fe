"""Process-wide wiring of the admission-control components.

Design goals:
- Minimal coupling: routes depend on ``require_admission`` only.
- Swap-friendly: the counter store is chosen from settings (shared Redis
  with local fallback, or local only).
- One instance per process: counters must survive across requests, so the
  components are cached in-module. ``reset_rate_limit_state`` rebuilds them
  (primarily for tests).
"""

from __future__ import annotations

import logging
import threading

from admission.adapters.counters.base import AbstractCounterStore
from admission.adapters.counters.fallback import FallbackCounterStore
from admission.adapters.counters.local import LocalCounterBackend
from admission.adapters.counters.redis_backend import RemoteCounterBackend
from admission.core.config import settings
from admission.core.policies import PolicyRegistry, build_registry
from admission.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

_lock = threading.Lock()
_registry: PolicyRegistry | None = None
_local_backend: LocalCounterBackend | None = None
_store: AbstractCounterStore | None = None
_limiter: RateLimiter | None = None


def get_policy_registry() -> PolicyRegistry:
    """Return the policy registry, building it from settings on first use.

    Raises:
        ConfigurationError: If configured overrides are invalid.
    """
    global _registry

    with _lock:
        if _registry is None:
            _registry = build_registry(settings.app.rate_limit_overrides)
            logger.info("policies.loaded", extra={"scopes": _registry.scopes()})
        return _registry


def get_local_backend() -> LocalCounterBackend:
    global _local_backend

    with _lock:
        if _local_backend is None:
            _local_backend = LocalCounterBackend(stripes=settings.app.lock_stripes)
        return _local_backend


def _build_store(local: LocalCounterBackend) -> AbstractCounterStore:
    if not settings.redis.enabled:
        logger.info("counter_store.configured", extra={"mode": "local_only"})
        return local

    logger.info(
        "counter_store.configured",
        extra={
            "mode": "remote_with_fallback",
            "redis_url": settings.redis.url,
            "socket_timeout_ms": settings.redis.socket_timeout_ms,
        },
    )
    return FallbackCounterStore(
        RemoteCounterBackend.from_settings(settings.redis),
        local,
        cooldown_seconds=settings.redis.failure_cooldown_seconds,
    )


def get_counter_store() -> AbstractCounterStore:
    global _store

    local = get_local_backend()
    with _lock:
        if _store is None:
            _store = _build_store(local)
        return _store


def get_rate_limiter() -> RateLimiter:
    """Return the process-wide rate limiter instance."""
    global _limiter

    store = get_counter_store()
    with _lock:
        if _limiter is None:
            _limiter = RateLimiter(store)
        return _limiter


def remote_store_status() -> str:
    """Report the shared store as ``up``, ``down`` or ``disabled``."""
    store = get_counter_store()
    if isinstance(store, FallbackCounterStore) and isinstance(store.primary, RemoteCounterBackend):
        return "up" if store.primary.ping() else "down"
    return "disabled"


def reset_rate_limit_state() -> None:
    """Drop every cached component so the next call rebuilds from settings."""
    global _registry, _local_backend, _store, _limiter

    with _lock:
        _registry = None
        _local_backend = None
        _store = None
        _limiter = None
