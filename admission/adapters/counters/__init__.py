"""Counter store adapters.

The rate limiter talks to a single ``AbstractCounterStore``. Deployments with
a shared Redis wrap it together with the in-process store in a
``FallbackCounterStore``; single-instance deployments use the local store
alone.
"""

from admission.adapters.counters.base import AbstractCounterStore, CounterKey, CounterRecord
from admission.adapters.counters.fallback import FallbackCounterStore
from admission.adapters.counters.local import LocalCounterBackend
from admission.adapters.counters.redis_backend import RemoteCounterBackend

__all__ = [
    "AbstractCounterStore",
    "CounterKey",
    "CounterRecord",
    "FallbackCounterStore",
    "LocalCounterBackend",
    "RemoteCounterBackend",
]
