"""Process-local fixed-window counter store.

Notes:
- Per-process only: running N instances multiplies the effective limit by N.
  This is the accepted approximation while the shared store is unavailable.
- Thread-safe with lock striping: a key is guarded by one of a fixed number
  of locks chosen by its hash, so unrelated callers do not contend on a
  single mutex and the sweep never pauses all traffic.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

from admission.adapters.counters.base import AbstractCounterStore, CounterKey, CounterRecord


class LocalCounterBackend(AbstractCounterStore):
    """In-memory counter map keyed by ``CounterKey``.

    Expired records are overwritten lazily on the next increment and removed
    in bulk by :meth:`sweep_expired` (driven by the reaper).
    """

    name = "local"

    def __init__(
        self,
        *,
        stripes: int = 64,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the local backend.

        Args:
            stripes: Number of lock stripes guarding the map.
            clock: Time source returning UNIX time in seconds.

        Raises:
            ValueError: If stripes is not positive.
        """
        if stripes < 1:
            raise ValueError("stripes must be >= 1")

        self._locks = tuple(threading.Lock() for _ in range(stripes))
        self._records: dict[CounterKey, CounterRecord] = {}
        self._clock = clock
        self._swept_total = 0
        self._swept_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def _lock_for(self, key: CounterKey) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def increment_and_get(self, key: CounterKey, window_ms: int) -> int:
        now_ms = self._now_ms()

        with self._lock_for(key):
            record = self._records.get(key)
            if record is None or record.is_expired(now_ms):
                self._records[key] = CounterRecord(count=1, reset_at_ms=key.reset_at_ms(window_ms))
                return 1

            record.count += 1
            return record.count

    def decrement(self, key: CounterKey, window_ms: int) -> None:
        now_ms = self._now_ms()

        with self._lock_for(key):
            record = self._records.get(key)
            if record is not None and not record.is_expired(now_ms) and record.count > 0:
                record.count -= 1

    def get(self, key: CounterKey) -> CounterRecord | None:
        """Return a copy of the live record for ``key``, or None."""
        with self._lock_for(key):
            record = self._records.get(key)
            if record is None or record.is_expired(self._now_ms()):
                return None
            return CounterRecord(count=record.count, reset_at_ms=record.reset_at_ms)

    def delete(self, key: CounterKey) -> None:
        with self._lock_for(key):
            self._records.pop(key, None)

    def sweep_expired(self, now_ms: int | None = None) -> int:
        """Remove every record whose window has closed.

        Candidates are collected from a snapshot, then each one is re-checked
        under its own stripe so a concurrent increment that just recreated the
        key is never dropped.

        Args:
            now_ms: Reference time; defaults to the backend clock.

        Returns:
            Number of records removed.
        """
        now_ms = self._now_ms() if now_ms is None else now_ms
        candidates = [key for key, record in self._records.copy().items() if record.reset_at_ms <= now_ms]

        removed = 0
        for key in candidates:
            with self._lock_for(key):
                record = self._records.get(key)
                if record is not None and record.reset_at_ms <= now_ms:
                    del self._records[key]
                    removed += 1

        with self._swept_lock:
            self._swept_total += removed
        return removed

    def stats(self) -> dict[str, object]:
        return {
            "backend": self.name,
            "entries": len(self._records),
            "stripes": len(self._locks),
            "swept_total": self._swept_total,
        }
