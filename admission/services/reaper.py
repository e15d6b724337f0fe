"""Periodic sweep of expired local counters.

Without it the local map keeps one record per identity ever seen, which
grows without bound for IP-scoped limits under churn. The sweep relies on
the backend's per-key locks, so traffic is never paused as a whole.
"""

from __future__ import annotations

import asyncio
import logging

from admission.adapters.counters.local import LocalCounterBackend

logger = logging.getLogger(__name__)


class Reaper:
    """Runs ``LocalCounterBackend.sweep_expired`` on a fixed interval."""

    def __init__(self, backend: LocalCounterBackend, *, interval_seconds: float = 300.0) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._backend = backend
        self._interval = interval_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self) -> int:
        """Sweep once and return the number of records removed."""
        removed = self._backend.sweep_expired()
        logger.debug(
            "reaper.swept",
            extra={"removed": removed, "entries": len(self._backend)},
        )
        return removed

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self.run_once()
            except Exception as exc:  # keep sweeping on the next tick
                logger.error(
                    "reaper.sweep_failed",
                    extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
                )

    def start(self) -> None:
        """Schedule the sweep loop on the running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info("reaper.started", extra={"interval_s": self._interval})

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("reaper.stopped")
