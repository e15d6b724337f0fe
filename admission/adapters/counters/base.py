"""Counter store interfaces.

The rate limiter depends on this abstraction only, so the shared Redis store
and the process-local fallback are interchangeable behind it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


def window_start_for(now_ms: int, window_ms: int) -> int:
    """Align a millisecond timestamp to the start of its fixed window."""
    return (now_ms // window_ms) * window_ms


@dataclass(frozen=True)
class CounterKey:
    """Window-scoped identifier of a single counter.

    Because the window start is part of the key, a new window naturally gets
    a fresh counter; nothing has to reset the old one.

    Attributes:
        scope: Policy/route class (e.g. ``auth:login`` or ``api:clients:burst``).
        identifier: Caller principal (user id, hashed API key, ``ip:...``).
        window_start_ms: Epoch milliseconds at which the window opened.
    """

    scope: str
    identifier: str
    window_start_ms: int

    @classmethod
    def for_window(cls, scope: str, identifier: str, now_ms: int, window_ms: int) -> "CounterKey":
        return cls(scope, identifier, window_start_for(now_ms, window_ms))

    def reset_at_ms(self, window_ms: int) -> int:
        return self.window_start_ms + window_ms

    def render(self, prefix: str) -> str:
        """Flatten the key for stores that only understand strings."""
        return f"{prefix}:{self.scope}:{self.identifier}:{self.window_start_ms}"


@dataclass
class CounterRecord:
    """Count and expiry of one counter. Expired once ``now_ms >= reset_at_ms``."""

    count: int
    reset_at_ms: int

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.reset_at_ms


class AbstractCounterStore(ABC):
    """Interface for counter stores."""

    name: str = "abstract"

    @abstractmethod
    def increment_and_get(self, key: CounterKey, window_ms: int) -> int:
        """Atomically increment the counter for ``key`` and return the new value.

        The counter is created on first use and expires ``window_ms`` after its
        window opened (or later, never earlier).

        Args:
            key: Window-scoped counter key.
            window_ms: Length of the window the key belongs to.

        Returns:
            The count after this increment (>= 1).

        Raises:
            BackendUnavailableError: If the store cannot be reached.
        """
        raise NotImplementedError

    @abstractmethod
    def decrement(self, key: CounterKey, window_ms: int) -> None:
        """Give back one unit previously counted under ``key``.

        Only called for a unit this caller counted itself, so a live counter
        never drops below zero. Never revives a window that has closed.

        Raises:
            BackendUnavailableError: If the store cannot be reached.
        """
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: CounterKey) -> None:
        """Drop the counter for ``key`` if it exists."""
        raise NotImplementedError

    def stats(self) -> dict[str, object]:
        """Return lightweight store metrics for health reporting."""
        return {"backend": self.name}
