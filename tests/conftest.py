"""Pytest configuration and fixtures shared across all test modules.

Environment variables are pinned before any ``admission`` import so the
settings singleton is built for local-only, deterministic tests.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("APP_RATE_LIMIT_ENABLED", "true")
os.environ["APP_TRUST_FORWARDED_HEADERS"] = "false"
os.environ.pop("APP_API_KEYS", None)
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from admission.core.rate_limit import reset_rate_limit_state


class FakeClock:
    """Deterministic clock returning UNIX seconds."""

    def __init__(self, start: float = 1_200.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    # 1_200 s is aligned to 60 s, 300 s and 5 s windows
    return FakeClock()


@pytest.fixture(autouse=True)
def _fresh_rate_limit_state():
    """Give every test its own counters."""
    reset_rate_limit_state()
    yield
    reset_rate_limit_state()
