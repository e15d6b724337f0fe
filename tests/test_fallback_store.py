"""Tests for the remote-then-local counter store."""

import logging
from unittest.mock import MagicMock

import pytest

from admission.adapters.counters.base import AbstractCounterStore, CounterKey
from admission.adapters.counters.fallback import FallbackCounterStore
from admission.adapters.counters.local import LocalCounterBackend
from admission.core.errors import BackendUnavailableError

KEY = CounterKey("api:clients", "user:1", 1_200_000)


def _unavailable() -> BackendUnavailableError:
    return BackendUnavailableError(code="counter_store_unavailable", message="Redis increment failed: TimeoutError")


class Monotonic:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def primary() -> MagicMock:
    store = MagicMock(spec=AbstractCounterStore)
    store.name = "remote"
    store.stats.return_value = {"backend": "remote"}
    return store


def test_primary_serves_when_healthy(primary: MagicMock, clock) -> None:
    primary.increment_and_get.return_value = 7
    local = LocalCounterBackend(clock=clock)
    store = FallbackCounterStore(primary, local)

    assert store.increment_and_get(KEY, 60_000) == 7
    assert len(local) == 0
    assert store.stats()["fallback_events"] == 0


def test_failure_falls_back_to_local_and_is_counted(primary: MagicMock, clock, caplog) -> None:
    primary.increment_and_get.side_effect = _unavailable()
    local = LocalCounterBackend(clock=clock)
    store = FallbackCounterStore(primary, local, cooldown_seconds=0)

    with caplog.at_level(logging.WARNING, logger="admission.adapters.counters.fallback"):
        counts = [store.increment_and_get(KEY, 60_000) for _ in range(3)]

    assert counts == [1, 2, 3]
    stats = store.stats()
    assert stats["fallback_events"] == 3
    assert stats["primary_failures"] == 3
    assert stats["degraded"] is True
    assert any(r.getMessage() == "counter_store.fallback" for r in caplog.records)


def test_cooldown_skips_primary_until_it_expires(primary: MagicMock, clock) -> None:
    monotonic = Monotonic()
    primary.increment_and_get.side_effect = _unavailable()
    store = FallbackCounterStore(primary, LocalCounterBackend(clock=clock), cooldown_seconds=5, clock=monotonic)

    store.increment_and_get(KEY, 60_000)
    store.increment_and_get(KEY, 60_000)
    store.increment_and_get(KEY, 60_000)

    assert primary.increment_and_get.call_count == 1
    assert store.stats()["fallback_events"] == 3

    monotonic.now += 5
    primary.increment_and_get.side_effect = None
    primary.increment_and_get.return_value = 1

    assert store.increment_and_get(KEY, 60_000) == 1
    assert primary.increment_and_get.call_count == 2
    assert store.degraded is False


def test_recovery_is_logged_once(primary: MagicMock, clock, caplog) -> None:
    primary.increment_and_get.side_effect = [_unavailable(), 4, 5]
    store = FallbackCounterStore(primary, LocalCounterBackend(clock=clock), cooldown_seconds=0)

    with caplog.at_level(logging.INFO, logger="admission.adapters.counters.fallback"):
        store.increment_and_get(KEY, 60_000)
        store.increment_and_get(KEY, 60_000)
        store.increment_and_get(KEY, 60_000)

    recovered = [r for r in caplog.records if r.getMessage() == "counter_store.recovered"]
    assert len(recovered) == 1


def test_delete_clears_both_stores_even_if_primary_fails(primary: MagicMock, clock) -> None:
    primary.delete.side_effect = _unavailable()
    local = LocalCounterBackend(clock=clock)
    local.increment_and_get(KEY, 60_000)
    store = FallbackCounterStore(primary, local)

    store.delete(KEY)

    primary.delete.assert_called_once_with(KEY)
    assert local.get(KEY) is None


def test_negative_cooldown_rejected(primary: MagicMock, clock) -> None:
    with pytest.raises(ValueError):
        FallbackCounterStore(primary, LocalCounterBackend(clock=clock), cooldown_seconds=-1)


def test_decrement_goes_to_primary_when_healthy(primary: MagicMock, clock) -> None:
    local = LocalCounterBackend(clock=clock)
    local.increment_and_get(KEY, 60_000)
    store = FallbackCounterStore(primary, local)

    store.decrement(KEY, 60_000)

    primary.decrement.assert_called_once_with(KEY, 60_000)
    assert local.get(KEY).count == 1


def test_decrement_falls_back_when_primary_fails(primary: MagicMock, clock) -> None:
    primary.increment_and_get.side_effect = _unavailable()
    primary.decrement.side_effect = _unavailable()
    local = LocalCounterBackend(clock=clock)
    store = FallbackCounterStore(primary, local, cooldown_seconds=0)
    store.increment_and_get(KEY, 60_000)
    store.increment_and_get(KEY, 60_000)

    store.decrement(KEY, 60_000)

    assert local.get(KEY).count == 1
    assert store.stats()["primary_failures"] == 3
