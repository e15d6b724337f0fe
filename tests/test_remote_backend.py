"""Unit tests for the Redis counter backend using a mocked client."""

from unittest.mock import MagicMock

import pytest
import redis

from admission.adapters.counters.base import CounterKey
from admission.adapters.counters.redis_backend import RemoteCounterBackend, create_redis_client
from admission.core.config import RedisSettings
from admission.core.errors import BackendUnavailableError

KEY = CounterKey("api:time-entries", "user:42", 1_200_000)


@pytest.fixture
def client() -> MagicMock:
    mock_client = MagicMock(spec=redis.Redis)
    pipe = MagicMock()
    pipe.execute.return_value = [True, 1]
    mock_client.pipeline.return_value = pipe
    return mock_client


def test_increment_sets_expiry_and_increments_in_one_transaction(client: MagicMock) -> None:
    backend = RemoteCounterBackend(client, key_prefix="rl")

    assert backend.increment_and_get(KEY, 60_000) == 1

    client.pipeline.assert_called_once_with(transaction=True)
    pipe = client.pipeline.return_value
    pipe.set.assert_called_once_with("rl:api:time-entries:user:42:1200000", 0, px=60_000, nx=True)
    pipe.incr.assert_called_once_with("rl:api:time-entries:user:42:1200000")
    pipe.execute.assert_called_once_with()


def test_increment_returns_store_count_for_existing_key(client: MagicMock) -> None:
    client.pipeline.return_value.execute.return_value = [None, 57]
    backend = RemoteCounterBackend(client)

    assert backend.increment_and_get(KEY, 60_000) == 57


def test_increment_never_reads_before_writing(client: MagicMock) -> None:
    backend = RemoteCounterBackend(client)

    backend.increment_and_get(KEY, 60_000)

    client.get.assert_not_called()
    client.pipeline.return_value.get.assert_not_called()


@pytest.mark.parametrize(
    "error",
    [
        redis.exceptions.TimeoutError("Timeout reading from socket"),
        redis.exceptions.ConnectionError("Connection refused"),
        redis.exceptions.AuthenticationError("invalid password"),
        redis.exceptions.ResponseError("READONLY"),
    ],
)
def test_redis_errors_become_backend_unavailable(client: MagicMock, error: Exception) -> None:
    client.pipeline.return_value.execute.side_effect = error
    backend = RemoteCounterBackend(client)

    with pytest.raises(BackendUnavailableError) as exc_info:
        backend.increment_and_get(KEY, 60_000)

    assert exc_info.value.code == "counter_store_unavailable"
    assert exc_info.value.__cause__ is error
    assert exc_info.value.details["scope"] == "api:time-entries"


def test_decrement_keeps_expiry_guarantee(client: MagicMock) -> None:
    backend = RemoteCounterBackend(client, key_prefix="rl")

    backend.decrement(KEY, 60_000)

    pipe = client.pipeline.return_value
    pipe.set.assert_called_once_with("rl:api:time-entries:user:42:1200000", 0, px=60_000, nx=True)
    pipe.decr.assert_called_once_with("rl:api:time-entries:user:42:1200000")
    pipe.execute.assert_called_once_with()


def test_decrement_failure_is_backend_unavailable(client: MagicMock) -> None:
    client.pipeline.return_value.execute.side_effect = redis.exceptions.TimeoutError("slow")
    backend = RemoteCounterBackend(client)

    with pytest.raises(BackendUnavailableError):
        backend.decrement(KEY, 60_000)


def test_delete_uses_rendered_key(client: MagicMock) -> None:
    backend = RemoteCounterBackend(client, key_prefix="rl")

    backend.delete(KEY)

    client.delete.assert_called_once_with("rl:api:time-entries:user:42:1200000")


def test_delete_failure_is_backend_unavailable(client: MagicMock) -> None:
    client.delete.side_effect = redis.exceptions.ConnectionError("down")
    backend = RemoteCounterBackend(client)

    with pytest.raises(BackendUnavailableError):
        backend.delete(KEY)


def test_ping_reports_reachability(client: MagicMock) -> None:
    backend = RemoteCounterBackend(client)

    client.ping.return_value = True
    assert backend.ping() is True

    client.ping.side_effect = redis.exceptions.ConnectionError("down")
    assert backend.ping() is False


def test_client_uses_bounded_timeouts() -> None:
    redis_settings = RedisSettings(
        url="redis://localhost:6390/1",
        socket_timeout_ms=150,
        connect_timeout_ms=100,
    )

    client = create_redis_client(redis_settings)

    kwargs = client.connection_pool.connection_kwargs
    assert kwargs["socket_timeout"] == pytest.approx(0.15)
    assert kwargs["socket_connect_timeout"] == pytest.approx(0.1)
    assert kwargs["port"] == 6390
    assert kwargs["db"] == 1
