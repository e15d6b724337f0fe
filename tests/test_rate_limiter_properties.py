"""
Property-based tests for the rate limiter.

Properties:
- For any limit N, the first N checks in a window are allowed and the N+1th is denied
- After the window resets, counting restarts at 1 whatever the previous total
- ``remaining`` never increases across allowed checks in a window and is never negative
- A burst admits exactly ``burst_max_requests`` extra calls, flagged ``used_burst``
"""

from hypothesis import HealthCheck, given, settings, strategies as st

from admission.adapters.counters.local import LocalCounterBackend
from admission.core.policies import Policy
from admission.services.rate_limiter import RateLimiter


class StepClock:
    def __init__(self, start: float) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current


limits = st.integers(min_value=1, max_value=60)
windows_s = st.integers(min_value=2, max_value=3_600)
starts = st.integers(min_value=1_000_000, max_value=2_000_000_000)

# Examples share the autouse state-reset fixture
property_settings = settings(
    max_examples=50,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)


def _limiter(clock: StepClock) -> RateLimiter:
    return RateLimiter(LocalCounterBackend(stripes=4, clock=clock), clock=clock)


def _window_start(clock: StepClock, window_s: int) -> None:
    clock.current = float((int(clock.current) // window_s) * window_s)


@property_settings
@given(limit=limits, window_s=windows_s, start=starts)
def test_inclusive_boundary(limit: int, window_s: int, start: int) -> None:
    clock = StepClock(start)
    _window_start(clock, window_s)
    limiter = _limiter(clock)
    policy = Policy("api:clients", limit, window_s * 1000)

    decisions = [limiter.check("user:p", policy) for _ in range(limit + 1)]

    assert all(d.allowed for d in decisions[:limit])
    assert decisions[limit].allowed is False


@property_settings
@given(limit=limits, window_s=windows_s, start=starts, used=st.integers(min_value=0, max_value=200))
def test_rollover_restarts_count(limit: int, window_s: int, start: int, used: int) -> None:
    clock = StepClock(start)
    limiter = _limiter(clock)
    policy = Policy("api:clients", limit, window_s * 1000)
    for _ in range(used):
        limiter.check("user:p", policy)

    first = limiter.check("user:p", policy)
    clock.current = first.reset_at_ms / 1000

    decision = limiter.check("user:p", policy)

    assert decision.allowed is True
    assert decision.remaining == limit - 1


@property_settings
@given(limit=limits, window_s=windows_s, start=starts, calls=st.integers(min_value=1, max_value=150))
def test_remaining_is_monotonic_and_non_negative(limit: int, window_s: int, start: int, calls: int) -> None:
    clock = StepClock(start)
    _window_start(clock, window_s)
    limiter = _limiter(clock)
    policy = Policy("api:clients", limit, window_s * 1000)

    decisions = [limiter.check("user:p", policy) for _ in range(calls)]
    remaining = [d.remaining for d in decisions]

    assert all(r >= 0 for r in remaining)
    assert all(a >= b for a, b in zip(remaining, remaining[1:]))


@property_settings
@given(
    limit=st.integers(min_value=1, max_value=30),
    burst=st.integers(min_value=1, max_value=15),
    extra=st.integers(min_value=1, max_value=10),
)
def test_burst_isolation(limit: int, burst: int, extra: int) -> None:
    clock = StepClock(1_200.0)
    limiter = _limiter(clock)
    policy = Policy("api:clients", limit, 60_000, burst_max_requests=burst, burst_window_ms=5_000)

    decisions = [limiter.check("user:p", policy) for _ in range(limit + burst + extra)]

    assert all(d.allowed and not d.used_burst for d in decisions[:limit])
    assert all(d.allowed and d.used_burst for d in decisions[limit:limit + burst])
    assert all(not d.allowed and not d.used_burst for d in decisions[limit + burst:])
