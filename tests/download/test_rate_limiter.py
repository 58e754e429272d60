"""Tests for the per-endpoint-class rate limiter."""

import threading
import time
from typing import List

import pytest

from tranga_cli.download.rate_limiter import RateLimiter
from tranga_cli.exceptions import ConfigurationError, RateLimitNotConfiguredError


class ManualClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def clock(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def manual() -> ManualClock:
    return ManualClock()


class TestRateLimiterConfiguration:
    """Tests for limiter construction."""

    def test_interval_from_requests_per_minute(self) -> None:
        """60 requests per minute means one second between requests."""
        limiter = RateLimiter({1: 60, 2: 2})

        assert limiter.interval(1) == 1.0
        assert limiter.interval(2) == 30.0

    def test_configured_classes(self) -> None:
        """Configured classes are reported sorted."""
        limiter = RateLimiter({3: 10, 1: 60})
        assert limiter.configured_classes == [1, 3]

    def test_unknown_class_rejected(self) -> None:
        """A class without a limit raises instead of being unlimited."""
        limiter = RateLimiter({1: 60})

        with pytest.raises(RateLimitNotConfiguredError) as exc_info:
            limiter.acquire(7)

        assert exc_info.value.endpoint_class == 7

    def test_non_positive_rate_rejected(self) -> None:
        """Zero requests per minute is a configuration error."""
        with pytest.raises(ConfigurationError):
            RateLimiter({1: 0})


class TestRateLimiterAcquire:
    """Tests for request spacing."""

    def test_first_request_does_not_wait(self, manual: ManualClock) -> None:
        """The first request of a class is dispatched immediately."""
        limiter = RateLimiter({1: 60}, clock=manual.clock, sleep=manual.sleep)

        assert limiter.acquire(1) == 0.0
        assert manual.sleeps == []

    def test_back_to_back_requests_are_spaced(self, manual: ManualClock) -> None:
        """Consecutive requests of one class are at least one interval apart."""
        limiter = RateLimiter({1: 60}, clock=manual.clock, sleep=manual.sleep)

        dispatched = []
        for _ in range(4):
            limiter.acquire(1)
            dispatched.append(manual.now)

        gaps = [b - a for a, b in zip(dispatched, dispatched[1:])]
        assert all(gap >= 1.0 for gap in gaps)

    def test_two_per_minute_dispatch_times(self, manual: ManualClock) -> None:
        """Three requests at two per minute start at 0, 30 and 60 seconds."""
        limiter = RateLimiter({1: 2}, clock=manual.clock, sleep=manual.sleep)

        dispatched = []
        for _ in range(3):
            limiter.acquire(1)
            dispatched.append(manual.now)

        assert dispatched == [0.0, 30.0, 60.0]

    def test_no_wait_after_interval_elapsed(self, manual: ManualClock) -> None:
        """A request after a long pause is not delayed."""
        limiter = RateLimiter({1: 60}, clock=manual.clock, sleep=manual.sleep)

        limiter.acquire(1)
        manual.now += 5.0

        assert limiter.acquire(1) == 0.0

    def test_partial_wait(self, manual: ManualClock) -> None:
        """Only the remainder of the interval is waited."""
        limiter = RateLimiter({1: 6}, clock=manual.clock, sleep=manual.sleep)

        limiter.acquire(1)
        manual.now += 4.0

        assert limiter.acquire(1) == pytest.approx(6.0)

    def test_classes_are_independent(self, manual: ManualClock) -> None:
        """A busy class does not delay another class."""
        limiter = RateLimiter({1: 1, 2: 1}, clock=manual.clock, sleep=manual.sleep)

        limiter.acquire(1)

        assert limiter.acquire(2) == 0.0

    def test_concurrent_callers_are_serialized(self) -> None:
        """Threads sharing a class never dispatch closer than the interval."""
        limiter = RateLimiter({1: 1200})  # 50ms interval
        times: List[float] = []
        lock = threading.Lock()

        def worker() -> None:
            limiter.acquire(1)
            with lock:
                times.append(time.monotonic())

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5)

        assert len(times) == 4
        # Four dispatches span at least three intervals; recorded after
        # acquire returns, so leave room for scheduling jitter
        assert max(times) - min(times) >= 0.1
