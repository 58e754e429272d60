"""Per-endpoint-class request throttling.

Every request a connector makes belongs to an *endpoint class*: a small
integer naming a group of requests that share one rate-limit bucket
(for example "chapter metadata" vs. "image server"). The limiter turns a
requests-per-minute ceiling into a minimum interval between two
consecutive dispatches of the same class.

Classes without a configured limit are rejected rather than treated as
unlimited.
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Mapping

from tranga_cli.exceptions import ConfigurationError, RateLimitNotConfiguredError

logger = logging.getLogger(__name__)

SECONDS_PER_MINUTE = 60.0


class RateLimiter:
    """Minimum-interval throttle keyed by endpoint class.

    ``acquire()`` blocks the calling thread until the class's interval has
    elapsed since its previous dispatch, then records the dispatch time.
    Each class has its own lock, held across the wait, so concurrent
    callers of one class are serialized while other classes proceed.

    Example:
        limiter = RateLimiter({1: 2})  # class 1: two requests per minute
        limiter.acquire(1)  # returns immediately
        limiter.acquire(1)  # blocks ~30 seconds
    """

    def __init__(
        self,
        requests_per_minute: Mapping[int, int],
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the limiter.

        Args:
            requests_per_minute: Endpoint class to maximum requests per minute
            clock: Monotonic clock in seconds
            sleep: Blocking sleep function

        Raises:
            ConfigurationError: If a configured rate is not positive
        """
        self._clock = clock
        self._sleep = sleep
        self._intervals: Dict[int, float] = {}
        for endpoint_class, rpm in requests_per_minute.items():
            if rpm <= 0:
                raise ConfigurationError(
                    f"Rate limit for endpoint class {endpoint_class} must be positive",
                    details={"endpoint_class": endpoint_class, "requests_per_minute": rpm},
                )
            self._intervals[int(endpoint_class)] = SECONDS_PER_MINUTE / rpm
        self._last_issued: Dict[int, float] = {}
        self._locks: Dict[int, threading.Lock] = {
            endpoint_class: threading.Lock() for endpoint_class in self._intervals
        }

    @property
    def configured_classes(self) -> List[int]:
        """Endpoint classes that have a rate limit."""
        return sorted(self._intervals)

    def interval(self, endpoint_class: int) -> float:
        """Minimum seconds between two dispatches of ``endpoint_class``.

        Raises:
            RateLimitNotConfiguredError: If the class has no limit
        """
        try:
            return self._intervals[endpoint_class]
        except KeyError:
            raise RateLimitNotConfiguredError(endpoint_class) from None

    def acquire(self, endpoint_class: int) -> float:
        """Block until a request of ``endpoint_class`` may be dispatched.

        The dispatch time is recorded when this returns, so callers must
        send the request immediately afterwards.

        Args:
            endpoint_class: Endpoint class of the upcoming request

        Returns:
            Seconds spent waiting

        Raises:
            RateLimitNotConfiguredError: If the class has no limit
        """
        interval = self.interval(endpoint_class)

        with self._locks[endpoint_class]:
            waited = 0.0
            last = self._last_issued.get(endpoint_class)
            if last is not None:
                elapsed = self._clock() - last
                if elapsed < interval:
                    waited = interval - elapsed
                    logger.debug(
                        f"Rate limit for endpoint class {endpoint_class}: waiting {waited:.2f}s"
                    )
                    self._sleep(waited)
            self._last_issued[endpoint_class] = self._clock()
            return waited
