"""Rate-limited HTTP client used by connectors.

``DownloadClient.make_request`` is the only way connectors reach the
network. Every attempt goes through the shared :class:`RateLimiter`;
transport failures (refused connections, timeouts, DNS errors) are
retried with a fixed backoff of twice the endpoint class's interval,
forever by default, since nobody is waiting on a background job
synchronously. HTTP error statuses are returned as-is and never retried.
"""

import io
import logging
import time
from dataclasses import dataclass, field
from http import HTTPStatus
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Optional

import httpx
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    stop_never,
    wait_fixed,
)

from tranga_cli.download.rate_limiter import RateLimiter
from tranga_cli.exceptions import HttpError, NetworkError, RateLimitNotConfiguredError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
DEFAULT_USER_AGENT = "tranga-cli"


@dataclass
class RequestResult:
    """Outcome of a single ``make_request`` call.

    A non-success status always carries an empty ``content`` stream, so
    callers must check ``ok`` (or call ``raise_for_status``) first.

    Attributes:
        status_code: HTTP status code (406 when the request was refused locally)
        content: Response body stream
        url: The URL that was requested
        redirected: Whether the request resolved to a different URL
        redirected_to_url: The final URL when ``redirected`` is set
    """

    status_code: int
    content: BinaryIO = field(default_factory=io.BytesIO)
    url: str = ""
    redirected: bool = False
    redirected_to_url: Optional[str] = None

    @property
    def ok(self) -> bool:
        """Whether the status code is in the 2xx range."""
        return 200 <= self.status_code < 300

    def read(self) -> bytes:
        """Read the remaining body bytes."""
        return self.content.read()

    def text(self, encoding: str = "utf-8") -> str:
        """Read the remaining body as text."""
        return self.read().decode(encoding, errors="replace")

    def raise_for_status(self) -> "RequestResult":
        """Raise :class:`HttpError` unless the status is a success."""
        if not self.ok:
            raise HttpError(self.status_code, self.url)
        return self


class DownloadClient:
    """HTTP GET client with per-endpoint-class throttling and retry.

    Example:
        limiter = RateLimiter({1: 60, 2: 120})
        with DownloadClient(limiter) as client:
            result = client.make_request("https://example.org/api/manga", 1)
            if result.ok:
                data = result.read()
    """

    def __init__(
        self,
        rate_limiter: RateLimiter,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_attempts: Optional[int] = None,
    ) -> None:
        """Initialize the client.

        Args:
            rate_limiter: Shared limiter consulted before every attempt
            timeout: Per-request timeout in seconds
            user_agent: User-Agent header sent with every request
            transport: Optional httpx transport (tests use MockTransport)
            sleep: Sleep function used between retry attempts
            max_attempts: Stop retrying after this many attempts (None retries forever)
        """
        self._rate_limiter = rate_limiter
        self._sleep = sleep
        self._max_attempts = max_attempts
        self._client = httpx.Client(
            timeout=timeout,
            follow_redirects=True,
            headers={"User-Agent": user_agent},
            transport=transport,
        )

    @property
    def rate_limiter(self) -> RateLimiter:
        """The limiter this client throttles through."""
        return self._rate_limiter

    def make_request(
        self,
        url: str,
        endpoint_class: int,
        referrer: Optional[str] = None,
    ) -> RequestResult:
        """Issue a rate-limited GET request.

        Args:
            url: URL to fetch
            endpoint_class: Rate-limit bucket the request belongs to
            referrer: Optional value for the Referer header

        Returns:
            RequestResult with the status code and body stream

        Raises:
            NetworkError: Only when ``max_attempts`` is set and every
                attempt failed at the transport level
        """
        try:
            interval = self._rate_limiter.interval(endpoint_class)
        except RateLimitNotConfiguredError:
            logger.error(f"Endpoint class {endpoint_class} not configured for rate-limit, refusing {url}")
            return RequestResult(status_code=HTTPStatus.NOT_ACCEPTABLE.value, url=url)

        headers: Dict[str, str] = {}
        if referrer is not None:
            headers["Referer"] = referrer

        try:
            response = self._retry_policy(interval)(self._send, url, endpoint_class, headers)
        except httpx.TransportError as e:
            raise NetworkError(
                f"Giving up on {url} after {self._max_attempts} attempts: {e}",
                details={"endpoint_class": endpoint_class},
            ) from e

        if not response.is_success:
            logger.warning(f"Request-Error {response.status_code}: {response.reason_phrase} ({url})")
            return RequestResult(status_code=response.status_code, url=url)

        result = RequestResult(
            status_code=response.status_code,
            content=io.BytesIO(response.content),
            url=url,
        )

        # Some sources answer a search with exactly one hit by redirecting
        # straight to that publication.
        final_url = str(response.url)
        if response.history and final_url != url:
            result.redirected = True
            result.redirected_to_url = final_url

        return result

    def download_file(
        self,
        url: str,
        endpoint_class: int,
        destination: Path,
        referrer: Optional[str] = None,
    ) -> bool:
        """Fetch ``url`` and write the body to ``destination``.

        Args:
            url: URL to fetch
            endpoint_class: Rate-limit bucket the request belongs to
            destination: File to write; parent directories are created
            referrer: Optional value for the Referer header

        Returns:
            True if the file was written, False on a non-success status
        """
        result = self.make_request(url, endpoint_class, referrer)
        if not result.ok:
            return False

        destination.parent.mkdir(parents=True, exist_ok=True)
        with open(destination, "wb") as f:
            f.write(result.read())
        return True

    def close(self) -> None:
        """Close the underlying connection pool."""
        self._client.close()

    def __enter__(self) -> "DownloadClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _retry_policy(self, interval: float) -> Retrying:
        """Fixed-backoff retry on transport failures only."""
        if self._max_attempts is None:
            stop = stop_never
        else:
            stop = stop_after_attempt(self._max_attempts)

        return Retrying(
            stop=stop,
            wait=wait_fixed(interval * 2),
            retry=retry_if_exception_type(httpx.TransportError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )

    def _send(self, url: str, endpoint_class: int, headers: Dict[str, str]) -> httpx.Response:
        self._rate_limiter.acquire(endpoint_class)
        return self._client.get(url, headers=headers)
