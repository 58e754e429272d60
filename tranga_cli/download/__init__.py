"""Rate-limited HTTP fetching shared by all connectors."""

from tranga_cli.download.client import DownloadClient, RequestResult
from tranga_cli.download.rate_limiter import RateLimiter

__all__ = [
    "DownloadClient",
    "RateLimiter",
    "RequestResult",
]
