"""Rate limiter for staggering requests to the feed host."""
import logging
import time

logger = logging.getLogger(__name__)


class RateLimiter:
    """Ensures a minimum delay between consecutive operations."""

    def __init__(self, requests_per_second: float):
        """
        Initialize the rate limiter.

        Args:
            requests_per_second: Maximum requests per second
                (e.g. 2 means 0.5 seconds between requests)
        """
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.min_interval = 1.0 / requests_per_second
        self._last_request = None

    def acquire(self) -> None:
        """Wait if necessary to respect the rate limit, then mark a request as started."""
        if self._last_request is not None:
            wait = self.min_interval - (time.monotonic() - self._last_request)
            if wait > 0:
                logger.debug(f"Rate limit reached, sleeping {wait:.3f} seconds")
                time.sleep(wait)

        self._last_request = time.monotonic()
