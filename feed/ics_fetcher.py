"""Fetcher for published Outlook calendar feeds."""
import logging
import time
from urllib.parse import urlparse

import requests

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_HOST = "outlook.office365.com"


class FeedError(Exception):
    """Base class for feed retrieval failures."""


class FeedTimeoutError(FeedError):
    """The feed host did not answer in time."""


class FeedTooLargeError(FeedError):
    """The feed body exceeded the size limit."""


class FeedHttpError(FeedError):
    """The feed host answered with an error status."""

    def __init__(self, status_code: int):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class FeedNetworkError(FeedError):
    """The feed host could not be reached."""


class FeedUrlError(ValueError):
    """The feed URL is malformed or points at a host that is not allowed."""


def validate_feed_url(url: str, allowed_host: str = DEFAULT_ALLOWED_HOST) -> None:
    """
    Check that a feed URL points at the allowed calendar host.

    Raises:
        FeedUrlError: If the URL cannot be parsed or the host differs
    """
    try:
        parsed = urlparse(url)
        host = parsed.netloc
    except ValueError as e:
        raise FeedUrlError("Invalid ICS URL format") from e

    if parsed.scheme not in ('http', 'https') or not host:
        raise FeedUrlError("Invalid ICS URL format")
    if host != allowed_host:
        raise FeedUrlError(f"ICS URL must be from {allowed_host}")


class IcsFetcher:
    """Downloads calendar feed text with a timeout and size limit."""

    CHUNK_SIZE = 64 * 1024
    BASE_DELAY = 1  # seconds

    def __init__(
        self,
        timeout: int = 30,
        max_bytes: int = 5 * 1024 * 1024,
        max_retries: int = 3
    ):
        """
        Initialize the feed fetcher.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            max_bytes: Largest accepted feed body (default: 5 MiB)
            max_retries: Attempts for timeouts and connection errors

        Raises:
            ValueError: If max_retries is less than 1
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")

        self.timeout = timeout
        self.max_bytes = max_bytes
        self.max_retries = max_retries

    def fetch(self, url: str) -> str:
        """
        Fetch feed text with retry logic.

        Timeouts and connection errors are retried with exponential backoff;
        error statuses and oversized bodies fail immediately.

        Args:
            url: Feed URL

        Returns:
            Feed text

        Raises:
            FeedError: If the feed cannot be retrieved
        """
        for attempt in range(self.max_retries):
            try:
                logger.info(f"Fetching calendar feed (attempt {attempt + 1}/{self.max_retries})")
                return self._fetch_once(url)

            except (FeedTimeoutError, FeedNetworkError) as e:
                if attempt < self.max_retries - 1:
                    delay = self.BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        f"Feed request failed (attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_retries} retry attempts failed. Last error: {e}"
                    )
                    raise

    def _fetch_once(self, url: str) -> str:
        try:
            with requests.get(url, timeout=self.timeout, stream=True) as response:
                if not response.ok:
                    raise FeedHttpError(response.status_code)

                declared = response.headers.get('Content-Length')
                if declared and declared.isdigit() and int(declared) > self.max_bytes:
                    raise FeedTooLargeError(f"Feed declares {declared} bytes")

                body = bytearray()
                for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
                    body.extend(chunk)
                    if len(body) > self.max_bytes:
                        raise FeedTooLargeError(f"Feed exceeds {self.max_bytes} bytes")

                # Outlook serves UTF-8; only trust an explicit charset
                content_type = response.headers.get('Content-Type', '')
                encoding = response.encoding if 'charset' in content_type else 'utf-8'
                text = body.decode(encoding or 'utf-8', errors='replace')

        except requests.Timeout as e:
            raise FeedTimeoutError("Request timed out") from e
        except requests.RequestException as e:
            raise FeedNetworkError(type(e).__name__) from e

        logger.info(f"Fetched calendar feed ({len(body)} bytes)")
        return text
