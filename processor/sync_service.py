"""Synchronization of a user's feed into stored reservations."""
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from feed.crypto import DecryptionError, decrypt
from feed.ics_fetcher import (
    DEFAULT_ALLOWED_HOST,
    FeedError,
    FeedUrlError,
    IcsFetcher,
    validate_feed_url,
)
from feed.rate_limiter import RateLimiter
from processor.ics_parser import IcsParser
from processor.models import SyncOutcome
from processor.reconciler import reconcile

logger = logging.getLogger(__name__)


def _failure(message: str) -> SyncOutcome:
    return SyncOutcome(synced_count=0, errors=[message])


class SyncService:
    """Runs the fetch, parse and reconcile cycle for users."""

    def __init__(
        self,
        store,
        fetcher: IcsFetcher,
        encryption_key: str,
        allowed_feed_host: str = DEFAULT_ALLOWED_HOST,
        parser: Optional[IcsParser] = None
    ):
        """
        Initialize the sync service.

        Args:
            store: DynamoDBManager (or compatible) holding users and reservations
            fetcher: Feed fetcher
            encryption_key: base64 key the stored feed URLs are encrypted with
            allowed_feed_host: Only feeds from this host are fetched
            parser: Feed parser (default: all known library patterns)
        """
        self.store = store
        self.fetcher = fetcher
        self.encryption_key = encryption_key
        self.allowed_feed_host = allowed_feed_host
        self.parser = parser or IcsParser()

    def sync_user(self, user_id: str, now: Optional[datetime] = None) -> SyncOutcome:
        """
        Synchronize one user's reservations from their feed.

        Any failure before parsing aborts the run with a single error and
        nothing written.

        Args:
            user_id: User to synchronize
            now: Reference time for expiry decisions (default: current time)

        Returns:
            SyncOutcome for the run
        """
        user = self.store.get_user(user_id)
        if not user or not user.feed_url:
            return _failure("User not found or no ICS URL configured")

        try:
            feed_url = decrypt(user.feed_url, self.encryption_key)
        except DecryptionError as e:
            logger.error(f"Failed to decrypt feed URL for user {user_id}: {e}")
            return _failure("Failed to decrypt ICS URL")

        try:
            validate_feed_url(feed_url, self.allowed_feed_host)
        except FeedUrlError as e:
            logger.error(f"Rejected feed URL for user {user_id}: {e}")
            return _failure(str(e))

        try:
            content = self.fetcher.fetch(feed_url)
        except FeedError as e:
            logger.error(
                f"Failed to fetch feed for user {user_id}: {e}",
                extra={'error_type': type(e).__name__}
            )
            return _failure(f"ICS fetch failed: {e}")

        logger.info(f"Fetched feed for user {user_id} ({len(content)} characters)")

        events = self.parser.parse(content)
        now = now or datetime.now(timezone.utc)
        outcome = reconcile(
            user.retention_policy,
            events,
            now,
            lambda event, expires_at: self.store.upsert_reservation(user_id, event, expires_at)
        )

        self.store.mark_synced(user_id)

        logger.info(
            f"Synced user {user_id}: {outcome.synced_count} reservations, "
            f"{len(outcome.errors)} errors"
        )
        return outcome

    def sync_all(self, rate_limiter: Optional[RateLimiter] = None) -> Dict[str, SyncOutcome]:
        """
        Synchronize every user that has a feed URL.

        Args:
            rate_limiter: Throttles feed fetches across users

        Returns:
            Mapping of user_id to SyncOutcome for users that completed
        """
        users = self.store.get_users_with_feed_url()
        logger.info(f"Starting scheduled sync for {len(users)} users")

        outcomes = {}
        for user in users:
            if rate_limiter:
                rate_limiter.acquire()
            try:
                outcomes[user.user_id] = self.sync_user(user.user_id)
            except Exception as e:
                logger.error(
                    f"Failed to sync user {user.user_id}: {e}",
                    extra={'error_type': type(e).__name__},
                    exc_info=True
                )
                continue

        logger.info("Scheduled sync complete")
        return outcomes
