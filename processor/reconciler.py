"""Reconciliation of parsed reservations against the store."""
import logging
from datetime import datetime, timedelta
from functools import reduce
from typing import Callable, Iterable

from processor.models import ParsedEvent, RetentionPolicy, SyncOutcome, UpsertResult

logger = logging.getLogger(__name__)

UpsertFn = Callable[[ParsedEvent, datetime], UpsertResult]


def add_one_year(moment: datetime) -> datetime:
    """Return the same wall-clock moment one year later (29 Feb rolls to 1 Mar)."""
    try:
        return moment.replace(year=moment.year + 1)
    except ValueError:
        return moment.replace(year=moment.year + 1, month=2, day=28) + timedelta(days=1)


def calculate_expires_at(ends_at: datetime, policy: RetentionPolicy) -> datetime:
    """
    Compute when a reservation should disappear from the store.

    Args:
        ends_at: End of the reservation
        policy: User's retention policy

    Returns:
        One year after the end when history is kept, otherwise the end itself
    """
    if policy.keep_history:
        return add_one_year(ends_at)
    return ends_at


def reconcile(
    policy: RetentionPolicy,
    events: Iterable[ParsedEvent],
    now: datetime,
    upsert: UpsertFn
) -> SyncOutcome:
    """
    Apply parsed events to the store one at a time, in order.

    Events that would already be expired are skipped so a re-fetch does not
    bring back past reservations. A failed upsert is recorded against the
    event's UID and does not stop the remaining events.

    Args:
        policy: User's retention policy
        events: Parsed events in feed order
        now: Reference time for the whole run
        upsert: Persists one event with its expiry, returning an UpsertResult

    Returns:
        SyncOutcome with the number of events written and any errors
    """
    def step(outcome: SyncOutcome, event: ParsedEvent) -> SyncOutcome:
        expires_at = calculate_expires_at(event.ends_at, policy)
        if expires_at <= now:
            return outcome

        result = upsert(event, expires_at)
        if result.ok:
            return SyncOutcome(outcome.synced_count + 1, outcome.errors)

        logger.warning(f"Upsert failed for event {event.uid}: {result.error}")
        return SyncOutcome(
            outcome.synced_count,
            outcome.errors + [f"Failed to upsert event {event.uid}"]
        )

    return reduce(step, events, SyncOutcome())
