"""Unit tests for the reconciliation engine."""
from datetime import datetime, timedelta, timezone

from processor.models import ParsedEvent, RetentionPolicy, UpsertResult
from processor.reconciler import add_one_year, calculate_expires_at, reconcile

NOW = datetime(2025, 12, 1, 12, 0, tzinfo=timezone.utc)


def make_event(uid, ends_at, room="Boekenzaal", is_canceled=False):
    return ParsedEvent(
        uid=uid,
        summary=f"CBA - {room} Seat 191",
        starts_at=ends_at - timedelta(hours=1),
        ends_at=ends_at,
        is_canceled=is_canceled,
        library_code="CBA",
        room=room,
        seat_number="191"
    )


class FakeStore:
    """In-memory store with last-write-wins upserts keyed by uid."""

    def __init__(self, failing_uids=()):
        self.records = {}
        self.calls = []
        self.failing_uids = set(failing_uids)

    def upsert(self, event, expires_at):
        self.calls.append(event.uid)
        if event.uid in self.failing_uids:
            return UpsertResult(ok=False, error="ProvisionedThroughputExceededException")
        self.records[event.uid] = (event, expires_at)
        return UpsertResult(ok=True)


class TestExpiry:
    """Test cases for expiry calculation."""

    def test_without_history(self):
        ends_at = datetime(2025, 12, 6, 14, tzinfo=timezone.utc)
        assert calculate_expires_at(ends_at, RetentionPolicy(keep_history=False)) == ends_at

    def test_with_history(self):
        ends_at = datetime(2025, 12, 6, 14, tzinfo=timezone.utc)
        expected = datetime(2026, 12, 6, 14, tzinfo=timezone.utc)
        assert calculate_expires_at(ends_at, RetentionPolicy(keep_history=True)) == expected

    def test_leap_day_rolls_forward(self):
        leap = datetime(2024, 2, 29, 10, tzinfo=timezone.utc)
        assert add_one_year(leap) == datetime(2025, 3, 1, 10, tzinfo=timezone.utc)


class TestReconcile:
    """Test cases for reconcile."""

    def test_upserts_future_events(self):
        store = FakeStore()
        events = [make_event("a", NOW + timedelta(days=1)), make_event("b", NOW + timedelta(days=2))]

        outcome = reconcile(RetentionPolicy(False), events, NOW, store.upsert)

        assert outcome.synced_count == 2
        assert outcome.errors == []
        assert store.calls == ["a", "b"]
        assert store.records["a"][1] == NOW + timedelta(days=1)

    def test_event_ending_now_is_skipped(self):
        """Test that an event expiring exactly now is not written."""
        store = FakeStore()

        outcome = reconcile(RetentionPolicy(False), [make_event("a", NOW)], NOW, store.upsert)

        assert outcome.synced_count == 0
        assert outcome.errors == []
        assert store.calls == []

    def test_past_event_kept_with_history(self):
        """Test that a past event is still written when history is kept."""
        store = FakeStore()
        event = make_event("a", NOW - timedelta(days=30))

        outcome = reconcile(RetentionPolicy(True), [event], NOW, store.upsert)

        assert outcome.synced_count == 1
        assert store.records["a"][1] == add_one_year(event.ends_at)

    def test_old_event_skipped_even_with_history(self):
        store = FakeStore()
        event = make_event("a", NOW - timedelta(days=400))

        outcome = reconcile(RetentionPolicy(True), [event], NOW, store.upsert)

        assert outcome.synced_count == 0
        assert store.calls == []

    def test_single_failure_does_not_abort_batch(self):
        """Test that one failing upsert leaves the rest of the batch intact."""
        store = FakeStore(failing_uids={"b"})
        events = [make_event(uid, NOW + timedelta(days=1)) for uid in ("a", "b", "c", "d")]

        outcome = reconcile(RetentionPolicy(False), events, NOW, store.upsert)

        assert outcome.synced_count == 3
        assert outcome.errors == ["Failed to upsert event b"]
        assert store.calls == ["a", "b", "c", "d"]

    def test_error_message_hides_store_detail(self):
        store = FakeStore(failing_uids={"a"})

        outcome = reconcile(
            RetentionPolicy(False), [make_event("a", NOW + timedelta(days=1))], NOW, store.upsert
        )

        assert "ProvisionedThroughput" not in outcome.errors[0]
        assert outcome.errors == ["Failed to upsert event a"]

    def test_reconcile_is_idempotent(self):
        """Test that applying the same events twice leaves the same state."""
        store = FakeStore()
        events = [make_event("a", NOW + timedelta(days=1)), make_event("b", NOW + timedelta(days=2))]

        first = reconcile(RetentionPolicy(False), events, NOW, store.upsert)
        snapshot = dict(store.records)
        second = reconcile(RetentionPolicy(False), events, NOW, store.upsert)

        assert store.records == snapshot
        assert len(store.records) == 2
        assert first.synced_count == second.synced_count == 2

    def test_later_duplicate_uid_wins(self):
        """Test that a repeated uid overwrites the earlier record."""
        store = FakeStore()
        events = [
            make_event("a", NOW + timedelta(days=1), room="Zolder"),
            make_event("a", NOW + timedelta(days=1), room="Boekenzaal", is_canceled=True),
        ]

        reconcile(RetentionPolicy(False), events, NOW, store.upsert)

        stored, _ = store.records["a"]
        assert stored.room == "Boekenzaal"
        assert stored.is_canceled is True

    def test_accepts_generator(self):
        store = FakeStore()
        events = (make_event(uid, NOW + timedelta(days=1)) for uid in ("a", "b"))

        outcome = reconcile(RetentionPolicy(False), events, NOW, store.upsert)

        assert outcome.synced_count == 2

    def test_empty_batch(self):
        outcome = reconcile(RetentionPolicy(False), [], NOW, FakeStore().upsert)

        assert outcome.synced_count == 0
        assert outcome.errors == []
