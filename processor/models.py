"""Data models for reservation parsing and synchronization."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass(frozen=True)
class PatternMatch:
    """Structured fields recovered from a reservation title."""
    library_code: str
    is_canceled: bool
    room: str
    seat_number: str


@dataclass(frozen=True)
class ParsedEvent:
    """Reservation extracted from a calendar feed."""
    uid: str
    summary: str
    starts_at: datetime
    ends_at: datetime
    is_canceled: bool
    library_code: str
    room: str
    seat_number: str


@dataclass(frozen=True)
class RetentionPolicy:
    """Per-user choice of keeping past reservations around."""
    keep_history: bool


@dataclass
class User:
    """Account owning a calendar feed."""
    user_id: str
    email: str
    feed_url: Optional[str]
    feed_last_synced: Optional[str]
    keep_history: bool

    @property
    def retention_policy(self) -> RetentionPolicy:
        return RetentionPolicy(keep_history=self.keep_history)


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of persisting a single reservation."""
    ok: bool
    error: Optional[str] = None


@dataclass
class SyncOutcome:
    """Result of one user's sync run."""
    synced_count: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class SharingInvite:
    """Calendar share received by email."""
    sender_email: str
    feed_url: str
