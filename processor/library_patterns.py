"""Allowlist of library reservation title formats.

Only calendar events whose title matches one of these patterns are treated as
seat reservations; every other event in a feed is ignored. Each pattern has
three groups: an optional cancellation prefix, the room, and the seat number.

Order matters: patterns are tried top to bottom and the first match wins.
"""
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from processor.models import PatternMatch

UNKNOWN_ROOM = "Unknown"


@dataclass(frozen=True)
class LibraryPattern:
    """A library code and the title format its reservations use."""
    library_code: str
    pattern: re.Pattern


LIBRARY_PATTERNS: Tuple[LibraryPattern, ...] = (
    LibraryPattern("CBA", re.compile(r"^(Canceled:\s*)?CBA - (.+?) Seat (\d+)$")),
    LibraryPattern("RBIB", re.compile(r"^(Canceled:\s*)?RBIB - (.+?) Seat (\d+)$")),
    # Room can be empty
    LibraryPattern("SBIB", re.compile(r"^(Canceled:\s*)?SBIB - (.*?) ?Seat (\d+)$")),
    # Double space before Seat
    LibraryPattern("EBIB", re.compile(r"^(Canceled:\s*)?EBIB - (.+?) +Seat (\d+)$")),
    LibraryPattern("Agora", re.compile(r"^(Canceled:\s*)?Agora - (.+?) Seat (\d+)$")),
    # Room can be empty
    LibraryPattern("PBIB", re.compile(r"^(Canceled:\s*)?PBIB - (.*?) ?Seat (\d+)$")),
    # No dash after the library name
    LibraryPattern("Erasmushuis", re.compile(r"^(Canceled:\s*)?Erasmushuis (.+?) Seat (\d+)$")),
    LibraryPattern("FBIB", re.compile(r"^(Canceled:\s*)?FBIB - (.+?) Seat (\d+)$")),
    # Second " - " before Seat
    LibraryPattern("MSB", re.compile(r"^(Canceled:\s*)?MSB - (.+?) - Seat (\d+)$")),
)


def match_summary(
    summary: str,
    patterns: Iterable[LibraryPattern] = LIBRARY_PATTERNS
) -> Optional[PatternMatch]:
    """
    Match an event title against the reservation patterns.

    Args:
        summary: Event title (SUMMARY field)
        patterns: Ordered patterns to try

    Returns:
        PatternMatch for the first matching pattern, or None if the title
        is not a known reservation format
    """
    for entry in patterns:
        match = entry.pattern.match(summary)
        if match:
            room = (match.group(2) or "").strip()
            return PatternMatch(
                library_code=entry.library_code,
                is_canceled=bool(match.group(1)),
                room=room or UNKNOWN_ROOM,
                seat_number=match.group(3)
            )

    return None
