"""Parser extracting seat reservations from an iCalendar feed."""
import logging
import re
from typing import Iterator, List, Optional, Sequence

from processor.civil_time import CivilTimeFormatError, parse_civil_timestamp
from processor.library_patterns import LIBRARY_PATTERNS, LibraryPattern, match_summary
from processor.models import ParsedEvent

logger = logging.getLogger(__name__)

EVENT_BEGIN = "BEGIN:VEVENT"

# Line break followed by one space or tab marks a folded continuation line
FOLDED_LINE_RE = re.compile(r"\r?\n[ \t]")
WHITESPACE_RE = re.compile(r"\s+")


def unfold_lines(content: str) -> str:
    """Join folded continuation lines back onto the line they belong to."""
    return FOLDED_LINE_RE.sub("", content)


class EventBlocks:
    """
    Iterable over the VEVENT blocks of a feed.

    Text before the first BEGIN:VEVENT is dropped. Each iteration starts
    from the beginning again, and blocks are produced lazily.
    """

    def __init__(self, content: str):
        self._unfolded = unfold_lines(content)

    def __iter__(self) -> Iterator[str]:
        text = self._unfolded
        start = text.find(EVENT_BEGIN)
        while start != -1:
            start += len(EVENT_BEGIN)
            end = text.find(EVENT_BEGIN, start)
            yield text[start:] if end == -1 else text[start:end]
            start = end


def get_field(block: str, name: str) -> Optional[str]:
    """
    Read the first value of a property from an event block.

    Property parameters are tolerated, e.g. ``DTSTART;TZID=...:value``.

    Args:
        block: Unfolded VEVENT text
        name: Property name, matched case-sensitively

    Returns:
        Trimmed value, or None when the property is absent
    """
    pattern = re.compile(rf"^{re.escape(name)}(?:;[^:\r\n]*)?:(.*)$", re.MULTILINE)
    match = pattern.search(block)
    return match.group(1).strip() if match else None


class IcsParser:
    """Turns feed text into reservation events."""

    def __init__(self, patterns: Sequence[LibraryPattern] = LIBRARY_PATTERNS):
        """
        Initialize the parser.

        Args:
            patterns: Ordered reservation title patterns
        """
        self.patterns = tuple(patterns)

    def parse(self, content: str) -> List[ParsedEvent]:
        """
        Parse all reservation events from feed text.

        Blocks that are incomplete, are not reservations, or carry an
        unreadable timestamp are skipped.

        Args:
            content: Raw iCalendar text

        Returns:
            ParsedEvent objects in feed order
        """
        events = []
        for block in EventBlocks(content):
            event = self.parse_event_block(block)
            if event:
                events.append(event)

        logger.debug(f"Parsed {len(events)} reservation events from feed")
        return events

    def parse_event_block(self, block: str) -> Optional[ParsedEvent]:
        """
        Build a ParsedEvent from a single VEVENT block.

        Args:
            block: Unfolded VEVENT text

        Returns:
            ParsedEvent, or None if the block is skipped
        """
        summary = get_field(block, "SUMMARY")
        uid = get_field(block, "UID")
        dtstart = get_field(block, "DTSTART")
        dtend = get_field(block, "DTEND")

        if not summary or not uid or not dtstart or not dtend:
            logger.debug("Skipping event block with missing fields")
            return None

        match = match_summary(summary, self.patterns)
        if not match:
            return None

        # UIDs can be wrapped across lines
        uid = WHITESPACE_RE.sub("", uid)

        try:
            starts_at = parse_civil_timestamp(dtstart)
            ends_at = parse_civil_timestamp(dtend)
        except CivilTimeFormatError as e:
            logger.warning(f"Skipping reservation {uid}: {e}")
            return None

        return ParsedEvent(
            uid=uid,
            summary=summary,
            starts_at=starts_at,
            ends_at=ends_at,
            is_canceled=match.is_canceled,
            library_code=match.library_code,
            room=match.room,
            seat_number=match.seat_number
        )


def parse_ics_content(content: str) -> List[ParsedEvent]:
    """Parse reservation events using the default library patterns."""
    return IcsParser().parse(content)
