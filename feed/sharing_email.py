"""Parser for Outlook calendar sharing emails."""
import email as email_lib
import logging
from email import policy
from email.utils import parseaddr
from typing import Optional

from bs4 import BeautifulSoup

from feed.ics_fetcher import DEFAULT_ALLOWED_HOST, FeedUrlError, validate_feed_url
from processor.models import SharingInvite

logger = logging.getLogger(__name__)

DEFAULT_SENDER_DOMAIN = "student.kuleuven.be"
SHARING_METADATA_FILENAME = "sharing_metadata.xml"
SHARING_METADATA_MIME_TYPE = "application/x-sharing-metadata-xml"


class EmailParseError(Exception):
    """Raised when an email is not a usable calendar share."""


def extract_ics_url_from_xml(xml_content: str) -> Optional[str]:
    """
    Extract the ICalUrl from a sharing_metadata.xml document.

    Args:
        xml_content: Attachment text

    Returns:
        Trimmed URL, or None if the document has no ICalUrl
    """
    soup = BeautifulSoup(xml_content, 'html.parser')
    # html.parser lower-cases tag names
    element = soup.find('icalurl')
    if element is None:
        return None

    url = element.get_text(strip=True)
    return url or None


def _find_sharing_metadata(message) -> Optional[str]:
    for part in message.walk():
        if part.is_multipart():
            continue
        if (part.get_filename() == SHARING_METADATA_FILENAME or
                part.get_content_type() == SHARING_METADATA_MIME_TYPE):
            payload = part.get_payload(decode=True) or b''
            charset = part.get_content_charset() or 'utf-8'
            return payload.decode(charset, errors='replace')
    return None


def parse_calendar_sharing_email(
    raw_email: bytes,
    allowed_sender_domain: str = DEFAULT_SENDER_DOMAIN,
    allowed_feed_host: str = DEFAULT_ALLOWED_HOST
) -> SharingInvite:
    """
    Parse a calendar sharing email into the sender and feed URL.

    Args:
        raw_email: Raw MIME message
        allowed_sender_domain: Domain senders must belong to
        allowed_feed_host: Host the shared feed must live on

    Returns:
        SharingInvite with the lowercased sender address and feed URL

    Raises:
        EmailParseError: If the email is not an acceptable calendar share
    """
    message = email_lib.message_from_bytes(raw_email, policy=policy.default)

    _, sender_email = parseaddr(str(message.get('From', '')))
    sender_email = sender_email.lower()
    if not sender_email:
        raise EmailParseError("No sender email found")

    if not sender_email.endswith(f"@{allowed_sender_domain.lower()}"):
        raise EmailParseError(f"Sender must be from @{allowed_sender_domain}")

    xml_content = _find_sharing_metadata(message)
    if xml_content is None:
        raise EmailParseError(f"No {SHARING_METADATA_FILENAME} attachment found")

    feed_url = extract_ics_url_from_xml(xml_content)
    if not feed_url:
        raise EmailParseError("No ICalUrl found in attachment")

    try:
        validate_feed_url(feed_url, allowed_feed_host)
    except FeedUrlError as e:
        raise EmailParseError(str(e)) from e

    logger.info(f"Parsed calendar share from {sender_email}")
    return SharingInvite(sender_email=sender_email, feed_url=feed_url)
