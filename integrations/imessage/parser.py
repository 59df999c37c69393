"""Row parsing utilities for iMessage chat.db.

Handles:
- Resolving message text from the text column or the attributedBody blob
- Apple Core Data timestamp conversion
- Phone number and email normalization
- Mapping query rows to contract records
"""

import logging
import re
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from contracts.imessage import GROUP_CHAT_STYLE, Attachment, Chat, Handle, Message
from msgarchive.errors import validation_type_error

from .typedstream import extract_marker_text, scan_printable_regions

logger = logging.getLogger(__name__)

# Seconds between the Unix epoch and Apple's Core Data epoch (2001-01-01 00:00:00 UTC)
APPLE_EPOCH_OFFSET = 978307200
NANOSECONDS_PER_SECOND = 1_000_000_000
NANOSECONDS_PER_MILLISECOND = 1_000_000

UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
APPLE_EPOCH = UNIX_EPOCH + timedelta(seconds=APPLE_EPOCH_OFFSET)


def apple_timestamp_to_datetime(timestamp: int | float | None) -> datetime | None:
    """Convert Apple Core Data timestamp to datetime.

    Apple stores timestamps as nanoseconds since 2001-01-01 00:00:00 UTC.
    Zero is the archive's "no timestamp" sentinel.

    Args:
        timestamp: Nanoseconds since Apple epoch, or None

    Returns:
        Millisecond-resolution datetime in UTC, or None for 0/None/out-of-range values
    """
    if timestamp is None or timestamp == 0:
        return None

    try:
        unix_ms = int(timestamp) // NANOSECONDS_PER_MILLISECOND + APPLE_EPOCH_OFFSET * 1000
        return UNIX_EPOCH + timedelta(milliseconds=unix_ms)
    except (OverflowError, ValueError) as e:
        logger.debug("Failed to parse timestamp %s: %s", timestamp, e)
        return None


def parse_iso_datetime(value: str, field: str = "date") -> datetime:
    """Parse an ISO-8601 string. A trailing 'Z' and naive values mean UTC.

    Raises:
        ValidationError: If the string is not ISO-8601.
    """
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError as e:
        raise validation_type_error(field, value, "ISO-8601 timestamp") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def datetime_to_apple_timestamp(value: datetime | str, field: str = "date") -> int:
    """Convert datetime or ISO-8601 string to Apple Core Data timestamp.

    Args:
        value: Aware or naive (treated as UTC) datetime, or ISO-8601 string
        field: Field name reported in the validation error

    Returns:
        Integer nanoseconds since Apple epoch

    Raises:
        ValidationError: If value is not a datetime or parseable ISO-8601 string
    """
    if isinstance(value, str):
        dt = parse_iso_datetime(value, field)
    elif isinstance(value, datetime):
        dt = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    else:
        raise validation_type_error(field, value, "datetime or ISO-8601 string")

    delta = dt - APPLE_EPOCH
    seconds = delta.days * 86400 + delta.seconds
    return seconds * NANOSECONDS_PER_SECOND + delta.microseconds * 1000


def format_iso(dt: datetime | None) -> str | None:
    """Format a datetime as ISO-8601 UTC with millisecond precision and a 'Z' suffix."""
    if dt is None:
        return None
    return dt.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_attributed_body(data: bytes | None) -> str:
    """Extract plain text from attributedBody column.

    Tries the marker strategies first, then falls back to the longest
    printable region of the blob.

    Args:
        data: Raw bytes from attributedBody column, or None

    Returns:
        Extracted text, or "" if nothing could be recovered
    """
    if not data:
        return ""

    try:
        blob = bytes(data)
        marker_text = extract_marker_text(blob)
        if marker_text is not None:
            return marker_text
        return scan_printable_regions(blob)
    except Exception as e:
        logger.debug("Failed to parse attributedBody: %s", e)
        return ""


def resolve_text(text: str | None, attributed_body: bytes | None) -> str:
    """Return the best available message text.

    Non-blank text is returned verbatim and the blob is not decoded.
    Registered on archive connections as the SQL function resolve_text(text, blob).

    Args:
        text: Value of the message.text column
        attributed_body: Value of the message.attributedBody column

    Returns:
        Message text, or "" if none is available
    """
    if isinstance(text, str) and text.strip():
        return text

    return parse_attributed_body(attributed_body)


def normalize_phone_number(phone: str | None) -> str | None:
    """Normalize phone number format.

    Strips formatting characters and ensures consistent format.

    Args:
        phone: Raw phone number string

    Returns:
        Normalized phone number, None if input is None, or original string if not a phone number
    """
    if phone is None:
        return None

    phone = phone.strip()

    if "@" in phone:
        return phone

    has_plus = phone.startswith("+")
    cleaned = re.sub(r"[\s\-\(\)\.]", "", phone)

    if has_plus or cleaned.startswith("+"):
        return cleaned

    if cleaned.startswith("1") and len(cleaned) == 11:
        # US number with country code
        return "+" + cleaned
    elif len(cleaned) == 10:
        # Assume US number without country code
        return "+1" + cleaned

    # International without +, can't reliably determine the country code
    return cleaned


def normalize_handle(identifier: str | None) -> str | None:
    """Normalize a handle identifier for matching.

    Emails are lower-cased, phone numbers go through normalize_phone_number.
    Registered on archive connections as the SQL function normalize_handle(id).
    """
    if not isinstance(identifier, str):
        return None
    if "@" in identifier:
        return identifier.strip().lower()
    return normalize_phone_number(identifier)


def row_to_handle(row: Any) -> Handle:
    """Map a participant row to a Handle."""
    return Handle(
        id=str(row["handle_rowid"]),
        identifier=row["identifier"],
        service=row["service"] or "",
    )


def row_to_chat(row: Any, participants: list[Handle] | None = None) -> Chat:
    """Map a chat row (with its last message columns) to a Chat.

    Args:
        row: Row from the chats/chat query
        participants: Participant handles for this chat

    Returns:
        Chat with is_group derived from chat.style
    """
    last_message_text: str | None = None
    if row["last_message_rowid"] is not None:
        last_message_text = (
            resolve_text(row["last_message_text"], row["last_message_body"]) or None
        )

    return Chat(
        id=str(row["chat_rowid"]),
        guid=row["guid"],
        chat_identifier=row["chat_identifier"] or "",
        display_name=row["display_name"] or None,
        is_group=row["style"] == GROUP_CHAT_STYLE,
        participants=participants or [],
        last_message_text=last_message_text,
        last_message_date=apple_timestamp_to_datetime(row["last_message_date"]),
    )


def row_to_message(row: Any) -> Message:
    """Map a message row to a Message.

    The sender handle is only kept for messages not sent by me.
    """
    is_from_me = bool(row["is_from_me"])
    chat_rowid = row["chat_rowid"]

    return Message(
        id=str(row["message_rowid"]),
        guid=row["guid"],
        text=resolve_text(row["text"], row["attributedBody"]),
        date=apple_timestamp_to_datetime(row["date"]),
        is_from_me=is_from_me,
        chat_id=str(chat_rowid) if chat_rowid is not None else None,
        sender_handle=None if is_from_me else (row["sender_identifier"] or None),
        has_attachments=bool(row["cache_has_attachments"]),
    )


def row_to_attachment(row: Any) -> Attachment:
    """Map an attachment row to an Attachment. '~' in filename is expanded."""
    filename = row["filename"]
    message_rowid = row["message_rowid"]
    total_bytes = row["total_bytes"]
    # A negative size is reported as unknown
    if total_bytes is not None and total_bytes < 0:
        total_bytes = None

    return Attachment(
        id=str(row["attachment_rowid"]),
        guid=row["guid"],
        file_path=str(Path(filename).expanduser()) if filename else "",
        mime_type=row["mime_type"] or None,
        transfer_name=row["transfer_name"] or None,
        total_bytes=total_bytes,
        message_id=str(message_rowid) if message_rowid is not None else None,
    )
