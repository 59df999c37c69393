"""Builders for throwaway chat.db files.

The schema is the subset of the macOS Messages schema that the reader
queries. Timestamps are stored as Apple nanoseconds like the real store.

Usage:
    from tests.fixtures.chat_db import build_chat_db, make_attributed_body

    db_path = build_chat_db(tmp_path / "chat.db")
"""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from integrations.imessage.parser import datetime_to_apple_timestamp

SCHEMA = """
CREATE TABLE chat (
    ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
    guid TEXT UNIQUE NOT NULL,
    style INTEGER,
    chat_identifier TEXT,
    service_name TEXT,
    display_name TEXT
);
CREATE TABLE handle (
    ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL,
    service TEXT NOT NULL
);
CREATE TABLE message (
    ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
    guid TEXT UNIQUE NOT NULL,
    text TEXT,
    attributedBody BLOB,
    handle_id INTEGER DEFAULT 0,
    date INTEGER,
    is_from_me INTEGER DEFAULT 0,
    cache_has_attachments INTEGER DEFAULT 0
);
CREATE TABLE chat_message_join (
    chat_id INTEGER REFERENCES chat (ROWID) ON DELETE CASCADE,
    message_id INTEGER REFERENCES message (ROWID) ON DELETE CASCADE,
    message_date INTEGER DEFAULT 0,
    PRIMARY KEY (chat_id, message_id)
);
CREATE TABLE chat_handle_join (
    chat_id INTEGER REFERENCES chat (ROWID) ON DELETE CASCADE,
    handle_id INTEGER REFERENCES handle (ROWID) ON DELETE CASCADE,
    UNIQUE (chat_id, handle_id)
);
CREATE TABLE attachment (
    ROWID INTEGER PRIMARY KEY AUTOINCREMENT,
    guid TEXT UNIQUE NOT NULL,
    filename TEXT,
    mime_type TEXT,
    transfer_name TEXT,
    total_bytes INTEGER DEFAULT 0
);
CREATE TABLE message_attachment_join (
    message_id INTEGER REFERENCES message (ROWID) ON DELETE CASCADE,
    attachment_id INTEGER REFERENCES attachment (ROWID) ON DELETE CASCADE,
    UNIQUE (message_id, attachment_id)
);
"""

# Text recovered only from attributedBody (message.text is NULL)
BLOB_ONLY_TEXT = "Recovered from the attributed body: pizza night"

_BODY_PREFIX = (
    b"\x04\x0bstreamtyped\x81\xe8\x03\x84\x01@\x84\x84\x84\x12NSAttributedString\x00"
    b"\x84\x84\x08NSObject\x00\x85\x92\x84\x84\x84\x08NSString\x01\x94\x84\x01+"
)
_BODY_SUFFIX = (
    b"\x86\x84\x02iI\x01\x05\x92\x84\x84\x84\x0cNSDictionary\x00\x94\x84\x01i\x01"
    b"\x92\x84\x96\x96\x1d__kIMMessagePartAttributeName\x86\x92\x84\x84\x84\x08NSNumber"
    b"\x00\x84\x84\x07NSValue\x00\x94\x84\x01*\x84\x99\x99\x00\x86\x86\x86"
)


def encode_length(length: int) -> bytes:
    """Encode a typedstream length prefix."""
    if length < 0x80:
        return bytes([length])
    if length < 0x10000:
        return b"\x81" + length.to_bytes(2, "little")
    return b"\x82" + length.to_bytes(4, "little")


def make_attributed_body(text: str) -> bytes:
    """Build an attributedBody blob shaped like the ones Messages writes."""
    encoded = text.encode("utf-8")
    return _BODY_PREFIX + encode_length(len(encoded)) + encoded + _BODY_SUFFIX


def apple_ns(year: int, month: int, day: int, hour: int = 0, minute: int = 0) -> int:
    """Apple nanosecond timestamp for a UTC wall-clock time."""
    return datetime_to_apple_timestamp(datetime(year, month, day, hour, minute, tzinfo=UTC))


# (rowid, guid, style, chat_identifier, display_name)
CHATS = [
    (1, "iMessage;-;+15551234567", 45, "+15551234567", ""),
    (2, "iMessage;+;chat100", 43, "chat100", "Family"),
    (3, "SMS;-;+15559876543", 45, "+15559876543", None),
    (4, "iMessage;-;empty@example.com", 45, "empty@example.com", None),
]

# (rowid, id, service)
HANDLES = [
    (1, "+15551234567", "iMessage"),
    (2, "jane@example.com", "iMessage"),
    (3, "+15559876543", "SMS"),
]

# (chat_id, handle_id); handle 2 is inserted first to check ROWID ordering
CHAT_HANDLES = [(1, 1), (2, 2), (2, 1), (3, 3)]

# (rowid, chat_id, text, attributed_body, handle_id, date, is_from_me, has_attachments)
MESSAGES = [
    (1, 1, "Hello there", None, 1, apple_ns(2024, 1, 10, 10), 0, 0),
    (2, 1, "Dinner at 7?", None, 0, apple_ns(2024, 1, 10, 11), 1, 0),
    (3, 1, None, make_attributed_body(BLOB_ONLY_TEXT), 1, apple_ns(2024, 1, 11, 9), 0, 0),
    (4, 2, "Family dinner Sunday", None, 2, apple_ns(2024, 1, 12, 12), 0, 1),
    (5, 2, "I'll bring ÉCLAIRS", None, 0, apple_ns(2024, 1, 13, 8), 1, 0),
    (6, 3, "50% off_sale today", None, 3, apple_ns(2024, 1, 14, 15), 0, 0),
    (7, 1, "no date", None, 0, 0, 1, 0),
]

# (rowid, guid, filename, mime_type, transfer_name, total_bytes)
ATTACHMENTS = [
    (
        1,
        "at_1",
        "~/Library/Messages/Attachments/ab/12/IMG_1.heic",
        "image/heic",
        "IMG_1.heic",
        2048,
    ),
    (2, "at_2", None, "application/pdf", "menu.pdf", 1000),
    (3, "at_3", "/tmp/orphan.txt", None, None, 0),
]

# (message_id, attachment_id)
MESSAGE_ATTACHMENTS = [(4, 1), (4, 2)]


def build_chat_db(path: Path) -> Path:
    """Create a populated chat.db at path and return the path."""
    conn = sqlite3.connect(path)
    try:
        conn.executescript(SCHEMA)
        conn.executemany(
            "INSERT INTO chat (ROWID, guid, style, chat_identifier, display_name) "
            "VALUES (?, ?, ?, ?, ?)",
            CHATS,
        )
        conn.executemany("INSERT INTO handle (ROWID, id, service) VALUES (?, ?, ?)", HANDLES)
        conn.executemany(
            "INSERT INTO chat_handle_join (chat_id, handle_id) VALUES (?, ?)", CHAT_HANDLES
        )
        for rowid, chat_id, text, body, handle_id, date, is_from_me, has_att in MESSAGES:
            conn.execute(
                "INSERT INTO message (ROWID, guid, text, attributedBody, handle_id, date, "
                "is_from_me, cache_has_attachments) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (rowid, f"msg_{rowid}", text, body, handle_id, date, is_from_me, has_att),
            )
            conn.execute(
                "INSERT INTO chat_message_join (chat_id, message_id, message_date) "
                "VALUES (?, ?, ?)",
                (chat_id, rowid, date),
            )
        conn.executemany(
            "INSERT INTO attachment (ROWID, guid, filename, mime_type, transfer_name, "
            "total_bytes) VALUES (?, ?, ?, ?, ?, ?)",
            ATTACHMENTS,
        )
        conn.executemany(
            "INSERT INTO message_attachment_join (message_id, attachment_id) VALUES (?, ?)",
            MESSAGE_ATTACHMENTS,
        )
        conn.commit()
    finally:
        conn.close()
    return path
