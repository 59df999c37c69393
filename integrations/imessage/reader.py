"""Read-only iMessage chat.db access.

Implements the ArchiveReader protocol from contracts/imessage.py.
"""

import logging
import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Self

from contracts.imessage import Attachment, Chat, ContactResolver, Handle, Message
from msgarchive.config import DEFAULT_CHAT_DB_PATH, get_config
from msgarchive.errors import (
    ConfigurationError,
    ErrorCode,
    imessage_db_not_found,
    imessage_permission_denied,
    iMessageAccessError,
    iMessageQueryError,
    validation_required,
    validation_type_error,
)
from msgarchive.utils.latency_tracker import track_latency
from msgarchive.utils.sqlite_retry import is_lock_error, sqlite_retry

from .parser import (
    datetime_to_apple_timestamp,
    normalize_handle,
    resolve_text,
    row_to_attachment,
    row_to_chat,
    row_to_handle,
    row_to_message,
)
from .queries import escape_like, get_query

logger = logging.getLogger(__name__)

# Default path to iMessage database
CHAT_DB_PATH = DEFAULT_CHAT_DB_PATH

# Database connection timeout (handles SQLITE_BUSY from concurrent iMessage app access)
DB_TIMEOUT_SECONDS = 5.0

# Stay below SQLite's historical 999 bound-parameter limit
MAX_IN_PARAMS = 900

_PERMISSION_SIGNATURES = ("unable to open database", "authorization denied")


def _is_permission_error(e: Exception) -> bool:
    error_str = str(e).lower()
    return any(signature in error_str for signature in _PERMISSION_SIGNATURES)


def _chunks(items: Sequence[Any], size: int | None = None) -> Iterator[Sequence[Any]]:
    size = size or MAX_IN_PARAMS
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _message_order_key(row: sqlite3.Row) -> tuple[bool, int, int]:
    # Matches ORDER BY message.date DESC, message.ROWID DESC (NULL dates last)
    date = row["date"]
    return date is not None, date or 0, row["message_rowid"]


class ArchiveConnection:
    """Single cached read-only connection to chat.db.

    The connection is opened lazily on first use and reused until close().
    All statement execution is serialized on an internal lock, since one
    SQLite connection does not support concurrent statements.

    Example:
        archive = ArchiveConnection(Path("~/Library/Messages/chat.db").expanduser())
        with archive.connection() as conn:
            conn.execute("SELECT COUNT(*) FROM message").fetchone()
        archive.close()
    """

    def __init__(self, db_path: Path, timeout: float = DB_TIMEOUT_SECONDS) -> None:
        """Initialize the connection handle.

        Args:
            db_path: Path to the SQLite database file
            timeout: Busy timeout in seconds
        """
        self.db_path = db_path
        self.timeout = timeout
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def is_open(self) -> bool:
        """Whether the underlying connection has been opened."""
        return self._conn is not None

    @sqlite_retry()
    def _open(self) -> sqlite3.Connection:
        """Open a new read-only connection with the archive SQL functions registered.

        Returns:
            SQLite connection with Row factory

        Raises:
            iMessageAccessError: If the file is missing, unreadable or cannot be opened.
            sqlite3.OperationalError: If the database stays locked (retried first).
        """
        db_path_str = str(self.db_path)

        if not self.db_path.exists():
            raise imessage_db_not_found(db_path_str)

        try:
            uri = f"file:{self.db_path}?mode=ro"
            conn = sqlite3.connect(
                uri,
                uri=True,
                timeout=self.timeout,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.create_function("resolve_text", 2, resolve_text, deterministic=True)
            conn.create_function("normalize_handle", 1, normalize_handle, deterministic=True)
            return conn
        except PermissionError as e:
            raise imessage_permission_denied(db_path_str) from e
        except sqlite3.OperationalError as e:
            if is_lock_error(e):
                raise
            if _is_permission_error(e):
                raise imessage_permission_denied(db_path_str) from e
            raise iMessageAccessError(
                f"Failed to connect to database: {e}",
                db_path=db_path_str,
                code=ErrorCode.MSG_QUERY_FAILED,
                cause=e,
            ) from e
        except OSError as e:
            raise iMessageAccessError(
                f"Failed to connect to database (I/O error): {e}",
                db_path=db_path_str,
                code=ErrorCode.MSG_IO_ERROR,
                cause=e,
            ) from e

    def _get(self) -> sqlite3.Connection:
        if self._conn is None:
            try:
                self._conn = self._open()
            except sqlite3.Error as e:
                raise iMessageAccessError(
                    f"Database stayed locked while opening: {e}",
                    db_path=str(self.db_path),
                    code=ErrorCode.MSG_QUERY_FAILED,
                    cause=e,
                ) from e
            logger.debug("Opened read-only connection to %s", self.db_path)
        return self._conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager holding the connection lock for the duration of a query.

        Yields:
            SQLite connection

        Raises:
            iMessageAccessError: If the connection cannot be opened.
        """
        with self._lock:
            yield self._get()

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        with self._lock:
            if self._conn is None:
                return
            try:
                self._conn.close()
            except sqlite3.Error:
                logger.debug("Error closing database connection", exc_info=True)
            self._conn = None


class ChatDBReader:
    """Read-only access to iMessage chat.db.

    Implements ArchiveReader protocol from contracts/imessage.py.

    Free-text search uses SQLite LIKE on the resolved text of each message,
    so matching is case-insensitive for ASCII letters and case-sensitive
    for everything else. '%', '_' and '\\' in a query match literally.

    Example:
        with ChatDBReader() as reader:
            if reader.check_access():
                for chat in reader.list_chats(limit=10):
                    messages = reader.list_messages(chat_id=chat.id, limit=20)

        # Filtering by contact needs a resolver
        from integrations.imessage.contacts import BridgeContactResolver

        with ChatDBReader(contact_resolver=BridgeContactResolver()) as reader:
            messages = reader.list_messages(contact_name="Jane", after="2024-01-01T00:00:00Z")
    """

    def __init__(
        self,
        db_path: Path | str | None = None,
        *,
        contact_resolver: ContactResolver | None = None,
        connection: ArchiveConnection | None = None,
    ) -> None:
        """Initialize the reader.

        Args:
            db_path: Path to chat.db. Defaults to config, then ~/Library/Messages/chat.db
            contact_resolver: Resolver used by contact_name filters
            connection: Existing archive connection. The reader takes ownership
                and closes it in close().
        """
        config = get_config().archive

        if connection is not None:
            self._archive = connection
            self.db_path = connection.db_path
        else:
            self.db_path = Path(db_path).expanduser() if db_path else config.resolved_db_path()
            self._archive = ArchiveConnection(self.db_path, timeout=config.timeout_seconds)

        self.contact_resolver = contact_resolver
        self.default_limit = config.default_limit

    def close(self) -> None:
        """Close the database connection."""
        self._archive.close()

    def __enter__(self) -> Self:
        """Enter context manager."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Exit context manager and close connection."""
        self.close()

    # Access

    def check_access(self) -> bool:
        """Check if we have permission to read chat.db.

        Returns:
            True if access is granted, False otherwise

        Note:
            For error details, use require_access() which raises
            iMessageAccessError with specific information.
        """
        try:
            self.require_access()
            return True
        except iMessageAccessError as e:
            logger.warning("Cannot access %s: %s", self.db_path, e.message)
            return False

    def require_access(self) -> None:
        """Verify access to chat.db, raising an exception if access is denied.

        Raises:
            iMessageAccessError: If database is not found, permission is denied,
                or the file is not a readable chat database.
        """
        db_path_str = str(self.db_path)

        if not self.db_path.exists():
            raise imessage_db_not_found(db_path_str)

        try:
            with self._archive.connection() as conn:
                conn.execute(get_query("access_check")).fetchone()
        except PermissionError as e:
            raise imessage_permission_denied(db_path_str) from e
        except sqlite3.Error as e:
            if _is_permission_error(e):
                raise imessage_permission_denied(db_path_str) from e
            raise iMessageAccessError(
                f"Database error: {e}",
                db_path=db_path_str,
                code=ErrorCode.MSG_QUERY_FAILED,
                cause=e,
            ) from e
        except OSError as e:
            raise iMessageAccessError(
                f"I/O error checking access: {e}",
                db_path=db_path_str,
                code=ErrorCode.MSG_IO_ERROR,
                cause=e,
            ) from e

    # Query helpers

    def _fetchall(self, query: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        try:
            with self._archive.connection() as conn:
                return conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise iMessageQueryError(
                f"Query failed: {e}",
                query=query,
                db_path=str(self.db_path),
                cause=e,
            ) from e

    def _fetchone(self, query: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        try:
            with self._archive.connection() as conn:
                return conn.execute(query, params).fetchone()
        except sqlite3.Error as e:
            raise iMessageQueryError(
                f"Query failed: {e}",
                query=query,
                db_path=str(self.db_path),
                cause=e,
            ) from e

    def _resolve_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.default_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise validation_type_error("limit", limit, "integer >= 1")
        return limit

    @staticmethod
    def _try_rowid(value: Any) -> int | None:
        """Convert an id to a ROWID, or None if it is not a non-negative integer."""
        if isinstance(value, bool):
            return None
        if isinstance(value, int):
            return value if value >= 0 else None
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.isascii() and stripped.isdigit():
                return int(stripped)
        return None

    def _parse_rowid(self, value: Any, field: str) -> int:
        rowid = self._try_rowid(value)
        if rowid is None:
            raise validation_type_error(field, value, "numeric id")
        return rowid

    # Chats

    def list_chats(self, limit: int | None = None) -> list[Chat]:
        """Get chats ordered by most recent message.

        Args:
            limit: Maximum number of chats to return (default from config)

        Returns:
            Chats with participants and last message populated, newest first.
            Chats without messages come last.
        """
        limit = self._resolve_limit(limit)

        with track_latency("chats_fetch", limit=limit):
            rows = self._fetchall(get_query("chats"), (limit,))
            participants = self._get_participants_batch([row["chat_rowid"] for row in rows])

        return [row_to_chat(row, participants.get(row["chat_rowid"], [])) for row in rows]

    def get_chat(self, chat_id: str) -> Chat | None:
        """Get a single chat by id.

        Args:
            chat_id: Chat ROWID as a string

        Returns:
            Chat if found, None for missing or non-numeric ids
        """
        rowid = self._try_rowid(chat_id)
        if rowid is None:
            return None

        with track_latency("chat_fetch"):
            row = self._fetchone(get_query("chat"), (rowid,))
            if row is None:
                return None
            participants = self._get_participants_batch([rowid])

        return row_to_chat(row, participants.get(rowid, []))

    def _get_participants_batch(self, chat_rowids: list[int]) -> dict[int, list[Handle]]:
        """Batch fetch participant handles for a list of chat ROWIDs."""
        result: dict[int, list[Handle]] = {}
        for chunk in _chunks(chat_rowids):
            query = get_query("chat_participants", placeholder_count=len(chunk))
            for row in self._fetchall(query, chunk):
                result.setdefault(row["chat_rowid"], []).append(row_to_handle(row))
        return result

    # Messages

    def list_messages(
        self,
        *,
        chat_id: str | None = None,
        contact_name: str | None = None,
        before: datetime | str | None = None,
        after: datetime | str | None = None,
        from_me: bool | None = None,
        sender: str | None = None,
        has_attachments: bool | None = None,
        query: str | None = None,
        limit: int | None = None,
    ) -> list[Message]:
        """Get messages matching all given filters, newest first.

        Args:
            chat_id: Only messages in this chat
            contact_name: Only messages in chats with one of this contact's
                phone numbers or emails (requires a contact resolver)
            before: Only messages strictly before this datetime or ISO-8601 string
            after: Only messages strictly after this datetime or ISO-8601 string
            from_me: Only messages sent (True) or received (False) by me
            sender: Only messages from this exact handle identifier
            has_attachments: Only messages with (True) or without (False) attachments
            query: Substring to match against resolved text. Blank means no text filter.
            limit: Maximum number of messages to return (default from config)

        Returns:
            Matching messages

        Raises:
            ValidationError: If an id, date bound, limit or text argument is invalid
            ConfigurationError: If contact_name is given without a contact resolver
            ContactResolutionError: If the contact lookup fails
            iMessageQueryError: If the query fails
        """
        if query is not None and not isinstance(query, str):
            raise validation_type_error("query", query, "string")

        return self._query_messages(
            chat_id=chat_id,
            contact_name=contact_name,
            before=before,
            after=after,
            from_me=from_me,
            sender=sender,
            has_attachments=has_attachments,
            query=query if query and query.strip() else None,
            limit=limit,
        )

    def search_messages(
        self,
        query: str,
        *,
        chat_id: str | None = None,
        contact_name: str | None = None,
        before: datetime | str | None = None,
        after: datetime | str | None = None,
        from_me: bool | None = None,
        sender: str | None = None,
        has_attachments: bool | None = None,
        limit: int | None = None,
    ) -> list[Message]:
        """Search resolved message text, newest first.

        Takes the same filters as list_messages, but the query is required.

        Raises:
            ValidationError: If query is missing or blank, or a filter is invalid
        """
        if not isinstance(query, str) or not query.strip():
            raise validation_required("query")

        return self._query_messages(
            chat_id=chat_id,
            contact_name=contact_name,
            before=before,
            after=after,
            from_me=from_me,
            sender=sender,
            has_attachments=has_attachments,
            query=query,
            limit=limit,
        )

    def _query_messages(
        self,
        *,
        chat_id: str | None,
        contact_name: str | None,
        before: datetime | str | None,
        after: datetime | str | None,
        from_me: bool | None,
        sender: str | None,
        has_attachments: bool | None,
        query: str | None,
        limit: int | None,
    ) -> list[Message]:
        limit = self._resolve_limit(limit)

        # Validate everything before any contact lookup runs
        chat_rowid = self._parse_rowid(chat_id, "chat_id") if chat_id is not None else None
        before_ns = datetime_to_apple_timestamp(before, "before") if before is not None else None
        after_ns = datetime_to_apple_timestamp(after, "after") if after is not None else None
        if contact_name is not None:
            if not isinstance(contact_name, str):
                raise validation_type_error("contact_name", contact_name, "string")
            if not contact_name.strip():
                raise validation_required("contact_name")
        if sender is not None and not isinstance(sender, str):
            raise validation_type_error("sender", sender, "string")

        # One batch without a contact filter, otherwise one per chunk of chat ids
        chat_id_batches: list[Sequence[int]] = [[]]
        if contact_name is not None:
            contact_chat_ids = self._resolve_contact_chat_ids(contact_name)
            if not contact_chat_ids:
                return []
            chat_id_batches = list(_chunks(contact_chat_ids))

        leading: list[Any] = [chat_rowid] if chat_rowid is not None else []
        trailing: list[Any] = []
        if before_ns is not None:
            trailing.append(before_ns)
        if after_ns is not None:
            trailing.append(after_ns)
        if from_me is not None:
            trailing.append(1 if from_me else 0)
        if sender is not None:
            trailing.append(sender)
        if has_attachments is not None:
            trailing.append(1 if has_attachments else 0)
        if query is not None:
            trailing.append(f"%{escape_like(query)}%")
        trailing.append(limit)

        operation = "messages_search" if query is not None else "messages_fetch"
        rows: list[sqlite3.Row] = []
        with track_latency(operation, limit=limit):
            for batch in chat_id_batches:
                sql = get_query(
                    "messages",
                    with_chat_id_filter=chat_rowid is not None,
                    chat_ids_count=len(batch),
                    with_before_filter=before_ns is not None,
                    with_after_filter=after_ns is not None,
                    with_from_me_filter=from_me is not None,
                    with_sender_filter=sender is not None,
                    with_has_attachments_filter=has_attachments is not None,
                    with_text_filter=query is not None,
                )
                rows.extend(self._fetchall(sql, [*leading, *batch, *trailing]))

        if len(chat_id_batches) > 1:
            rows.sort(key=_message_order_key, reverse=True)
            rows = rows[:limit]

        return [row_to_message(row) for row in rows]

    def _resolve_contact_chat_ids(self, contact_name: str) -> list[int]:
        """Resolve a contact name to the ROWIDs of chats that include the contact.

        Returns an empty list when no contact matches or none of the contact's
        identifiers appears in any chat.
        """
        if self.contact_resolver is None:
            raise ConfigurationError(
                "Filtering by contact name requires a contact resolver",
                config_key="contacts.bridge_path",
            )

        contacts = self.contact_resolver.resolve_contact(name=contact_name)
        if not contacts:
            logger.debug("No contacts match %r", contact_name)
            return []

        identifiers = sorted(
            {
                normalized
                for contact in contacts
                for identifier in contact.identifiers()
                if (normalized := normalize_handle(identifier))
            }
        )
        if not identifiers:
            logger.debug("Contacts matching %r have no phone numbers or emails", contact_name)
            return []

        chat_ids: set[int] = set()
        with track_latency("contact_chat_resolve", identifiers=len(identifiers)):
            for chunk in _chunks(identifiers):
                query = get_query("contact_chat_ids", placeholder_count=len(chunk))
                chat_ids.update(row[0] for row in self._fetchall(query, chunk))

        if not chat_ids:
            logger.debug("No chats include contacts matching %r", contact_name)
        return sorted(chat_ids)

    def get_message(self, message_id: str) -> Message | None:
        """Get a single message by id.

        Args:
            message_id: Message ROWID as a string

        Returns:
            Message if found, None for missing or non-numeric ids
        """
        rowid = self._try_rowid(message_id)
        if rowid is None:
            return None

        with track_latency("message_fetch"):
            row = self._fetchone(get_query("message"), (rowid,))

        return row_to_message(row) if row is not None else None

    # Attachments

    def list_attachments(
        self,
        *,
        message_id: str | None = None,
        chat_id: str | None = None,
        limit: int | None = None,
    ) -> list[Attachment]:
        """Get attachments, newest owning message first.

        Args:
            message_id: Only attachments of this message
            chat_id: Only attachments of messages in this chat
            limit: Maximum number of attachments to return (default from config)

        Returns:
            Distinct attachments

        Raises:
            ValidationError: If an id or limit is invalid
        """
        limit = self._resolve_limit(limit)
        message_rowid = (
            self._parse_rowid(message_id, "message_id") if message_id is not None else None
        )
        chat_rowid = self._parse_rowid(chat_id, "chat_id") if chat_id is not None else None

        params: list[Any] = []
        if message_rowid is not None:
            params.append(message_rowid)
        if chat_rowid is not None:
            params.append(chat_rowid)
        params.append(limit)

        query = get_query(
            "attachments",
            with_message_id_filter=message_rowid is not None,
            with_chat_id_filter=chat_rowid is not None,
        )

        with track_latency("attachments_fetch", limit=limit):
            rows = self._fetchall(query, params)

        return [row_to_attachment(row) for row in rows]

    def get_attachment(self, attachment_id: str) -> Attachment | None:
        """Get a single attachment by id, or None for missing or non-numeric ids."""
        rowid = self._try_rowid(attachment_id)
        if rowid is None:
            return None

        row = self._fetchone(get_query("attachment"), (rowid,))
        return row_to_attachment(row) if row is not None else None
