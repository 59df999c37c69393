"""SQL queries for iMessage chat.db access.

Note: All filter parameters (with_*_filter flags and placeholder counts) only
control query construction. User input is NEVER interpolated into query
strings - all user values are passed as parameterized query arguments.

The queries rely on two SQL functions registered on every archive connection:
resolve_text(text, attributedBody) and normalize_handle(identifier).
"""

# Last message of each chat is joined in via a correlated subquery
_CHAT_SELECT = """
        SELECT
            chat.ROWID as chat_rowid,
            chat.guid,
            chat.chat_identifier,
            chat.display_name,
            chat.style,
            last_message.ROWID as last_message_rowid,
            last_message.text as last_message_text,
            last_message.attributedBody as last_message_body,
            last_message.date as last_message_date
        FROM chat
        LEFT JOIN message AS last_message ON last_message.ROWID = (
            SELECT message.ROWID
            FROM chat_message_join
            JOIN message ON chat_message_join.message_id = message.ROWID
            WHERE chat_message_join.chat_id = chat.ROWID
            ORDER BY message.date DESC, message.ROWID DESC
            LIMIT 1
        )
"""

_MESSAGE_SELECT = """
        SELECT
            message.ROWID as message_rowid,
            message.guid,
            message.text,
            message.attributedBody,
            message.date,
            message.is_from_me,
            message.cache_has_attachments,
            handle.id as sender_identifier,
            chat_message_join.chat_id as chat_rowid
        FROM message
        LEFT JOIN chat_message_join ON chat_message_join.message_id = message.ROWID
        LEFT JOIN handle ON message.handle_id = handle.ROWID
"""

_ATTACHMENT_COLUMNS = """
            attachment.ROWID as attachment_rowid,
            attachment.guid,
            attachment.filename,
            attachment.mime_type,
            attachment.transfer_name,
            attachment.total_bytes,
            message_attachment_join.message_id as message_rowid
"""

QUERIES = {
    "chats": _CHAT_SELECT
    + """
        ORDER BY last_message.date DESC, chat.ROWID DESC
        LIMIT ?
    """,
    "chat": _CHAT_SELECT
    + """
        WHERE chat.ROWID = ?
    """,
    "chat_participants": """
        SELECT
            chat_handle_join.chat_id as chat_rowid,
            handle.ROWID as handle_rowid,
            handle.id as identifier,
            handle.service
        FROM chat_handle_join
        JOIN handle ON chat_handle_join.handle_id = handle.ROWID
        WHERE chat_handle_join.chat_id IN ({placeholders})
        ORDER BY handle.ROWID
    """,
    "contact_chat_ids": """
        SELECT DISTINCT chat_handle_join.chat_id
        FROM chat_handle_join
        JOIN handle ON chat_handle_join.handle_id = handle.ROWID
        WHERE normalize_handle(handle.id) IN ({placeholders})
        ORDER BY chat_handle_join.chat_id
    """,
    "messages": _MESSAGE_SELECT
    + """
        WHERE 1 = 1
        {chat_id_filter}
        {chat_ids_filter}
        {before_filter}
        {after_filter}
        {from_me_filter}
        {sender_filter}
        {has_attachments_filter}
        {text_filter}
        ORDER BY message.date DESC, message.ROWID DESC
        LIMIT ?
    """,
    "message": _MESSAGE_SELECT
    + """
        WHERE message.ROWID = ?
        LIMIT 1
    """,
    "attachments": """
        SELECT DISTINCT
"""
    + _ATTACHMENT_COLUMNS
    + """,
            message.date as message_date
        FROM attachment
        JOIN message_attachment_join ON attachment.ROWID = message_attachment_join.attachment_id
        JOIN message ON message.ROWID = message_attachment_join.message_id
        LEFT JOIN chat_message_join ON chat_message_join.message_id = message.ROWID
        WHERE 1 = 1
        {message_id_filter}
        {chat_id_filter}
        ORDER BY message.date DESC, attachment.ROWID DESC
        LIMIT ?
    """,
    "attachment": """
        SELECT
"""
    + _ATTACHMENT_COLUMNS
    + """
        FROM attachment
        LEFT JOIN message_attachment_join
            ON attachment.ROWID = message_attachment_join.attachment_id
        WHERE attachment.ROWID = ?
        LIMIT 1
    """,
    "access_check": """
        SELECT 1 FROM chat LIMIT 1
    """,
}


def placeholders(count: int) -> str:
    """Return a comma-separated list of count '?' placeholders."""
    return ", ".join(["?"] * count)


def get_query(
    name: str,
    *,
    placeholder_count: int = 0,
    with_chat_id_filter: bool = False,
    chat_ids_count: int = 0,
    with_before_filter: bool = False,
    with_after_filter: bool = False,
    with_from_me_filter: bool = False,
    with_sender_filter: bool = False,
    with_has_attachments_filter: bool = False,
    with_text_filter: bool = False,
    with_message_id_filter: bool = False,
) -> str:
    """Get SQL query with the requested filter clauses.

    Args:
        name: Query name (chats, chat, chat_participants, contact_chat_ids,
            messages, message, attachments, attachment, access_check)
        placeholder_count: Number of IN-list placeholders (chat_participants,
            contact_chat_ids)
        with_chat_id_filter: If True, include AND chat_message_join.chat_id = ?
        chat_ids_count: If > 0, include AND chat_message_join.chat_id IN (...) with
            this many placeholders (messages)
        with_before_filter: If True, include AND message.date < ? (messages)
        with_after_filter: If True, include AND message.date > ? (messages)
        with_from_me_filter: If True, include AND message.is_from_me = ? (messages)
        with_sender_filter: If True, include AND handle.id = ? (messages)
        with_has_attachments_filter: If True, include
            AND message.cache_has_attachments = ? (messages)
        with_text_filter: If True, include a LIKE match on the resolved text (messages)
        with_message_id_filter: If True, include AND message_attachment_join.message_id = ?
            (attachments)

    Returns:
        SQL query string with filters applied

    Raises:
        KeyError: If query name not found
    """
    query = QUERIES[name]

    # Build filter clauses from flags (never from user input)
    chat_id_filter = "AND chat_message_join.chat_id = ?" if with_chat_id_filter else ""
    if chat_ids_count > 0:
        chat_ids_filter = f"AND chat_message_join.chat_id IN ({placeholders(chat_ids_count)})"
    else:
        chat_ids_filter = ""
    before_filter = "AND message.date < ?" if with_before_filter else ""
    after_filter = "AND message.date > ?" if with_after_filter else ""
    from_me_filter = "AND message.is_from_me = ?" if with_from_me_filter else ""
    sender_filter = "AND handle.id = ?" if with_sender_filter else ""
    if with_has_attachments_filter:
        has_attachments_filter = "AND message.cache_has_attachments = ?"
    else:
        has_attachments_filter = ""
    if with_text_filter:
        text_filter = "AND resolve_text(message.text, message.attributedBody) LIKE ? ESCAPE '\\'"
    else:
        text_filter = ""
    if with_message_id_filter:
        message_id_filter = "AND message_attachment_join.message_id = ?"
    else:
        message_id_filter = ""

    return query.format(
        placeholders=placeholders(placeholder_count),
        chat_id_filter=chat_id_filter,
        chat_ids_filter=chat_ids_filter,
        before_filter=before_filter,
        after_filter=after_filter,
        from_me_filter=from_me_filter,
        sender_filter=sender_filter,
        has_attachments_filter=has_attachments_filter,
        text_filter=text_filter,
        message_id_filter=message_id_filter,
    )


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so text matches literally with ESCAPE '\\'."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
