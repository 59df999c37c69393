"""iMessage chat.db integration.

Provides read-only access to the macOS Messages database and contact
lookup through the native bridge executable.

Example:
    from integrations.imessage import BridgeContactResolver, ChatDBReader

    with ChatDBReader(contact_resolver=BridgeContactResolver()) as reader:
        if reader.check_access():
            for chat in reader.list_chats(limit=10):
                messages = reader.list_messages(chat_id=chat.id)

            hits = reader.search_messages("dinner", contact_name="Jane")
"""

from .contacts import BridgeContactResolver
from .reader import CHAT_DB_PATH, ArchiveConnection, ChatDBReader

__all__ = ["ArchiveConnection", "BridgeContactResolver", "ChatDBReader", "CHAT_DB_PATH"]
