"""Message archive interfaces.

Record types returned by the archive reader and the protocols that
readers and contact resolvers implement.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

# chat.style values
GROUP_CHAT_STYLE = 43
INDIVIDUAL_CHAT_STYLE = 45


@dataclass
class Handle:
    """A chat participant as stored in the handle table.

    Attributes:
        id: Handle ROWID as a string.
        identifier: Phone number or email address.
        service: Transport label ("iMessage" or "SMS").
    """

    id: str
    identifier: str
    service: str


@dataclass
class Chat:
    """Conversation with its participants and last message projection.

    Attributes:
        id: Chat ROWID as a string.
        guid: Globally unique chat identifier.
        chat_identifier: Free-form identifier (phone, email or group id).
        display_name: User-assigned name, mostly set for group chats.
        is_group: Derived from chat.style at read time.
        participants: Participant handles ordered by handle ROWID.
        last_message_text: Resolved text of the most recent message.
        last_message_date: Date of the most recent message.
    """

    id: str
    guid: str
    chat_identifier: str
    display_name: str | None
    is_group: bool
    participants: list[Handle] = field(default_factory=list)
    last_message_text: str | None = None
    last_message_date: datetime | None = None


@dataclass
class Message:
    """Message with resolved text.

    Attributes:
        id: Message ROWID as a string.
        guid: Globally unique message identifier.
        text: Resolved text, empty when nothing could be recovered.
        date: When the message was sent/received. None for the archive's zero sentinel.
        is_from_me: Whether this message was sent by the user.
        chat_id: Owning chat ROWID as a string.
        sender_handle: Sender phone/email, only set for messages not from me.
        has_attachments: Whether the message carries attachments.
    """

    id: str
    guid: str
    text: str
    date: datetime | None
    is_from_me: bool
    chat_id: str | None = None
    sender_handle: str | None = None
    has_attachments: bool = False

    def __post_init__(self) -> None:
        """Validate field constraints."""
        if self.is_from_me and self.sender_handle is not None:
            msg = "sender_handle must be None for messages sent by me"
            raise ValueError(msg)


@dataclass
class Attachment:
    """Attachment metadata.

    Attributes:
        id: Attachment ROWID as a string.
        guid: Globally unique attachment identifier.
        file_path: Filesystem path with ~ expanded, empty when unknown.
        mime_type: MIME type (e.g., "image/jpeg").
        transfer_name: Original filename.
        total_bytes: Size in bytes.
        message_id: Owning message ROWID as a string.
    """

    id: str
    guid: str
    file_path: str
    mime_type: str | None
    transfer_name: str | None
    total_bytes: int | None
    message_id: str | None = None

    def __post_init__(self) -> None:
        """Validate field constraints."""
        if self.total_bytes is not None and self.total_bytes < 0:
            msg = f"total_bytes must be >= 0, got {self.total_bytes}"
            raise ValueError(msg)


@dataclass
class ContactPhoneNumber:
    """Labeled phone number of a contact."""

    number: str
    label: str | None = None


@dataclass
class ContactEmail:
    """Labeled email address of a contact."""

    email: str
    label: str | None = None


@dataclass
class Contact:
    """Contact as returned by a contact resolver.

    Attributes:
        full_name: Display name of the contact.
        phone_numbers: Labeled phone numbers.
        email_addresses: Labeled email addresses.
        id: Resolver-specific identifier.
        given_name: First name.
        family_name: Last name.
    """

    full_name: str
    phone_numbers: list[ContactPhoneNumber] = field(default_factory=list)
    email_addresses: list[ContactEmail] = field(default_factory=list)
    id: str | None = None
    given_name: str | None = None
    family_name: str | None = None

    def identifiers(self) -> list[str]:
        """Return every phone number and email address of this contact."""
        return [p.number for p in self.phone_numbers] + [e.email for e in self.email_addresses]


class ContactResolver(Protocol):
    """Interface for looking up contacts by exactly one selector."""

    def resolve_contact(
        self,
        *,
        name: str | None = None,
        phone: str | None = None,
        email: str | None = None,
    ) -> list[Contact]:
        """Return zero or more contacts matching the selector."""
        ...


class ArchiveReader(Protocol):
    """Interface for read-only access to the message archive."""

    def check_access(self) -> bool:
        """Check if the archive can be opened."""
        ...

    def list_chats(self, limit: int | None = None) -> list[Chat]:
        """Get chats ordered by most recent message."""
        ...

    def get_chat(self, chat_id: str) -> Chat | None:
        """Get a single chat, or None if it does not exist."""
        ...

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
        """Get messages matching all given filters, newest first."""
        ...

    def get_message(self, message_id: str) -> Message | None:
        """Get a single message, or None if it does not exist."""
        ...

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
        """Search resolved message text with the list_messages filters. query must be non-blank."""
        ...

    def list_attachments(
        self,
        *,
        message_id: str | None = None,
        chat_id: str | None = None,
        limit: int | None = None,
    ) -> list[Attachment]:
        """Get attachments, newest owning message first."""
        ...

    def get_attachment(self, attachment_id: str) -> Attachment | None:
        """Get a single attachment, or None if it does not exist."""
        ...
