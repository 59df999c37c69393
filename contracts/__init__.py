"""Contract interfaces for msgarchive.

Exports the record types and Protocol interfaces of the message archive.
Implementations and callers should code against these contracts, not
concrete implementations.
"""

from contracts.imessage import (
    ArchiveReader,
    Attachment,
    Chat,
    Contact,
    ContactEmail,
    ContactPhoneNumber,
    ContactResolver,
    Handle,
    Message,
)

__all__ = [
    # Records
    "Attachment",
    "Chat",
    "Contact",
    "ContactEmail",
    "ContactPhoneNumber",
    "Handle",
    "Message",
    # Protocols
    "ArchiveReader",
    "ContactResolver",
]
