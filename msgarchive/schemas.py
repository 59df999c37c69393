"""Serialized output models for archive records.

Pydantic models built from the contract dataclasses with
``Model.model_validate(record)``. Identifiers are strings and timestamps
serialize as ISO-8601 UTC with a 'Z' suffix, or null when absent.

Example:
    ```python
    from msgarchive.schemas import ChatResponse

    payload = ChatResponse.model_validate(chat).model_dump(mode="json")
    ```
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from integrations.imessage.parser import format_iso


class HandleResponse(BaseModel):
    """Chat participant."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Handle ROWID", examples=["12"])
    identifier: str = Field(
        ...,
        description="Phone number or email address",
        examples=["+15551234567", "jane@example.com"],
    )
    service: str = Field(..., description="Transport label", examples=["iMessage", "SMS"])


class ChatResponse(BaseModel):
    """Conversation summary.

    Example:
        ```json
        {
            "id": "3",
            "guid": "iMessage;+;chat123456",
            "chat_identifier": "chat123456",
            "display_name": "Family",
            "is_group": true,
            "participants": [{"id": "1", "identifier": "+15551234567", "service": "iMessage"}],
            "last_message_text": "See you at 7",
            "last_message_date": "2024-01-15T18:30:00.000Z"
        }
        ```
    """

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Chat ROWID", examples=["3"])
    guid: str = Field(..., description="Globally unique chat identifier")
    chat_identifier: str = Field(..., description="Phone, email or group identifier")
    display_name: str | None = Field(default=None, description="Group name, if any")
    is_group: bool = Field(..., description="Whether this is a group conversation")
    participants: list[HandleResponse] = Field(default_factory=list)
    last_message_text: str | None = Field(default=None, description="Most recent message text")
    last_message_date: datetime | None = Field(
        default=None, description="Most recent message timestamp (UTC)"
    )

    @field_serializer("last_message_date")
    def _serialize_date(self, value: datetime | None) -> str | None:
        return format_iso(value)


class MessageResponse(BaseModel):
    """Single message with resolved text.

    Example:
        ```json
        {
            "id": "1042",
            "guid": "p:0/4B2C...",
            "text": "Running late, be there in 10",
            "date": "2024-01-15T18:20:11.532Z",
            "is_from_me": false,
            "chat_id": "3",
            "sender_handle": "+15551234567",
            "has_attachments": false
        }
        ```
    """

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Message ROWID", examples=["1042"])
    guid: str = Field(..., description="Globally unique message identifier")
    text: str = Field(..., description="Resolved message text, empty if none was recovered")
    date: datetime | None = Field(default=None, description="Sent/received timestamp (UTC)")
    is_from_me: bool = Field(..., description="Whether the message was sent by the user")
    chat_id: str | None = Field(default=None, description="Owning chat ROWID")
    sender_handle: str | None = Field(
        default=None, description="Sender phone/email for received messages"
    )
    has_attachments: bool = Field(default=False)

    @field_serializer("date")
    def _serialize_date(self, value: datetime | None) -> str | None:
        return format_iso(value)


class AttachmentResponse(BaseModel):
    """Attachment metadata."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., description="Attachment ROWID", examples=["77"])
    guid: str = Field(..., description="Globally unique attachment identifier")
    file_path: str = Field(
        ...,
        description="Path to the attachment file on disk, empty if unknown",
        examples=["/Users/jane/Library/Messages/Attachments/ab/12/IMG_1234.heic"],
    )
    mime_type: str | None = Field(default=None, examples=["image/heic", "application/pdf"])
    transfer_name: str | None = Field(
        default=None, description="Original filename", examples=["IMG_1234.heic"]
    )
    total_bytes: int | None = Field(default=None, description="File size in bytes", ge=0)
    message_id: str | None = Field(default=None, description="Owning message ROWID")


class ContactPhoneNumberResponse(BaseModel):
    """Labeled phone number."""

    model_config = ConfigDict(from_attributes=True)

    number: str
    label: str | None = None


class ContactEmailResponse(BaseModel):
    """Labeled email address."""

    model_config = ConfigDict(from_attributes=True)

    email: str
    label: str | None = None


class ContactResponse(BaseModel):
    """Contact returned by a contact resolver."""

    model_config = ConfigDict(from_attributes=True)

    full_name: str
    phone_numbers: list[ContactPhoneNumberResponse] = Field(default_factory=list)
    email_addresses: list[ContactEmailResponse] = Field(default_factory=list)
    id: str | None = None
    given_name: str | None = None
    family_name: str | None = None
