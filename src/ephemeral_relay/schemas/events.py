"""Realtime event schemas.

Inbound payloads are validated before they reach the engine; anything that
fails validation is dropped by the dispatcher. Outbound payloads are always
serialized with camelCase aliases and without unset optional fields.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ephemeral_relay.models import ContentKind

# Event names
EVENT_JOIN = "join"
EVENT_SEND = "send"
EVENT_UPLOAD_PROGRESS = "upload_progress"
EVENT_PRESENCE_UPDATE = "presence_update"
EVENT_DELIVER = "deliver"
EVENT_DELETED = "deleted"
EVENT_CONNECTED = "connected"
EVENT_HEARTBEAT = "heartbeat"

# Sender name on notices the relay itself originates
SYSTEM_SENDER = "System"


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        """Serialize for emission over the transport."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class EventFrame(BaseModel):
    """Envelope of every frame on the socket."""

    event: str = Field(..., min_length=1, description="Event name")
    data: Any = Field(default=None, description="Event payload")


class JoinRequest(_WireModel):
    """Schema for a client announcing its display name."""

    username: str = Field(..., description="Display name chosen at join time")

    @field_validator("username")
    @classmethod
    def strip_username(cls, value: str) -> str:
        return value.strip()


class SendRequest(_WireModel):
    """Schema for a client requesting delivery of a draft message."""

    to: str = Field(..., min_length=1, description="Recipient display name")
    kind: ContentKind = Field(default=ContentKind.TEXT, description="Content kind")
    content: str = Field(..., min_length=1, description="Text, link, or base64/data-URL blob")
    filename: str | None = Field(None, description="Original filename for file payloads")
    mime_type: str | None = Field(None, description="MIME type reported by the client")
    size_bytes: int | None = Field(None, ge=0, description="Payload size reported by the client")

    @field_validator("to")
    @classmethod
    def recipient_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Recipient must not be blank")
        return value

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Content must not be blank")
        return value


class UploadProgressRequest(_WireModel):
    """Schema for advisory upload progress sent while a file is in flight."""

    to: str = Field(..., min_length=1)
    filename: str = Field(..., min_length=1)
    bytes_uploaded: int = Field(..., ge=0)
    total_bytes: int = Field(..., ge=0)
    percent: float = Field(..., ge=0, le=100)


class UploadProgressEvent(UploadProgressRequest):
    """Progress record forwarded to the peer, attributed to the sender."""

    sender: str = Field(..., alias="from")


class DeliverEvent(_WireModel):
    """One rendering of a message as seen by a single party."""

    id: str
    sender: str = Field(..., alias="from")
    to: str
    kind: ContentKind = ContentKind.TEXT
    content: str
    created_at: str
    is_own: bool | None = None
    is_system: bool | None = None
    is_blocked: bool | None = None
    was_blocked: bool | None = None
    threat_tokens: list[str] | None = None
    block_reason: str | None = None
    scan_info: str | None = None
    filename: str | None = None
    mime_type: str | None = None
    size_bytes: int | None = None


class DeletedEvent(_WireModel):
    """Announcement that a message expired and must be retracted."""

    id: str
    timestamp: str
