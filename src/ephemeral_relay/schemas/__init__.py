"""
Pydantic schemas for realtime events.

These schemas define the wire shape of every event exchanged over the socket.
"""

from .events import (
    DeletedEvent,
    DeliverEvent,
    EventFrame,
    JoinRequest,
    SendRequest,
    UploadProgressEvent,
    UploadProgressRequest,
)

__all__ = [
    "DeletedEvent", "DeliverEvent",
    "EventFrame",
    "JoinRequest",
    "SendRequest",
    "UploadProgressEvent", "UploadProgressRequest",
]
