"""Domain models for the relay."""

from .message import ContentKind, Message, MessageIdGenerator
from .verdict import ScanVerdict, VerdictSource

__all__ = [
    "ContentKind", "Message", "MessageIdGenerator",
    "ScanVerdict", "VerdictSource",
]
