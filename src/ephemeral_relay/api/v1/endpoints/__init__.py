"""API endpoint modules for version 1."""

from .realtime import router as realtime_router
from .system import router as system_router

__all__ = [
    "realtime_router",
    "system_router",
]
