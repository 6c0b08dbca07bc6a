"""Version 1 API endpoints."""

from .endpoints import realtime_router, system_router

__all__ = [
    "realtime_router",
    "system_router",
]
