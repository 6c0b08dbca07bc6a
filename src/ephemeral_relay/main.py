# src/ephemeral_relay/main.py
"""Main entry point for the Ephemeral Relay application."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from ephemeral_relay.api.v1 import realtime_router, system_router
from ephemeral_relay.core.settings import settings
from ephemeral_relay.services.connections import ConnectionManager
from ephemeral_relay.services.engine import RelayEngine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    connections = ConnectionManager(
        max_connections=settings.ws_max_connections,
        send_timeout_seconds=settings.ws_send_timeout_seconds,
    )
    engine = RelayEngine(connections)
    app.state.connections = connections
    app.state.engine = engine
    await engine.start()
    try:
        yield
    finally:
        await engine.stop()
        app.state.engine = None


# Initialize FastAPI app
app = FastAPI(
    title="Ephemeral Relay API",
    description="Private real-time messaging with expiring messages and content scanning",
    version=settings.app_version,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(realtime_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.get("/health")
async def health_check() -> dict[str, object]:
    """Health check endpoint reporting who is currently online."""
    engine: RelayEngine | None = getattr(app.state, "engine", None)
    usernames = engine.presence.snapshot() if engine else []
    return {"status": "ok", "users": len(usernames), "usernames": usernames}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Private real-time messaging relay",
        "socket": "/api/v1/ws",
        "docs": "/docs",
        "redoc": "/redoc"
    }

if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
    uvicorn.run("ephemeral_relay.main:app", host="0.0.0.0", port=3001, reload=settings.debug)
