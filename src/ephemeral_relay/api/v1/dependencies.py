"""Shared API dependencies."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from ephemeral_relay.services.engine import RelayEngine


def get_engine(request: Request) -> RelayEngine:
    """Return the relay engine created at application startup.

    Raises:
        HTTPException: If the application has not finished starting
    """
    engine: RelayEngine | None = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Relay engine is not running",
        )
    return engine


EngineDep = Annotated[RelayEngine, Depends(get_engine)]
