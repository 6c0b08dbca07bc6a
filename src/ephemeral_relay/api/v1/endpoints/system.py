"""System and capability endpoints for the relay API."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from ephemeral_relay.api.v1.dependencies import EngineDep
from ephemeral_relay.core.settings import settings

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/config")
async def get_capabilities(engine: EngineDep) -> dict[str, object]:
    """Report which safety features are active.

    Excludes secrets; suitable for a client deciding what to show.

    Args:
        engine: Running relay engine

    Returns:
        Dictionary with app metadata, lifecycle timings and safety features
    """
    configured = engine.scanner.configured
    return {
        "app": {
            "name": settings.app_name,
            "version": settings.app_version,
            "debug": settings.debug,
        },
        "lifecycle": {
            "ttl_seconds": engine.store.ttl_seconds,
            "sweep_interval_seconds": engine.store.sweep_interval_seconds,
        },
        "safety": {
            "scanner_configured": configured,
            "provider": engine.scanner.name,
            "features": {
                "pattern_scan": True,
                "file_scan": configured,
                "url_reputation": configured,
                "auto_delete": True,
            },
            "patterns": list(engine.pipeline.patterns),
        },
    }


@router.get("/scanner")
async def get_scanner_status(engine: EngineDep) -> dict[str, Any]:
    """Expose circuit breaker state and request metrics of the scan provider."""
    return engine.scanner.get_status()


@router.get("/stats")
async def get_stats(engine: EngineDep) -> dict[str, int]:
    """Return relay counters without revealing message content."""
    return engine.stats()
