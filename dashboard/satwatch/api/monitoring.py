"""Health check and monitoring endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from satwatch.core.errors import FetchError

router = APIRouter(prefix="/api/v1")


@router.get("/health")
async def health() -> dict:
    """Basic health check, including reachability of the telemetry API."""
    from satwatch.main import get_engine, get_gateway

    engine = get_engine()
    try:
        upstream = await get_gateway().get_health()
        upstream_ok = True
    except FetchError as exc:
        upstream = {"error": str(exc)}
        upstream_ok = False

    snapshot = engine.stats.snapshot()
    return {
        "status": "ok" if upstream_ok else "degraded",
        "version": "0.1.0",
        "uptime_seconds": snapshot["uptime_seconds"],
        "engine_running": engine.running,
        "auto_refresh": engine.auto_refresh,
        "upstream_ok": upstream_ok,
        "upstream": upstream,
    }


@router.get("/stats")
async def stats() -> dict:
    """Sync statistics.

    The ``batches`` section counts batch refreshes by outcome:
    - ``applied``: all six resources fetched and applied
    - ``failed``: at least one resource failed
    - ``superseded``: a newer refresh started first, result dropped
    """
    from satwatch.main import get_engine

    engine = get_engine()
    snap = engine.stats.snapshot()
    snap["generation"] = engine.generation
    return snap
