"""Dashboard data endpoints.

This is the thin FastAPI adapter the presentation layer reads from. It
serialises canonical state and derived views, and forwards control calls
(refresh, auto-refresh, query window) to the engine.
"""

from __future__ import annotations

import json

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, Response

from satwatch.core.models import QueryWindow, parse_timestamp
from satwatch.core.views import (
    TABLE_PAGE_SIZES,
    aggregation_series,
    table_page,
    telemetry_csv,
    telemetry_series,
    vitals,
)

router = APIRouter(prefix="/api/v1")


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(content={"ok": False, "error": message}, status_code=status)


async def _json_body(request: Request) -> dict | None:
    try:
        body = json.loads(await request.body())
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


@router.get("/state")
async def get_state() -> dict:
    """The full canonical state snapshot."""
    from satwatch.main import get_engine

    return get_engine().state.to_dict()


@router.get("/vitals")
async def get_vitals() -> dict:
    """Latest vitals with their threshold tier (alert / warning / ok)."""
    from satwatch.main import get_engine

    status = get_engine().state.current_status
    return {
        "status": status.status.value if status else None,
        "anomaly_count": status.anomaly_count if status else 0,
        "metrics": vitals(status),
    }


@router.get("/views/telemetry")
async def get_telemetry_view(
    search: str = "",
    page: int = Query(default=0, ge=0),
    page_size: int = Query(default=10),
) -> JSONResponse:
    from satwatch.main import get_engine

    if page_size not in TABLE_PAGE_SIZES:
        return _error(400, f"page_size must be one of {list(TABLE_PAGE_SIZES)}")

    result = table_page(get_engine().state.telemetry, search, page, page_size)
    return JSONResponse(content={
        "rows": [s.to_dict() for s in result.rows],
        "page": result.page_index,
        "page_size": result.page_size,
        "page_count": result.page_count,
        "total": result.total,
    })


@router.get("/views/anomalies")
async def get_anomaly_view(
    anomaly_type: str = Query(default="", alias="type"),
    page: int | None = Query(default=None, ge=0),
) -> dict:
    """Anomaly list, ten per page.

    The page goes back to 0 when the filtered list has changed since the
    previous request.
    """
    from satwatch.main import get_cursor, get_engine

    result = get_cursor().select(get_engine().state.anomalies, anomaly_type, page)
    return {
        "rows": [a.to_dict() for a in result.rows],
        "page": result.page_index,
        "page_count": result.page_count,
        "total": result.total,
    }


@router.get("/views/charts")
async def get_chart_view() -> dict:
    from satwatch.main import get_engine

    state = get_engine().state
    return {
        "telemetry": telemetry_series(state.telemetry),
        "aggregations": {
            variant: aggregation_series(state.aggregations(variant))
            for variant in ("avg", "min", "max")
        },
    }


@router.get("/export/telemetry.csv")
async def export_telemetry() -> Response:
    from satwatch.main import get_engine

    return Response(
        content=telemetry_csv(get_engine().state.telemetry),
        media_type="text/csv",
        headers={"content-disposition": 'attachment; filename="telemetry_data.csv"'},
    )


@router.get("/notifications")
async def get_notifications(kind: str | None = None) -> dict:
    from satwatch.main import get_sink

    entries = get_sink().entries(kind)
    return {"notifications": [e.to_dict() for e in entries], "total": len(entries)}


@router.post("/refresh")
async def refresh() -> dict:
    """Run one immediate current-status poll."""
    from satwatch.main import get_engine

    updated = await get_engine().refresh_now()
    return {"ok": True, "updated": updated}


@router.put("/auto-refresh")
async def set_auto_refresh(request: Request) -> JSONResponse:
    """Body: {"enabled": true, "interval_seconds": 5}"""
    from satwatch.main import get_engine

    body = await _json_body(request)
    if body is None or not isinstance(body.get("enabled"), bool):
        return _error(400, "body must be a JSON object with a boolean 'enabled'")

    interval = body.get("interval_seconds")
    if interval is not None and (isinstance(interval, bool)
                                 or not isinstance(interval, (int, float))
                                 or interval <= 0):
        return _error(400, "interval_seconds must be a positive number")

    engine = get_engine()
    engine.set_auto_refresh(body["enabled"], interval)
    return JSONResponse(content={
        "ok": True,
        "auto_refresh": engine.auto_refresh,
        "interval_seconds": engine.poll_interval,
    })


@router.put("/query-window")
async def set_query_window(request: Request) -> JSONResponse:
    """Body: {"start_time": ISO-8601, "end_time": ISO-8601, "bucket_size": "1 hour"}"""
    from satwatch.main import get_engine

    body = await _json_body(request)
    if body is None:
        return _error(400, "invalid JSON")

    try:
        window = QueryWindow(
            start_time=parse_timestamp(str(body["start_time"])),
            end_time=parse_timestamp(str(body["end_time"])),
            bucket_size=body.get("bucket_size", "1 hour"),
        )
    except KeyError as exc:
        return _error(400, f"missing field {exc.args[0]!r}")
    except ValueError as exc:
        return _error(400, str(exc))

    engine = get_engine()
    engine.set_query_window(window)
    return JSONResponse(content={
        "ok": True,
        "window": window.to_dict(),
        "generation": engine.generation,
    })
