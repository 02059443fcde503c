"""httpx implementation of TelemetryGateway.

Each operation issues exactly one GET, decodes the JSON body into core
models and maps every failure onto the error taxonomy in core.errors.
There is no retry logic here; retrying is the scheduler's business.
"""

from __future__ import annotations

import json
from typing import Any, Callable, TypeVar

import httpx
import structlog

from satwatch.core.errors import DecodeError, FetchError, HttpError, NetworkError
from satwatch.core.models import (
    AGGREGATION_VARIANTS,
    AggregationBucket,
    Anomaly,
    CurrentStatus,
    QueryWindow,
    TelemetrySample,
    format_timestamp,
)

log = structlog.get_logger()

T = TypeVar("T")

# Remote API paths.
HEALTH_PATH = "/health"
CURRENT_PATH = "/api/v1/telemetry/current"
TELEMETRY_PATH = "/api/v1/telemetry"
ANOMALIES_PATH = "/api/v1/telemetry/anomalies"
_AGGREGATION_PATHS = {
    "avg": "/api/v1/telemetry/aggregations",
    "min": "/api/v1/telemetry/aggregations/min",
    "max": "/api/v1/telemetry/aggregations/max",
}


def _window_params(window: QueryWindow) -> dict[str, str]:
    return {
        "start_time": format_timestamp(window.start_time),
        "end_time": format_timestamp(window.end_time),
    }


def _decode_list(body: Any, decode: Callable[[Any], T], entity: str) -> list[T]:
    # The API serialises an empty result set as null.
    if body is None:
        return []
    if not isinstance(body, list):
        raise DecodeError(f"{entity}: expected a JSON array, got {type(body).__name__}")
    return [decode(item) for item in body]


class HttpTelemetryGateway:
    """TelemetryGateway backed by an httpx.AsyncClient."""

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        timeout_seconds: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=base_url, timeout=timeout_seconds,
        )

    async def __aenter__(self) -> HttpTelemetryGateway:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, resource: str, path: str, params: dict | None = None) -> Any:
        """GET ``path`` and return the decoded JSON body, or raise FetchError."""
        try:
            resp = await self._client.get(path, params=params)
        except httpx.DecodingError as exc:
            log.warning("fetch_decode_error", resource=resource, error=str(exc))
            raise FetchError(resource, DecodeError(f"undecodable body: {exc}")) from exc
        except httpx.RequestError as exc:
            log.warning("fetch_network_error", resource=resource, error=str(exc))
            raise FetchError(resource, NetworkError(str(exc) or type(exc).__name__)) from exc

        if not resp.is_success:
            log.warning("fetch_http_error", resource=resource, status=resp.status_code)
            raise FetchError(resource, HttpError(resp.status_code, resp.text))

        try:
            return resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            log.warning("fetch_decode_error", resource=resource, error=str(exc))
            raise FetchError(resource, DecodeError(f"invalid JSON: {exc}")) from exc

    async def _fetch(self, resource: str, path: str, params: dict | None,
                     decode: Callable[[Any], T]) -> T:
        body = await self._get_json(resource, path, params)
        try:
            return decode(body)
        except DecodeError as exc:
            log.warning("fetch_decode_error", resource=resource, error=str(exc))
            raise FetchError(resource, exc) from exc

    async def get_health(self) -> dict:
        return await self._fetch("health", HEALTH_PATH, None, lambda body: body)

    async def get_current_status(self) -> CurrentStatus:
        return await self._fetch("current", CURRENT_PATH, None, CurrentStatus.from_json)

    async def get_telemetry(self, window: QueryWindow, limit: int = 1000) -> list[TelemetrySample]:
        params = {**_window_params(window), "limit": str(limit)}
        return await self._fetch(
            "telemetry", TELEMETRY_PATH, params,
            lambda body: _decode_list(body, TelemetrySample.from_json, "telemetry"),
        )

    async def get_anomalies(self, window: QueryWindow, limit: int = 100) -> list[Anomaly]:
        params = {**_window_params(window), "limit": str(limit)}
        return await self._fetch(
            "anomalies", ANOMALIES_PATH, params,
            lambda body: _decode_list(body, Anomaly.from_json, "anomaly"),
        )

    async def get_aggregations(self, variant: str, window: QueryWindow) -> list[AggregationBucket]:
        if variant not in AGGREGATION_VARIANTS:
            raise ValueError(f"unknown aggregation variant {variant!r}")
        params = {**_window_params(window), "bucket_size": window.bucket_size}
        return await self._fetch(
            f"aggregations/{variant}", _AGGREGATION_PATHS[variant], params,
            lambda body: _decode_list(
                body, lambda item: AggregationBucket.from_json(item, variant), "aggregation",
            ),
        )
