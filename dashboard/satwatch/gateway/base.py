"""Gateway interface (port) for the remote telemetry API."""

from __future__ import annotations

from typing import Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from satwatch.core.models import (
        AggregationBucket,
        Anomaly,
        CurrentStatus,
        QueryWindow,
        TelemetrySample,
    )


class TelemetryGateway(Protocol):
    """Port: one call per remote resource. Failures raise FetchError."""

    async def get_current_status(self) -> CurrentStatus: ...

    async def get_telemetry(self, window: QueryWindow, limit: int) -> list[TelemetrySample]: ...

    async def get_anomalies(self, window: QueryWindow, limit: int) -> list[Anomaly]: ...

    async def get_aggregations(self, variant: str, window: QueryWindow) -> list[AggregationBucket]: ...

    async def get_health(self) -> dict: ...
