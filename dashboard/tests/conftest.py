"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

import satwatch.main as main_module
from satwatch.config import AppConfig
from satwatch.core.engine import SyncEngine
from satwatch.core.errors import FetchError, HttpError
from satwatch.core.models import (
    AggregationBucket,
    Anomaly,
    AnomalyType,
    CurrentStatus,
    QueryWindow,
    SystemStatus,
    TelemetrySample,
)
from satwatch.core.views import AnomalyListCursor
from satwatch.sinks.buffer import BufferedAlertSink

NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_sample(i: int = 1, **overrides) -> TelemetrySample:
    fields = dict(
        id=i,
        timestamp=NOW - timedelta(minutes=60 - i),
        temperature=27.5,
        battery=80.0,
        altitude=550.0,
        signal_strength=-50.0,
        packet_id=1000 + i,
        subsystem_id=i % 4 + 1,
        is_anomaly=False,
    )
    fields.update(overrides)
    return TelemetrySample(**fields)


def make_status(sample: TelemetrySample | None = None, status: str = "NORMAL",
                anomaly_count: int = 0) -> CurrentStatus:
    return CurrentStatus(
        latest_telemetry=sample if sample is not None else make_sample(),
        anomaly_count=anomaly_count,
        status=SystemStatus(status),
        last_update=NOW,
    )


def make_anomaly(anomaly_id: int = 1, age_seconds: float = 10.0, **overrides) -> Anomaly:
    fields = dict(
        id=anomaly_id,
        telemetry_id=anomaly_id + 100,
        timestamp=NOW - timedelta(seconds=age_seconds),
        anomaly_type=AnomalyType.HIGH_TEMPERATURE,
        parameter_name="temperature",
        parameter_value=38.5,
        threshold_value=35.0,
        severity="HIGH",
        acknowledged=False,
    )
    fields.update(overrides)
    return Anomaly(**fields)


def make_bucket(hour: int, variant: str = "avg", value: float = 27.0) -> AggregationBucket:
    return AggregationBucket(
        bucket=NOW - timedelta(hours=hour),
        variant=variant,
        temperature=value,
        battery=75.0,
        altitude=550.0,
        signal_strength=-50.0,
    )


def http_failure(resource: str, status: int = 500) -> FetchError:
    return FetchError(resource, HttpError(status, "Internal Server Error"))


async def settle(rounds: int = 20) -> None:
    """Let pending tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeGateway:
    """Scripted in-memory TelemetryGateway.

    Values and failures are read when a call starts, so a held call returns
    what was configured at the time it was made.
    """

    def __init__(self) -> None:
        self.status = make_status()
        self.telemetry = [make_sample(1), make_sample(2)]
        self.anomalies: list[Anomaly] = []
        self.aggregations = {v: [make_bucket(1, v), make_bucket(2, v)] for v in ("avg", "min", "max")}
        self.failures: dict[str, FetchError] = {}
        self.calls: list[str] = []
        self.windows: list[QueryWindow] = []
        self._holds: dict[str, list[asyncio.Event]] = {}

    def hold(self, resource: str) -> asyncio.Event:
        """Make the next call of ``resource`` wait until the event is set."""
        event = asyncio.Event()
        self._holds.setdefault(resource, []).append(event)
        return event

    def count(self, resource: str) -> int:
        return self.calls.count(resource)

    async def _call(self, resource: str, value):
        self.calls.append(resource)
        failure = self.failures.get(resource)
        holds = self._holds.get(resource)
        if holds:
            await holds.pop(0).wait()
        if failure is not None:
            raise failure
        return value

    async def get_current_status(self) -> CurrentStatus:
        return await self._call("current", self.status)

    async def get_telemetry(self, window: QueryWindow, limit: int) -> list[TelemetrySample]:
        self.windows.append(window)
        return await self._call("telemetry", list(self.telemetry))

    async def get_anomalies(self, window: QueryWindow, limit: int) -> list[Anomaly]:
        return await self._call("anomalies", list(self.anomalies))

    async def get_aggregations(self, variant: str, window: QueryWindow) -> list[AggregationBucket]:
        return await self._call(f"aggregations/{variant}", list(self.aggregations[variant]))

    async def get_health(self) -> dict:
        return await self._call("health", {"status": "healthy"})


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def sink() -> BufferedAlertSink:
    return BufferedAlertSink()


@pytest.fixture
def window() -> QueryWindow:
    return QueryWindow.last(hours=24, now=NOW)


@pytest.fixture
async def engine(gateway, sink, window):
    """A stopped engine with polling off and a fixed clock."""
    eng = SyncEngine(gateway, sink, window=window, auto_refresh=False, clock=lambda: NOW)
    yield eng
    await eng.stop()


@pytest.fixture(autouse=True)
def _init_server(gateway, sink, window):
    """Initialize server singletons for every test, backed by the fake gateway."""
    config = AppConfig()
    config.logging.level = "warning"

    engine = SyncEngine(gateway, sink, window=window, auto_refresh=False, clock=lambda: NOW)

    # Patch module-level singletons
    main_module._config = config
    main_module._gateway = gateway
    main_module._sink = sink
    main_module._cursor = AnomalyListCursor()
    main_module._engine = engine

    yield

    # Cleanup
    main_module._config = None
    main_module._gateway = None
    main_module._sink = None
    main_module._cursor = None
    main_module._engine = None


@pytest.fixture
async def client():
    from satwatch.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    await main_module.get_engine().stop()
