"""satwatch — main entry point.

This is the only file that knows about concrete implementations.
It wires together the gateway, engine, alert sink, and API layers.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from satwatch.api.dashboard import router as dashboard_router
from satwatch.api.monitoring import router as monitoring_router
from satwatch.config import AppConfig, load_config
from satwatch.core.engine import SyncEngine
from satwatch.core.models import QueryWindow
from satwatch.core.stats import SyncStats
from satwatch.core.views import AnomalyListCursor
from satwatch.gateway.http_gateway import HttpTelemetryGateway
from satwatch.sinks.buffer import BufferedAlertSink

log = structlog.get_logger()

# Module-level singletons (set during startup)
_engine: SyncEngine | None = None
_gateway: HttpTelemetryGateway | None = None
_sink: BufferedAlertSink | None = None
_cursor: AnomalyListCursor | None = None
_config: AppConfig | None = None


def get_engine() -> SyncEngine:
    assert _engine is not None, "Server not initialized"
    return _engine


def get_gateway() -> HttpTelemetryGateway:
    assert _gateway is not None, "Server not initialized"
    return _gateway


def get_sink() -> BufferedAlertSink:
    assert _sink is not None, "Server not initialized"
    return _sink


def get_cursor() -> AnomalyListCursor:
    assert _cursor is not None, "Server not initialized"
    return _cursor


def get_config() -> AppConfig:
    assert _config is not None, "Server not initialized"
    return _config


def _setup_logging(config: AppConfig) -> None:
    """Configure structlog based on the logging config."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.logging.format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(config.logging.level.upper()),
        ),
    )


def build_engine(config: AppConfig, gateway, sink, stats: SyncStats | None = None) -> SyncEngine:
    """Create a SyncEngine from config."""
    window = QueryWindow.last(hours=config.sync.window_hours,
                              bucket_size=config.sync.bucket_size)
    return SyncEngine(
        gateway,
        sink,
        window=window,
        auto_refresh=config.sync.auto_refresh,
        poll_interval=config.sync.poll_interval_seconds,
        telemetry_limit=config.sync.telemetry_limit,
        anomaly_limit=config.sync.anomaly_limit,
        recency_seconds=config.alerts.recency_seconds,
        batch_policy=config.sync.batch_policy,
        stats=stats,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    global _engine, _gateway, _sink, _cursor, _config

    _config = load_config()
    _setup_logging(_config)

    log.info("server_starting",
             env=_config.server.env,
             api_base_url=_config.api.base_url,
             poll_interval=_config.sync.poll_interval_seconds)

    # Create components
    _gateway = HttpTelemetryGateway(base_url=_config.api.base_url,
                                    timeout_seconds=_config.api.timeout_seconds)
    _sink = BufferedAlertSink(max_entries=_config.alerts.buffer_size)
    _cursor = AnomalyListCursor()
    _engine = build_engine(_config, _gateway, _sink)

    # Start both sync timelines
    await _engine.start()

    log.info("server_started",
             host=_config.server.host,
             port=_config.server.port)

    yield

    # Shutdown
    await _engine.stop()
    await _gateway.aclose()
    log.info("server_stopped")


app = FastAPI(
    title="satwatch",
    description="Satellite telemetry sync and anomaly notification engine",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(dashboard_router)
app.include_router(monitoring_router)
