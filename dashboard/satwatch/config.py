"""Dashboard engine configuration.

Loads from config.yaml if present, with environment variable overrides.
Environment variables use the pattern: SATWATCH_<SECTION>_<KEY> (uppercase).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


def _optional_float(value: str) -> float | None:
    return None if value.strip().lower() in ("", "none", "off") else float(value)


def _bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000
    env: str = "dev"  # "dev" or "prod"


@dataclass
class ApiConfig:
    base_url: str = "http://localhost:8080"
    timeout_seconds: float = 10.0


@dataclass
class SyncConfig:
    auto_refresh: bool = True
    poll_interval_seconds: float | None = 5.0  # None disables polling
    telemetry_limit: int = 1000
    anomaly_limit: int = 100
    window_hours: float = 24.0
    bucket_size: str = "1 hour"
    batch_policy: str = "all_or_nothing"  # "all_or_nothing" or "partial"


@dataclass
class AlertsConfig:
    recency_seconds: float = 60.0
    buffer_size: int = 50


@dataclass
class LoggingConfig:
    level: str = "info"
    format: str = "console"  # "console" or "json"


@dataclass
class AppConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_SECTIONS = ("server", "api", "sync", "alerts", "logging")


def _apply_env_overrides(config: AppConfig) -> None:
    """Override config values from environment variables."""
    mapping = {
        "SATWATCH_SERVER_HOST": lambda v: setattr(config.server, "host", v),
        "SATWATCH_SERVER_PORT": lambda v: setattr(config.server, "port", int(v)),
        "SATWATCH_SERVER_ENV": lambda v: setattr(config.server, "env", v),
        "SATWATCH_API_BASE_URL": lambda v: setattr(config.api, "base_url", v),
        "SATWATCH_API_TIMEOUT": lambda v: setattr(config.api, "timeout_seconds", float(v)),
        "SATWATCH_SYNC_AUTO_REFRESH": lambda v: setattr(config.sync, "auto_refresh", _bool(v)),
        "SATWATCH_SYNC_POLL_INTERVAL": lambda v: setattr(config.sync, "poll_interval_seconds", _optional_float(v)),
        "SATWATCH_SYNC_TELEMETRY_LIMIT": lambda v: setattr(config.sync, "telemetry_limit", int(v)),
        "SATWATCH_SYNC_ANOMALY_LIMIT": lambda v: setattr(config.sync, "anomaly_limit", int(v)),
        "SATWATCH_SYNC_WINDOW_HOURS": lambda v: setattr(config.sync, "window_hours", float(v)),
        "SATWATCH_SYNC_BUCKET_SIZE": lambda v: setattr(config.sync, "bucket_size", v),
        "SATWATCH_SYNC_BATCH_POLICY": lambda v: setattr(config.sync, "batch_policy", v),
        "SATWATCH_ALERTS_RECENCY": lambda v: setattr(config.alerts, "recency_seconds", float(v)),
        "SATWATCH_ALERTS_BUFFER_SIZE": lambda v: setattr(config.alerts, "buffer_size", int(v)),
        "SATWATCH_LOG_LEVEL": lambda v: setattr(config.logging, "level", v),
        "SATWATCH_LOG_FORMAT": lambda v: setattr(config.logging, "format", v),
    }
    for env_key, setter in mapping.items():
        val = os.environ.get(env_key)
        if val is not None:
            setter(val)


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load configuration from YAML file + environment overrides."""
    config = AppConfig()

    # Try to load YAML
    if config_path is None:
        config_path = Path(os.environ.get("SATWATCH_CONFIG", "config.yaml"))
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}

        for section_name in _SECTIONS:
            section = getattr(config, section_name)
            for k, v in (raw.get(section_name) or {}).items():
                if hasattr(section, k):
                    setattr(section, k, v)

    # Environment overrides always win
    _apply_env_overrides(config)
    return config
