"""satwatch — core data models.

These are plain frozen dataclasses with no framework dependencies.
JSON payloads from the telemetry API are converted to these at the gateway
boundary; anything that does not match the schema raises DecodeError.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from satwatch.core.errors import DecodeError

BUCKET_SIZES = ("1 minute", "5 minutes", "10 minutes", "1 hour")
AGGREGATION_VARIANTS = ("avg", "min", "max")

# Go emits RFC 3339 with up to nanosecond precision; datetime keeps microseconds.
_FRACTION_RE = re.compile(r"\.(\d+)")


class SystemStatus(str, Enum):
    NORMAL = "NORMAL"
    WARNING = "WARNING"
    ANOMALY = "ANOMALY"


class AnomalyType(str, Enum):
    HIGH_TEMPERATURE = "HIGH_TEMPERATURE"
    LOW_TEMPERATURE = "LOW_TEMPERATURE"
    LOW_BATTERY = "LOW_BATTERY"
    LOW_ALTITUDE = "LOW_ALTITUDE"
    WEAK_SIGNAL = "WEAK_SIGNAL"


def parse_timestamp(raw: str) -> datetime:
    """Parse an ISO-8601 wire timestamp. Naive values are taken as UTC."""
    text = raw.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(dt: datetime) -> str:
    """Format a datetime the way the API expects query timestamps."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    utc = dt.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


# -- field readers ----------------------------------------------------------

def _require(data: dict, key: str, entity: str) -> Any:
    if key not in data or data[key] is None:
        raise DecodeError(f"{entity}: missing required field '{key}'")
    return data[key]


def _number(data: dict, key: str, entity: str) -> float:
    value = _require(data, key, entity)
    # bool is an int subclass; reject it explicitly.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeError(f"{entity}: field '{key}' must be a number, got {type(value).__name__}")
    return float(value)


def _integer(data: dict, key: str, entity: str) -> int:
    value = _require(data, key, entity)
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"{entity}: field '{key}' must be an integer, got {type(value).__name__}")
    return value


def _identifier(data: dict, key: str, entity: str) -> int | str:
    value = _require(data, key, entity)
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise DecodeError(f"{entity}: field '{key}' must be an integer or string")
    return value


def _string(data: dict, key: str, entity: str) -> str:
    value = _require(data, key, entity)
    if not isinstance(value, str):
        raise DecodeError(f"{entity}: field '{key}' must be a string")
    return value


def _boolean(data: dict, key: str, entity: str) -> bool:
    value = _require(data, key, entity)
    if not isinstance(value, bool):
        raise DecodeError(f"{entity}: field '{key}' must be a boolean")
    return value


def _timestamp(data: dict, key: str, entity: str) -> datetime:
    value = _string(data, key, entity)
    try:
        return parse_timestamp(value)
    except ValueError as exc:
        raise DecodeError(f"{entity}: field '{key}' is not an ISO-8601 timestamp: {value!r}") from exc


def _optional_int(data: dict, key: str, entity: str) -> int | None:
    if data.get(key) is None:
        return None
    return _integer(data, key, entity)


def _object(data: Any, entity: str) -> dict:
    if not isinstance(data, dict):
        raise DecodeError(f"{entity}: expected a JSON object, got {type(data).__name__}")
    return data


# -- entities ---------------------------------------------------------------

@dataclass(frozen=True)
class TelemetrySample:
    id: int | str
    timestamp: datetime
    temperature: float
    battery: float
    altitude: float
    signal_strength: float
    packet_id: int | str
    subsystem_id: int | str
    is_anomaly: bool
    anomaly_type: str | None = None

    @classmethod
    def from_json(cls, data: Any) -> TelemetrySample:
        entity = "telemetry"
        data = _object(data, entity)
        anomaly_type = data.get("anomaly_type")
        if anomaly_type is not None and not isinstance(anomaly_type, str):
            raise DecodeError(f"{entity}: field 'anomaly_type' must be a string")
        return cls(
            id=_identifier(data, "id", entity),
            timestamp=_timestamp(data, "timestamp", entity),
            temperature=_number(data, "temperature", entity),
            battery=_number(data, "battery", entity),
            altitude=_number(data, "altitude", entity),
            signal_strength=_number(data, "signal_strength", entity),
            packet_id=_identifier(data, "packet_id", entity),
            subsystem_id=_identifier(data, "subsystem_id", entity),
            is_anomaly=_boolean(data, "is_anomaly", entity),
            anomaly_type=anomaly_type,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": format_timestamp(self.timestamp),
            "temperature": self.temperature,
            "battery": self.battery,
            "altitude": self.altitude,
            "signal_strength": self.signal_strength,
            "packet_id": self.packet_id,
            "subsystem_id": self.subsystem_id,
            "is_anomaly": self.is_anomaly,
            "anomaly_type": self.anomaly_type,
        }


@dataclass(frozen=True)
class CurrentStatus:
    latest_telemetry: TelemetrySample | None
    anomaly_count: int
    status: SystemStatus
    last_update: datetime

    @classmethod
    def from_json(cls, data: Any) -> CurrentStatus:
        entity = "current status"
        data = _object(data, entity)
        raw_latest = data.get("latest_telemetry")
        latest = TelemetrySample.from_json(raw_latest) if raw_latest is not None else None
        raw_status = _string(data, "status", entity)
        try:
            status = SystemStatus(raw_status)
        except ValueError as exc:
            raise DecodeError(f"{entity}: unknown status {raw_status!r}") from exc
        return cls(
            latest_telemetry=latest,
            anomaly_count=_integer(data, "anomaly_count", entity),
            status=status,
            last_update=_timestamp(data, "last_update", entity),
        )

    def to_dict(self) -> dict:
        return {
            "latest_telemetry": self.latest_telemetry.to_dict() if self.latest_telemetry else None,
            "anomaly_count": self.anomaly_count,
            "status": self.status.value,
            "last_update": format_timestamp(self.last_update),
        }


@dataclass(frozen=True)
class Anomaly:
    id: int | str
    telemetry_id: int | str
    timestamp: datetime
    anomaly_type: AnomalyType
    parameter_name: str
    parameter_value: float
    threshold_value: float
    severity: str
    acknowledged: bool

    @classmethod
    def from_json(cls, data: Any) -> Anomaly:
        entity = "anomaly"
        data = _object(data, entity)
        raw_type = _string(data, "anomaly_type", entity)
        try:
            anomaly_type = AnomalyType(raw_type)
        except ValueError as exc:
            raise DecodeError(f"{entity}: unknown anomaly_type {raw_type!r}") from exc
        return cls(
            id=_identifier(data, "id", entity),
            telemetry_id=_identifier(data, "telemetry_id", entity),
            timestamp=_timestamp(data, "timestamp", entity),
            anomaly_type=anomaly_type,
            parameter_name=_string(data, "parameter_name", entity),
            parameter_value=_number(data, "parameter_value", entity),
            threshold_value=_number(data, "threshold_value", entity),
            severity=_string(data, "severity", entity),
            acknowledged=_boolean(data, "acknowledged", entity),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "telemetry_id": self.telemetry_id,
            "timestamp": format_timestamp(self.timestamp),
            "anomaly_type": self.anomaly_type.value,
            "parameter_name": self.parameter_name,
            "parameter_value": self.parameter_value,
            "threshold_value": self.threshold_value,
            "severity": self.severity,
            "acknowledged": self.acknowledged,
        }


@dataclass(frozen=True)
class AggregationBucket:
    """One time bucket of one aggregation variant (avg, min or max)."""
    bucket: datetime
    variant: str
    temperature: float
    battery: float
    altitude: float
    signal_strength: float
    subsystem_id: int | None = None
    packet_count: int | None = None
    anomaly_count: int | None = None

    @property
    def key(self) -> tuple[datetime, str]:
        return (self.bucket, self.variant)

    @classmethod
    def from_json(cls, data: Any, variant: str) -> AggregationBucket:
        if variant not in AGGREGATION_VARIANTS:
            raise ValueError(f"unknown aggregation variant {variant!r}")
        entity = f"{variant} aggregation"
        data = _object(data, entity)
        return cls(
            bucket=_timestamp(data, "bucket", entity),
            variant=variant,
            temperature=_number(data, f"{variant}_temperature", entity),
            battery=_number(data, f"{variant}_battery", entity),
            altitude=_number(data, f"{variant}_altitude", entity),
            signal_strength=_number(data, f"{variant}_signal_strength", entity),
            subsystem_id=_optional_int(data, "subsystem_id", entity),
            packet_count=_optional_int(data, "packet_count", entity),
            anomaly_count=_optional_int(data, "anomaly_count", entity),
        )

    def to_dict(self) -> dict:
        v = self.variant
        return {
            "bucket": format_timestamp(self.bucket),
            f"{v}_temperature": self.temperature,
            f"{v}_battery": self.battery,
            f"{v}_altitude": self.altitude,
            f"{v}_signal_strength": self.signal_strength,
            "subsystem_id": self.subsystem_id,
            "packet_count": self.packet_count,
            "anomaly_count": self.anomaly_count,
        }


@dataclass(frozen=True)
class QueryWindow:
    start_time: datetime
    end_time: datetime
    bucket_size: str = "1 hour"

    def __post_init__(self) -> None:
        if self.bucket_size not in BUCKET_SIZES:
            raise ValueError(f"bucket_size must be one of {BUCKET_SIZES}, got {self.bucket_size!r}")
        if self.start_time > self.end_time:
            raise ValueError("start_time must not be after end_time")

    @classmethod
    def last(cls, hours: float = 24, bucket_size: str = "1 hour",
             now: datetime | None = None) -> QueryWindow:
        """The window ending now and reaching ``hours`` back."""
        end = now or datetime.now(timezone.utc)
        return cls(start_time=end - timedelta(hours=hours), end_time=end, bucket_size=bucket_size)

    def to_dict(self) -> dict:
        return {
            "start_time": format_timestamp(self.start_time),
            "end_time": format_timestamp(self.end_time),
            "bucket_size": self.bucket_size,
        }


@dataclass(frozen=True)
class NotificationRecord:
    anomaly_id: int | str
    emitted_at: datetime
    anomaly_timestamp: datetime

    @property
    def expires_from(self) -> datetime:
        """Later of emission and anomaly time. The record is kept while this is recent."""
        return max(self.emitted_at, self.anomaly_timestamp)


@dataclass(frozen=True)
class Notification:
    title: str
    message: str
    anomaly_id: int | str | None = None
