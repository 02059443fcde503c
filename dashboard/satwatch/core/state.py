"""Canonical state and the reconciliation rules that produce it.

CanonicalState is frozen. Every transition builds a new snapshot, so a reader
holding a snapshot never observes a half-applied batch.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from satwatch.core.errors import FetchError
    from satwatch.core.models import (
        AggregationBucket,
        Anomaly,
        CurrentStatus,
        QueryWindow,
        TelemetrySample,
    )

# Batch resources, in the order failures are reported.
BATCH_RESOURCES = (
    "current",
    "telemetry",
    "anomalies",
    "aggregations/avg",
    "aggregations/min",
    "aggregations/max",
)

# Resource name -> CanonicalState field it populates.
_RESOURCE_FIELDS = {
    "current": "current_status",
    "telemetry": "telemetry",
    "anomalies": "anomalies",
    "aggregations/avg": "avg_aggregations",
    "aggregations/min": "min_aggregations",
    "aggregations/max": "max_aggregations",
}


@dataclass(frozen=True)
class BatchResult:
    """The six results of one successful batch refresh."""
    current_status: CurrentStatus
    telemetry: tuple[TelemetrySample, ...] = ()
    anomalies: tuple[Anomaly, ...] = ()
    avg_aggregations: tuple[AggregationBucket, ...] = ()
    min_aggregations: tuple[AggregationBucket, ...] = ()
    max_aggregations: tuple[AggregationBucket, ...] = ()


@dataclass(frozen=True)
class CanonicalState:
    current_status: CurrentStatus | None = None
    telemetry: tuple[TelemetrySample, ...] = ()
    anomalies: tuple[Anomaly, ...] = ()
    avg_aggregations: tuple[AggregationBucket, ...] = ()
    min_aggregations: tuple[AggregationBucket, ...] = ()
    max_aggregations: tuple[AggregationBucket, ...] = ()
    window: QueryWindow | None = None
    generation: int = 0
    loading: bool = False
    error: str | None = None
    failed_resources: tuple[str, ...] = ()
    last_batch_at: datetime | None = None
    last_poll_at: datetime | None = None

    def aggregations(self, variant: str) -> tuple[AggregationBucket, ...]:
        return getattr(self, f"{variant}_aggregations")

    def to_dict(self) -> dict:
        def _ts(dt: datetime | None) -> str | None:
            return dt.isoformat() if dt else None

        return {
            "current_status": self.current_status.to_dict() if self.current_status else None,
            "telemetry": [s.to_dict() for s in self.telemetry],
            "anomalies": [a.to_dict() for a in self.anomalies],
            "aggregations": {
                "avg": [b.to_dict() for b in self.avg_aggregations],
                "min": [b.to_dict() for b in self.min_aggregations],
                "max": [b.to_dict() for b in self.max_aggregations],
            },
            "window": self.window.to_dict() if self.window else None,
            "generation": self.generation,
            "loading": self.loading,
            "error": self.error,
            "failed_resources": list(self.failed_resources),
            "last_batch_at": _ts(self.last_batch_at),
            "last_poll_at": _ts(self.last_poll_at),
        }


def _now() -> datetime:
    return datetime.now(timezone.utc)


def begin_batch(state: CanonicalState, window: QueryWindow, generation: int) -> CanonicalState:
    return replace(state, window=window, generation=generation, loading=True)


def apply_batch(state: CanonicalState, result: BatchResult,
                now: datetime | None = None) -> CanonicalState:
    """Replace every batch-owned field at once."""
    return replace(
        state,
        current_status=result.current_status,
        telemetry=result.telemetry,
        anomalies=result.anomalies,
        avg_aggregations=result.avg_aggregations,
        min_aggregations=result.min_aggregations,
        max_aggregations=result.max_aggregations,
        loading=False,
        error=None,
        failed_resources=(),
        last_batch_at=now or _now(),
    )


def reject_batch(state: CanonicalState, error: FetchError) -> CanonicalState:
    """All-or-nothing failure: clear historical data, keep current status."""
    return abort_batch(state, error.resource, str(error))


def abort_batch(state: CanonicalState, resource: str, message: str) -> CanonicalState:
    return replace(
        state,
        telemetry=(),
        anomalies=(),
        avg_aggregations=(),
        min_aggregations=(),
        max_aggregations=(),
        loading=False,
        error=message,
        failed_resources=(resource,),
    )


def end_batch(state: CanonicalState) -> CanonicalState:
    """Drop the loading flag of a batch that will never complete."""
    return replace(state, loading=False)


def apply_partial_batch(state: CanonicalState, results: dict[str, object],
                        failures: list[FetchError],
                        now: datetime | None = None) -> CanonicalState:
    """Keep whatever succeeded; clear only the fields whose fetch failed.

    A failed ``current`` fetch leaves the previous status in place, matching
    the poll rule.
    """
    changes: dict[str, object] = {}
    for resource, value in results.items():
        field_name = _RESOURCE_FIELDS[resource]
        changes[field_name] = value if resource == "current" else tuple(value)
    for failure in failures:
        if failure.resource != "current":
            changes[_RESOURCE_FIELDS[failure.resource]] = ()

    error = "; ".join(str(f) for f in failures) if failures else None
    return replace(
        state,
        **changes,
        loading=False,
        error=error,
        failed_resources=tuple(f.resource for f in failures),
        last_batch_at=now or _now(),
    )


def apply_poll(state: CanonicalState, status: CurrentStatus,
               now: datetime | None = None) -> CanonicalState:
    """A poll tick only ever replaces current_status."""
    return replace(state, current_status=status, last_poll_at=now or _now())


def set_window(state: CanonicalState, window: QueryWindow) -> CanonicalState:
    return replace(state, window=window)
