"""Derived views: filtered, paginated and chart-ready projections.

Every function here is a pure projection of canonical state. Nothing is
cached; callers recompute on each state change.
"""

from __future__ import annotations

import csv
import io
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, Sequence, TypeVar

from satwatch.core.classifier import THRESHOLDS, classify_metric

if TYPE_CHECKING:
    from satwatch.core.models import AggregationBucket, Anomaly, CurrentStatus, TelemetrySample

T = TypeVar("T")

TABLE_PAGE_SIZES = (10, 20, 30, 40, 50)
ANOMALY_PAGE_SIZE = 10

# Charts show a prefix of the data; canonical state keeps the full set.
MAX_SERIES_SAMPLES = 50
MAX_SERIES_BUCKETS = 24

TELEMETRY_TIME_FORMAT = "%H:%M:%S"
BUCKET_TIME_FORMAT = "%m/%d %H:%M"

CSV_FIELDS = (
    "id", "timestamp", "temperature", "battery", "altitude",
    "signal_strength", "packet_id", "subsystem_id", "is_anomaly",
)


@dataclass(frozen=True)
class Page(Generic[T]):
    rows: tuple[T, ...]
    page_index: int
    page_size: int
    page_count: int
    total: int

    @property
    def has_previous(self) -> bool:
        return self.page_index > 0

    @property
    def has_next(self) -> bool:
        return self.page_index + 1 < self.page_count


def paginate(items: Sequence[T], page_index: int = 0, page_size: int = 10) -> Page[T]:
    """Slice ``items`` into a page. Out-of-range indexes are clamped."""
    if page_size <= 0:
        raise ValueError("page_size must be positive")
    total = len(items)
    page_count = math.ceil(total / page_size)
    index = min(max(page_index, 0), max(page_count - 1, 0))
    start = index * page_size
    return Page(
        rows=tuple(items[start:start + page_size]),
        page_index=index,
        page_size=page_size,
        page_count=page_count,
        total=total,
    )


# -- telemetry table ---------------------------------------------------------

def filter_telemetry(samples: Sequence[TelemetrySample], search_term: str = "") -> list[TelemetrySample]:
    """Rows whose packet_id or subsystem_id contains ``search_term`` (case-sensitive)."""
    if not search_term:
        return list(samples)
    return [
        s for s in samples
        if search_term in str(s.packet_id) or search_term in str(s.subsystem_id)
    ]


def table_page(samples: Sequence[TelemetrySample], search_term: str = "",
               page_index: int = 0, page_size: int = 10) -> Page[TelemetrySample]:
    if page_size not in TABLE_PAGE_SIZES:
        raise ValueError(f"page_size must be one of {TABLE_PAGE_SIZES}, got {page_size}")
    return paginate(filter_telemetry(samples, search_term), page_index, page_size)


# -- anomaly list -------------------------------------------------------------

def filter_anomalies(anomalies: Sequence[Anomaly], anomaly_type: str = "") -> list[Anomaly]:
    if not anomaly_type:
        return list(anomalies)
    return [a for a in anomalies if a.anomaly_type.value == anomaly_type]


class AnomalyListCursor:
    """Page position in the anomaly list.

    The page index goes back to 0 whenever the filtered list changes
    identity, i.e. its length or the set of anomaly ids differs from the
    last list seen.
    """

    def __init__(self) -> None:
        self.page_index = 0
        self._signature: tuple | None = None

    def select(self, anomalies: Sequence[Anomaly], anomaly_type: str = "",
               page_index: int | None = None) -> Page[Anomaly]:
        filtered = filter_anomalies(anomalies, anomaly_type)
        signature = (len(filtered), frozenset(a.id for a in filtered))
        if signature != self._signature:
            self._signature = signature
            self.page_index = 0
        elif page_index is not None:
            self.page_index = page_index

        page = paginate(filtered, self.page_index, ANOMALY_PAGE_SIZE)
        self.page_index = page.page_index
        return page


# -- charts ---------------------------------------------------------------

def telemetry_series(samples: Sequence[TelemetrySample],
                     time_format: str = TELEMETRY_TIME_FORMAT,
                     limit: int = MAX_SERIES_SAMPLES) -> list[dict]:
    series = []
    for s in samples[:limit]:
        point = s.to_dict()
        point["timestamp"] = s.timestamp.strftime(time_format)
        series.append(point)
    return series


def aggregation_series(buckets: Sequence[AggregationBucket],
                       time_format: str = BUCKET_TIME_FORMAT,
                       limit: int = MAX_SERIES_BUCKETS) -> list[dict]:
    series = []
    for b in buckets[:limit]:
        point = b.to_dict()
        point["bucket"] = b.bucket.strftime(time_format)
        series.append(point)
    return series


# -- vitals -----------------------------------------------------------------

def vitals(status: CurrentStatus | None) -> list[dict]:
    """Latest value and tier of each metric; empty when nothing is known yet."""
    if status is None or status.latest_telemetry is None:
        return []
    sample = status.latest_telemetry
    result = []
    for name, (low, high) in THRESHOLDS.items():
        value = getattr(sample, name)
        result.append({
            "name": name,
            "value": value,
            "min": low,
            "max": high,
            "tier": classify_metric(name, value).value,
        })
    return result


# -- export -----------------------------------------------------------------

def telemetry_csv(samples: Sequence[TelemetrySample]) -> str:
    """Telemetry rows as CSV with a header line. Empty input gives ""."""
    if not samples:
        return ""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_FIELDS)
    for s in samples:
        row = s.to_dict()
        writer.writerow([row[f] for f in CSV_FIELDS])
    return buf.getvalue()
