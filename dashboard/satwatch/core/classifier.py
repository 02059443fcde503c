"""Metric classification against fixed operating bands.

A value outside its band is an ALERT. Inside the band, values in the lowest
10% above the minimum or above 90% of the maximum are a WARNING.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from satwatch.core.models import TelemetrySample


class Tier(str, Enum):
    ALERT = "alert"
    WARNING = "warning"
    OK = "ok"


# Operating bands: metric name -> (min, max).
THRESHOLDS: dict[str, tuple[float, float]] = {
    "temperature": (20.0, 35.0),      # °C
    "battery": (40.0, 100.0),         # %
    "altitude": (400.0, 1000.0),      # km
    "signal_strength": (-80.0, -20.0),  # dB
}


def classify(value: float, min_value: float, max_value: float) -> Tier:
    if value < min_value or value > max_value:
        return Tier.ALERT
    if value < min_value * 1.1 or value > max_value * 0.9:
        return Tier.WARNING
    return Tier.OK


def classify_metric(name: str, value: float) -> Tier:
    """Classify ``value`` against the band of the named metric."""
    low, high = THRESHOLDS[name]
    return classify(value, low, high)


def classify_sample(sample: TelemetrySample) -> dict[str, Tier]:
    return {name: classify_metric(name, getattr(sample, name)) for name in THRESHOLDS}
