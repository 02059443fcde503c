"""Alert sink interface (port) for operator-facing notifications."""

from __future__ import annotations

from typing import Protocol


class AlertSink(Protocol):
    """Port: receives anomaly notifications and transient failure alerts."""

    def notify(self, title: str, message: str) -> None: ...

    def warn(self, message: str) -> None: ...
