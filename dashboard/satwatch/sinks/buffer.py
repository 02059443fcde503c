"""In-memory alert sink.

Logs every alert and keeps the most recent ones in a bounded buffer so the
presentation layer can poll them over HTTP.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

log = structlog.get_logger()


@dataclass(frozen=True)
class AlertEntry:
    kind: str         # "anomaly" or "warning"
    title: str
    message: str
    at: datetime

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "title": self.title,
            "message": self.message,
            "at": self.at.isoformat(),
        }


class BufferedAlertSink:
    """AlertSink that keeps the last ``max_entries`` alerts."""

    def __init__(self, max_entries: int = 50) -> None:
        self._lock = threading.Lock()
        self._entries: deque[AlertEntry] = deque(maxlen=max_entries)

    def notify(self, title: str, message: str) -> None:
        log.warning("anomaly_alert", title=title, message=message)
        self._append(AlertEntry("anomaly", title, message, datetime.now(timezone.utc)))

    def warn(self, message: str) -> None:
        log.warning("transient_alert", message=message)
        self._append(AlertEntry("warning", "Failed to fetch data", message,
                                datetime.now(timezone.utc)))

    def _append(self, entry: AlertEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def entries(self, kind: str | None = None) -> list[AlertEntry]:
        with self._lock:
            items = list(self._entries)
        if kind is not None:
            items = [e for e in items if e.kind == kind]
        return items

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
