"""Anomaly notifier: surfaces each recent anomaly to the operator once.

An anomaly is "recent" when its timestamp lies within ``recency_seconds`` of
the evaluation time. Emitted anomaly ids are remembered so the same anomaly
delivered by consecutive batch refreshes produces a single notification.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, Iterable

import structlog

from satwatch.core.models import Notification, NotificationRecord

if TYPE_CHECKING:
    from satwatch.core.models import Anomaly
    from satwatch.sinks.base import AlertSink

log = structlog.get_logger()

DEFAULT_RECENCY_SECONDS = 60.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_anomaly(anomaly: Anomaly) -> Notification:
    return Notification(
        title=anomaly.anomaly_type.value,
        message=(
            f"{anomaly.parameter_name}: {anomaly.parameter_value:.2f} "
            f"(Thr: {anomaly.threshold_value:.2f})"
        ),
        anomaly_id=anomaly.id,
    )


def recent_anomalies(anomalies: Iterable[Anomaly], now: datetime,
                     recency_seconds: float = DEFAULT_RECENCY_SECONDS) -> list[Anomaly]:
    window = timedelta(seconds=recency_seconds)
    return [a for a in anomalies if now - a.timestamp <= window]


class AnomalyNotifier:
    """Emits one notification per recent anomaly id."""

    def __init__(
        self,
        sink: AlertSink,
        recency_seconds: float = DEFAULT_RECENCY_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._sink = sink
        self._recency = recency_seconds
        self._clock = clock
        self._records: dict[int | str, NotificationRecord] = {}

    @property
    def records(self) -> dict[int | str, NotificationRecord]:
        return dict(self._records)

    def process(self, anomalies: Iterable[Anomaly]) -> list[Notification]:
        """Notify every recent, not yet notified anomaly. Returns what was sent."""
        now = self._clock()
        self._prune(now)

        sent: list[Notification] = []
        for anomaly in recent_anomalies(anomalies, now, self._recency):
            if anomaly.id in self._records:
                continue
            note = format_anomaly(anomaly)
            self._sink.notify(note.title, note.message)
            self._records[anomaly.id] = NotificationRecord(
                anomaly_id=anomaly.id, emitted_at=now, anomaly_timestamp=anomaly.timestamp,
            )
            sent.append(note)

        if sent:
            log.info("anomalies_notified", count=len(sent),
                     ids=[n.anomaly_id for n in sent])
        return sent

    def _prune(self, now: datetime) -> None:
        # A record may only go once its anomaly can no longer be recent.
        cutoff = now - timedelta(seconds=self._recency)
        stale = [aid for aid, rec in self._records.items() if rec.expires_from < cutoff]
        for aid in stale:
            del self._records[aid]

    def reset(self) -> None:
        self._records.clear()
