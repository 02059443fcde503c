"""Sync engine statistics.

In-memory counters for both timelines plus per-resource failure counts.
No framework dependencies.
"""

from __future__ import annotations

import threading
import time


class SyncStats:
    """Thread-safe counters describing what the sync engine has done.

    A batch ends in exactly one of three ways: applied, failed (rejected and
    surfaced as an error), or superseded (a newer batch started before it
    finished, so its result was dropped).
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started_at = time.time()

        # Batch timeline
        self.batches_started: int = 0
        self.batches_applied: int = 0
        self.batches_failed: int = 0
        self.batches_superseded: int = 0

        # Poll timeline
        self.polls_ok: int = 0
        self.polls_failed: int = 0
        self.polls_discarded: int = 0

        self.notifications_emitted: int = 0
        self.last_error: str = ""

        # resource name → failure count
        self._resource_failures: dict[str, int] = {}

    def record_batch_started(self) -> None:
        with self._lock:
            self.batches_started += 1

    def record_batch_applied(self) -> None:
        with self._lock:
            self.batches_applied += 1

    def record_batch_failed(self, resources: list[str], error: str) -> None:
        with self._lock:
            self.batches_failed += 1
            self.last_error = error
            for resource in resources:
                self._resource_failures[resource] = self._resource_failures.get(resource, 0) + 1

    def record_batch_superseded(self) -> None:
        with self._lock:
            self.batches_superseded += 1

    def record_poll(self, ok: bool, error: str = "") -> None:
        with self._lock:
            if ok:
                self.polls_ok += 1
            else:
                self.polls_failed += 1
                self.last_error = error
                self._resource_failures["current"] = self._resource_failures.get("current", 0) + 1

    def record_poll_discarded(self) -> None:
        with self._lock:
            self.polls_discarded += 1

    def record_notifications(self, count: int) -> None:
        with self._lock:
            self.notifications_emitted += count

    def snapshot(self) -> dict:
        """Return a JSON-serializable snapshot of all stats."""
        with self._lock:
            return {
                "uptime_seconds": round(time.time() - self._started_at, 1),
                "batches": {
                    "started": self.batches_started,
                    "applied": self.batches_applied,
                    "failed": self.batches_failed,
                    "superseded": self.batches_superseded,
                },
                "polls": {
                    "ok": self.polls_ok,
                    "failed": self.polls_failed,
                    "discarded": self.polls_discarded,
                },
                "notifications_emitted": self.notifications_emitted,
                "resource_failures": dict(self._resource_failures),
                "last_error": self.last_error,
            }
