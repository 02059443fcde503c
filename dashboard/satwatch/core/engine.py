"""Sync engine: drives the batch and poll timelines.

This is the core business logic. It depends on the TelemetryGateway and
AlertSink protocols, not concrete implementations. Everything runs on one
asyncio event loop; the only suspension points are gateway calls.

Batch timeline: six concurrent fetches per refresh, applied to canonical
state as one transition. Every trigger bumps a generation counter and a
completion from an older generation is dropped.

Poll timeline: one current-status fetch per interval while auto-refresh is
on. Ticks never overlap and at most one poll task exists.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

import structlog

from satwatch.core.errors import FetchError
from satwatch.core.models import QueryWindow
from satwatch.core.notifier import DEFAULT_RECENCY_SECONDS, AnomalyNotifier
from satwatch.core.state import (
    BATCH_RESOURCES,
    BatchResult,
    CanonicalState,
    abort_batch,
    apply_batch,
    apply_partial_batch,
    apply_poll,
    begin_batch,
    end_batch,
    reject_batch,
    set_window,
)
from satwatch.core.stats import SyncStats

if TYPE_CHECKING:
    from satwatch.gateway.base import TelemetryGateway
    from satwatch.sinks.base import AlertSink

log = structlog.get_logger()

BATCH_POLICIES = ("all_or_nothing", "partial")
DEFAULT_POLL_INTERVAL = 5.0

Observer = Callable[[CanonicalState], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncEngine:
    """Keeps canonical state in sync with the remote telemetry API."""

    def __init__(
        self,
        gateway: TelemetryGateway,
        sink: AlertSink,
        *,
        window: QueryWindow | None = None,
        auto_refresh: bool = True,
        poll_interval: float | None = DEFAULT_POLL_INTERVAL,
        telemetry_limit: int = 1000,
        anomaly_limit: int = 100,
        recency_seconds: float = DEFAULT_RECENCY_SECONDS,
        batch_policy: str = "all_or_nothing",
        stats: SyncStats | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if batch_policy not in BATCH_POLICIES:
            raise ValueError(f"batch_policy must be one of {BATCH_POLICIES}, got {batch_policy!r}")
        self._gateway = gateway
        self._sink = sink
        self._stats = stats or SyncStats()
        self._clock = clock
        self._notifier = AnomalyNotifier(sink, recency_seconds=recency_seconds, clock=clock)
        self._telemetry_limit = telemetry_limit
        self._anomaly_limit = anomaly_limit
        self._batch_policy = batch_policy
        self._auto_refresh = auto_refresh
        self._poll_interval = poll_interval
        # Interval restored when auto-refresh is re-enabled after disable_polling().
        self._resume_interval = poll_interval or DEFAULT_POLL_INTERVAL

        self._state = CanonicalState(window=window or QueryWindow.last(now=clock()))
        self._observers: list[Observer] = []
        self._running = False
        self._generation = 0
        # Bumped on stop so polls started before a stop are discarded.
        self._epoch = 0

        self._poll_task: asyncio.Task | None = None
        self._poll_lock = asyncio.Lock()
        self._batch_tasks: set[asyncio.Task] = set()

    # -- read side ----------------------------------------------------------

    @property
    def state(self) -> CanonicalState:
        return self._state

    @property
    def stats(self) -> SyncStats:
        return self._stats

    @property
    def notifier(self) -> AnomalyNotifier:
        return self._notifier

    @property
    def running(self) -> bool:
        return self._running

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def auto_refresh(self) -> bool:
        return self._auto_refresh and self._poll_interval is not None

    @property
    def poll_interval(self) -> float | None:
        return self._poll_interval

    @property
    def polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Call ``observer`` with every new snapshot. Returns an unsubscribe function."""
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    def _set_state(self, state: CanonicalState) -> None:
        self._state = state
        for observer in list(self._observers):
            try:
                observer(state)
            except Exception:
                log.error("observer_failed", observer=repr(observer), exc_info=True)

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Start both timelines. The first batch refresh begins immediately."""
        if self._running:
            return
        self._running = True
        log.info("engine_started",
                 auto_refresh=self.auto_refresh,
                 poll_interval=self._poll_interval,
                 batch_policy=self._batch_policy)
        self._restart_poll()
        self.trigger_batch()

    async def stop(self) -> None:
        """Cancel both timelines. Results still in flight are ignored."""
        if not self._running:
            return
        self._running = False
        self._epoch += 1

        tasks = list(self._batch_tasks)
        if self._poll_task is not None:
            tasks.append(self._poll_task)
            self._poll_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._state.loading:
            self._set_state(end_batch(self._state))
        log.info("engine_stopped", cancelled_tasks=len(tasks))

    async def wait_for_batches(self) -> None:
        """Wait until every batch refresh in flight has finished."""
        while self._batch_tasks:
            await asyncio.gather(*list(self._batch_tasks), return_exceptions=True)

    # -- control surface ----------------------------------------------------

    def set_query_window(self, window: QueryWindow) -> asyncio.Task | None:
        """Switch to a new query window and refresh the batch if running."""
        self._set_state(set_window(self._state, window))
        log.info("query_window_changed", **window.to_dict())
        if not self._running:
            return None
        return self.trigger_batch()

    def set_auto_refresh(self, enabled: bool, interval: float | None = None) -> None:
        """Turn the poll timeline on or off, optionally changing its interval."""
        if interval is not None:
            if interval <= 0:
                raise ValueError("poll interval must be positive")
            self._poll_interval = interval
            self._resume_interval = interval
        elif enabled and self._poll_interval is None:
            self._poll_interval = self._resume_interval
        self._auto_refresh = enabled
        log.info("auto_refresh_changed", enabled=self.auto_refresh,
                 interval=self._poll_interval)
        self._restart_poll()

    def disable_polling(self) -> None:
        """Set the poll interval to none, cancelling any pending tick."""
        self._poll_interval = None
        self._restart_poll()

    async def refresh_now(self) -> bool:
        """Run one out-of-band poll tick. The poll timer keeps its phase."""
        log.info("manual_refresh")
        return await self.poll_once()

    async def refresh_batch(self) -> None:
        """Trigger a batch refresh and wait for it to finish."""
        await self.trigger_batch()

    # -- batch timeline -----------------------------------------------------

    def trigger_batch(self) -> asyncio.Task:
        """Start a new batch refresh, superseding any batch in flight."""
        if not self._running:
            raise RuntimeError("engine is not running")
        self._generation += 1
        generation = self._generation
        window = self._state.window
        self._set_state(begin_batch(self._state, window, generation))

        task = asyncio.create_task(self._run_batch(generation, window))
        self._batch_tasks.add(task)
        task.add_done_callback(self._batch_tasks.discard)
        return task

    def _is_current(self, generation: int) -> bool:
        return self._running and generation == self._generation

    async def _run_batch(self, generation: int, window: QueryWindow) -> None:
        self._stats.record_batch_started()
        log.debug("batch_started", generation=generation, **window.to_dict())

        outcomes = await asyncio.gather(
            self._gateway.get_current_status(),
            self._gateway.get_telemetry(window, self._telemetry_limit),
            self._gateway.get_anomalies(window, self._anomaly_limit),
            self._gateway.get_aggregations("avg", window),
            self._gateway.get_aggregations("min", window),
            self._gateway.get_aggregations("max", window),
            return_exceptions=True,
        )

        if not self._is_current(generation):
            self._stats.record_batch_superseded()
            log.info("batch_superseded", generation=generation, current=self._generation)
            return

        results: dict[str, object] = {}
        failures: list[FetchError] = []
        for resource, outcome in zip(BATCH_RESOURCES, outcomes):
            if isinstance(outcome, FetchError):
                failures.append(outcome)
            elif isinstance(outcome, Exception):
                self._abort_batch(generation, resource, outcome)
                return
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results[resource] = outcome

        if failures:
            self._apply_failed_batch(generation, results, failures)
            return

        result = BatchResult(
            current_status=results["current"],
            telemetry=tuple(results["telemetry"]),
            anomalies=tuple(results["anomalies"]),
            avg_aggregations=tuple(results["aggregations/avg"]),
            min_aggregations=tuple(results["aggregations/min"]),
            max_aggregations=tuple(results["aggregations/max"]),
        )
        self._set_state(apply_batch(self._state, result, now=self._clock()))
        self._stats.record_batch_applied()
        log.info("batch_applied", generation=generation,
                 telemetry=len(result.telemetry),
                 anomalies=len(result.anomalies),
                 buckets=len(result.avg_aggregations))
        self._notify(result.anomalies)

    def _apply_failed_batch(self, generation: int, results: dict[str, object],
                            failures: list[FetchError]) -> None:
        resources = [f.resource for f in failures]
        self._stats.record_batch_failed(resources, str(failures[0]))
        log.warning("batch_failed", generation=generation, resources=resources,
                    error=str(failures[0]), policy=self._batch_policy)

        if self._batch_policy == "partial":
            self._set_state(apply_partial_batch(self._state, results, failures,
                                                now=self._clock()))
            if "anomalies" in results:
                self._notify(self._state.anomalies)
        else:
            self._set_state(reject_batch(self._state, failures[0]))

    def _abort_batch(self, generation: int, resource: str, exc: Exception) -> None:
        message = f"{resource}: {exc!r}"
        log.error("batch_crashed", generation=generation, resource=resource, exc_info=exc)
        self._stats.record_batch_failed([resource], message)
        self._set_state(abort_batch(self._state, resource, message))

    def _notify(self, anomalies) -> None:
        sent = self._notifier.process(anomalies)
        if sent:
            self._stats.record_notifications(len(sent))

    # -- poll timeline ------------------------------------------------------

    def _restart_poll(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        if self._running and self.auto_refresh:
            self._poll_task = asyncio.create_task(self._poll_loop(self._poll_interval))

    async def _poll_loop(self, interval: float) -> None:
        """Tick every ``interval`` seconds. Runs as a background task."""
        log.debug("poll_loop_started", interval=interval)
        while True:
            await asyncio.sleep(interval)
            try:
                await self.poll_once()
            except Exception:
                log.error("poll_tick_crashed", exc_info=True)

    async def poll_once(self) -> bool:
        """Fetch current status once. Returns True when state was updated."""
        if not self._running:
            return False
        epoch = self._epoch
        async with self._poll_lock:
            try:
                status = await self._gateway.get_current_status()
            except FetchError as exc:
                if not self._running or epoch != self._epoch:
                    self._stats.record_poll_discarded()
                    return False
                self._stats.record_poll(ok=False, error=str(exc))
                log.warning("poll_failed", error=str(exc), kind=exc.kind)
                self._sink.warn(str(exc))
                return False

            if not self._running or epoch != self._epoch:
                self._stats.record_poll_discarded()
                log.debug("poll_discarded")
                return False

            self._set_state(apply_poll(self._state, status, now=self._clock()))
            self._stats.record_poll(ok=True)
            log.debug("poll_applied", status=status.status.value,
                      anomaly_count=status.anomaly_count)
            return True
