"""
Check Scheduler

Decides when each check is probed and drives at most one in-flight probe
per check, under a global concurrency limit.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol

import structlog

from pulsewatch.engine.events import TransitionBus
from pulsewatch.engine.models import (
    Check,
    CheckState,
    CheckStatus,
    ProbeOutcome,
    ProbeResult,
    ScheduleEntry,
    StatusTransition,
)
from pulsewatch.engine.store import ResultStore

logger = structlog.get_logger(__name__)

Clock = Callable[[], float]


class Prober(Protocol):
    """Anything that can probe a URL within a timeout."""

    async def probe(self, url: str, timeout: float) -> ProbeOutcome: ...


class CheckScheduler:
    """
    Priority-queue scheduler for checks.

    The scheduling loop is the only writer of the queue. Probe completions
    run on the same event loop and touch scheduler state only between awaits,
    so no locking is needed. A check never has a queue entry while its probe
    is in flight, which is what keeps a slow endpoint from being probed twice
    at once.

    Due times come from ``clock`` (monotonic seconds by default); result
    timestamps are wall-clock UTC.
    """

    def __init__(
        self,
        prober: Prober,
        store: ResultStore,
        bus: TransitionBus | None = None,
        concurrency_limit: int = 20,
        probe_timeout: float = 10.0,
        tick_interval: float = 1.0,
        store_write_retries: int = 3,
        store_retry_delay: float = 0.5,
        clock: Clock = time.monotonic,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            prober: Executes probes
            store: Receives results and cached status updates
            bus: Receives status transition events (optional)
            concurrency_limit: Maximum simultaneous in-flight probes
            probe_timeout: Timeout handed to every probe, in seconds
            tick_interval: Longest sleep between due-check sweeps, in seconds
            store_write_retries: Retries after a failed store write
            store_retry_delay: Delay between store write attempts, in seconds
            clock: Source of scheduling time in seconds
        """
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")

        self._prober = prober
        self._store = store
        self._bus = bus
        self._limit = concurrency_limit
        self._probe_timeout = probe_timeout
        self._tick_interval = tick_interval
        self._store_write_retries = max(0, store_write_retries)
        self._store_retry_delay = store_retry_delay
        self._clock = clock

        self._checks: dict[str, Check] = {}
        self._heap: list[ScheduleEntry] = []
        self._pending: dict[str, ScheduleEntry] = {}  # check_id -> live heap entry
        self._in_flight: dict[str, Check] = {}  # check_id -> definition dispatched
        self._discard: set[str] = set()  # in-flight ids whose result must be dropped
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._sequence = itertools.count()

        self._last_status: dict[str, CheckStatus | None] = {}
        self._last_checked_at: dict[str, datetime | None] = {}
        self._last_started: dict[str, float] = {}

        self._wake = asyncio.Event()
        self._loop_task: asyncio.Task[None] | None = None
        self._running = False
        self._stopping = False

        self._stats = {
            "dispatched": 0,
            "completed": 0,
            "discarded": 0,
            "store_failures": 0,
            "transitions": 0,
            "peak_in_flight": 0,
        }

    # Registration

    def register(self, check: Check) -> bool:
        """
        Add or update a check.

        New checks are due immediately. Re-registering a known check keeps its
        place in the queue unless the interval changed, in which case the next
        run is recomputed from the last start time.

        Returns:
            True if the check is scheduled after the call
        """
        if not check.is_active or check.interval_seconds <= 0:
            if check.id in self._checks:
                self.deregister(check.id)
            else:
                logger.debug(
                    "Ignoring unschedulable check",
                    check_id=check.id,
                    is_active=check.is_active,
                    interval_seconds=check.interval_seconds,
                )
            return False

        previous = self._checks.get(check.id)
        self._checks[check.id] = check
        now = self._clock()

        if previous is None:
            self._last_status[check.id] = check.last_status
            self._last_checked_at[check.id] = check.last_checked_at
            if check.id not in self._in_flight:
                self._push(check.id, now)
            logger.info(
                "Check registered",
                check_id=check.id,
                url=check.url,
                interval_seconds=check.interval_seconds,
            )
            return True

        if check.id in self._in_flight:
            # Picked up when the running probe completes
            return True

        if previous.interval_seconds != check.interval_seconds or check.id not in self._pending:
            started = self._last_started.get(check.id)
            due = now if started is None else max(started + check.interval_seconds, now)
            self._push(check.id, due)
            logger.info(
                "Check rescheduled",
                check_id=check.id,
                interval_seconds=check.interval_seconds,
                due_in=round(due - now, 3),
            )
        return True

    def deregister(self, check_id: str) -> bool:
        """
        Remove a check.

        A probe already in flight runs to completion but its result is
        discarded.

        Returns:
            True if the check was known
        """
        if check_id not in self._checks:
            return False

        del self._checks[check_id]
        self._pending.pop(check_id, None)
        self._last_status.pop(check_id, None)
        self._last_checked_at.pop(check_id, None)
        self._last_started.pop(check_id, None)
        if check_id in self._in_flight:
            self._discard.add(check_id)

        logger.info("Check deregistered", check_id=check_id)
        return True

    def registered_ids(self) -> set[str]:
        """Ids of all scheduled checks."""
        return set(self._checks)

    def get_check(self, check_id: str) -> Check | None:
        """Current definition of a scheduled check."""
        return self._checks.get(check_id)

    # Dispatch

    def tick(self, now: float) -> int:
        """
        Dispatch every due check that can get a concurrency slot.

        Due checks beyond the concurrency limit stay queued, in order, until a
        slot frees up.

        Args:
            now: Current scheduling time

        Returns:
            Number of probes dispatched
        """
        dispatched = 0

        while self._heap and not self._stopping and len(self._in_flight) < self._limit:
            entry = self._heap[0]
            if self._pending.get(entry.check_id) is not entry:
                heapq.heappop(self._heap)  # superseded or deregistered
                continue
            if entry.next_due_at > now:
                break

            heapq.heappop(self._heap)
            del self._pending[entry.check_id]
            self._dispatch(self._checks[entry.check_id], now)
            dispatched += 1

        if dispatched:
            logger.debug(
                "Tick dispatched probes",
                dispatched=dispatched,
                in_flight=len(self._in_flight),
                queued=len(self._pending),
            )
        return dispatched

    def _push(self, check_id: str, due: float) -> None:
        entry = ScheduleEntry(next_due_at=due, sequence=next(self._sequence), check_id=check_id)
        self._pending[check_id] = entry
        heapq.heappush(self._heap, entry)

    def _dispatch(self, check: Check, started_at: float) -> None:
        self._in_flight[check.id] = check
        self._last_started[check.id] = started_at
        self._stats["dispatched"] += 1
        self._stats["peak_in_flight"] = max(self._stats["peak_in_flight"], len(self._in_flight))

        task = asyncio.create_task(self._run_probe(check, started_at), name=f"probe:{check.id}")
        self._tasks[check.id] = task

    async def _run_probe(self, check: Check, started_at: float) -> None:
        """Probe task body. Never raises except on cancellation."""
        try:
            try:
                outcome = await self._prober.probe(check.url, self._probe_timeout)
            except Exception as e:
                logger.error("Prober raised", check_id=check.id, error=str(e))
                outcome = ProbeOutcome.failure(f"probe error: {e}")

            await self.on_probe_complete(check.id, outcome, started_at, self._clock())

        except asyncio.CancelledError:
            logger.warning("Probe cancelled, result discarded", check_id=check.id)
            self._release(check.id, None)
            raise
        finally:
            self._tasks.pop(check.id, None)

    async def on_probe_complete(
        self,
        check_id: str,
        outcome: ProbeOutcome,
        started_at: float,
        finished_at: float,
    ) -> None:
        """
        Record a finished probe and put the check back in the queue.

        The next run is due ``interval_seconds`` after the probe *started*,
        clamped to now, so probe latency does not accumulate as drift.
        """
        try:
            if not self._accepts_result(check_id):
                self._stats["discarded"] += 1
                logger.debug("Discarding result of removed check", check_id=check_id)
                return

            check = self._checks[check_id]
            self._stats["completed"] += 1
            result = ProbeResult.from_outcome(check_id, outcome, datetime.now(timezone.utc))

            # Each write re-checks registration, so a check removed mid-retry
            # gets nothing further written. A dropped write ends the update.
            if not await self._write(
                "append_result", check_id, lambda: self._store.append_result(result)
            ):
                return

            if not await self._write(
                "update_check_status",
                check_id,
                lambda: self._store.update_check_status(check_id, result.status, result.checked_at),
            ):
                return

            await self._record_status(check, result)

            logger.debug(
                "Probe recorded",
                check_id=check_id,
                status=result.status.value,
                http_status=result.http_status,
                latency_ms=result.latency_ms,
                duration=round(finished_at - started_at, 3),
            )
        finally:
            self._release(check_id, started_at)

    def _release(self, check_id: str, started_at: float | None) -> None:
        """Clear in-flight status and reinsert the check if still scheduled."""
        if self._in_flight.pop(check_id, None) is None:
            return

        was_discarded = check_id in self._discard
        self._discard.discard(check_id)

        check = self._checks.get(check_id)
        if check is not None and check_id not in self._pending and not self._stopping:
            now = self._clock()
            if was_discarded or started_at is None:
                due = now
            else:
                due = max(started_at + check.interval_seconds, now)
            self._push(check_id, due)

        self._wake.set()

    def _accepts_result(self, check_id: str) -> bool:
        """True while results for this check may still be written."""
        return check_id in self._checks and check_id not in self._discard

    async def _write(
        self,
        operation: str,
        check_id: str,
        write: Callable[[], Awaitable[Any]],
    ) -> bool:
        """
        Run a store write with bounded retries.

        Returns False if the write was dropped, either after the last failed
        attempt or because the check was deregistered between attempts.
        """
        attempts = self._store_write_retries + 1
        for attempt in range(1, attempts + 1):
            if not self._accepts_result(check_id):
                self._stats["discarded"] += 1
                logger.info(
                    "Check removed during store write, discarding",
                    operation=operation,
                    check_id=check_id,
                )
                return False
            try:
                await write()
                return True
            except Exception as e:
                logger.warning(
                    "Store write failed",
                    operation=operation,
                    check_id=check_id,
                    attempt=attempt,
                    attempts=attempts,
                    error=str(e),
                )
                if attempt < attempts:
                    await asyncio.sleep(self._store_retry_delay)

        self._stats["store_failures"] += 1
        logger.error(
            "Dropping probe update after store failures",
            operation=operation,
            check_id=check_id,
        )
        return False

    async def _record_status(self, check: Check, result: ProbeResult) -> None:
        if not self._accepts_result(check.id):
            return

        previous = self._last_status.get(check.id)
        self._last_status[check.id] = result.status
        self._last_checked_at[check.id] = result.checked_at

        if previous is None or previous == result.status:
            return

        self._stats["transitions"] += 1
        event = StatusTransition(
            check_id=check.id,
            check_name=check.name,
            url=check.url,
            previous_status=previous,
            status=result.status,
            occurred_at=result.checked_at,
            http_status=result.http_status,
            error=result.error,
        )
        if self._bus is not None:
            await self._bus.publish(event)

    # Loop

    def wake(self) -> None:
        """Run a sweep now instead of waiting for the next tick."""
        self._wake.set()

    async def run(self) -> None:
        """Scheduling loop. Returns once shutdown() has been requested."""
        self._running = True
        logger.info(
            "Scheduler loop started",
            checks=len(self._checks),
            concurrency_limit=self._limit,
            tick_interval=self._tick_interval,
        )
        try:
            while not self._stopping:
                self._wake.clear()
                self.tick(self._clock())
                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=self._tick_interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            logger.info("Scheduler loop stopped")

    def start(self) -> None:
        """Start the scheduling loop as a background task."""
        if self._loop_task is not None and not self._loop_task.done():
            logger.warning("Scheduler already running")
            return
        self._stopping = False
        self._loop_task = asyncio.create_task(self.run(), name="scheduler-loop")

    async def shutdown(self, drain_timeout: float | None = None) -> None:
        """
        Stop dispatching and drain in-flight probes.

        Probes get ``drain_timeout`` seconds (default: probe timeout + 1s) to
        finish and write their results; whatever is still running after that
        is cancelled and its result discarded.
        """
        self._stopping = True
        self._wake.set()

        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None

        tasks = list(self._tasks.values())
        if not tasks:
            return

        timeout = drain_timeout if drain_timeout is not None else self._probe_timeout + 1.0
        logger.info("Draining in-flight probes", in_flight=len(tasks), timeout=timeout)
        _, pending = await asyncio.wait(tasks, timeout=timeout)

        if pending:
            logger.warning("Cancelling probes after drain timeout", cancelled=len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    # Introspection

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def is_in_flight(self, check_id: str) -> bool:
        return check_id in self._in_flight

    def get_state(self, check_id: str) -> CheckState | None:
        """Read-only snapshot of one check's scheduling state."""
        if check_id not in self._checks:
            return None

        entry = self._pending.get(check_id)
        next_due_in = None
        if entry is not None:
            next_due_in = max(0.0, entry.next_due_at - self._clock())

        return CheckState(
            check_id=check_id,
            last_status=self._last_status.get(check_id),
            last_checked_at=self._last_checked_at.get(check_id),
            next_due_in=next_due_in,
            in_flight=check_id in self._in_flight,
        )

    def list_states(self) -> list[CheckState]:
        return [s for s in (self.get_state(cid) for cid in self._checks) if s is not None]

    def stats(self) -> dict[str, int]:
        """Counters since startup plus current queue sizes."""
        return {
            **self._stats,
            "registered": len(self._checks),
            "queued": len(self._pending),
            "in_flight": len(self._in_flight),
        }
