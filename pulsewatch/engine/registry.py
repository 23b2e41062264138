"""
Check Registry

Keeps the scheduler's active set in line with the check definitions held by
the backing store. The store is polled on a fixed period, so a created,
edited or deleted check takes effect within one reconciliation period.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import httpx
import structlog
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pulsewatch.engine.models import Check
from pulsewatch.engine.scheduler import CheckScheduler
from pulsewatch.engine.store import CheckSource
from pulsewatch.errors import InvalidCheckError

logger = structlog.get_logger(__name__)

RECONCILE_JOB_ID = "reconcile-checks"


def validate_check(check: Check) -> None:
    """
    Reject check definitions the engine must never schedule.

    Raises:
        InvalidCheckError: if the interval is not positive or the URL is not
            an absolute http(s) URL
    """
    if check.interval_seconds <= 0:
        raise InvalidCheckError(check.id, f"interval_seconds must be positive, got {check.interval_seconds}")

    try:
        url = httpx.URL(check.url)
    except httpx.InvalidURL as e:
        raise InvalidCheckError(check.id, f"malformed url: {e}") from e

    if url.scheme not in ("http", "https"):
        raise InvalidCheckError(check.id, f"unsupported url scheme {url.scheme!r}")
    if not url.host:
        raise InvalidCheckError(check.id, "url has no host")


@dataclass
class ReconcileReport:
    """What one reconciliation pass changed."""

    added: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)
    failed: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.removed)


class CheckRegistry:
    """
    Reconciles check definitions into the scheduler.

    Each pass reads the full check set, drops invalid definitions, and calls
    register/deregister for whatever differs from the scheduler's view.
    """

    def __init__(
        self,
        source: CheckSource,
        scheduler: CheckScheduler,
        reconcile_interval: float = 5.0,
    ) -> None:
        """
        Initialize the registry.

        Args:
            source: Backing store of check definitions
            scheduler: Scheduler to keep in sync
            reconcile_interval: Seconds between reconciliation passes
        """
        if reconcile_interval <= 0:
            raise ValueError("reconcile_interval must be positive")

        self._source = source
        self._scheduler = scheduler
        self._interval = reconcile_interval
        self._rejected: dict[str, str] = {}  # check_id -> reason already logged
        self._job_scheduler: AsyncIOScheduler | None = None
        self._passes = 0

    @property
    def staleness_bound(self) -> float:
        """Longest delay, in seconds, before a definition change is applied."""
        return self._interval

    @property
    def passes(self) -> int:
        """Completed reconciliation passes."""
        return self._passes

    async def reconcile(self) -> ReconcileReport:
        """Run one reconciliation pass."""
        report = ReconcileReport()

        try:
            checks = await self._source.list_checks()
        except Exception as e:
            logger.error("Failed to load checks, keeping current set", error=str(e))
            report.failed = True
            return report

        desired: dict[str, Check] = {}
        seen: set[str] = set()
        for check in checks:
            seen.add(check.id)
            if not check.is_active:
                self._rejected.pop(check.id, None)
                continue
            try:
                validate_check(check)
            except InvalidCheckError as e:
                report.rejected.append(check.id)
                if self._rejected.get(check.id) != e.reason:
                    self._rejected[check.id] = e.reason
                    logger.warning("Skipping invalid check", check_id=check.id, reason=e.reason)
                continue
            self._rejected.pop(check.id, None)
            desired[check.id] = check

        for check_id in list(self._rejected):
            if check_id not in seen:
                del self._rejected[check_id]

        for check_id in self._scheduler.registered_ids() - desired.keys():
            self._scheduler.deregister(check_id)
            report.removed.append(check_id)

        for check_id, check in desired.items():
            current = self._scheduler.get_check(check_id)
            if current is None:
                self._scheduler.register(check)
                report.added.append(check_id)
            elif not current.same_schedule(check):
                self._scheduler.register(check)
                report.updated.append(check_id)

        self._passes += 1
        if report.changed:
            self._scheduler.wake()
            logger.info(
                "Checks reconciled",
                added=len(report.added),
                updated=len(report.updated),
                removed=len(report.removed),
                rejected=len(report.rejected),
            )
        return report

    def _create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure the APScheduler instance."""
        jobstores = {
            "default": MemoryJobStore(),
        }
        executors = {
            "default": AsyncIOExecutor(),
        }
        job_defaults = {
            "coalesce": True,  # Combine missed runs into one
            "max_instances": 1,  # Never overlap two passes
            "misfire_grace_time": max(1, int(self._interval)),
        }

        return AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone="UTC",
        )

    async def start(self) -> None:
        """Start periodic reconciliation."""
        if self._job_scheduler is not None:
            logger.warning("Registry already running")
            return

        self._job_scheduler = self._create_scheduler()
        self._job_scheduler.add_job(
            self.reconcile,
            trigger=IntervalTrigger(seconds=self._interval),
            id=RECONCILE_JOB_ID,
            name="reconcile checks",
            replace_existing=True,
        )
        self._job_scheduler.start()
        logger.info("Registry started", reconcile_interval=self._interval)

    async def stop(self) -> None:
        """Stop periodic reconciliation."""
        if self._job_scheduler is None:
            return

        self._job_scheduler.shutdown(wait=False)
        self._job_scheduler = None
        logger.info("Registry stopped")

    @property
    def is_running(self) -> bool:
        return self._job_scheduler is not None
