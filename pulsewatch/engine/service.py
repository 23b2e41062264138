"""
Monitor Engine

Wires store, prober, scheduler, registry and transition bus together and
owns their lifecycle.
"""

from __future__ import annotations

from typing import Protocol

import structlog

from pulsewatch.config import EngineSettings
from pulsewatch.engine.events import TransitionBus
from pulsewatch.engine.prober import HttpProber
from pulsewatch.engine.registry import CheckRegistry
from pulsewatch.engine.scheduler import CheckScheduler, Prober
from pulsewatch.engine.store import CheckSource, ResultStore
from pulsewatch.errors import StoreUnavailableError

logger = structlog.get_logger(__name__)


class EngineStore(CheckSource, ResultStore, Protocol):
    """A store that serves both check definitions and results."""

    pass


class MonitorEngine:
    """
    The uptime monitoring engine.

    Startup refuses to proceed if the store is unreachable, since cached
    status would otherwise drift away from durable history.
    """

    def __init__(
        self,
        store: EngineStore,
        settings: EngineSettings | None = None,
        prober: Prober | None = None,
        bus: TransitionBus | None = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.store = store
        self.bus = bus or TransitionBus()
        self.prober = prober or HttpProber(
            method=self.settings.probe_method,
            policy=self.settings.status_policy,
            follow_redirects=self.settings.follow_redirects,
            user_agent=self.settings.user_agent,
        )
        self.scheduler = CheckScheduler(
            prober=self.prober,
            store=self.store,
            bus=self.bus,
            concurrency_limit=self.settings.concurrency_limit,
            probe_timeout=self.settings.probe_timeout,
            tick_interval=self.settings.tick_interval,
            store_write_retries=self.settings.store_write_retries,
            store_retry_delay=self.settings.store_retry_delay,
        )
        self.registry = CheckRegistry(
            source=self.store,
            scheduler=self.scheduler,
            reconcile_interval=self.settings.reconcile_interval,
        )
        self._started = False

    async def start(self) -> None:
        """
        Start monitoring.

        Raises:
            StoreUnavailableError: if the store cannot be reached
        """
        if self._started:
            logger.warning("Engine already started")
            return

        try:
            await self.store.ping()
        except StoreUnavailableError:
            logger.error("Result store unreachable, refusing to start")
            raise
        except Exception as e:
            logger.error("Result store unreachable, refusing to start", error=str(e))
            raise StoreUnavailableError(str(e)) from e

        report = await self.registry.reconcile()
        if report.failed:
            raise StoreUnavailableError("Could not load check definitions")

        self.scheduler.start()
        await self.registry.start()
        self._started = True

        logger.info(
            "Engine started",
            checks=len(self.scheduler.registered_ids()),
            concurrency_limit=self.settings.concurrency_limit,
            probe_timeout=self.settings.probe_timeout,
            staleness_bound=self.registry.staleness_bound,
        )

    async def stop(self) -> None:
        """Stop reconciling, drain in-flight probes and release the HTTP client."""
        if not self._started:
            return

        logger.info("Stopping engine")
        await self.registry.stop()
        await self.scheduler.shutdown(self.settings.effective_drain_timeout)

        close = getattr(self.prober, "close", None)
        if close is not None:
            await close()

        self._started = False
        logger.info("Engine stopped", **self.scheduler.stats())

    @property
    def is_running(self) -> bool:
        return self._started
