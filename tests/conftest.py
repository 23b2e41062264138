"""
Pytest configuration and shared fixtures.
"""

import asyncio
from typing import Awaitable, Callable

import pytest

from pulsewatch.engine.events import TransitionBus
from pulsewatch.engine.models import Check, CheckStatus, ProbeOutcome
from pulsewatch.engine.store import MemoryCheckStore


class FakeClock:
    """Manually advanced scheduling clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedProber:
    """
    Prober double.

    Returns UP/200 unless a URL has a scripted outcome. Can hold every probe
    on a gate and sleep for a fixed delay. Tracks concurrency per URL and
    overall.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.outcomes: dict[str, ProbeOutcome | Callable[[], ProbeOutcome]] = {}
        self.calls: list[str] = []
        self.gate: asyncio.Event | None = None
        self.in_flight: dict[str, int] = {}
        self.current = 0
        self.peak = 0
        self.peak_per_url = 0

    async def probe(self, url: str, timeout: float) -> ProbeOutcome:
        self.calls.append(url)
        self.current += 1
        self.peak = max(self.peak, self.current)
        self.in_flight[url] = self.in_flight.get(url, 0) + 1
        self.peak_per_url = max(self.peak_per_url, self.in_flight[url])
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            scripted = self.outcomes.get(url)
            if callable(scripted):
                return scripted()
            if scripted is not None:
                return scripted
            return ProbeOutcome(status=CheckStatus.UP, http_status=200, latency_ms=5)
        finally:
            self.current -= 1
            self.in_flight[url] -= 1

    def count(self, url: str) -> int:
        return self.calls.count(url)


async def drain(rounds: int = 10) -> None:
    """Let pending tasks on the event loop run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    """Manually advanced clock starting at t=1000."""
    return FakeClock()


@pytest.fixture
def prober() -> ScriptedProber:
    """Prober double that answers UP/200 immediately."""
    return ScriptedProber()


@pytest.fixture
def bus() -> TransitionBus:
    """Fresh transition bus."""
    return TransitionBus()


@pytest.fixture
def make_check() -> Callable[..., Check]:
    """Factory for check definitions with sensible defaults."""
    counter = iter(range(1, 100_000))

    def _make(**overrides) -> Check:
        n = next(counter)
        fields = {
            "id": f"check-{n}",
            "name": f"Check {n}",
            "url": f"https://site{n}.example.com/health",
            "interval_seconds": 30,
        }
        fields.update(overrides)
        return Check(**fields)

    return _make


@pytest.fixture
def memory_store() -> MemoryCheckStore:
    """Empty in-memory check store."""
    return MemoryCheckStore()


@pytest.fixture
def settle() -> Callable[..., Awaitable[None]]:
    """Coroutine that lets pending probe tasks finish."""
    return drain
