"""
Tests for the Check Registry.
"""

import asyncio

import pytest

from pulsewatch.engine.models import Check
from pulsewatch.engine.registry import CheckRegistry, validate_check
from pulsewatch.engine.scheduler import CheckScheduler
from pulsewatch.errors import InvalidCheckError, StoreError


class BrokenSource:
    """Check source that always fails."""

    async def list_checks(self) -> list[Check]:
        raise StoreError("database is locked")


@pytest.fixture
def scheduler(prober, memory_store, clock) -> CheckScheduler:
    return CheckScheduler(prober=prober, store=memory_store, clock=clock)


@pytest.fixture
def registry(memory_store, scheduler) -> CheckRegistry:
    return CheckRegistry(source=memory_store, scheduler=scheduler, reconcile_interval=5.0)


class TestValidateCheck:
    """Tests for check validation."""

    def test_valid_check(self, make_check) -> None:
        validate_check(make_check(url="http://example.com:8080/ping"))

    @pytest.mark.parametrize("interval", [0, -1])
    def test_non_positive_interval(self, make_check, interval: int) -> None:
        with pytest.raises(InvalidCheckError) as exc_info:
            validate_check(make_check(interval_seconds=interval))
        assert "interval_seconds" in exc_info.value.reason

    @pytest.mark.parametrize("url", ["ftp://example.com", "example.com", "not a url", "https://"])
    def test_bad_url(self, make_check, url: str) -> None:
        with pytest.raises(InvalidCheckError):
            validate_check(make_check(url=url))


class TestReconcile:
    """Tests for a single reconciliation pass."""

    @pytest.mark.asyncio
    async def test_adds_active_checks(self, registry, scheduler, memory_store, make_check) -> None:
        active = make_check()
        paused = make_check(is_active=False)
        await memory_store.create_check(active)
        await memory_store.create_check(paused)

        report = await registry.reconcile()

        assert report.added == [active.id]
        assert scheduler.registered_ids() == {active.id}
        assert registry.passes == 1

    @pytest.mark.asyncio
    async def test_invalid_checks_filtered(self, registry, scheduler, memory_store, make_check) -> None:
        good = make_check()
        zero = make_check(interval_seconds=0)
        bad_url = make_check(url="mailto:ops@example.com")
        for check in (good, zero, bad_url):
            await memory_store.create_check(check)

        report = await registry.reconcile()

        assert scheduler.registered_ids() == {good.id}
        assert sorted(report.rejected) == sorted([zero.id, bad_url.id])

    @pytest.mark.asyncio
    async def test_unchanged_set_is_a_no_op(self, registry, memory_store, make_check) -> None:
        await memory_store.create_check(make_check())

        await registry.reconcile()
        report = await registry.reconcile()

        assert report.changed is False

    @pytest.mark.asyncio
    async def test_cached_status_change_is_not_an_update(
        self, registry, memory_store, make_check, scheduler, clock, settle
    ) -> None:
        check = make_check()
        await memory_store.create_check(check)
        await registry.reconcile()

        scheduler.tick(clock.now)
        await settle()  # writes last_status to the store

        report = await registry.reconcile()
        assert report.updated == []

    @pytest.mark.asyncio
    async def test_deleted_check_deregistered(self, registry, scheduler, memory_store, make_check) -> None:
        check = make_check()
        await memory_store.create_check(check)
        await registry.reconcile()

        await memory_store.delete_check(check.id)
        report = await registry.reconcile()

        assert report.removed == [check.id]
        assert scheduler.registered_ids() == set()

    @pytest.mark.asyncio
    async def test_deactivated_check_deregistered(self, registry, scheduler, memory_store, make_check) -> None:
        check = make_check()
        await memory_store.create_check(check)
        await registry.reconcile()

        await memory_store.set_active(check.id, False)
        await registry.reconcile()

        assert scheduler.registered_ids() == set()

    @pytest.mark.asyncio
    async def test_check_becoming_invalid_deregistered(
        self, registry, scheduler, memory_store, make_check
    ) -> None:
        check = make_check()
        await memory_store.create_check(check)
        await registry.reconcile()

        await memory_store.create_check(check.model_copy(update={"interval_seconds": 0}))
        report = await registry.reconcile()

        assert report.removed == [check.id]
        assert report.rejected == [check.id]

    @pytest.mark.asyncio
    async def test_interval_change_updates_scheduler(
        self, registry, scheduler, memory_store, make_check
    ) -> None:
        check = make_check(interval_seconds=60)
        await memory_store.create_check(check)
        await registry.reconcile()

        await memory_store.create_check(check.model_copy(update={"interval_seconds": 15}))
        report = await registry.reconcile()

        assert report.updated == [check.id]
        assert scheduler.get_check(check.id).interval_seconds == 15

    @pytest.mark.asyncio
    async def test_url_change_updates_scheduler(
        self, registry, scheduler, memory_store, make_check
    ) -> None:
        check = make_check()
        await memory_store.create_check(check)
        await registry.reconcile()

        await memory_store.create_check(check.model_copy(update={"url": "https://moved.example.com"}))
        await registry.reconcile()

        assert scheduler.get_check(check.id).url == "https://moved.example.com"

    @pytest.mark.asyncio
    async def test_source_failure_keeps_current_set(self, scheduler, make_check) -> None:
        check = make_check()
        scheduler.register(check)
        registry = CheckRegistry(source=BrokenSource(), scheduler=scheduler)

        report = await registry.reconcile()

        assert report.failed is True
        assert scheduler.registered_ids() == {check.id}


class TestPeriodicReconcile:
    """Tests for the reconciliation job."""

    def test_interval_must_be_positive(self, memory_store, scheduler) -> None:
        with pytest.raises(ValueError):
            CheckRegistry(source=memory_store, scheduler=scheduler, reconcile_interval=0)

    @pytest.mark.asyncio
    async def test_changes_applied_within_one_period(self, memory_store, scheduler, make_check) -> None:
        """A new check is registered no later than one reconciliation period after creation."""
        registry = CheckRegistry(source=memory_store, scheduler=scheduler, reconcile_interval=0.2)
        await registry.start()
        assert registry.is_running
        assert registry.staleness_bound == 0.2

        check = make_check()
        await memory_store.create_check(check)

        loop = asyncio.get_running_loop()
        created_at = loop.time()
        while check.id not in scheduler.registered_ids() and loop.time() - created_at < 2.0:
            await asyncio.sleep(0.01)
        elapsed = loop.time() - created_at

        await memory_store.delete_check(check.id)
        removed_at = loop.time()
        while check.id in scheduler.registered_ids() and loop.time() - removed_at < 2.0:
            await asyncio.sleep(0.01)
        removal_elapsed = loop.time() - removed_at

        await registry.stop()
        assert not registry.is_running

        # one period plus scheduling slack
        assert elapsed <= registry.staleness_bound + 0.5
        assert removal_elapsed <= registry.staleness_bound + 0.5
        assert check.id not in scheduler.registered_ids()
