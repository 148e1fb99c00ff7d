from __future__ import annotations

import asyncio

import pytest

from pagewatch.models import BatchResult
from pagewatch.services.scheduler import CHECK_JOB_ID, CheckScheduler


class CountingOrchestrator:
    def __init__(self, release: asyncio.Event | None = None) -> None:
        self.calls = 0
        self.release = release

    async def run_all(self) -> BatchResult:
        self.calls += 1
        if self.release is not None:
            await self.release.wait()
        return BatchResult()


@pytest.mark.asyncio
async def test_trigger_now_runs_a_batch() -> None:
    orchestrator = CountingOrchestrator()
    scheduler = CheckScheduler(orchestrator)

    result = await scheduler.trigger_now()

    assert isinstance(result, BatchResult)
    assert orchestrator.calls == 1
    assert scheduler.is_checking is False


@pytest.mark.asyncio
async def test_trigger_while_running_is_ignored() -> None:
    release = asyncio.Event()
    orchestrator = CountingOrchestrator(release)
    scheduler = CheckScheduler(orchestrator)

    first = asyncio.create_task(scheduler.trigger_now())
    await asyncio.sleep(0)
    assert scheduler.is_checking is True

    assert await scheduler.trigger_now() is None

    release.set()
    assert isinstance(await first, BatchResult)
    assert orchestrator.calls == 1


@pytest.mark.asyncio
async def test_scheduled_check_survives_failures(caplog) -> None:
    class FailingOrchestrator:
        async def run_all(self) -> BatchResult:
            raise RuntimeError("store unavailable")

    scheduler = CheckScheduler(FailingOrchestrator())

    await scheduler._scheduled_check()

    assert "Scheduled check failed" in caplog.text
    assert scheduler.is_checking is False


@pytest.mark.asyncio
async def test_start_and_reschedule_interval() -> None:
    scheduler = CheckScheduler(CountingOrchestrator(), interval_minutes=30)
    scheduler.start(run_immediately=False)
    try:
        job = scheduler._scheduler.get_job(CHECK_JOB_ID)
        assert job is not None
        assert job.trigger.interval.total_seconds() == 30 * 60

        scheduler.reschedule(5)

        job = scheduler._scheduler.get_job(CHECK_JOB_ID)
        assert job.trigger.interval.total_seconds() == 5 * 60
        assert scheduler.interval_minutes == 5
    finally:
        await scheduler.shutdown()


@pytest.mark.asyncio
async def test_shutdown_cancels_start_up_check() -> None:
    release = asyncio.Event()
    orchestrator = CountingOrchestrator(release)
    scheduler = CheckScheduler(orchestrator)

    scheduler.start(run_immediately=True)
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert orchestrator.calls == 1
    assert scheduler.is_checking is True

    await scheduler.shutdown()

    assert scheduler.is_checking is False
    assert scheduler._initial_check is None
