"""Periodic and on-demand triggering of batch checks."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pagewatch.models import BatchResult
from pagewatch.services.orchestrator import BatchOrchestrator

__all__ = ["CHECK_JOB_ID", "CheckScheduler"]

logger = logging.getLogger(__name__)

CHECK_JOB_ID = "pagewatch-check"


class CheckScheduler:
    """Fire :meth:`BatchOrchestrator.run_all` on an interval and on request.

    Runs never overlap: a manual trigger while a batch is in progress is
    skipped, as is a scheduled tick.
    """

    def __init__(
        self,
        orchestrator: BatchOrchestrator,
        interval_minutes: int = 60,
        *,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._interval_minutes = interval_minutes
        self._scheduler = scheduler or AsyncIOScheduler()
        self._running = asyncio.Lock()
        self._initial_check: Optional[asyncio.Task[None]] = None

    @property
    def interval_minutes(self) -> int:
        return self._interval_minutes

    @property
    def is_checking(self) -> bool:
        return self._running.locked()

    def start(self, *, run_immediately: bool = True) -> None:
        """Register the periodic check and start the scheduler."""

        self._scheduler.add_job(
            self._scheduled_check,
            trigger=IntervalTrigger(minutes=self._interval_minutes),
            id=CHECK_JOB_ID,
            name="Check all monitored pages",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        if not self._scheduler.running:
            self._scheduler.start()
        logger.info("Scheduled checks every %d minutes", self._interval_minutes)

        if run_immediately:
            self._initial_check = asyncio.get_running_loop().create_task(self._scheduled_check())

    def reschedule(self, interval_minutes: int) -> None:
        """Change the interval between periodic checks."""

        self._interval_minutes = interval_minutes
        if self._scheduler.get_job(CHECK_JOB_ID) is not None:
            self._scheduler.reschedule_job(
                CHECK_JOB_ID, trigger=IntervalTrigger(minutes=interval_minutes)
            )
        logger.info("Check interval set to %d minutes", interval_minutes)

    async def shutdown(self) -> None:
        """Stop periodic checks and cancel the start-up check if it is still running."""

        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

        task, self._initial_check = self._initial_check, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.info("Cancelled the start-up check")

    async def trigger_now(self) -> Optional[BatchResult]:
        """Run a batch right away; return ``None`` when one is already running."""

        if self._running.locked():
            logger.info("Check already in progress, ignoring trigger")
            return None
        async with self._running:
            return await self._orchestrator.run_all()

    async def _scheduled_check(self) -> None:
        logger.info("Scheduled check triggered")
        try:
            await self.trigger_now()
        except Exception:  # noqa: BLE001
            logger.exception("Scheduled check failed")
