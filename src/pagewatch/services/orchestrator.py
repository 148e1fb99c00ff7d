"""Run every configured job concurrently and persist the combined outcome."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, List, Optional, Sequence

from pagewatch.models import Announcement, BatchResult, JobOutcome, MonitoringJob, utcnow
from pagewatch.services.notifier import BADGE_TEXT, BadgeNotifier, Notifier
from pagewatch.services.runner import JobRunner, failed_outcome
from pagewatch.store import StateStore

__all__ = ["BatchOrchestrator"]

logger = logging.getLogger(__name__)


class BatchOrchestrator:
    """Single entry point for scheduled and manual checks.

    Each job runs in its own task, bounded by ``max_concurrency``.  Any
    exception escaping a job is turned into an ``error`` status for that job
    alone.  Only a failure of the store aborts the batch; the ``is_checking``
    flag is cleared either way.
    """

    def __init__(
        self,
        runner: JobRunner,
        store: StateStore,
        *,
        notifier: Notifier | None = None,
        feed_limit: int = 100,
        max_concurrency: int = 4,
    ) -> None:
        self._runner = runner
        self._store = store
        self._notifier = notifier or BadgeNotifier()
        self._feed_limit = feed_limit
        self._max_concurrency = max_concurrency

    async def _run_one(self, job: MonitoringJob, limiter: asyncio.Semaphore) -> JobOutcome:
        async with limiter:
            try:
                return await self._runner.run_job(job)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Unexpected failure while checking %s", job.name)
                return failed_outcome(job, str(exc) or exc.__class__.__name__, utcnow())

    async def execute(self, jobs: Sequence[MonitoringJob]) -> List[JobOutcome]:
        """Run ``jobs`` concurrently without touching the store."""

        limiter = asyncio.Semaphore(self._max_concurrency)
        return list(await asyncio.gather(*(self._run_one(job, limiter) for job in jobs)))

    async def run_all(self, jobs: Optional[Iterable[MonitoringJob]] = None) -> BatchResult:
        """Check ``jobs`` (default: every stored job) and commit the results.

        New announcements are prepended to the stored feed, newest first, and
        the feed is cut to ``feed_limit`` entries.  Jobs and feed are written in
        one store update.
        """

        await asyncio.to_thread(self._store.set_checking, True)
        committed = False
        try:
            state = await asyncio.to_thread(self._store.load)
            batch = list(jobs) if jobs is not None else list(state.jobs)

            if not batch:
                logger.info("No jobs configured, nothing to check")
                await asyncio.to_thread(self._store.set_checking, False)
                committed = True
                return BatchResult(feed=list(state.announcements))

            logger.info("Checking %d jobs", len(batch))
            outcomes = await self.execute(batch)

            updated_jobs = [outcome.job for outcome in outcomes]
            new_announcements: List[Announcement] = [
                outcome.announcement for outcome in outcomes if outcome.announcement is not None
            ]

            saved = await asyncio.to_thread(
                self._store.commit_batch,
                updated_jobs,
                new_announcements,
                feed_limit=self._feed_limit,
                snapshot=state.jobs,
                badge=BADGE_TEXT if new_announcements else None,
            )
            committed = True
        except Exception:
            logger.exception("Batch check failed")
            raise
        finally:
            if not committed:
                await asyncio.to_thread(self._clear_checking)

        result = BatchResult(
            updated_jobs=updated_jobs,
            new_announcements=new_announcements,
            feed=saved.announcements,
        )
        if result.any_new:
            self._notifier.notify(result.new_announcements)
        logger.info(
            "Batch finished: %d jobs, %d new announcements",
            len(updated_jobs),
            len(new_announcements),
        )
        return result

    def _clear_checking(self) -> None:
        try:
            self._store.set_checking(False)
        except Exception:  # noqa: BLE001
            logger.exception("Could not clear the checking flag")

