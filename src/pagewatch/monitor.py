"""Wiring of the checker components plus job and feed management."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List

from pagewatch.config import JobCatalog, JobDefinition, WatchSettings
from pagewatch.models import AppState, ExtractionResult, JobStatus, MonitoringJob
from pagewatch.services.notifier import BadgeNotifier, Notifier
from pagewatch.services.orchestrator import BatchOrchestrator
from pagewatch.services.runner import JobRunner
from pagewatch.services.sandbox import RenderGateway
from pagewatch.services.scheduler import CheckScheduler
from pagewatch.store import StateStore

__all__ = ["Monitor"]

logger = logging.getLogger(__name__)


class Monitor:
    """Holds one instance of every component and the operations on stored jobs.

    Job edits go through :meth:`StateStore.update` so they never interleave
    with the commit of a running batch.  An edit made while a batch runs wins
    over that batch's result for the edited job.
    """

    def __init__(
        self,
        settings: WatchSettings,
        *,
        store: StateStore | None = None,
        gateway: RenderGateway | None = None,
        notifier: Notifier | None = None,
        settings_path: Path | str | None = None,
    ) -> None:
        self.settings = settings
        self.settings_path = settings_path
        self.store = store or StateStore(settings.state_path)
        self.gateway = gateway or RenderGateway(settings)
        self.runner = JobRunner(self.gateway, content_mode=settings.content_mode)
        self.orchestrator = BatchOrchestrator(
            self.runner,
            self.store,
            notifier=notifier or BadgeNotifier(),
            feed_limit=settings.feed_limit,
            max_concurrency=settings.max_concurrency,
        )
        self.scheduler = CheckScheduler(self.orchestrator, settings.check_interval_minutes)

    @classmethod
    def from_file(cls, path: Path | str | None = None) -> "Monitor":
        return cls(WatchSettings.from_file(path), settings_path=path)

    # -- state -----------------------------------------------------------

    def state(self) -> AppState:
        return self.store.load()

    def jobs(self) -> List[MonitoringJob]:
        return self.store.load().jobs

    def get_job(self, job_id: str) -> MonitoringJob:
        for job in self.store.load().jobs:
            if job.id == job_id:
                return job
        raise KeyError(job_id)

    # -- job management --------------------------------------------------

    def add_job(self, definition: JobDefinition) -> MonitoringJob:
        job = definition.to_job()

        def _apply(state: AppState) -> None:
            state.jobs.append(job)

        self.store.update(_apply)
        logger.info("Added job %s for %s", job.name, job.target_url)
        return job

    def edit_job(self, job_id: str, definition: JobDefinition) -> MonitoringJob:
        """Update a job's name, URL and locator.

        Changing the URL or the locator starts over with a fresh baseline; a
        rename keeps it.
        """

        edited: List[MonitoringJob] = []

        def _apply(state: AppState) -> None:
            for index, job in enumerate(state.jobs):
                if job.id != job_id:
                    continue
                url = str(definition.url)
                retarget = job.target_url != url or job.locator != definition.locator
                state.jobs[index] = job.model_copy(
                    update={
                        "name": definition.name,
                        "target_url": url,
                        "locator": definition.locator,
                        "last_fingerprint": "" if retarget else job.last_fingerprint,
                        "status": JobStatus.ACTIVE,
                        "last_error_message": None,
                    }
                )
                edited.append(state.jobs[index])
                return
            raise KeyError(job_id)

        self.store.update(_apply)
        return edited[0]

    def delete_job(self, job_id: str) -> None:
        def _apply(state: AppState) -> None:
            remaining = [job for job in state.jobs if job.id != job_id]
            if len(remaining) == len(state.jobs):
                raise KeyError(job_id)
            state.jobs = remaining

        self.store.update(_apply)
        logger.info("Deleted job %s", job_id)

    def move_job(self, job_id: str, direction: int) -> List[MonitoringJob]:
        """Swap a job with its neighbour; ``-1`` moves it up, ``1`` down."""

        def _apply(state: AppState) -> None:
            index = next((i for i, job in enumerate(state.jobs) if job.id == job_id), None)
            if index is None:
                raise KeyError(job_id)
            target = index + direction
            if 0 <= target < len(state.jobs) and direction in (-1, 1):
                state.jobs[index], state.jobs[target] = state.jobs[target], state.jobs[index]

        return self.store.update(_apply).jobs

    def export_jobs(self) -> JobCatalog:
        return JobCatalog(jobs=[JobDefinition.from_job(job) for job in self.jobs()])

    def import_jobs(self, entries: Iterable[object]) -> List[MonitoringJob]:
        """Append every valid entry as a new job with no baseline."""

        catalog, skipped = JobCatalog.parse_entries(entries)
        new_jobs = list(catalog.iter_jobs())
        if new_jobs:

            def _apply(state: AppState) -> None:
                state.jobs.extend(new_jobs)

            self.store.update(_apply)
        logger.info("Imported %d jobs, skipped %d invalid entries", len(new_jobs), skipped)
        return new_jobs

    # -- feed ------------------------------------------------------------

    def mark_read(self, announcement_id: str) -> None:
        def _apply(state: AppState) -> None:
            for announcement in state.announcements:
                if announcement.id == announcement_id:
                    announcement.is_read = True
                    break
            else:
                raise KeyError(announcement_id)
            if state.unread_count == 0:
                state.badge = ""

        self.store.update(_apply)

    def mark_all_read(self) -> None:
        def _apply(state: AppState) -> None:
            for announcement in state.announcements:
                announcement.is_read = True
            state.badge = ""

        self.store.update(_apply)

    def clear_announcements(self) -> None:
        def _apply(state: AppState) -> None:
            state.announcements = []
            state.badge = ""

        self.store.update(_apply)

    # -- checks ----------------------------------------------------------

    async def probe(self, url: str, locator: str) -> ExtractionResult:
        return await self.gateway.probe(url, locator)

    def set_interval(self, minutes: int) -> WatchSettings:
        self.settings = self.settings.model_copy(update={"check_interval_minutes": minutes})
        self.settings.dump(self.settings_path)
        self.scheduler.reschedule(minutes)
        return self.settings

    async def aclose(self) -> None:
        await self.scheduler.shutdown()
        await self.gateway.aclose()
