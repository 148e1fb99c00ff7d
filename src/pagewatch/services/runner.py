"""Run a single monitoring job and decide whether its content changed."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Literal, Protocol

from pagewatch.errors import NoMatchError, PageWatchError
from pagewatch.fingerprint import fingerprint
from pagewatch.models import (
    Announcement,
    ExtractionResult,
    JobOutcome,
    JobStatus,
    MonitoringJob,
    utcnow,
)

__all__ = ["Extractor", "JobRunner", "failed_outcome", "no_match_message"]

logger = logging.getLogger(__name__)

ContentMode = Literal["text", "markup"]


class Extractor(Protocol):
    async def fetch_and_extract(self, url: str, locator: str) -> ExtractionResult: ...


def no_match_message(locator: str, page_title: str | None) -> str:
    message = f"No matching content for selector '{locator}'"
    if page_title:
        message += f" (page title: '{page_title}')"
    return message


def failed_outcome(job: MonitoringJob, message: str, checked_at: datetime) -> JobOutcome:
    """Return ``job`` marked as failed; its fingerprint is left as it was."""

    updated = job.model_copy(
        update={
            "status": JobStatus.ERROR,
            "last_error_message": message,
            "last_checked_at": checked_at,
        }
    )
    return JobOutcome(job=updated)


class JobRunner:
    """Execute one job against the gateway and classify the outcome.

    The first successful run of a job only records a baseline fingerprint.
    Later runs announce content whose fingerprint differs from the stored
    one.  Failed runs never touch the fingerprint, so the next successful run
    is compared against the last good content.
    """

    def __init__(
        self,
        gateway: Extractor,
        *,
        content_mode: ContentMode = "text",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._gateway = gateway
        self._content_mode = content_mode
        self._clock = clock

    async def run_job(self, job: MonitoringJob) -> JobOutcome:
        checked_at = self._clock()
        try:
            result = await self._gateway.fetch_and_extract(job.target_url, job.locator)
            if result.error:
                raise PageWatchError(result.error)
            if result.is_empty:
                raise NoMatchError(no_match_message(job.locator, result.page_title))
        except PageWatchError as exc:
            logger.warning("Check failed for %s (%s): %s", job.name, job.target_url, exc)
            return failed_outcome(job, str(exc), checked_at)

        return self._classify(job, result, checked_at)

    def _classify(
        self, job: MonitoringJob, result: ExtractionResult, checked_at: datetime
    ) -> JobOutcome:
        digest = fingerprint(result.text)
        updated = job.model_copy(
            update={
                "status": JobStatus.ACTIVE,
                "last_error_message": None,
                "last_checked_at": checked_at,
                "last_fingerprint": digest,
            }
        )

        if digest == job.last_fingerprint:
            logger.info("No change for %s", job.name)
            return JobOutcome(job=updated)

        if not job.has_baseline:
            logger.info("Initial baseline set for %s", job.name)
            return JobOutcome(job=updated)

        logger.info("Update found for %s via %s fetch", job.name, result.strategy or "unknown")
        announcement = Announcement(
            job_id=job.id,
            job_name=job.name,
            content=self._content(result),
            link=result.primary_link or job.target_url,
            found_at=checked_at,
        )
        return JobOutcome(job=updated, announcement=announcement)

    def _content(self, result: ExtractionResult) -> str:
        if self._content_mode == "markup" and result.markup:
            return result.markup
        return result.text
