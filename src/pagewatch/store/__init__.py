"""JSON file backed key-value store for jobs, the announcement feed and flags."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Callable, Iterable, List, Sequence, Union

from pydantic import ValidationError

from pagewatch.config import DEFAULT_STATE_PATH
from pagewatch.errors import StoreError
from pagewatch.models import Announcement, AppState, MonitoringJob

logger = logging.getLogger(__name__)

_Pathish = Union[str, Path]


def resolve_state_path(state_path: _Pathish | None = None) -> Path:
    """Return a :class:`Path` pointing at the state file.

    When ``None`` is provided, :data:`~pagewatch.config.DEFAULT_STATE_PATH` is
    returned. The file is not created; the first write does that.
    """

    if state_path is None:
        return DEFAULT_STATE_PATH
    if isinstance(state_path, Path):
        return state_path
    return Path(state_path)


_TARGET_FIELDS = ("name", "target_url", "locator")


def _edited(current: MonitoringJob, before: MonitoringJob | None) -> bool:
    if before is None:
        return False
    return any(getattr(current, field) != getattr(before, field) for field in _TARGET_FIELDS)


def merge_jobs(
    stored: Sequence[MonitoringJob],
    updated: Iterable[MonitoringJob],
    snapshot: Iterable[MonitoringJob] = (),
) -> List[MonitoringJob]:
    """Apply ``updated`` job records onto the ``stored`` list by id.

    ``snapshot`` holds the stored jobs as they were when the batch started.
    Order follows ``stored`` and jobs added meanwhile are kept untouched.  A
    stored job whose name, URL or locator no longer matches its snapshot was
    edited during the batch and keeps the stored record.  An updated job
    missing from ``stored`` is appended unless it is in ``snapshot``, which
    means it was deleted while the batch was running.
    """

    records = list(updated)
    by_id = {job.id: job for job in records}
    before = {job.id: job for job in snapshot}

    merged = []
    for job in stored:
        result = by_id.pop(job.id, None)
        if result is None or _edited(job, before.get(job.id)):
            merged.append(job)
        else:
            merged.append(result)
    merged.extend(job for job in records if job.id in by_id and job.id not in before)
    return merged


def merge_feed(
    new: Sequence[Announcement], existing: Sequence[Announcement], limit: int
) -> List[Announcement]:
    """Prepend ``new`` announcements to ``existing`` and keep the ``limit`` newest."""

    return [*new, *existing][:limit]


class StateStore:
    """Persist :class:`~pagewatch.models.AppState` as a single JSON document.

    Every write replaces the whole document through a temporary file and
    :func:`os.replace`, so readers see either the old or the new state, never a
    mix of both.
    """

    def __init__(self, state_path: _Pathish | None = None) -> None:
        self.path = resolve_state_path(state_path)
        self._lock = threading.RLock()

    def load(self) -> AppState:
        """Return the stored state, or an empty state when nothing was written yet."""

        with self._lock:
            if not self.path.exists():
                return AppState()
            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                raise StoreError(f"Failed to read state from {self.path}: {exc}") from exc

            try:
                return AppState.model_validate(raw)
            except ValidationError as exc:
                raise StoreError(f"Stored state at {self.path} is invalid: {exc}") from exc

    def save(self, state: AppState) -> None:
        """Replace the stored document with ``state``."""

        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = state.model_dump_json(indent=2)
            try:
                fd, tmp_name = tempfile.mkstemp(
                    prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
                )
                with os.fdopen(fd, "w", encoding="utf-8") as file:
                    file.write(payload)
                os.replace(tmp_name, self.path)
            except OSError as exc:
                raise StoreError(f"Failed to write state to {self.path}: {exc}") from exc

    def update(self, mutate: Callable[[AppState], AppState | None]) -> AppState:
        """Run a locked read-modify-write cycle and return the saved state.

        ``mutate`` may change the state in place (returning ``None``) or return
        a replacement.
        """

        with self._lock:
            state = self.load()
            result = mutate(state)
            if result is not None:
                state = result
            self.save(state)
            return state

    def set_checking(self, value: bool) -> None:
        def _apply(state: AppState) -> None:
            state.is_checking = value

        self.update(_apply)

    def commit_batch(
        self,
        updated_jobs: Sequence[MonitoringJob],
        new_announcements: Sequence[Announcement],
        *,
        feed_limit: int,
        snapshot: Iterable[MonitoringJob] = (),
        badge: str | None = None,
    ) -> AppState:
        """Write the outcome of one batch: jobs, feed and cleared checking flag together."""

        def _apply(state: AppState) -> None:
            state.jobs = merge_jobs(state.jobs, updated_jobs, snapshot)
            state.announcements = merge_feed(new_announcements, state.announcements, feed_limit)
            state.is_checking = False
            if badge is not None:
                state.badge = badge

        saved = self.update(_apply)
        logger.debug(
            "Committed %d jobs and %d new announcements to %s",
            len(updated_jobs),
            len(new_announcements),
            self.path,
        )
        return saved


__all__ = [
    "StateStore",
    "merge_feed",
    "merge_jobs",
    "resolve_state_path",
]
