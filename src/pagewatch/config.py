"""Configuration models and helpers for the page watcher."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Iterable, List, Literal

from pydantic import BaseModel, Field, HttpUrl, ValidationError, field_validator

from pagewatch.models import MonitoringJob

__all__ = [
    "DEFAULT_SETTINGS_PATH",
    "DEFAULT_STATE_PATH",
    "JobCatalog",
    "JobDefinition",
    "WatchSettings",
]

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parents[2] / "data"
DEFAULT_SETTINGS_PATH = DATA_DIR / "settings.json"
DEFAULT_STATE_PATH = DATA_DIR / "state.json"


def _read_json(config_path: Path) -> object:
    try:
        return json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in configuration file: {config_path}") from exc


class WatchSettings(BaseModel):
    """Runtime settings for the checker, scheduler and rendering sandbox."""

    state_path: Path = Field(default=DEFAULT_STATE_PATH, description="JSON file holding jobs and feed")
    check_interval_minutes: int = Field(default=60, ge=1, description="Minutes between scheduled checks")
    content_mode: Literal["text", "markup"] = Field(
        default="text",
        description="Whether announcements carry the extracted text or the cleaned markup",
    )
    feed_limit: int = Field(default=100, ge=1, description="Maximum number of announcements kept")
    max_concurrency: int = Field(default=4, ge=1, description="Jobs executed at the same time")
    static_timeout: float = Field(default=15.0, gt=0, description="Seconds allowed for a plain HTTP fetch")
    render_timeout: float = Field(default=15.0, gt=0, description="Seconds allowed for a page to load")
    settle_delay: float = Field(
        default=2.0,
        ge=0,
        description="Seconds to wait after load so client-side rendering can finish",
    )
    browser: Literal["chromium", "firefox"] = Field(
        default="chromium", description="Playwright browser used for script-rendered pages"
    )

    @classmethod
    def default_path(cls) -> Path:
        override = os.environ.get("PAGEWATCH_SETTINGS")
        return Path(override) if override else DEFAULT_SETTINGS_PATH

    @classmethod
    def from_file(cls, path: Path | str | None = None) -> "WatchSettings":
        """Load settings from disk, falling back to defaults when the file is missing."""

        config_path = Path(path) if path else cls.default_path()
        if not config_path.exists():
            logger.info("No settings file at %s, using defaults", config_path)
            return cls()

        data = _read_json(config_path)
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ValueError(f"Configuration file is invalid: {config_path}\n{exc}") from exc

    def dump(self, path: Path | str | None = None) -> None:
        """Persist the settings back to disk as JSON."""

        config_path = Path(path) if path else self.default_path()
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(self.model_dump_json(indent=2), encoding="utf-8")


class JobDefinition(BaseModel):
    """The user-editable part of a job, as exported and imported."""

    name: str = Field(..., min_length=1, description="Human friendly job name")
    url: HttpUrl = Field(..., description="Page to watch")
    locator: str = Field(..., min_length=1, description="CSS selector of the watched fragment")

    @field_validator("name", "locator")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @classmethod
    def from_job(cls, job: MonitoringJob) -> "JobDefinition":
        return cls(name=job.name, url=job.target_url, locator=job.locator)

    def to_job(self) -> MonitoringJob:
        """Return a new job with a fresh identifier and no baseline."""

        return MonitoringJob(name=self.name, target_url=str(self.url), locator=self.locator)


class JobCatalog(BaseModel):
    """A list of :class:`JobDefinition` entries used for export and import."""

    jobs: List[JobDefinition] = Field(default_factory=list)

    @classmethod
    def parse_entries(cls, entries: Iterable[object]) -> tuple["JobCatalog", int]:
        """Build a catalog from loosely structured entries.

        Invalid entries are skipped; the number skipped is returned alongside
        the catalog.
        """

        valid: List[JobDefinition] = []
        skipped = 0
        for entry in entries:
            try:
                valid.append(JobDefinition.model_validate(entry))
            except ValidationError as exc:
                logger.debug("Skipping invalid job definition %r: %s", entry, exc)
                skipped += 1
        return cls(jobs=valid), skipped

    @classmethod
    def from_file(cls, path: Path | str) -> "JobCatalog":
        """Load job definitions from a JSON list (or ``{"jobs": [...]}``) on disk."""

        config_path = Path(path)
        try:
            data = _read_json(config_path)
        except FileNotFoundError as exc:
            raise FileNotFoundError(f"Configuration file not found: {config_path}") from exc

        if isinstance(data, dict):
            data = data.get("jobs", [])
        if not isinstance(data, list):
            raise ValueError(f"Configuration file is invalid: {config_path}\nexpected a list of jobs")

        catalog, skipped = cls.parse_entries(data)
        if skipped:
            logger.warning("Skipped %d invalid job definitions in %s", skipped, config_path)
        return catalog

    def dump(self, path: Path | str) -> None:
        """Write the definitions to disk as a plain JSON list."""

        config_path = Path(path)
        config_path.parent.mkdir(parents=True, exist_ok=True)
        payload = [definition.model_dump(mode="json") for definition in self.jobs]
        config_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")

    def iter_jobs(self) -> Iterable[MonitoringJob]:
        """Iterate over new job records built from the definitions."""

        return (definition.to_job() for definition in self.jobs)
