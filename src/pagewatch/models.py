"""Domain models used across the application."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field


def new_id() -> str:
    """Return a fresh opaque identifier."""

    return uuid4().hex


def utcnow() -> datetime:
    return datetime.now(UTC)


class JobStatus(str, Enum):
    ACTIVE = "active"
    ERROR = "error"


class MonitoringJob(BaseModel):
    """A configured page fragment to watch for changes."""

    id: str = Field(default_factory=new_id)
    name: str
    target_url: str
    locator: str
    last_checked_at: Optional[datetime] = Field(
        default=None, description="Time of the last execution attempt, None if never run"
    )
    last_fingerprint: str = Field(
        default="", description="Fingerprint of the last good content, empty before a baseline"
    )
    status: JobStatus = JobStatus.ACTIVE
    last_error_message: Optional[str] = None

    @property
    def has_baseline(self) -> bool:
        return bool(self.last_fingerprint)


class ExtractionResult(BaseModel):
    """Outcome of extracting a fragment from a single page."""

    text: str = ""
    markup: Optional[str] = None
    primary_link: Optional[str] = None
    page_title: Optional[str] = None
    error: Optional[str] = None
    strategy: Optional[Literal["static", "dynamic"]] = None

    @property
    def is_empty(self) -> bool:
        return not self.text


class Announcement(BaseModel):
    """A detected change, kept in the feed until evicted or cleared."""

    id: str = Field(default_factory=new_id)
    job_id: str
    job_name: str
    content: str
    link: str
    found_at: datetime = Field(default_factory=utcnow)
    is_read: bool = False


class JobOutcome(BaseModel):
    """Result of running one job: the updated record and an optional announcement."""

    job: MonitoringJob
    announcement: Optional[Announcement] = None


class BatchResult(BaseModel):
    """Aggregate result of running every configured job once."""

    updated_jobs: List[MonitoringJob] = Field(default_factory=list)
    new_announcements: List[Announcement] = Field(default_factory=list)
    feed: List[Announcement] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def any_new(self) -> bool:
        return bool(self.new_announcements)


class AppState(BaseModel):
    """Everything the persistent store holds, written as a single document."""

    jobs: List[MonitoringJob] = Field(default_factory=list)
    announcements: List[Announcement] = Field(default_factory=list)
    is_checking: bool = False
    badge: str = ""

    @property
    def unread_count(self) -> int:
        return sum(1 for item in self.announcements if not item.is_read)
