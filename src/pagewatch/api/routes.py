"""API routes exposing checks, the selector probe and job management."""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Body, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from pagewatch.config import JobDefinition
from pagewatch.errors import StoreError
from pagewatch.models import Announcement, BatchResult, ExtractionResult, MonitoringJob
from pagewatch.monitor import Monitor

logger = logging.getLogger(__name__)

router = APIRouter()


class StateResponse(BaseModel):
    jobs: List[MonitoringJob] = Field(default_factory=list)
    announcements: List[Announcement] = Field(default_factory=list)
    is_checking: bool = False
    unread_count: int = 0
    badge: str = ""


class CheckResponse(BaseModel):
    started: bool
    result: BatchResult | None = None


class ProbeRequest(BaseModel):
    url: str = Field(..., min_length=1)
    locator: str = Field(..., min_length=1)


class MoveRequest(BaseModel):
    direction: int = Field(..., description="-1 moves the job up, 1 moves it down")


class ImportResponse(BaseModel):
    added: int
    jobs: List[MonitoringJob] = Field(default_factory=list)


class IntervalPayload(BaseModel):
    minutes: int = Field(..., ge=1)


def _monitor(request: Request) -> Monitor:
    return request.app.state.monitor


def _not_found(kind: str, identifier: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Unknown {kind}: {identifier}")


async def _call(func, *args):
    """Run a blocking store operation off the event loop, mapping store failures."""

    try:
        return await run_in_threadpool(func, *args)
    except StoreError as exc:
        logger.exception("State store failure")
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@router.get("/state", response_model=StateResponse)
async def read_state(request: Request) -> StateResponse:
    """Return jobs, feed and the checking flag in one response."""

    state = await _call(_monitor(request).state)
    return StateResponse(
        jobs=state.jobs,
        announcements=state.announcements,
        is_checking=state.is_checking,
        unread_count=state.unread_count,
        badge=state.badge,
    )


@router.get("/jobs", response_model=List[MonitoringJob])
async def list_jobs(request: Request) -> List[MonitoringJob]:
    return await _call(_monitor(request).jobs)


@router.post("/jobs", response_model=MonitoringJob, status_code=201)
async def create_job(request: Request, payload: JobDefinition) -> MonitoringJob:
    return await _call(_monitor(request).add_job, payload)


@router.get("/jobs/export", response_model=List[JobDefinition])
async def export_jobs(request: Request) -> List[JobDefinition]:
    """Return the job definitions (name, url, locator) for backup or sharing."""

    catalog = await _call(_monitor(request).export_jobs)
    return catalog.jobs


@router.post("/jobs/import", response_model=ImportResponse)
async def import_jobs(request: Request, payload: list = Body(...)) -> ImportResponse:
    """Add every valid definition in ``payload`` as a new job."""

    jobs = await _call(_monitor(request).import_jobs, payload)
    if not jobs:
        raise HTTPException(status_code=400, detail="No valid job definitions found.")
    return ImportResponse(added=len(jobs), jobs=jobs)


@router.put("/jobs/{job_id}", response_model=MonitoringJob)
async def update_job(request: Request, job_id: str, payload: JobDefinition) -> MonitoringJob:
    try:
        return await _call(_monitor(request).edit_job, job_id, payload)
    except KeyError as exc:
        raise _not_found("job", job_id) from exc


@router.delete("/jobs/{job_id}", status_code=204)
async def delete_job(request: Request, job_id: str) -> None:
    try:
        await _call(_monitor(request).delete_job, job_id)
    except KeyError as exc:
        raise _not_found("job", job_id) from exc


@router.post("/jobs/{job_id}/move", response_model=List[MonitoringJob])
async def move_job(request: Request, job_id: str, payload: MoveRequest) -> List[MonitoringJob]:
    if payload.direction not in (-1, 1):
        raise HTTPException(status_code=400, detail="direction must be -1 or 1")
    try:
        return await _call(_monitor(request).move_job, job_id, payload.direction)
    except KeyError as exc:
        raise _not_found("job", job_id) from exc


@router.get("/announcements", response_model=List[Announcement])
async def list_announcements(request: Request) -> List[Announcement]:
    state = await _call(_monitor(request).state)
    return state.announcements


@router.post("/announcements/read", status_code=204)
async def mark_all_read(request: Request) -> None:
    await _call(_monitor(request).mark_all_read)


@router.post("/announcements/{announcement_id}/read", status_code=204)
async def mark_read(request: Request, announcement_id: str) -> None:
    try:
        await _call(_monitor(request).mark_read, announcement_id)
    except KeyError as exc:
        raise _not_found("announcement", announcement_id) from exc


@router.delete("/announcements", status_code=204)
async def clear_announcements(request: Request) -> None:
    await _call(_monitor(request).clear_announcements)


@router.post("/check", response_model=CheckResponse)
async def trigger_check(request: Request) -> CheckResponse:
    """Run every job now. Does nothing while another check is running."""

    try:
        result = await _monitor(request).scheduler.trigger_now()
    except StoreError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return CheckResponse(started=result is not None, result=result)


@router.post("/probe", response_model=ExtractionResult)
async def probe_selector(request: Request, payload: ProbeRequest) -> ExtractionResult:
    """Preview what a URL and locator would capture, without saving anything."""

    return await _monitor(request).probe(payload.url.strip(), payload.locator.strip())


@router.get("/settings/interval", response_model=IntervalPayload)
async def read_interval(request: Request) -> IntervalPayload:
    return IntervalPayload(minutes=_monitor(request).settings.check_interval_minutes)


@router.put("/settings/interval", response_model=IntervalPayload)
async def update_interval(request: Request, payload: IntervalPayload) -> IntervalPayload:
    settings = _monitor(request).set_interval(payload.minutes)
    return IntervalPayload(minutes=settings.check_interval_minutes)
