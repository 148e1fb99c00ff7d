from __future__ import annotations

import asyncio
import threading

import pytest

from pagewatch.errors import StoreError
from pagewatch.fingerprint import fingerprint
from pagewatch.models import Announcement, AppState, JobOutcome, JobStatus, MonitoringJob
from pagewatch.services.notifier import BADGE_TEXT
from pagewatch.services.orchestrator import BatchOrchestrator


class ScriptedRunner:
    """Return a canned outcome per job name, or raise the scripted exception."""

    def __init__(self, script: dict, on_run=None) -> None:
        self.script = script
        self.on_run = on_run
        self.seen: list[str] = []

    async def run_job(self, job: MonitoringJob) -> JobOutcome:
        self.seen.append(job.name)
        if self.on_run is not None:
            self.on_run(job)
        action = self.script.get(job.name)
        if isinstance(action, Exception):
            raise action
        if action is None:
            return JobOutcome(job=job.model_copy(update={"last_fingerprint": fingerprint(job.name)}))
        return JobOutcome(
            job=job.model_copy(update={"last_fingerprint": fingerprint(action)}),
            announcement=Announcement(job_id=job.id, job_name=job.name, content=action, link=job.target_url),
        )


class RecordingNotifier:
    def __init__(self) -> None:
        self.batches: list[list[Announcement]] = []

    def notify(self, announcements) -> None:
        self.batches.append(list(announcements))


def make_job(name: str) -> MonitoringJob:
    return MonitoringJob(
        name=name,
        target_url=f"https://example.com/{name.lower()}",
        locator=".headline",
        last_fingerprint=fingerprint("seed"),
    )


def seed(store, *jobs: MonitoringJob, announcements=()) -> None:
    store.save(AppState(jobs=list(jobs), announcements=list(announcements)))


@pytest.mark.asyncio
async def test_unexpected_exception_fails_only_that_job(store) -> None:
    a, b, c = make_job("A"), make_job("B"), make_job("C")
    seed(store, a, b, c)
    runner = ScriptedRunner({"A": "news from A", "B": RuntimeError("kaputt"), "C": "news from C"})
    orchestrator = BatchOrchestrator(runner, store)

    result = await orchestrator.run_all()

    saved = store.load()
    by_name = {job.name: job for job in saved.jobs}
    assert [job.name for job in saved.jobs] == ["A", "B", "C"]
    assert by_name["A"].last_fingerprint == fingerprint("news from A")
    assert by_name["C"].last_fingerprint == fingerprint("news from C")
    assert by_name["B"].status is JobStatus.ERROR
    assert by_name["B"].last_error_message == "kaputt"
    assert by_name["B"].last_fingerprint == b.last_fingerprint
    assert by_name["B"].last_checked_at is not None
    assert sorted(item.content for item in result.new_announcements) == ["news from A", "news from C"]
    assert saved.is_checking is False


@pytest.mark.asyncio
async def test_new_announcements_are_prepended_and_feed_is_truncated(store) -> None:
    job = make_job("A")
    old = [
        Announcement(job_id=job.id, job_name="A", content=f"old {i}", link=job.target_url)
        for i in range(3)
    ]
    seed(store, job, announcements=old)
    orchestrator = BatchOrchestrator(ScriptedRunner({"A": "fresh"}), store, feed_limit=3)

    result = await orchestrator.run_all()

    contents = [item.content for item in store.load().announcements]
    assert contents == ["fresh", "old 0", "old 1"]
    assert [item.content for item in result.feed] == contents


@pytest.mark.asyncio
async def test_new_content_sets_badge_and_notifies(store) -> None:
    seed(store, make_job("A"), make_job("B"))
    notifier = RecordingNotifier()
    orchestrator = BatchOrchestrator(ScriptedRunner({"A": "fresh"}), store, notifier=notifier)

    result = await orchestrator.run_all()

    assert result.any_new is True
    assert [[item.content for item in batch] for batch in notifier.batches] == [["fresh"]]
    assert store.load().badge == BADGE_TEXT


@pytest.mark.asyncio
async def test_quiet_batch_does_not_notify(store) -> None:
    seed(store, make_job("A"))
    notifier = RecordingNotifier()
    orchestrator = BatchOrchestrator(ScriptedRunner({}), store, notifier=notifier)

    result = await orchestrator.run_all()

    assert result.any_new is False
    assert notifier.batches == []
    assert store.load().badge == ""


@pytest.mark.asyncio
async def test_empty_job_list_returns_current_feed(store) -> None:
    job = make_job("A")
    existing = Announcement(job_id=job.id, job_name="A", content="kept", link=job.target_url)
    seed(store, announcements=[existing])
    runner = ScriptedRunner({})

    result = await BatchOrchestrator(runner, store).run_all()

    assert runner.seen == []
    assert result.updated_jobs == []
    assert [item.content for item in result.feed] == ["kept"]
    assert store.load().is_checking is False


@pytest.mark.asyncio
async def test_checking_flag_is_set_while_running(store) -> None:
    seen_flags: list[bool] = []
    seed(store, make_job("A"))
    runner = ScriptedRunner({}, on_run=lambda job: seen_flags.append(store.load().is_checking))

    await BatchOrchestrator(runner, store).run_all()

    assert seen_flags == [True]
    assert store.load().is_checking is False


@pytest.mark.asyncio
async def test_store_failure_aborts_batch_and_clears_flag(store, monkeypatch) -> None:
    seed(store, make_job("A"))

    def broken_commit(*args, **kwargs):
        raise StoreError("disk full")

    monkeypatch.setattr(store, "commit_batch", broken_commit)
    orchestrator = BatchOrchestrator(ScriptedRunner({"A": "fresh"}), store)

    with pytest.raises(StoreError):
        await orchestrator.run_all()

    assert store.load().is_checking is False


@pytest.mark.asyncio
async def test_job_deleted_during_batch_is_not_restored(store) -> None:
    a, b = make_job("A"), make_job("B")
    seed(store, a, b)

    def delete_b(job: MonitoringJob) -> None:
        if job.name == "A":
            store.update(lambda state: state.model_copy(update={"jobs": [a]}))

    await BatchOrchestrator(ScriptedRunner({}, on_run=delete_b), store, max_concurrency=1).run_all()

    assert [job.name for job in store.load().jobs] == ["A"]


@pytest.mark.asyncio
async def test_job_added_during_batch_is_kept(store) -> None:
    a = make_job("A")
    late = make_job("Late")
    seed(store, a)

    def add_job(job: MonitoringJob) -> None:
        store.update(lambda state: state.jobs.append(late))

    await BatchOrchestrator(ScriptedRunner({}, on_run=add_job), store).run_all()

    saved = store.load().jobs
    assert [job.name for job in saved] == ["A", "Late"]
    assert saved[1].last_fingerprint == late.last_fingerprint


@pytest.mark.asyncio
async def test_job_edited_during_batch_keeps_the_edit(store) -> None:
    job = make_job("Old").model_copy(update={"locator": ".old"})
    seed(store, job)

    def edit_job(current: MonitoringJob) -> None:
        def _apply(state: AppState) -> None:
            state.jobs[0] = state.jobs[0].model_copy(
                update={"name": "New", "locator": ".new", "last_fingerprint": ""}
            )

        store.update(_apply)

    await BatchOrchestrator(ScriptedRunner({"Old": "content of .old"}, on_run=edit_job), store).run_all()

    saved = store.load().jobs
    assert [(item.name, item.locator) for item in saved] == [("New", ".new")]
    assert saved[0].last_fingerprint == ""


@pytest.mark.asyncio
async def test_store_is_accessed_off_the_event_loop(store, monkeypatch) -> None:
    seed(store, make_job("A"))
    loop_thread = threading.get_ident()
    threads: list[int] = []
    commit = store.commit_batch

    def recording_commit(*args, **kwargs):
        threads.append(threading.get_ident())
        return commit(*args, **kwargs)

    monkeypatch.setattr(store, "commit_batch", recording_commit)

    await BatchOrchestrator(ScriptedRunner({}), store).run_all()

    assert threads and loop_thread not in threads


@pytest.mark.asyncio
async def test_concurrency_is_bounded(store) -> None:
    active = 0
    peak = 0

    class SlowRunner:
        async def run_job(self, job: MonitoringJob) -> JobOutcome:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return JobOutcome(job=job)

    seed(store, *(make_job(f"J{i}") for i in range(6)))

    await BatchOrchestrator(SlowRunner(), store, max_concurrency=2).run_all()

    assert peak == 2
