from pathlib import Path

import pytest

pytest.importorskip("pydantic")

from pagewatch.config import DEFAULT_SETTINGS_PATH, JobCatalog, JobDefinition, WatchSettings
from pagewatch.models import MonitoringJob


def test_settings_round_trip(tmp_path: Path) -> None:
    config_path = tmp_path / "settings.json"
    settings = WatchSettings(check_interval_minutes=15, content_mode="markup", feed_limit=20)
    settings.dump(config_path)

    loaded = WatchSettings.from_file(config_path)
    assert loaded.check_interval_minutes == 15
    assert loaded.content_mode == "markup"
    assert loaded.feed_limit == 20


def test_settings_default_when_file_missing(tmp_path: Path) -> None:
    loaded = WatchSettings.from_file(tmp_path / "missing.json")

    assert loaded.check_interval_minutes == 60
    assert loaded.feed_limit == 100
    assert loaded.content_mode == "text"


def test_settings_invalid_file_raises(tmp_path: Path) -> None:
    config_path = tmp_path / "settings.json"
    config_path.write_text('{"check_interval_minutes": 0}', encoding="utf-8")

    with pytest.raises(ValueError):
        WatchSettings.from_file(config_path)

    config_path.write_text("{oops", encoding="utf-8")
    with pytest.raises(ValueError):
        WatchSettings.from_file(config_path)


def test_settings_path_can_be_overridden(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv("PAGEWATCH_SETTINGS", raising=False)
    assert WatchSettings.default_path() == DEFAULT_SETTINGS_PATH

    monkeypatch.setenv("PAGEWATCH_SETTINGS", str(tmp_path / "other.json"))
    assert WatchSettings.default_path() == tmp_path / "other.json"


def test_job_definition_strips_and_validates() -> None:
    definition = JobDefinition(name="  News ", url="https://example.com/news", locator=" .headline ")

    assert definition.name == "News"
    assert definition.locator == ".headline"

    with pytest.raises(ValueError):
        JobDefinition(name="News", url="https://example.com", locator="   ")
    with pytest.raises(ValueError):
        JobDefinition(name="News", url="not a url", locator="h1")


def test_job_definition_builds_fresh_jobs() -> None:
    definition = JobDefinition(name="News", url="https://example.com/news", locator="h1")

    first, second = definition.to_job(), definition.to_job()

    assert first.id != second.id
    assert first.target_url == "https://example.com/news"
    assert first.last_fingerprint == ""
    assert first.last_checked_at is None
    assert JobDefinition.from_job(first) == definition


def test_catalog_skips_invalid_entries() -> None:
    catalog, skipped = JobCatalog.parse_entries(
        [
            {"name": "News", "url": "https://example.com/news", "locator": "h1"},
            {"name": "No locator", "url": "https://example.com"},
            "garbage",
            {"name": "Blog", "url": "https://blog.example.com/", "locator": ".post", "extra": 1},
        ]
    )

    assert [definition.name for definition in catalog.jobs] == ["News", "Blog"]
    assert skipped == 2


def test_catalog_round_trip(tmp_path: Path) -> None:
    path = tmp_path / "jobs.json"
    job = MonitoringJob(
        name="News", target_url="https://example.com/news", locator="h1", last_fingerprint="abc"
    )
    JobCatalog(jobs=[JobDefinition.from_job(job)]).dump(path)

    loaded = JobCatalog.from_file(path)
    jobs = list(loaded.iter_jobs())
    assert len(jobs) == 1
    assert jobs[0].name == "News"
    assert jobs[0].target_url == "https://example.com/news"
    assert jobs[0].last_fingerprint == ""
    assert jobs[0].id != job.id


def test_catalog_accepts_wrapped_list(tmp_path: Path) -> None:
    path = tmp_path / "jobs.json"
    path.write_text(
        '{"jobs": [{"name": "News", "url": "https://example.com/news", "locator": "h1"}]}',
        encoding="utf-8",
    )

    assert [definition.name for definition in JobCatalog.from_file(path).jobs] == ["News"]


def test_catalog_rejects_non_list(tmp_path: Path) -> None:
    path = tmp_path / "jobs.json"
    path.write_text('"nope"', encoding="utf-8")

    with pytest.raises(ValueError):
        JobCatalog.from_file(path)
