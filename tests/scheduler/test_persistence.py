"""Tests for the job stores."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator
from unittest.mock import patch

import pytest

from tranga_cli.connectors.base import Publication
from tranga_cli.exceptions import PersistenceError
from tranga_cli.scheduler.job import Job, JobKind, JobState
from tranga_cli.scheduler.persistence import (
    DatabaseJobStore,
    JobStore,
    JsonJobStore,
    MemoryJobStore,
)

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def jobs() -> list:
    return [
        Job(kind=JobKind.UPDATE_LIBRARIES, reoccurrence=timedelta(days=1), created_at=T0),
        Job(
            kind=JobKind.DOWNLOAD_NEW_CHAPTERS,
            connector_name="MangaDex",
            publication_id="pub-1",
            publication=Publication(sort_name="Test Manga", publication_id="pub-1"),
            reoccurrence=timedelta(hours=3),
            state=JobState.COMPLETED,
            last_executed=T0 + timedelta(minutes=1),
            run_count=2,
            created_at=T0,
        ),
        Job(
            kind=JobKind.UPDATE_PUBLICATIONS,
            connector_name="MangaDex",
            state=JobState.RUNNING,
            created_at=T0,
        ),
    ]


class TestMemoryJobStore:
    """Tests for MemoryJobStore."""

    def test_empty(self) -> None:
        assert MemoryJobStore().load_jobs() == []

    def test_is_a_job_store(self) -> None:
        assert isinstance(MemoryJobStore(), JobStore)

    def test_saved_jobs_are_copies(self, jobs: list) -> None:
        """Loading never returns the saved instances."""
        store = MemoryJobStore()
        store.save_jobs(jobs)

        loaded = store.load_jobs()

        assert [job.key for job in loaded] == [job.key for job in jobs]
        assert all(a is not b for a, b in zip(loaded, jobs))


class TestJsonJobStore:
    """Tests for JsonJobStore."""

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        assert JsonJobStore(tmp_path / "tasks.json").load_jobs() == []

    def test_save_and_load(self, tmp_path: Path, jobs: list) -> None:
        """Jobs come back in order with their state, RUNNING reset."""
        store = JsonJobStore(tmp_path / "tasks.json")
        store.save_jobs(jobs)

        loaded = store.load_jobs()

        assert [job.key for job in loaded] == [job.key for job in jobs]
        assert loaded[1].publication.sort_name == "Test Manga"
        assert loaded[1].last_executed == T0 + timedelta(minutes=1)
        assert loaded[2].state is JobState.ENQUEUED

    def test_file_format(self, tmp_path: Path, jobs: list) -> None:
        path = tmp_path / "tasks.json"
        JsonJobStore(path).save_jobs(jobs)

        data = json.loads(path.read_text())

        assert data["version"] == 1
        assert len(data["jobs"]) == 3
        assert data["jobs"][0]["kind"] == "update_libraries"
        assert data["jobs"][2]["state"] == "running"

    def test_creates_parent_directory(self, tmp_path: Path, jobs: list) -> None:
        path = tmp_path / "nested" / "dir" / "tasks.json"
        JsonJobStore(path).save_jobs(jobs)
        assert path.exists()

    def test_no_temporary_files_left(self, tmp_path: Path, jobs: list) -> None:
        store = JsonJobStore(tmp_path / "tasks.json")
        store.save_jobs(jobs)
        store.save_jobs(jobs[:1])

        assert [p.name for p in tmp_path.iterdir()] == ["tasks.json"]

    def test_failed_write_keeps_previous_file(self, tmp_path: Path, jobs: list) -> None:
        """A write that fails midway leaves the old job set intact."""
        path = tmp_path / "tasks.json"
        store = JsonJobStore(path)
        store.save_jobs(jobs)

        with patch("tranga_cli.scheduler.persistence.json.dump", side_effect=OSError("disk full")):
            with pytest.raises(PersistenceError):
                store.save_jobs(jobs[:1])

        assert len(store.load_jobs()) == 3
        assert [p.name for p in tmp_path.iterdir()] == ["tasks.json"]

    def test_unserializable_job_keeps_previous_file(self, tmp_path: Path, jobs: list) -> None:
        """A value json cannot encode is reported as a persistence failure."""
        path = tmp_path / "tasks.json"
        store = JsonJobStore(path)
        store.save_jobs(jobs)
        jobs[1].publication.links["cover"] = object()

        with pytest.raises(PersistenceError):
            store.save_jobs(jobs)

        assert len(store.load_jobs()) == 3
        assert [p.name for p in tmp_path.iterdir()] == ["tasks.json"]

    def test_corrupt_file(self, tmp_path: Path) -> None:
        path = tmp_path / "tasks.json"
        path.write_text("{not json")

        with pytest.raises(PersistenceError):
            JsonJobStore(path).load_jobs()

    def test_unknown_kind(self, tmp_path: Path) -> None:
        path = tmp_path / "tasks.json"
        path.write_text(json.dumps({"version": 1, "jobs": [{"kind": "bogus"}]}))

        with pytest.raises(PersistenceError):
            JsonJobStore(path).load_jobs()


class TestDatabaseJobStore:
    """Tests for DatabaseJobStore on a temporary SQLite file."""

    @pytest.fixture
    def store(self, tmp_path: Path) -> Iterator[DatabaseJobStore]:
        store = DatabaseJobStore(f"sqlite:///{tmp_path / 'db' / 'tranga.db'}")
        yield store
        store.close()

    def test_empty(self, store: DatabaseJobStore) -> None:
        assert store.load_jobs() == []

    def test_save_and_load(self, store: DatabaseJobStore, jobs: list) -> None:
        """Jobs keep insertion order, fields and aware timestamps."""
        store.save_jobs(jobs)

        loaded = store.load_jobs()

        assert [job.key for job in loaded] == [job.key for job in jobs]
        assert loaded[1].publication.sort_name == "Test Manga"
        assert loaded[1].reoccurrence == timedelta(hours=3)
        assert loaded[1].run_count == 2
        assert loaded[1].last_executed == T0 + timedelta(minutes=1)
        assert loaded[1].created_at.tzinfo is not None
        assert loaded[2].state is JobState.ENQUEUED

    def test_save_replaces(self, store: DatabaseJobStore, jobs: list) -> None:
        """Each save replaces the whole stored set."""
        store.save_jobs(jobs)
        store.save_jobs([jobs[2], jobs[0]])

        loaded = store.load_jobs()

        assert [job.kind for job in loaded] == [JobKind.UPDATE_PUBLICATIONS, JobKind.UPDATE_LIBRARIES]

    def test_survives_reopen(self, tmp_path: Path, jobs: list) -> None:
        url = f"sqlite:///{tmp_path / 'tranga.db'}"
        first = DatabaseJobStore(url)
        first.save_jobs(jobs)
        first.close()

        second = DatabaseJobStore(url)
        try:
            assert len(second.load_jobs()) == 3
        finally:
            second.close()
