"""Job stores for the scheduler.

The scheduler saves its complete job set after every mutation and on
shutdown, and loads it once on start. Stores wrap every storage failure
in :class:`PersistenceError`.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Protocol, Sequence, runtime_checkable

from sqlalchemy.exc import SQLAlchemyError

from tranga_cli.database.connection import (
    create_db_engine,
    create_tables,
    get_session_maker,
    session_scope,
)
from tranga_cli.database.repositories import JobRepository
from tranga_cli.exceptions import PersistenceError
from tranga_cli.scheduler.job import Job

logger = logging.getLogger(__name__)

TASKS_FILE_NAME = "tasks.json"


@runtime_checkable
class JobStore(Protocol):
    """Load and save the scheduler's job set."""

    def load_jobs(self) -> List[Job]:
        ...

    def save_jobs(self, jobs: Sequence[Job]) -> None:
        ...


class MemoryJobStore:
    """Job store that keeps serialized jobs in memory only."""

    def __init__(self) -> None:
        self._data: List[dict] = []

    def load_jobs(self) -> List[Job]:
        return [Job.from_dict(item) for item in self._data]

    def save_jobs(self, jobs: Sequence[Job]) -> None:
        self._data = [job.to_dict() for job in jobs]


class JsonJobStore:
    """Job store backed by a JSON file (``tasks.json``).

    Writes go to a temporary file in the same directory which then
    replaces the target, so readers never see a half-written file.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load_jobs(self) -> List[Job]:
        """Load jobs; a missing file means no jobs.

        Raises:
            PersistenceError: If the file cannot be read or parsed
        """
        if not self._path.exists():
            return []

        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
            jobs = [Job.from_dict(item) for item in data.get("jobs", [])]
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise PersistenceError(
                f"Failed to load jobs from {self._path}: {e}",
                details={"path": str(self._path)},
            ) from e

        logger.debug(f"Loaded {len(jobs)} jobs from {self._path}")
        return jobs

    def save_jobs(self, jobs: Sequence[Job]) -> None:
        """Write all jobs.

        Raises:
            PersistenceError: If the file cannot be written or a job cannot
                be serialized; the previous file is kept
        """
        tmp_name = None
        try:
            payload = {"version": 1, "jobs": [job.to_dict() for job in jobs]}
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_name, self._path)
            tmp_name = None
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(
                f"Failed to save jobs to {self._path}: {e}",
                details={"path": str(self._path)},
            ) from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

        logger.debug(f"Saved {len(jobs)} jobs to {self._path}")


class DatabaseJobStore:
    """Job store backed by the SQLAlchemy ``scheduled_jobs`` table."""

    def __init__(self, database_url: str) -> None:
        self._database_url = database_url
        self._engine = create_db_engine(database_url)
        self._session_factory = get_session_maker(self._engine)
        self._tables_ready = False

    @property
    def database_url(self) -> str:
        return self._database_url

    def _ensure_tables(self) -> None:
        if not self._tables_ready:
            create_tables(self._engine)
            self._tables_ready = True

    def load_jobs(self) -> List[Job]:
        """Load jobs in insertion order.

        Raises:
            PersistenceError: If the database cannot be read
        """
        try:
            self._ensure_tables()
            with session_scope(self._session_factory) as session:
                jobs = JobRepository(session).load_jobs()
        except (SQLAlchemyError, ValueError) as e:
            raise PersistenceError(f"Failed to load jobs from database: {e}") from e

        logger.debug(f"Loaded {len(jobs)} jobs from database")
        return jobs

    def save_jobs(self, jobs: Sequence[Job]) -> None:
        """Replace the stored jobs in one transaction.

        Raises:
            PersistenceError: If the database cannot be written or a job
                cannot be serialized
        """
        try:
            self._ensure_tables()
            with session_scope(self._session_factory) as session:
                JobRepository(session).replace_all(jobs)
        except (SQLAlchemyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to save jobs to database: {e}") from e

    def close(self) -> None:
        """Dispose of the engine's connection pool."""
        self._engine.dispose()
