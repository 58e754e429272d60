"""Job model for the task scheduler.

A job is a unit of schedulable work: a kind, optional connector and
publication references, a reoccurrence interval and execution state.
Jobs are identified by ``(kind, connector_name, publication_id)``.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, NamedTuple, Optional

from tranga_cli.connectors.base import Publication
from tranga_cli.exceptions import InvalidJobSpecError


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class JobKind(Enum):
    """Kind of work a job performs."""

    DOWNLOAD_NEW_CHAPTERS = "download_new_chapters"  # Fetch new chapters of one publication
    UPDATE_PUBLICATIONS = "update_publications"  # Refresh the publication list of a source
    UPDATE_LIBRARIES = "update_libraries"  # Ask library servers to rescan

    @property
    def requires_connector(self) -> bool:
        return self is JobKind.DOWNLOAD_NEW_CHAPTERS

    @property
    def requires_publication(self) -> bool:
        return self is JobKind.DOWNLOAD_NEW_CHAPTERS


class JobState(Enum):
    """Execution state of a job."""

    ENQUEUED = "enqueued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobKey(NamedTuple):
    """Identity of a job."""

    kind: JobKind
    connector_name: Optional[str] = None
    publication_id: Optional[str] = None

    def __str__(self) -> str:
        parts = [self.kind.value]
        if self.connector_name:
            parts.append(self.connector_name)
        if self.publication_id:
            parts.append(self.publication_id)
        return "/".join(parts)


@dataclass
class Job:
    """A scheduled unit of work.

    Attributes:
        kind: What the job does; immutable after creation
        connector_name: Source connector the job runs against
        publication_id: Target publication for per-publication kinds
        publication: Cached publication snapshot (not part of identity)
        reoccurrence: Minimum interval between automatic runs; zero runs once
        language: Language tag passed to the connector
        state: Current execution state
        last_executed: When the last run finished
        created_at: When the job was created
        run_count: Number of finished runs
        error_count: Number of failed runs
        last_error: Error message of the most recent failed run
        pending_removal: Remove the job once its current run finishes
    """

    kind: JobKind
    connector_name: Optional[str] = None
    publication_id: Optional[str] = None
    publication: Optional[Publication] = None
    reoccurrence: timedelta = field(default_factory=timedelta)
    language: str = "en"
    state: JobState = JobState.ENQUEUED
    last_executed: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    run_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None
    pending_removal: bool = False

    @property
    def key(self) -> JobKey:
        """Identity key of this job."""
        return JobKey(self.kind, self.connector_name, self.publication_id)

    @property
    def is_recurring(self) -> bool:
        return self.reoccurrence > timedelta(0)

    @property
    def next_execution(self) -> Optional[datetime]:
        """Earliest time the driver will run this job again, if ever."""
        if self.state in (JobState.RUNNING, JobState.FAILED):
            return None
        if not self.is_recurring:
            return self.created_at if self.state is JobState.ENQUEUED else None
        if self.last_executed is None:
            return self.created_at
        return self.last_executed + self.reoccurrence

    def validate(self) -> None:
        """Check that the job carries the references its kind requires.

        Raises:
            InvalidJobSpecError: If a required reference is missing
        """
        if self.kind.requires_connector and not self.connector_name:
            raise InvalidJobSpecError(
                f"{self.kind.value} jobs require a connector",
                details={"kind": self.kind.value},
            )
        if self.kind.requires_publication and not self.publication_id:
            raise InvalidJobSpecError(
                f"{self.kind.value} jobs require a publication",
                details={"kind": self.kind.value},
            )
        if self.reoccurrence < timedelta(0):
            raise InvalidJobSpecError(
                "Reoccurrence must not be negative",
                details={"reoccurrence": self.reoccurrence.total_seconds()},
            )

    def is_due(self, now: datetime) -> bool:
        """Whether the background driver should dispatch this job at ``now``.

        ENQUEUED jobs are due when they never ran, run only once, or their
        interval elapsed. COMPLETED jobs are due only when recurring and
        their interval elapsed. RUNNING and FAILED jobs are never due.
        """
        if self.state is JobState.ENQUEUED:
            if self.last_executed is None or not self.is_recurring:
                return True
            return now - self.last_executed >= self.reoccurrence
        if self.state is JobState.COMPLETED:
            if not self.is_recurring or self.last_executed is None:
                return False
            return now - self.last_executed >= self.reoccurrence
        return False

    def snapshot(self) -> "Job":
        """Deep copy handed to callers outside the scheduler."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "kind": self.kind.value,
            "connector_name": self.connector_name,
            "publication_id": self.publication_id,
            "publication": self.publication.to_dict() if self.publication else None,
            "reoccurrence": self.reoccurrence.total_seconds(),
            "language": self.language,
            "state": self.state.value,
            "last_executed": self.last_executed.isoformat() if self.last_executed else None,
            "created_at": self.created_at.isoformat(),
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        """Create a job from :meth:`to_dict` output.

        A persisted RUNNING state is reset to ENQUEUED, since no run can
        survive a process restart.
        """
        state = JobState(data.get("state", JobState.ENQUEUED.value))
        if state is JobState.RUNNING:
            state = JobState.ENQUEUED

        publication = data.get("publication")
        last_executed = data.get("last_executed")
        created_at = data.get("created_at")

        return cls(
            kind=JobKind(data["kind"]),
            connector_name=data.get("connector_name"),
            publication_id=data.get("publication_id"),
            publication=Publication.from_dict(publication) if publication else None,
            reoccurrence=timedelta(seconds=data.get("reoccurrence", 0)),
            language=data.get("language", "en"),
            state=state,
            last_executed=datetime.fromisoformat(last_executed) if last_executed else None,
            created_at=datetime.fromisoformat(created_at) if created_at else utcnow(),
            run_count=data.get("run_count", 0),
            error_count=data.get("error_count", 0),
            last_error=data.get("last_error"),
        )

    def __str__(self) -> str:
        return f"Job {self.key} [{self.state.value}]"


@dataclass
class JobExecutionResult:
    """Result of a job execution.

    Attributes:
        key: Identity of the job that ran
        started_at: When execution started
        completed_at: When execution completed
        success: Whether execution succeeded
        items_found: Publications or chapters found by the run
        items_downloaded: Chapters (or libraries) processed by the run
        error: Error message if failed
    """

    key: JobKey
    started_at: datetime
    completed_at: Optional[datetime] = None
    success: bool = False
    items_found: int = 0
    items_downloaded: int = 0
    error: Optional[str] = None

    @property
    def duration(self) -> Optional[timedelta]:
        if self.completed_at is None:
            return None
        return self.completed_at - self.started_at
