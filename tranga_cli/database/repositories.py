"""Database repositories for Tranga CLI.

Maps scheduler jobs onto ``scheduled_jobs`` rows.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from tranga_cli.connectors.base import Publication
from tranga_cli.database.models import ScheduledJob
from tranga_cli.scheduler.job import Job, JobKind, JobState


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _to_aware_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class JobRepository:
    """
    Repository for scheduled job persistence.

    The scheduler always saves its complete job set, so the repository
    offers whole-set replacement next to the usual lookups.
    """

    def __init__(self, session: Session):
        """
        Initialize repository with database session.

        Args:
            session: SQLAlchemy session
        """
        self.session = session

    def get_all(self) -> List[ScheduledJob]:
        """
        Get all jobs in insertion order.

        Returns:
            List of scheduled job rows
        """
        return list(self.session.scalars(select(ScheduledJob).order_by(ScheduledJob.position)))

    def get_by_key(
        self,
        kind: JobKind,
        connector_name: Optional[str] = None,
        publication_id: Optional[str] = None,
    ) -> Optional[ScheduledJob]:
        """
        Get a job row by its identity key.

        Returns:
            ScheduledJob if found, None otherwise
        """
        stmt = select(ScheduledJob).where(
            ScheduledJob.kind == kind.value,
            ScheduledJob.connector_name.is_(None)
            if connector_name is None
            else ScheduledJob.connector_name == connector_name,
            ScheduledJob.publication_id.is_(None)
            if publication_id is None
            else ScheduledJob.publication_id == publication_id,
        )
        return self.session.scalars(stmt).first()

    def count(self) -> int:
        return self.session.scalar(select(func.count()).select_from(ScheduledJob)) or 0

    def replace_all(self, jobs: Sequence[Job]) -> None:
        """
        Replace the stored job set with ``jobs``.

        Args:
            jobs: Jobs in the order they should be listed
        """
        self.session.execute(delete(ScheduledJob))
        for position, job in enumerate(jobs):
            self.session.add(self.to_row(job, position))
        self.session.flush()

    def load_jobs(self) -> List[Job]:
        """Load every stored job as a scheduler job."""
        return [self.to_job(row) for row in self.get_all()]

    @staticmethod
    def to_row(job: Job, position: int) -> ScheduledJob:
        """Convert a scheduler job to a database row."""
        return ScheduledJob(
            position=position,
            kind=job.kind.value,
            connector_name=job.connector_name,
            publication_id=job.publication_id,
            publication=job.publication.to_dict() if job.publication else None,
            reoccurrence_seconds=job.reoccurrence.total_seconds(),
            language=job.language,
            state=job.state.value,
            last_executed=_to_naive_utc(job.last_executed),
            run_count=job.run_count,
            error_count=job.error_count,
            last_error=job.last_error,
            created_at=_to_naive_utc(job.created_at),
        )

    @staticmethod
    def to_job(row: ScheduledJob) -> Job:
        """
        Convert a database row to a scheduler job.

        A stored RUNNING state is reset to ENQUEUED.
        """
        state = JobState(row.state)
        if state is JobState.RUNNING:
            state = JobState.ENQUEUED

        return Job(
            kind=JobKind(row.kind),
            connector_name=row.connector_name,
            publication_id=row.publication_id,
            publication=Publication.from_dict(row.publication) if row.publication else None,
            reoccurrence=timedelta(seconds=row.reoccurrence_seconds),
            language=row.language,
            state=state,
            last_executed=_to_aware_utc(row.last_executed),
            created_at=_to_aware_utc(row.created_at),
            run_count=row.run_count,
            error_count=row.error_count,
            last_error=row.last_error,
        )
