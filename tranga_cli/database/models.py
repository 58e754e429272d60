"""
SQLAlchemy models for the Tranga CLI job store.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, Float, Index, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

# Create base class for all models
Base = declarative_base()


class ScheduledJob(Base):
    """
    Persisted scheduler job.

    ``position`` keeps the insertion order the scheduler lists jobs in.
    Timestamps are stored as naive UTC.
    """

    __tablename__ = "scheduled_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    # Identity
    kind: Mapped[str] = mapped_column(String, nullable=False)
    connector_name: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    publication_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # Definition
    publication: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    reoccurrence_seconds: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    language: Mapped[str] = mapped_column(String, default="en", nullable=False)

    # Execution state
    state: Mapped[str] = mapped_column(String, nullable=False)
    last_executed: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    run_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_scheduled_jobs_identity", "kind", "connector_name", "publication_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<ScheduledJob(id={self.id}, kind='{self.kind}', "
            f"connector='{self.connector_name}', publication='{self.publication_id}')>"
        )
