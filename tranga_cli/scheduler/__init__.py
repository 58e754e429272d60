"""Task scheduling for Tranga CLI.

The scheduler owns the job set, decides when jobs run and hands each run
to the :class:`JobExecutor`, which calls into the connectors.
"""

from tranga_cli.scheduler.job import Job, JobExecutionResult, JobKey, JobKind, JobState
from tranga_cli.scheduler.job_executor import JobExecutor
from tranga_cli.scheduler.job_scheduler import (
    JobScheduler,
    create_job_store,
    create_scheduler,
    make_key,
)
from tranga_cli.scheduler.persistence import (
    DatabaseJobStore,
    JobStore,
    JsonJobStore,
    MemoryJobStore,
)

__all__ = [
    "DatabaseJobStore",
    "Job",
    "JobExecutionResult",
    "JobExecutor",
    "JobKey",
    "JobKind",
    "JobScheduler",
    "JobState",
    "JobStore",
    "JsonJobStore",
    "MemoryJobStore",
    "create_job_store",
    "create_scheduler",
    "make_key",
]
