"""Job scheduler owning the job set and the background driver.

The JobScheduler keeps every job in memory, keyed by its identity, and
persists the whole set through a :class:`JobStore` after each change.
An APScheduler interval job calls :meth:`JobScheduler.tick` on a fixed
interval; every due job is handed to a thread pool so a slow or retrying
download never holds up the driver.

One re-entrant lock guards the job map, the in-flight map and every
state transition. The in-flight map is the single per-identity guard
shared by the driver and :meth:`JobScheduler.execute_now`, so two runs
of the same job never overlap.
"""

import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Union

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES
from apscheduler.executors.pool import ThreadPoolExecutor as APThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore as APMemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler

from tranga_cli.config import TrangaConfig
from tranga_cli.connectors.base import LibraryConnector, Publication
from tranga_cli.connectors.registry import ConnectorRegistry
from tranga_cli.download.client import DownloadClient
from tranga_cli.download.rate_limiter import RateLimiter
from tranga_cli.exceptions import (
    ConfigurationError,
    DuplicateJobError,
    JobNotFoundError,
    PersistenceError,
    SchedulerError,
)
from tranga_cli.scheduler.job import (
    Job,
    JobExecutionResult,
    JobKey,
    JobKind,
    JobState,
    utcnow,
)
from tranga_cli.scheduler.job_executor import JobExecutor
from tranga_cli.scheduler.persistence import (
    DatabaseJobStore,
    JobStore,
    JsonJobStore,
    MemoryJobStore,
)

logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL = 5.0
DEFAULT_MAX_WORKERS = 4
TICK_JOB_ID = "tranga-scheduler-tick"


def make_key(
    kind: Union[JobKind, JobKey],
    connector_name: Optional[str] = None,
    publication_id: Optional[str] = None,
) -> JobKey:
    """Build the identity key for a job, dropping references its kind ignores."""
    if isinstance(kind, JobKey):
        kind, connector_name, publication_id = kind
    if kind is JobKind.UPDATE_LIBRARIES:
        connector_name = None
        publication_id = None
    elif kind is JobKind.UPDATE_PUBLICATIONS:
        publication_id = None
    return JobKey(kind, connector_name or None, publication_id or None)


class JobScheduler:
    """Owns the job set and decides when each job runs.

    Example:
        scheduler = JobScheduler(registry, JsonJobStore(data_dir / "tasks.json"))
        scheduler.start()

        scheduler.add_job(
            JobKind.DOWNLOAD_NEW_CHAPTERS,
            connector_name="MangaDex",
            publication_id="a1c7c817",
            reoccurrence=timedelta(hours=3),
        )

        scheduler.shutdown()
    """

    def __init__(
        self,
        registry: ConnectorRegistry,
        store: Optional[JobStore] = None,
        executor: Optional[JobExecutor] = None,
        library_connectors: Optional[Sequence[LibraryConnector]] = None,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        max_workers: int = DEFAULT_MAX_WORKERS,
        clock: Callable[[], datetime] = utcnow,
        max_history: int = 1000,
        resources: Optional[Sequence[Any]] = None,
    ) -> None:
        """Initialize the job scheduler.

        Args:
            registry: Source connectors jobs are dispatched to
            store: Where the job set is persisted (in memory if omitted)
            executor: Runs a single job; built from ``registry`` if omitted
            library_connectors: Library servers for UPDATE_LIBRARIES jobs
            tick_interval: Seconds between two driver evaluations
            max_workers: Maximum number of jobs running at once
            clock: Returns the current UTC time
            max_history: Number of execution results kept in memory
            resources: Objects whose ``close()`` is called after shutdown
        """
        self._registry = registry
        self._store = store if store is not None else MemoryJobStore()
        self._executor = executor or JobExecutor(registry, library_connectors, clock=clock)
        self._tick_interval = tick_interval
        self._max_workers = max_workers
        self._clock = clock
        self._resources = list(resources or [])

        self._lock = threading.RLock()
        self._jobs: Dict[JobKey, Job] = {}
        self._in_flight: Dict[JobKey, Future] = {}
        self._history: Deque[JobExecutionResult] = deque(maxlen=max_history)

        self._pool: Optional[ThreadPoolExecutor] = None
        self._scheduler: Optional[BackgroundScheduler] = None
        self._loaded = False
        self._running = False
        self._stopped = False
        self._abandoned = False

    @property
    def is_running(self) -> bool:
        """Whether the background driver is active."""
        return self._running

    @property
    def registry(self) -> ConnectorRegistry:
        return self._registry

    @property
    def executor(self) -> JobExecutor:
        return self._executor

    # Job set

    def load(self) -> List[Job]:
        """Replace the in-memory job set with the persisted one.

        Persisted RUNNING jobs come back as ENQUEUED.

        Raises:
            PersistenceError: If the store cannot be read
        """
        jobs = self._store.load_jobs()
        with self._lock:
            self._jobs.clear()
            for job in jobs:
                if job.state is JobState.RUNNING:
                    job.state = JobState.ENQUEUED
                if job.key in self._jobs:
                    logger.warning(f"Ignoring duplicate persisted job {job.key}")
                    continue
                self._jobs[job.key] = job
            self._loaded = True
            logger.info(f"Loaded {len(self._jobs)} jobs")
            return [job.snapshot() for job in self._jobs.values()]

    def add_job(
        self,
        kind: JobKind,
        connector_name: Optional[str] = None,
        publication_id: Optional[str] = None,
        reoccurrence: timedelta = timedelta(0),
        language: str = "en",
        publication: Optional[Publication] = None,
    ) -> Job:
        """Add a new job in state ENQUEUED.

        Args:
            kind: What the job does
            connector_name: Source connector (required for DOWNLOAD_NEW_CHAPTERS)
            publication_id: Target publication (required for DOWNLOAD_NEW_CHAPTERS)
            reoccurrence: Interval between runs; zero runs once
            language: Language tag passed to the connector
            publication: Publication snapshot stored with the job

        Returns:
            Snapshot of the created job

        Raises:
            InvalidJobSpecError: If a reference the kind requires is missing
            DuplicateJobError: If a job with the same identity exists
            PersistenceError: If the saved job set cannot be read, or the
                job was added but could not be saved
        """
        if publication is not None and publication_id is None:
            publication_id = publication.publication_id
        key = make_key(kind, connector_name, publication_id)

        job = Job(
            kind=key.kind,
            connector_name=key.connector_name,
            publication_id=key.publication_id,
            publication=publication,
            reoccurrence=reoccurrence,
            language=language,
            created_at=self._clock(),
        )
        job.validate()

        with self._lock:
            self._ensure_loaded()
            if key in self._jobs:
                raise DuplicateJobError(f"Job already exists: {key}", details={"key": str(key)})
            self._jobs[key] = job
            logger.info(f"Added {job}")
            snapshot = job.snapshot()
            self._persist()
        return snapshot

    def remove_job(
        self,
        kind: Union[JobKind, JobKey],
        connector_name: Optional[str] = None,
        publication_id: Optional[str] = None,
    ) -> Job:
        """Remove a job by identity.

        A running job is marked for removal and removed once its run ends.

        Returns:
            Snapshot of the removed (or marked) job

        Raises:
            JobNotFoundError: If no job has that identity
            PersistenceError: If the saved job set cannot be read, or the
                job was removed but the set could not be saved
        """
        key = make_key(kind, connector_name, publication_id)
        with self._lock:
            self._ensure_loaded()
            job = self._require(key)
            if key in self._in_flight:
                job.pending_removal = True
                logger.info(f"{job} is running, removal deferred until it finishes")
                return job.snapshot()

            del self._jobs[key]
            logger.info(f"Removed {job}")
            snapshot = job.snapshot()
            self._persist()
        return snapshot

    def list_jobs(self) -> List[Job]:
        """Snapshots of all jobs in insertion order."""
        with self._lock:
            return [job.snapshot() for job in self._jobs.values()]

    def get_job(
        self,
        kind: Union[JobKind, JobKey],
        connector_name: Optional[str] = None,
        publication_id: Optional[str] = None,
    ) -> Optional[Job]:
        """Snapshot of one job, or None."""
        key = make_key(kind, connector_name, publication_id)
        with self._lock:
            job = self._jobs.get(key)
            return job.snapshot() if job else None

    def is_in_flight(self, key: JobKey) -> bool:
        with self._lock:
            return make_key(key) in self._in_flight

    # Execution

    def execute_now(
        self,
        kind: Union[JobKind, JobKey],
        connector_name: Optional[str] = None,
        publication_id: Optional[str] = None,
    ) -> Optional["Future[JobExecutionResult]"]:
        """Run a job immediately, ignoring its reoccurrence.

        Returns:
            Future resolving to the execution result, or None if the job is
            already running

        Raises:
            JobNotFoundError: If no job has that identity
            SchedulerError: If the scheduler has been shut down
        """
        key = make_key(kind, connector_name, publication_id)
        with self._lock:
            job = self._require(key)
            if self._stopped:
                raise SchedulerError("Scheduler is shut down")
            future = self._dispatch(job)
            if future is None:
                logger.info(f"{job} is already running")
            return future

    def tick(self) -> List[JobKey]:
        """Dispatch every due job once.

        Returns:
            Keys of the jobs dispatched by this tick
        """
        dispatched = []
        with self._lock:
            if self._stopped:
                return dispatched
            now = self._clock()
            for job in list(self._jobs.values()):
                if job.pending_removal or job.key in self._in_flight:
                    continue
                if job.is_due(now) and self._dispatch(job) is not None:
                    dispatched.append(job.key)

        if dispatched:
            logger.debug(f"Tick dispatched {len(dispatched)} jobs")
        return dispatched

    def _dispatch(self, job: Job) -> Optional[Future]:
        """Mark ``job`` RUNNING and submit it. Caller holds the lock."""
        if job.key in self._in_flight:
            return None

        job.state = JobState.RUNNING
        snapshot = job.snapshot()
        future = self._ensure_pool().submit(self._run, snapshot)
        self._in_flight[job.key] = future
        logger.info(f"Started {job}")
        return future

    def _run(self, job: Job) -> JobExecutionResult:
        """Worker-thread body: execute and record the outcome."""
        try:
            result = self._executor.execute(job)
        except Exception as e:
            logger.exception(f"Executor crashed on {job}")
            result = JobExecutionResult(
                key=job.key,
                started_at=self._clock(),
                completed_at=self._clock(),
                success=False,
                error=str(e),
            )
        self._finish(job.key, result)
        return result

    def _finish(self, key: JobKey, result: JobExecutionResult) -> None:
        with self._lock:
            self._in_flight.pop(key, None)
            self._history.append(result)

            if self._abandoned:
                logger.debug(f"Ignoring result of abandoned run {key}")
                return

            job = self._jobs.get(key)
            if job is None:
                return

            job.last_executed = result.completed_at or self._clock()
            job.run_count += 1
            if result.success:
                job.state = JobState.COMPLETED
                job.last_error = None
                logger.info(
                    f"{job} finished: {result.items_found} found, "
                    f"{result.items_downloaded} processed"
                )
            else:
                job.state = JobState.FAILED
                job.error_count += 1
                job.last_error = result.error
                logger.error(f"{job} failed: {result.error}")

            if job.pending_removal:
                del self._jobs[key]
                logger.info(f"Removed {job}")

            self._persist_quietly()

    # Lifecycle

    def start(self) -> None:
        """Load persisted jobs (once) and start the background driver.

        Raises:
            SchedulerError: If the scheduler was already shut down
            PersistenceError: If the store cannot be read
        """
        if self._stopped:
            raise SchedulerError("Scheduler cannot be restarted after shutdown")
        if self._running:
            logger.warning("Scheduler already running")
            return

        if not self._loaded:
            self.load()

        logger.info("Starting job scheduler...")
        self._ensure_pool()
        self._scheduler = self._create_scheduler()
        self._scheduler.add_job(
            self.tick,
            "interval",
            seconds=self._tick_interval,
            id=TICK_JOB_ID,
            next_run_time=datetime.now(timezone.utc),
        )
        self._scheduler.start()
        self._running = True
        logger.info(f"Scheduler started with {len(self._jobs)} jobs")

    def shutdown(self, force: bool = False) -> None:
        """Stop the driver and persist the final job set.

        Graceful shutdown blocks until every running job reaches COMPLETED
        or FAILED. Forced shutdown returns at once; runs still in progress
        are abandoned, stay RUNNING in the saved set and are re-enqueued
        on the next load.

        Raises:
            PersistenceError: If the final job set could not be saved
        """
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            pending = list(self._in_flight.values())

        logger.info(f"Stopping job scheduler ({'forced' if force else 'graceful'})...")

        if self._scheduler is not None:
            self._scheduler.shutdown(wait=not force)
            self._scheduler = None

        if force:
            with self._lock:
                self._abandoned = True
                abandoned = len(self._in_flight)
            if self._pool is not None:
                self._pool.shutdown(wait=False, cancel_futures=True)
            if abandoned:
                logger.warning(f"Abandoned {abandoned} running jobs")
        else:
            if pending:
                logger.info(f"Waiting for {len(pending)} running jobs to finish")
                wait_futures(pending)
            if self._pool is not None:
                self._pool.shutdown(wait=True)

        self._running = False
        try:
            with self._lock:
                # An empty set from a failed load must not overwrite the store
                if self._loaded:
                    self._persist()
                else:
                    logger.warning("Job set was never loaded, not saving")
        finally:
            self._close_resources()
        logger.info("Scheduler stopped")

    # History and status

    def history(self, key: Optional[JobKey] = None, limit: int = 10) -> List[JobExecutionResult]:
        """Most recent execution results, newest first."""
        with self._lock:
            results = [r for r in self._history if key is None or r.key == make_key(key)]
        return list(reversed(results))[:limit]

    def status(self) -> Dict[str, Any]:
        """Summary of the scheduler state."""
        with self._lock:
            counts = {state.value: 0 for state in JobState}
            for job in self._jobs.values():
                counts[job.state.value] += 1
            return {
                "running": self._running,
                "stopped": self._stopped,
                "tick_interval": self._tick_interval,
                "max_workers": self._max_workers,
                "total_jobs": len(self._jobs),
                "in_flight": len(self._in_flight),
                "jobs_by_state": counts,
                "connectors": self._registry.names,
            }

    # Internals

    def _ensure_loaded(self) -> None:
        """Load the saved job set before the first change. Caller holds the lock."""
        if not self._loaded:
            self.load()

    def _require(self, key: JobKey) -> Job:
        job = self._jobs.get(key)
        if job is None:
            raise JobNotFoundError(f"No such job: {key}", details={"key": str(key)})
        return job

    def _ensure_pool(self) -> ThreadPoolExecutor:
        if self._pool is None:
            self._pool = ThreadPoolExecutor(
                max_workers=self._max_workers,
                thread_name_prefix="tranga-job",
            )
        return self._pool

    def _persist(self) -> None:
        """Save all jobs. Caller holds the lock.

        Raises:
            PersistenceError: If the store fails; the in-memory set is kept
        """
        try:
            self._store.save_jobs(list(self._jobs.values()))
        except PersistenceError as e:
            logger.error(f"Failed to persist jobs: {e}")
            raise

    def _persist_quietly(self) -> None:
        try:
            self._persist()
        except PersistenceError:
            pass

    def _close_resources(self) -> None:
        for resource in self._resources:
            try:
                resource.close()
            except Exception as e:
                logger.warning(f"Failed to close {resource!r}: {e}")

    def _create_scheduler(self) -> BackgroundScheduler:
        """Create and configure the APScheduler instance driving ``tick``."""
        scheduler = BackgroundScheduler(
            jobstores={"default": APMemoryJobStore()},
            executors={"default": APThreadPoolExecutor(max_workers=1)},
            job_defaults={
                "coalesce": True,  # Collapse missed ticks into one
                "max_instances": 1,  # Never overlap two ticks
                "misfire_grace_time": None,
            },
            timezone="UTC",
        )

        def on_tick_error(event: Any) -> None:
            exception = getattr(event, "exception", "Unknown error")
            logger.error(f"Scheduler tick failed: {exception}")

        def on_tick_skipped(event: Any) -> None:
            logger.debug("Previous tick still running, skipping")

        scheduler.add_listener(on_tick_error, EVENT_JOB_ERROR)
        scheduler.add_listener(on_tick_skipped, EVENT_JOB_MAX_INSTANCES)
        return scheduler


def create_job_store(config: TrangaConfig) -> JobStore:
    """Build the job store selected by ``scheduler.store``.

    Raises:
        ConfigurationError: If the store name is unknown
    """
    if config.scheduler.store == "json":
        return JsonJobStore(config.tasks_file)
    if config.scheduler.store == "database":
        return DatabaseJobStore(config.db_url)
    raise ConfigurationError(
        f"Unknown job store: {config.scheduler.store}",
        details={"expected": "json, database"},
    )


def create_scheduler(
    config: TrangaConfig,
    library_connectors: Optional[Sequence[LibraryConnector]] = None,
    discover: bool = True,
) -> JobScheduler:
    """Wire rate limiter, download client, connectors and store into a scheduler.

    The scheduler owns the download client and the store and closes them
    on shutdown.

    Args:
        config: Loaded configuration
        library_connectors: Library servers for UPDATE_LIBRARIES jobs; the
            discovered library connectors if omitted
        discover: Discover connectors from entry points and connector directories

    Returns:
        A scheduler that has not been started yet
    """
    rate_limiter = RateLimiter(config.rate_limits.requests_per_minute)
    download_client = DownloadClient(
        rate_limiter,
        timeout=config.rate_limits.request_timeout,
        user_agent=config.rate_limits.user_agent,
        max_attempts=config.rate_limits.max_attempts or None,
    )

    registry = ConnectorRegistry(
        download_client=download_client,
        download_location=config.library_dir,
        connector_dirs=config.connectors.connector_dirs,
        settings=config.connectors.connector_settings,
        enabled=config.connectors.enabled_connectors,
        disabled=config.connectors.disabled_connectors,
    )
    if discover:
        registry.discover()

    if library_connectors is None:
        library_connectors = registry.library_connectors

    store = create_job_store(config)
    resources: List[Any] = [download_client]
    if isinstance(store, DatabaseJobStore):
        resources.append(store)

    return JobScheduler(
        registry,
        store=store,
        library_connectors=library_connectors,
        tick_interval=config.scheduler.tick_interval,
        max_workers=config.scheduler.max_workers,
        max_history=config.scheduler.history_size,
        resources=resources,
    )
