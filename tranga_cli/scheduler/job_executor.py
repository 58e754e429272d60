"""Job executor for running scheduled jobs.

The JobExecutor maps a job kind onto connector calls. It never decides
*when* a job runs; that is the scheduler's business. Each call to
:meth:`JobExecutor.execute` runs on a scheduler worker thread and may
block for a long time inside the rate limiter or the retry backoff.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from tranga_cli.connectors.base import LibraryConnector, Publication, SourceConnector
from tranga_cli.connectors.registry import ConnectorRegistry
from tranga_cli.exceptions import NotFoundError
from tranga_cli.scheduler.job import Job, JobExecutionResult, JobKind, utcnow

logger = logging.getLogger(__name__)


class JobExecutor:
    """Executes jobs by calling into source and library connectors.

    - DOWNLOAD_NEW_CHAPTERS: list chapters, download the cover and every
      chapter not yet in the library
    - UPDATE_PUBLICATIONS: refresh the publication list of one or all sources
    - UPDATE_LIBRARIES: ask every library connector to rescan

    Example:
        executor = JobExecutor(registry, [komga])
        result = executor.execute(job)
    """

    def __init__(
        self,
        registry: ConnectorRegistry,
        library_connectors: Optional[Sequence[LibraryConnector]] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the job executor.

        Args:
            registry: Lookup of source connectors by name
            library_connectors: Library servers notified by UPDATE_LIBRARIES jobs
            clock: Returns the current UTC time
        """
        self._registry = registry
        self._library_connectors = list(library_connectors or [])
        self._clock = clock
        self._publications: Dict[Tuple[str, str], Publication] = {}
        self._cache_lock = threading.Lock()

    @property
    def library_connectors(self) -> List[LibraryConnector]:
        return list(self._library_connectors)

    def cached_publications(self, connector_name: Optional[str] = None) -> List[Publication]:
        """Publications seen by the last UPDATE_PUBLICATIONS runs."""
        with self._cache_lock:
            return [
                publication
                for (name, _), publication in self._publications.items()
                if connector_name is None or name == connector_name
            ]

    def execute(self, job: Job) -> JobExecutionResult:
        """Execute a job.

        Connector errors never escape; they are reported through the
        result's ``error`` field.

        Args:
            job: Snapshot of the job to execute

        Returns:
            Execution result with statistics
        """
        started_at = self._clock()
        result = JobExecutionResult(key=job.key, started_at=started_at)

        try:
            if job.kind is JobKind.DOWNLOAD_NEW_CHAPTERS:
                self._download_new_chapters(job, result)
            elif job.kind is JobKind.UPDATE_PUBLICATIONS:
                self._update_publications(job, result)
            elif job.kind is JobKind.UPDATE_LIBRARIES:
                self._update_libraries(result)
            result.success = True
        except Exception as e:
            logger.error(f"{job} failed: {e}")
            result.success = False
            result.error = str(e)

        result.completed_at = self._clock()
        return result

    def _download_new_chapters(self, job: Job, result: JobExecutionResult) -> None:
        connector = self._registry.require(job.connector_name)
        publication = self._resolve_publication(connector, job)

        chapters = connector.fetch_chapters_for(publication, job.language)
        new_chapters = connector.new_chapters(publication, chapters)
        result.items_found = len(new_chapters)
        logger.info(
            f"{publication.sort_name}: {len(chapters)} chapters available, {len(new_chapters)} new"
        )

        if not new_chapters:
            return

        publication.create_publication_folder(connector.download_location)
        connector.download_cover(publication)

        for chapter in new_chapters:
            logger.info(f"Downloading {publication.sort_name} {chapter.file_name}")
            connector.download_chapter(publication, chapter)
            result.items_downloaded += 1

    def _resolve_publication(self, connector: SourceConnector, job: Job) -> Publication:
        """Find the publication a job targets.

        Order: the snapshot stored with the job, the publication cache,
        then the connector itself.

        Raises:
            NotFoundError: If the connector does not know the publication
        """
        if job.publication is not None:
            return job.publication

        cache_key = (connector.name, job.publication_id)
        with self._cache_lock:
            cached = self._publications.get(cache_key)
        if cached is not None:
            return cached

        publication = connector.get_publication(job.publication_id)
        if publication is None:
            raise NotFoundError(
                f"Publication {job.publication_id} not found on {connector.name}"
            )

        with self._cache_lock:
            self._publications[cache_key] = publication
        return publication

    def _update_publications(self, job: Job, result: JobExecutionResult) -> None:
        if job.connector_name:
            connectors = [self._registry.require(job.connector_name)]
        else:
            connectors = self._registry.connectors

        for connector in connectors:
            publications = connector.fetch_publication_list("")
            logger.info(f"{connector.name}: {len(publications)} publications")
            result.items_found += len(publications)
            with self._cache_lock:
                for publication in publications:
                    self._publications[(connector.name, publication.publication_id)] = publication

    def _update_libraries(self, result: JobExecutionResult) -> None:
        if not self._library_connectors:
            logger.info("No library connectors configured, nothing to update")
            return

        for library in self._library_connectors:
            logger.info(f"Updating library {library.name}")
            library.update_library()
            result.items_downloaded += 1
