"""Daemon service for Tranga CLI.

This module provides the long-running process that hosts the job
scheduler:
- Service lifecycle management (start/stop)
- Signal handling for graceful shutdown
- Background daemon mode with process forking
"""

import asyncio
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Sequence

from tranga_cli.config import TrangaConfig, ensure_directories
from tranga_cli.connectors.base import LibraryConnector
from tranga_cli.scheduler.job_scheduler import JobScheduler, create_scheduler

logger = logging.getLogger(__name__)


class TrangaDaemon:
    """Hosts the job scheduler until a shutdown is requested.

    The scheduler does its work on its own threads; the daemon only owns
    its lifecycle and waits on an asyncio event that the signal handlers
    set.

    Attributes:
        _config: Tranga configuration
        _force_shutdown: Abandon running jobs instead of waiting for them
        _scheduler: Job scheduler instance
        _running: Whether the daemon is running
        _shutdown_event: Event to signal shutdown

    Example:
        daemon = TrangaDaemon(config)

        await daemon.start()
        await daemon.run_until_shutdown()
        await daemon.stop()
    """

    def __init__(
        self,
        config: TrangaConfig,
        force_shutdown: bool = False,
        library_connectors: Optional[Sequence[LibraryConnector]] = None,
        scheduler: Optional[JobScheduler] = None,
    ):
        """Initialize the daemon service.

        Args:
            config: Tranga configuration
            force_shutdown: Abandon running jobs on stop
            library_connectors: Library servers for UPDATE_LIBRARIES jobs
            scheduler: Pre-built scheduler; created from ``config`` if omitted
        """
        self._config = config
        self._force_shutdown = force_shutdown
        self._library_connectors = library_connectors
        self._scheduler = scheduler
        self._running = False
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Build and start the scheduler.

        Raises:
            ConnectorError: If connectors cannot be discovered
            PersistenceError: If the saved job set cannot be read
        """
        logger.info("Starting Tranga daemon...")

        ensure_directories(self._config)

        if self._scheduler is None:
            self._scheduler = create_scheduler(
                self._config,
                library_connectors=self._library_connectors,
            )
        logger.info(f"Connectors available: {', '.join(self._scheduler.registry.names) or 'none'}")
        libraries = [library.name for library in self._scheduler.executor.library_connectors]
        logger.info(f"Library connectors: {', '.join(libraries) or 'none'}")

        if self._config.scheduler.enabled:
            self._scheduler.start()
            logger.info("Job scheduler started")
        else:
            logger.warning("Scheduler disabled in configuration, no jobs will run")

        self._running = True
        logger.info("Tranga daemon started successfully")

    async def stop(self) -> None:
        """Shut the scheduler down and save the job set."""
        logger.info("Stopping Tranga daemon...")

        self._running = False

        if self._scheduler:
            try:
                # Graceful shutdown blocks on running jobs
                await asyncio.to_thread(self._scheduler.shutdown, self._force_shutdown)
                logger.info("Job scheduler stopped")
            except Exception as e:
                logger.warning(f"Error stopping scheduler: {e}")

        logger.info("Tranga daemon stopped")

    async def run_until_shutdown(self) -> None:
        """Block until request_shutdown() is called."""
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        """Request daemon shutdown.

        Sets the shutdown event, which makes run_until_shutdown() return.
        """
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def scheduler(self) -> Optional[JobScheduler]:
        """The job scheduler, or None if not started."""
        return self._scheduler


def configure_file_logging(config: TrangaConfig) -> Optional[RotatingFileHandler]:
    """Attach a rotating log file handler when ``logging.file`` is set.

    Returns:
        The installed handler, or None if no file is configured
    """
    log_file = config.logging.file
    if log_file is None:
        return None

    log_file = Path(log_file).expanduser()
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_file,
        maxBytes=config.logging.max_size,
        backupCount=config.logging.backup_count,
    )
    handler.setFormatter(logging.Formatter(config.logging.format))
    handler.setLevel(config.logging.level.upper())

    root = logging.getLogger()
    root.addHandler(handler)
    if root.level > handler.level:
        root.setLevel(handler.level)
    return handler


async def run_daemon(
    config: TrangaConfig,
    force_shutdown: bool = False,
    daemon: Optional[TrangaDaemon] = None,
) -> None:
    """Run the Tranga daemon with signal handling.

    SIGTERM and SIGINT request a shutdown; the daemon then stops the
    scheduler, gracefully unless ``force_shutdown`` is set.

    Args:
        config: Tranga configuration
        force_shutdown: Abandon running jobs on shutdown
        daemon: Pre-built daemon instance
    """
    daemon = daemon or TrangaDaemon(config, force_shutdown=force_shutdown)

    loop = asyncio.get_running_loop()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        daemon.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda signum, frame: handle_signal(signal.Signals(signum)))

    try:
        await daemon.start()
        await daemon.run_until_shutdown()
    finally:
        await daemon.stop()


def daemonize(log_file: Optional[Path] = None) -> None:
    """Detach from the terminal with the double-fork technique.

    Args:
        log_file: Where stdout/stderr go; /dev/null if None

    Note:
        Unix only. On Windows this logs a warning and returns.
    """
    if sys.platform == "win32":
        logger.warning("Daemon mode not supported on Windows")
        return

    if os.fork() > 0:
        sys.exit(0)

    os.setsid()

    if os.fork() > 0:
        sys.exit(0)

    sys.stdout.flush()
    sys.stderr.flush()

    with open(os.devnull, "r") as devnull:
        os.dup2(devnull.fileno(), sys.stdin.fileno())

    target = os.devnull
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        target = str(log_file)
    with open(target, "a+") as out:
        os.dup2(out.fileno(), sys.stdout.fileno())
        os.dup2(out.fileno(), sys.stderr.fileno())

    logger.info(f"Daemon process started (PID: {os.getpid()})")
