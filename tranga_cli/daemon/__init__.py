"""Daemon process hosting the job scheduler."""

from tranga_cli.daemon.pid import DaemonAlreadyRunningError, PIDFile
from tranga_cli.daemon.service import TrangaDaemon, daemonize, run_daemon

__all__ = [
    "DaemonAlreadyRunningError",
    "PIDFile",
    "TrangaDaemon",
    "daemonize",
    "run_daemon",
]
