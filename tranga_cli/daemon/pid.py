"""PID file guarding against two daemons sharing one data directory."""

import errno
import logging
import os
from pathlib import Path
from typing import Optional

from tranga_cli.exceptions import TrangaError
from tranga_cli.cli.exit_codes import ExitCode

logger = logging.getLogger(__name__)

PID_FILE_NAME = "tranga.pid"


class DaemonAlreadyRunningError(TrangaError):
    """Another daemon holds the PID file."""

    exit_code = ExitCode.CONFLICT

    def __init__(self, pid: int, path: Path) -> None:
        super().__init__(
            f"Daemon is already running (PID {pid})",
            details={"pid_file": str(path)},
        )
        self.pid = pid


def _process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    except OSError as e:
        return e.errno == errno.EPERM
    return True


class PIDFile:
    """Exclusive PID file for the scheduler daemon.

    Example:
        with PIDFile.for_data_dir(config.data_dir):
            run_the_daemon()
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    @classmethod
    def for_data_dir(cls, data_dir: Path) -> "PIDFile":
        return cls(Path(data_dir) / PID_FILE_NAME)

    def read(self) -> Optional[int]:
        """PID stored in the file, or None if missing or unreadable."""
        try:
            return int(self.path.read_text().strip())
        except (FileNotFoundError, ValueError):
            return None
        except OSError as e:
            logger.warning(f"Cannot read PID file {self.path}: {e}")
            return None

    def get_pid(self) -> Optional[int]:
        """PID of the running daemon, or None."""
        pid = self.read()
        if pid is not None and _process_alive(pid):
            return pid
        return None

    def is_running(self) -> bool:
        return self.get_pid() is not None

    def acquire(self) -> None:
        """Write the current PID, replacing a stale file.

        Raises:
            DaemonAlreadyRunningError: If a live process holds the file
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)

        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                pid = self.get_pid()
                if pid is not None and pid != os.getpid():
                    raise DaemonAlreadyRunningError(pid, self.path) from None
                logger.info(f"Removing stale PID file {self.path}")
                self.path.unlink(missing_ok=True)
                continue
            with os.fdopen(fd, "w") as f:
                f.write(str(os.getpid()))
            return

        # Lost a race against another starting daemon
        pid = self.read() or 0
        raise DaemonAlreadyRunningError(pid, self.path)

    def release(self) -> None:
        """Remove the file if it still belongs to this process."""
        if self.read() == os.getpid():
            self.path.unlink(missing_ok=True)

    def clear_if_stale(self) -> bool:
        """Remove the file if its process is gone.

        Returns:
            True if a stale file was removed
        """
        if self.read() is not None and not self.is_running():
            self.path.unlink(missing_ok=True)
            return True
        return False

    def __enter__(self) -> "PIDFile":
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
