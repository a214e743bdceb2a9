"""PID file management for daemon process tracking."""

import os
from pathlib import Path
from typing import Optional

from cadence_cli.config import CadenceConfig

PID_FILENAME = "cadence.pid"


class PIDFileError(Exception):
    """Raised when a PID file is held by another live process."""

    def __init__(self, path: Path, pid: int) -> None:
        super().__init__(f"Daemon already running (PID: {pid}, file: {path})")
        self.path = path
        self.pid = pid


def default_pid_path(config: CadenceConfig) -> Path:
    """Location of the daemon PID file for a configuration."""
    return config.data_dir / PID_FILENAME


class PIDFile:
    """Manage the daemon PID file.

    The file holds the PID of the process running the scheduler. A file
    whose process has died is stale and may be replaced.

    Example:
        pid_file = PIDFile(default_pid_path(config))

        with pid_file:
            await run_daemon(config, options)
    """

    def __init__(self, path: Path):
        """Initialize PID file manager.

        Args:
            path: Path to the PID file
        """
        self.path = path

    def create(self) -> None:
        """Write the current process ID, replacing a stale file.

        Raises:
            PIDFileError: If another live process holds the file
        """
        pid = self.read()
        if pid is not None and pid != os.getpid() and _process_exists(pid):
            raise PIDFileError(self.path, pid)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(f"{os.getpid()}\n")

    def remove(self) -> None:
        """Remove the PID file if it belongs to this process or is unreadable."""
        pid = self.read()
        if pid is not None and pid != os.getpid():
            return
        self.path.unlink(missing_ok=True)

    def read(self) -> Optional[int]:
        """Read PID from file.

        Returns:
            The PID, or None if the file is missing or malformed
        """
        try:
            return int(self.path.read_text().strip())
        except (ValueError, OSError):
            return None

    def is_running(self) -> bool:
        """Check whether the recorded process is alive."""
        pid = self.read()
        return pid is not None and _process_exists(pid)

    def get_pid(self) -> Optional[int]:
        """Get the PID from the file if the process is running."""
        pid = self.read()
        if pid is not None and _process_exists(pid):
            return pid
        return None

    def clear_if_stale(self) -> bool:
        """Remove the file if its process is gone.

        Returns:
            True if a stale file was removed
        """
        pid = self.read()
        if pid is None or _process_exists(pid):
            return False
        self.path.unlink(missing_ok=True)
        return True

    def __enter__(self) -> "PIDFile":
        self.create()
        return self

    def __exit__(self, *exc_info) -> None:
        self.remove()


def _process_exists(pid: int) -> bool:
    try:
        # Signal 0 checks existence without delivering anything
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    except OSError:
        return False
    return True
