"""Daemon module for Cadence CLI.

This module runs the job scheduler as a long-lived foreground or
background process.
"""

from cadence_cli.daemon.pid import PIDFile, PIDFileError, default_pid_path
from cadence_cli.daemon.service import (
    CadenceDaemon,
    daemonize,
    run_daemon,
)

__all__ = [
    "CadenceDaemon",
    "PIDFile",
    "PIDFileError",
    "daemonize",
    "default_pid_path",
    "run_daemon",
]
