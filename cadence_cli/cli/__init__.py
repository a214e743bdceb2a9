"""CLI command modules for Cadence.

This package contains the command groups (run, jobs, config) and the
exit code conventions they share.
"""

from cadence_cli.cli import config, jobs, run
from cadence_cli.cli.exit_codes import ExitCode

__all__ = [
    "config",
    "jobs",
    "run",
    "ExitCode",
]
