"""Main CLI entry point for Cadence."""

import logging
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from cadence_cli import __app_name__, __version__
from cadence_cli.cli import config, jobs, run
from cadence_cli.cli.exit_codes import ExitCode

app = typer.Typer(
    name=__app_name__,
    help="Cadence CLI - Recurring job scheduler with bounded concurrency.",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

app.add_typer(run.app, name="run")
app.add_typer(jobs.app, name="jobs")
app.add_typer(config.app, name="config")

# Global state for CLI options
_global_state: dict[str, bool] = {
    "verbose": False,
    "debug": False,
    "json": False,
    "quiet": False,
}

_DEBUG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"{__app_name__} v{__version__}")
        raise typer.Exit(code=ExitCode.SUCCESS)


def _resolve_level(verbose: bool, debug: bool, quiet: bool) -> int:
    if debug:
        return logging.DEBUG
    if verbose:
        return logging.INFO
    if quiet:
        return logging.ERROR
    return logging.WARNING


def _setup_logging(
    verbose: bool = False,
    debug: bool = False,
    quiet: bool = False,
    log_file: Optional[Path] = None,
) -> None:
    """Set up logging for one-shot commands.

    Console output goes to stderr so ``--json`` output on stdout stays
    parseable. A log file always receives DEBUG records.

    Args:
        verbose: Enable INFO level logging
        debug: Enable DEBUG level logging with source locations
        quiet: Only log errors
        log_file: Optional log file path
    """
    level = _resolve_level(verbose, debug, quiet)
    format_str = _DEBUG_FORMAT if debug else "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    handlers: list[logging.Handler] = []

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    if not quiet:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        handlers.append(console_handler)
    elif not log_file:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=logging.DEBUG if log_file else level,
        format=format_str,
        handlers=handlers,
        force=True,
    )

    # APScheduler logs every timer run at INFO
    if level > logging.DEBUG:
        logging.getLogger("apscheduler").setLevel(max(level, logging.WARNING))

    logging.getLogger(__name__).debug(
        f"Logging configured: level={logging.getLevelName(level)}, file={log_file}"
    )


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-V",
        help="Enable verbose output (INFO level logging).",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug mode (DEBUG level logging).",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output in JSON format where applicable.",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Suppress non-error output.",
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Log to file (logs DEBUG level regardless of console settings).",
    ),
) -> None:
    """Cadence CLI - Recurring job scheduler with bounded concurrency.

    Jobs invoke an operation on a named target on a cron schedule, with
    retries, timeouts and stuck-job recovery.

    [bold]Commands:[/bold]

    • [cyan]run[/cyan] - Start, stop or inspect the scheduler daemon
    • [cyan]jobs[/cyan] - Create, inspect and trigger scheduled jobs
    • [cyan]config[/cyan] - Manage configuration

    [bold]Examples:[/bold]

        cadence config init --no-interactive
        cadence jobs create -n cleanup -s CleanupService -m run --schedule "0 0 * * *"
        cadence run --daemon
        cadence --json jobs list
    """
    _global_state["verbose"] = verbose
    _global_state["debug"] = debug
    _global_state["json"] = json_output
    _global_state["quiet"] = quiet

    if quiet and (verbose or debug):
        console.print("[red]Error:[/red] --quiet cannot be combined with --verbose or --debug")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    _setup_logging(verbose=verbose, debug=debug, quiet=quiet, log_file=log_file)


def is_json() -> bool:
    """Check if JSON output mode is enabled."""
    return _global_state.get("json", False)


def is_quiet() -> bool:
    return _global_state.get("quiet", False)


__all__ = [
    "app",
    "console",
    "is_json",
    "is_quiet",
]


if __name__ == "__main__":
    app()
