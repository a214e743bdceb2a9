"""Cadence run command - Start the scheduler daemon."""

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console

from cadence_cli.cli.exit_codes import ExitCode

app = typer.Typer(help="Start the Cadence scheduler daemon.")
console = Console()


def _setup_logging(
    verbose: bool,
    log_file: Optional[Path] = None,
    level_name: str = "INFO",
    format_str: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
) -> None:
    """Set up logging configuration.

    Args:
        verbose: Enable verbose (DEBUG) logging
        log_file: Optional log file path
        level_name: Level used when not verbose
        format_str: Log record format
    """
    level = logging.DEBUG if verbose else getattr(logging, level_name.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=handlers,
        force=True,
    )


def _config_option() -> Any:
    return typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    )


@app.callback(invoke_without_command=True)
def run(
    ctx: typer.Context,
    config_file: Optional[Path] = _config_option(),
    daemon: bool = typer.Option(
        False,
        "--daemon",
        "-d",
        help="Run in background as daemon.",
    ),
    max_concurrent: Optional[int] = typer.Option(
        None,
        "--max-concurrent",
        "-m",
        help="Maximum concurrent job executions (overrides config).",
        min=1,
        max=256,
    ),
    check_interval_ms: Optional[int] = typer.Option(
        None,
        "--check-interval",
        help="Due-job sweep interval in milliseconds (overrides config).",
        min=100,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging.",
    ),
) -> None:
    """Start the Cadence daemon.

    The daemon loads enabled jobs, fires them on their cron schedules,
    sweeps for due jobs and recovers stuck executions until it receives
    SIGTERM or SIGINT. SIGHUP reloads job definitions.

    Example:
        cadence run
        cadence run --daemon --max-concurrent 8
        cadence run --verbose
    """
    if ctx.invoked_subcommand is not None:
        return

    from cadence_cli.config import load_config, ensure_directories
    from cadence_cli.daemon.pid import PIDFile, PIDFileError, default_pid_path
    from cadence_cli.daemon.service import run_daemon, daemonize

    config = load_config(config_file)
    ensure_directories(config)

    pid_file = PIDFile(default_pid_path(config))

    if pid_file.is_running():
        console.print("[red]Error: Daemon is already running[/red]")
        console.print(f"[yellow]PID: {pid_file.read()}[/yellow]")
        raise typer.Exit(code=ExitCode.ALREADY_RUNNING)

    pid_file.clear_if_stale()

    console.print("[bold green]Starting Cadence daemon...[/bold green]")

    if verbose:
        console.print(f"Config: {config_file or 'default'}")
        console.print(f"Max concurrent jobs: {max_concurrent or config.scheduler.max_concurrent}")
        console.print(f"Daemon mode: {daemon}")
        console.print(f"Data directory: {config.data_dir}")

    log_file = config.logging.file
    if daemon and log_file is None:
        log_file = config.data_dir / "daemon.log"
    _setup_logging(verbose, log_file, config.logging.level, config.logging.format)

    if daemon:
        if sys.platform == "win32":
            console.print("[yellow]Warning: Daemon mode not supported on Windows, running in foreground[/yellow]")
        else:
            console.print("[dim]Forking to background...[/dim]")
            daemonize(log_file)

    # Created in the child process when daemonized
    try:
        pid_file.create()
    except PIDFileError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=ExitCode.ALREADY_RUNNING)
    except OSError as e:
        console.print(f"[red]Error: Failed to create PID file: {e}[/red]")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    try:
        asyncio.run(run_daemon(config, {
            "max_concurrent": max_concurrent,
            "check_interval_ms": check_interval_ms,
        }))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
    except Exception as e:
        logging.exception("Daemon error")
        console.print(f"[red]Daemon error: {e}[/red]")
        raise typer.Exit(code=ExitCode.for_exception(e))
    finally:
        pid_file.remove()


@app.command()
def status(
    config_file: Optional[Path] = _config_option(),
) -> None:
    """Check daemon status.

    Shows whether the daemon is running and a summary of the job table.

    Example:
        cadence run status
    """
    from cadence_cli.config import load_config
    from cadence_cli.daemon.pid import PIDFile, default_pid_path

    config = load_config(config_file)
    pid_file = PIDFile(default_pid_path(config))

    if pid_file.is_running():
        console.print(f"[green]● Daemon is running[/green] (PID: {pid_file.read()})")
    else:
        console.print("[yellow]○ Daemon is not running[/yellow]")
        if pid_file.clear_if_stale():
            console.print("[dim]  (removed stale PID file)[/dim]")

    console.print(f"  Data directory: {config.data_dir}")
    console.print(f"  Database: {config.database_url}")
    console.print(f"  Max concurrent jobs: {config.scheduler.max_concurrent}")
    console.print(f"  Check interval: {config.scheduler.check_interval_ms}ms")

    try:
        from cadence_cli.database.connection import Database
        from cadence_cli.database.models import JobStatus, utcnow
        from cadence_cli.database.repositories import JobRepository

        database = Database.from_config(config)
        database.create_tables()
        repository = JobRepository(database)
        try:
            total = len(repository.find_all())
            enabled = len(repository.find_enabled())
            running = len(repository.find_by_last_status(JobStatus.RUNNING))
            due = len(repository.find_ready_to_run(utcnow()))
        finally:
            database.dispose()
    except Exception as e:
        console.print(f"[red]  Could not read job table: {e}[/red]")
        return

    console.print(f"  Jobs: {total} total, {enabled} enabled, {running} running, {due} due")


@app.command()
def stop(
    config_file: Optional[Path] = _config_option(),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Force kill the daemon (SIGKILL).",
    ),
) -> None:
    """Stop the daemon.

    Sends SIGTERM for graceful shutdown; --force sends SIGKILL.

    Example:
        cadence run stop
        cadence run stop --force
    """
    from cadence_cli.config import load_config
    from cadence_cli.daemon.pid import PIDFile, default_pid_path

    config = load_config(config_file)
    pid_file = PIDFile(default_pid_path(config))

    pid = pid_file.read()

    if pid is None:
        console.print("[yellow]Daemon is not running (no PID file found)[/yellow]")
        raise typer.Exit()

    if not pid_file.is_running():
        console.print("[yellow]Daemon is not running (stale PID file)[/yellow]")
        pid_file.clear_if_stale()
        raise typer.Exit()

    sig = signal.SIGKILL if force and hasattr(signal, "SIGKILL") else signal.SIGTERM

    try:
        os.kill(pid, sig)
        if force:
            console.print(f"[red]Force killed daemon (PID: {pid})[/red]")
            pid_file.path.unlink(missing_ok=True)
        else:
            console.print(f"[green]Shutdown signal sent to daemon (PID: {pid})[/green]")
            console.print("[dim]In-flight jobs are not awaited; stuck runs are recovered on next start[/dim]")
    except ProcessLookupError:
        console.print("[yellow]Daemon process not found (already stopped)[/yellow]")
        pid_file.clear_if_stale()
    except PermissionError:
        console.print(f"[red]Permission denied: cannot signal process {pid}[/red]")
        raise typer.Exit(code=ExitCode.PERMISSION_DENIED)
    except OSError as e:
        console.print(f"[red]Error signaling daemon: {e}[/red]")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)
