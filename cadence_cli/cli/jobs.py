"""Cadence jobs command - Manage scheduled jobs."""

import asyncio
import json
from datetime import datetime
from typing import Any, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from cadence_cli.cli.exit_codes import ExitCode

app = typer.Typer(help="Manage scheduled jobs.")
console = Console()

_STATUS_STYLES = {
    "success": "green",
    "error": "red",
    "timeout": "red",
    "running": "cyan",
    "pending": "yellow",
}


def _get_repository() -> Any:
    from cadence_cli.config import get_config
    from cadence_cli.database.connection import get_database
    from cadence_cli.database.repositories import JobRepository

    return JobRepository(get_database(get_config()))


def _get_job_or_exit(repository: Any, job_id: int) -> Any:
    job = repository.get_by_id(job_id)
    if job is None:
        console.print(f"[red]Job not found: {job_id}[/red]")
        raise typer.Exit(code=ExitCode.NOT_FOUND)
    return job


def _json_output() -> bool:
    from cadence_cli.main import is_json

    return is_json()


def _format_time(value: Optional[datetime], default: str = "Never") -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else default


def _format_status(job: Any) -> str:
    if job.last_run_status is None:
        return "[dim]-[/dim]"
    value = job.last_run_status.value
    style = _STATUS_STYLES.get(value, "white")
    return f"[{style}]{value}[/{style}]"


def _jobs_table(jobs: list, title: str) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("Target", style="magenta")
    table.add_column("Schedule", style="green")
    table.add_column("Enabled")
    table.add_column("Last Status")
    table.add_column("Last Run")
    table.add_column("Next Run")
    table.add_column("Runs", justify="right")

    for job in jobs:
        enabled = "[green]yes[/green]" if job.enabled else "[yellow]no[/yellow]"
        table.add_row(
            str(job.id),
            job.name,
            f"{job.service_name}.{job.service_method}",
            job.schedule,
            enabled,
            _format_status(job),
            _format_time(job.last_run_at),
            _format_time(job.next_run_at, "Due"),
            f"{job.success_count}/{job.run_count}",
        )

    return table


@app.command("list")
def list_jobs(
    status: str = typer.Option(
        "all",
        "--status",
        "-s",
        help="Filter by state (enabled, disabled, all) or last run status (success, error, timeout, running, pending).",
    ),
    service: Optional[str] = typer.Option(
        None,
        "--service",
        help="Only show jobs for this target.",
    ),
) -> None:
    """List all scheduled jobs.

    Example:
        cadence jobs list
        cadence jobs list --status disabled
        cadence jobs list --status error
    """
    from cadence_cli.database.models import JobStatus

    repository = _get_repository()

    if status == "enabled":
        jobs = repository.find_enabled()
    elif status == "disabled":
        jobs = repository.find_by(enabled=False)
    elif status == "all":
        jobs = repository.find_all()
    else:
        try:
            jobs = repository.find_by_last_status(JobStatus(status))
        except ValueError:
            console.print(f"[red]Invalid status filter: {status}[/red]")
            raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    if service:
        jobs = [job for job in jobs if job.service_name == service]

    if _json_output():
        console.print_json(json.dumps([job.to_dict() for job in jobs]))
        return

    if not jobs:
        console.print("[yellow]No jobs found[/yellow]")
        return

    console.print(_jobs_table(jobs, "Scheduled Jobs"))


@app.command("show")
def show_job(
    job_id: int = typer.Argument(..., help="ID of the job to show."),
) -> None:
    """Show details of a job.

    Example:
        cadence jobs show 1
    """
    repository = _get_repository()
    job = _get_job_or_exit(repository, job_id)
    data = job.to_dict()

    if _json_output():
        console.print_json(json.dumps(data))
        return

    table = Table(title=f"Job {job.id}: {job.name}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    for key, value in data.items():
        if isinstance(value, dict):
            value = json.dumps(value)
        table.add_row(key, "" if value is None else str(value))

    console.print(table)


@app.command("create")
def create_job(
    name: str = typer.Option(..., "--name", "-n", help="Job name."),
    service: str = typer.Option(
        ...,
        "--service",
        "-s",
        help="Target name (registered name or module attribute).",
    ),
    method: str = typer.Option(..., "--method", "-m", help="Operation to call on the target."),
    schedule: str = typer.Option(
        ...,
        "--schedule",
        help="Cron schedule expression (e.g., '*/5 * * * *').",
    ),
    path: Optional[str] = typer.Option(
        None,
        "--path",
        "-p",
        help="Explicit target module (dotted) or file path.",
    ),
    params: Optional[str] = typer.Option(
        None,
        "--params",
        help="JSON object passed to the operation.",
    ),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Job description."),
    max_retries: Optional[int] = typer.Option(None, "--max-retries", min=0, help="Retries after a failure."),
    retry_delay: Optional[int] = typer.Option(None, "--retry-delay", min=0, help="Seconds between retries."),
    timeout: Optional[int] = typer.Option(None, "--timeout", min=1, help="Seconds before an attempt times out."),
    disabled: bool = typer.Option(False, "--disabled", help="Create the job disabled."),
) -> None:
    """Create a new scheduled job.

    Example:
        cadence jobs create --name cleanup --service CleanupService \\
            --method run --schedule "0 0 * * *"
        cadence jobs create -n report -s ReportService -m build \\
            --schedule "*/30 * * * *" --path myapp.reports --params '{"days": 7}'
    """
    from cadence_cli.config import get_config
    from cadence_cli.scheduler.schedule import describe_schedule, is_valid_cron

    if not is_valid_cron(schedule):
        console.print(f"[red]Invalid cron expression: {schedule}[/red]")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    job_params: dict = {}
    if params:
        try:
            job_params = json.loads(params)
        except json.JSONDecodeError as e:
            console.print(f"[red]Invalid --params JSON: {e}[/red]")
            raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)
        if not isinstance(job_params, dict):
            console.print("[red]--params must be a JSON object[/red]")
            raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    defaults = get_config().jobs
    repository = _get_repository()
    job = repository.create(
        name=name,
        description=description,
        service_name=service,
        service_method=method,
        service_path=path,
        params=job_params,
        schedule=schedule,
        enabled=not disabled,
        max_retries=defaults.max_retries if max_retries is None else max_retries,
        retry_delay=defaults.retry_delay if retry_delay is None else retry_delay,
        timeout=defaults.timeout if timeout is None else timeout,
    )

    console.print(f"[green]✓[/green] Job created: {job.id}")
    console.print(f"  Target: {service}.{method}")
    console.print(f"  Schedule: {schedule} ({describe_schedule(schedule)})")
    if disabled:
        console.print("  [yellow]Job is disabled[/yellow]")


def _set_enabled(job_id: int, enabled: bool) -> None:
    repository = _get_repository()
    job = _get_job_or_exit(repository, job_id)
    repository.set_enabled(job_id, enabled)

    state = "enabled" if enabled else "disabled"
    console.print(f"[green]✓[/green] Job {state}: {job.name} ({job_id})")
    console.print("[dim]Run 'cadence jobs reload' to apply to a running daemon[/dim]")


@app.command("enable")
def enable_job(
    job_id: int = typer.Argument(..., help="ID of the job to enable."),
) -> None:
    """Enable a job.

    Example:
        cadence jobs enable 1
    """
    _set_enabled(job_id, True)


@app.command("disable")
def disable_job(
    job_id: int = typer.Argument(..., help="ID of the job to disable."),
) -> None:
    """Disable a job. The sweep never picks up disabled jobs.

    Example:
        cadence jobs disable 1
    """
    _set_enabled(job_id, False)


@app.command("run")
def run_job(
    job_id: int = typer.Argument(..., help="ID of the job to run immediately."),
) -> None:
    """Run a job immediately (outside of schedule).

    The job runs in this process with its retry policy and the outcome
    is recorded like a scheduled run. This process does not share the
    daemon's running set, so it is not blocked by an execution the daemon
    already has in flight.

    Example:
        cadence jobs run 1
    """
    from cadence_cli.config import get_config
    from cadence_cli.database.models import JobStatus
    from cadence_cli.scheduler.exceptions import JobNotFoundError
    from cadence_cli.scheduler.job_executor import JobExecutor
    from cadence_cli.scheduler.job_scheduler import JobScheduler
    from cadence_cli.scheduler.registry import TargetRegistry

    config = get_config()
    repository = _get_repository()
    job = _get_job_or_exit(repository, job_id)

    registry = TargetRegistry()
    registry.discover_entry_points()
    scheduler = JobScheduler(
        repository,
        JobExecutor(registry=registry, loader_config=config.loader),
        config.scheduler,
    )

    console.print(f"[bold]Running job:[/bold] {job.name}")
    if job.is_running():
        console.print(
            "[yellow]![/yellow] Job is marked running, "
            "this run may overlap an execution in the daemon"
        )

    try:
        result = asyncio.run(scheduler.run_job_now(job_id))
    except JobNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=ExitCode.NOT_FOUND)

    if _json_output():
        console.print_json(json.dumps(result.to_dict(), default=str))
    elif result.success:
        console.print(f"[green]✓[/green] Job completed in {result.duration}ms")
        if result.result is not None:
            console.print(f"  Result: {escape(str(result.result))}")
    else:
        console.print(
            f"[red]✗[/red] Job failed ({result.status.value}): {escape(result.error or '')}"
        )

    if not result.success:
        code = ExitCode.TIMEOUT if result.status == JobStatus.TIMEOUT else ExitCode.EXECUTION_ERROR
        raise typer.Exit(code=code)


@app.command("reset")
def reset_job(
    job_id: int = typer.Argument(..., help="ID of the job to reset."),
) -> None:
    """Reset a job's run statistics and last-run fields.

    Example:
        cadence jobs reset 1
    """
    repository = _get_repository()
    job = _get_job_or_exit(repository, job_id)
    repository.reset_statistics(job_id)
    console.print(f"[green]✓[/green] Statistics reset: {job.name} ({job_id})")


@app.command("delete")
def delete_job(
    job_id: int = typer.Argument(..., help="ID of the job to delete."),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Skip confirmation prompt.",
    ),
) -> None:
    """Delete a scheduled job.

    Example:
        cadence jobs delete 1
        cadence jobs delete 1 --force
    """
    repository = _get_repository()
    job = _get_job_or_exit(repository, job_id)

    if not force:
        confirm = typer.confirm(f"Delete job '{job.name}' ({job.id})?")
        if not confirm:
            raise typer.Abort()

    repository.delete(job_id)
    console.print(f"[green]✓[/green] Job deleted: {job_id}")


@app.command("reload")
def reload_jobs() -> None:
    """Ask the running daemon to re-read job definitions.

    Example:
        cadence jobs reload
    """
    import os
    import signal

    from cadence_cli.config import get_config
    from cadence_cli.daemon.pid import PIDFile, default_pid_path

    if not hasattr(signal, "SIGHUP"):
        console.print("[red]Reload is not supported on this platform[/red]")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    pid_file = PIDFile(default_pid_path(get_config()))
    pid = pid_file.get_pid()
    if pid is None:
        console.print("[yellow]Daemon is not running; changes apply on next start[/yellow]")
        raise typer.Exit(code=ExitCode.NOT_FOUND)

    try:
        os.kill(pid, signal.SIGHUP)
    except PermissionError:
        console.print(f"[red]Permission denied: cannot signal process {pid}[/red]")
        raise typer.Exit(code=ExitCode.PERMISSION_DENIED)

    console.print(f"[green]✓[/green] Reload requested (PID: {pid})")


@app.command("due")
def due_jobs() -> None:
    """List jobs the next sweep would pick up.

    Example:
        cadence jobs due
    """
    from cadence_cli.database.models import utcnow

    repository = _get_repository()
    jobs = repository.find_ready_to_run(utcnow())

    if _json_output():
        console.print_json(json.dumps([job.to_dict() for job in jobs]))
        return

    if not jobs:
        console.print("[green]No jobs are due[/green]")
        return

    console.print(_jobs_table(jobs, "Due Jobs"))
