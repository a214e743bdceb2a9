"""Cadence config command - Configuration management."""

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table
from rich.markup import escape
from rich.syntax import Syntax

from cadence_cli.cli.exit_codes import ExitCode

app = typer.Typer(help="Manage Cadence configuration.")
console = Console()


def _config_dir() -> Path:
    import os

    from cadence_cli.config import CONFIG_DIR

    return Path(os.environ.get("CADENCE_CONFIG_DIR", CONFIG_DIR))


@app.command("show")
def show_config(
    section: Optional[str] = typer.Argument(
        None,
        help="Configuration section to show (scheduler, jobs, loader, logging, paths).",
    ),
    format: str = typer.Option(
        "table",
        "--format",
        "-f",
        help="Output format (table, yaml, json).",
    ),
) -> None:
    """Show current configuration.

    Example:
        cadence config show
        cadence config show scheduler
        cadence config show --format yaml
    """
    from cadence_cli.config import get_config, export_config_yaml, export_config_json

    config = get_config()

    if format == "yaml":
        console.print(Syntax(export_config_yaml(config), "yaml", theme="monokai"))
        return
    elif format == "json":
        console.print(Syntax(export_config_json(config), "json", theme="monokai"))
        return
    elif format != "table":
        console.print(f"[red]Unknown format: {format}[/red]")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    sections = {
        "scheduler": [
            ("enabled", str(config.scheduler.enabled)),
            ("check_interval_ms", str(config.scheduler.check_interval_ms)),
            ("max_concurrent", str(config.scheduler.max_concurrent)),
            ("auto_start", str(config.scheduler.auto_start)),
            ("stuck_job_threshold", f"{config.scheduler.stuck_job_threshold} min"),
            ("stuck_check_interval", f"{config.scheduler.stuck_check_interval} s"),
            ("misfire_grace_time", f"{config.scheduler.misfire_grace_time} s"),
        ],
        "jobs": [
            ("max_retries", str(config.jobs.max_retries)),
            ("retry_delay", f"{config.jobs.retry_delay} s"),
            ("timeout", f"{config.jobs.timeout} s"),
        ],
        "loader": [
            ("project_root", str(config.loader.project_root or Path.cwd())),
            ("artifact_roots", ", ".join(config.loader.artifact_roots)),
            ("source_roots", ", ".join(config.loader.source_roots)),
            ("categories", ", ".join(config.loader.categories)),
        ],
        "logging": [
            ("level", config.logging.level),
            ("format", config.logging.format),
            ("file", str(config.logging.file) if config.logging.file else ""),
        ],
        "paths": [
            ("config_dir", str(config.config_dir)),
            ("data_dir", str(config.data_dir)),
            ("database_url", config.database_url),
        ],
    }

    if section and section not in sections:
        console.print(f"[red]Unknown section: {section}[/red]")
        console.print(f"Available: {', '.join(sections)}")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    console.print("[bold]Cadence Configuration[/bold]")
    console.print()

    for sec in [section] if section else sections:
        table = Table(title=sec.capitalize())
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")

        for key, value in sections[sec]:
            table.add_row(key, value)

        console.print(table)
        console.print()


@app.command("init")
def init_config(
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration.",
    ),
    interactive: bool = typer.Option(
        True,
        "--interactive/--no-interactive",
        "-i/-I",
        help="Prompt for the main scheduler settings.",
    ),
) -> None:
    """Initialize Cadence configuration.

    Example:
        cadence config init
        cadence config init --no-interactive
        cadence config init --force
    """
    import os

    from cadence_cli.config import (
        CONFIG_FILE, DEFAULT_DATA_DIR, CadenceConfig, save_config, ensure_directories
    )

    config_dir = _config_dir()
    config_path = config_dir / CONFIG_FILE

    if config_path.exists() and not force:
        console.print(f"[yellow]Configuration already exists at {config_path}[/yellow]")
        console.print("Use --force to overwrite")
        raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    console.print("[bold]Initializing Cadence configuration...[/bold]")
    console.print()

    config = CadenceConfig(
        config_dir=config_dir,
        data_dir=Path(os.environ.get("CADENCE_DATA_DIR", DEFAULT_DATA_DIR)),
    )

    if interactive:
        console.print("[bold cyan]Scheduler Configuration[/bold cyan]")
        config.scheduler.max_concurrent = typer.prompt(
            "  Max concurrent jobs",
            default=config.scheduler.max_concurrent,
            type=int,
        )
        config.scheduler.check_interval_ms = typer.prompt(
            "  Due-job check interval (ms)",
            default=config.scheduler.check_interval_ms,
            type=int,
        )
        config.scheduler.stuck_job_threshold = typer.prompt(
            "  Stuck job threshold (minutes)",
            default=config.scheduler.stuck_job_threshold,
            type=int,
        )

        console.print()
        console.print("[bold cyan]Job Defaults[/bold cyan]")
        config.jobs.max_retries = typer.prompt(
            "  Max retries", default=config.jobs.max_retries, type=int
        )
        config.jobs.timeout = typer.prompt(
            "  Timeout (seconds)", default=config.jobs.timeout, type=int
        )

        console.print()
        console.print("[bold cyan]Logging Configuration[/bold cyan]")
        log_level = typer.prompt("  Log level", default=config.logging.level)
        config.logging.level = log_level.upper()

    ensure_directories(config)
    save_config(config, config_path)

    # Owner read/write only
    config_path.chmod(0o600)

    console.print()
    console.print(f"[green]✓[/green] Configuration initialized at {config_path}")


@app.command("path")
def config_path() -> None:
    """Show configuration file path.

    Example:
        cadence config path
    """
    from cadence_cli.config import CONFIG_FILE

    config_dir = _config_dir()
    config_file_path = config_dir / CONFIG_FILE
    console.print(f"[bold]Config directory:[/bold] {config_dir}")
    console.print(f"[bold]Config file:[/bold] {config_file_path}")
    console.print(f"[bold]Exists:[/bold] {config_file_path.exists()}")


@app.command("validate")
def validate_config() -> None:
    """Validate current configuration.

    Example:
        cadence config validate
    """
    from cadence_cli.config import CONFIG_FILE, get_config, validate_config as do_validate

    config = get_config()
    config_file_path = _config_dir() / CONFIG_FILE

    console.print("[bold]Validating configuration...[/bold]")
    console.print()

    if config_file_path.exists():
        console.print(f"  [green]✓[/green] Config file exists [dim]({config_file_path})[/dim]")
    else:
        console.print("  [yellow]![/yellow] No config file, using defaults")

    all_passed = True
    errors = do_validate(config)

    if errors:
        console.print()
        console.print("[bold yellow]Validation Results:[/bold yellow]")
        for error in errors:
            if error.severity == "error":
                status = "[red]✗[/red]"
                all_passed = False
            else:
                status = "[yellow]![/yellow]"
            console.print(f"  {status} {escape(str(error))}")

    console.print()
    if all_passed:
        console.print("[green]Configuration is valid[/green]")
    else:
        console.print("[red]Configuration has errors[/red]")
        raise typer.Exit(code=ExitCode.CONFIGURATION_ERROR)
