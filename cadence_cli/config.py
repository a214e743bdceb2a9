"""
Cadence CLI Configuration Management.

Handles loading, saving, and validating configuration from various sources:
- Default values
- Configuration files (TOML)
- Environment variables
"""

from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, List

import yaml


# Configuration directory and file constants
CONFIG_DIR = Path.home() / ".config" / "cadence"
CONFIG_FILE = "config.toml"

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "cadence"
DEFAULT_CONFIG_FILE = "config.toml"
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "cadence"

_TRUE_VALUES = ("true", "1", "yes")


@dataclass
class ValidationError:
    """Validation error for configuration."""
    field: str
    message: str
    severity: str  # "error" or "warning"

    def __str__(self) -> str:
        return f"[{self.severity.upper()}] {self.field}: {self.message}"


@dataclass
class SchedulerConfig:
    """Configuration for the job scheduler."""

    # Scheduler settings
    enabled: bool = True
    check_interval_ms: int = 60000  # due-job sweep interval
    max_concurrent: int = 5
    auto_start: bool = False

    # Stuck-job reaper
    stuck_job_threshold: int = 30  # minutes
    stuck_check_interval: int = 300  # seconds

    # APScheduler tolerance for late cron ticks
    misfire_grace_time: int = 60 * 5  # seconds


@dataclass
class JobDefaultsConfig:
    """Defaults applied to jobs created without explicit values."""

    max_retries: int = 3
    retry_delay: int = 60  # seconds
    timeout: int = 300  # seconds


@dataclass
class LoaderConfig:
    """Configuration for legacy filesystem target discovery."""

    # Root that conventional locations are resolved against (cwd if None)
    project_root: Optional[Path] = None

    # Compiled-artifact roots are searched before source roots
    artifact_roots: list[str] = field(default_factory=lambda: ["build", "dist"])
    source_roots: list[str] = field(default_factory=lambda: ["src"])

    # Conventional categories; "**" suffix means recursive search
    categories: list[str] = field(
        default_factory=lambda: ["use_cases/**", "services", "core/services"]
    )


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[Path] = None


@dataclass
class CadenceConfig:
    """Main configuration container for Cadence CLI."""

    # Paths
    config_dir: Path = DEFAULT_CONFIG_DIR
    data_dir: Path = DEFAULT_DATA_DIR

    # Sub-configurations
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    jobs: JobDefaultsConfig = field(default_factory=JobDefaultsConfig)
    loader: LoaderConfig = field(default_factory=LoaderConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Database
    database_url: str = ""

    def __post_init__(self):
        """Initialize derived values."""
        if not self.database_url:
            self.database_url = f"sqlite:///{self.data_dir}/cadence.db"


def load_config(
    config_path: Optional[Path] = None,
    env_prefix: str = "CADENCE_"
) -> CadenceConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file
    3. Default values

    Args:
        config_path: Path to config file (default: ~/.config/cadence/config.toml)
        env_prefix: Prefix for environment variables

    Returns:
        Loaded configuration
    """
    config = CadenceConfig()
    derived_url = config.database_url

    # Determine config file path
    if config_path is None:
        # Check for environment variable override
        env_config_dir = os.environ.get(f"{env_prefix}CONFIG_DIR")
        if env_config_dir:
            config_path = Path(env_config_dir) / DEFAULT_CONFIG_FILE
        else:
            config_path = DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE

    # Load from file if exists
    if config_path.exists():
        config = _load_from_file(config_path, config)

    # Override with environment variables
    config = _load_from_env(config, env_prefix)

    # The default database follows data_dir unless a URL was given
    if config.database_url == derived_url:
        config.database_url = f"sqlite:///{config.data_dir}/cadence.db"

    return config


def _load_from_file(path: Path, config: CadenceConfig) -> CadenceConfig:
    """Load configuration from a TOML file."""
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)

        if "scheduler" in data:
            for key, value in data["scheduler"].items():
                if hasattr(config.scheduler, key):
                    setattr(config.scheduler, key, value)

        if "jobs" in data:
            for key, value in data["jobs"].items():
                if hasattr(config.jobs, key):
                    setattr(config.jobs, key, value)

        if "loader" in data:
            for key, value in data["loader"].items():
                if key == "project_root" and value:
                    config.loader.project_root = Path(value)
                elif hasattr(config.loader, key):
                    setattr(config.loader, key, value)

        if "logging" in data:
            for key, value in data["logging"].items():
                if key == "file" and value:
                    config.logging.file = Path(value)
                elif hasattr(config.logging, key):
                    setattr(config.logging, key, value)

        # Top-level settings
        if "config_dir" in data:
            config.config_dir = Path(data["config_dir"])
        if "data_dir" in data:
            config.data_dir = Path(data["data_dir"])
        if "database_url" in data:
            config.database_url = data["database_url"]

    except (OSError, tomllib.TOMLDecodeError) as e:
        print(f"Warning: Failed to load config from {path}: {e}")

    return config


def _load_from_env(config: CadenceConfig, prefix: str) -> CadenceConfig:
    """Load configuration from environment variables."""

    # Scheduler settings
    if env_val := os.environ.get(f"{prefix}SCHEDULER_ENABLED"):
        config.scheduler.enabled = env_val.lower() in _TRUE_VALUES
    if env_val := os.environ.get(f"{prefix}CHECK_INTERVAL_MS"):
        config.scheduler.check_interval_ms = int(env_val)
    if env_val := os.environ.get(f"{prefix}MAX_CONCURRENT"):
        config.scheduler.max_concurrent = int(env_val)
    if env_val := os.environ.get(f"{prefix}AUTO_START"):
        config.scheduler.auto_start = env_val.lower() in _TRUE_VALUES
    if env_val := os.environ.get(f"{prefix}STUCK_JOB_THRESHOLD"):
        config.scheduler.stuck_job_threshold = int(env_val)

    # Loader settings
    if env_val := os.environ.get(f"{prefix}PROJECT_ROOT"):
        config.loader.project_root = Path(env_val)

    # Logging settings
    if env_val := os.environ.get(f"{prefix}LOG_LEVEL"):
        config.logging.level = env_val.upper()

    # Paths
    if env_val := os.environ.get(f"{prefix}CONFIG_DIR"):
        config.config_dir = Path(env_val)
    if env_val := os.environ.get(f"{prefix}DATA_DIR"):
        config.data_dir = Path(env_val)
    if env_val := os.environ.get(f"{prefix}DATABASE_URL"):
        config.database_url = env_val

    return config


def _toml_list(values: list[str]) -> str:
    return "[" + ", ".join(f'"{v}"' for v in values) + "]"


def save_config(config: CadenceConfig, path: Optional[Path] = None) -> None:
    """
    Save configuration to a TOML file.

    Args:
        config: Configuration to save
        path: Path to save to (default: config.config_dir / config.toml)
    """
    if path is None:
        path = config.config_dir / DEFAULT_CONFIG_FILE

    # Ensure directory exists
    path.parent.mkdir(parents=True, exist_ok=True)

    # Build TOML content
    lines = [
        "# Cadence CLI Configuration",
        "# Generated automatically - edit with care",
        "",
        f'config_dir = "{config.config_dir}"',
        f'data_dir = "{config.data_dir}"',
        f'database_url = "{config.database_url}"',
        "",
        "[scheduler]",
        f"enabled = {str(config.scheduler.enabled).lower()}",
        f"check_interval_ms = {config.scheduler.check_interval_ms}",
        f"max_concurrent = {config.scheduler.max_concurrent}",
        f"auto_start = {str(config.scheduler.auto_start).lower()}",
        f"stuck_job_threshold = {config.scheduler.stuck_job_threshold}",
        f"stuck_check_interval = {config.scheduler.stuck_check_interval}",
        f"misfire_grace_time = {config.scheduler.misfire_grace_time}",
        "",
        "[jobs]",
        f"max_retries = {config.jobs.max_retries}",
        f"retry_delay = {config.jobs.retry_delay}",
        f"timeout = {config.jobs.timeout}",
        "",
        "[loader]",
    ]

    if config.loader.project_root:
        lines.append(f'project_root = "{config.loader.project_root}"')

    lines.extend([
        f"artifact_roots = {_toml_list(config.loader.artifact_roots)}",
        f"source_roots = {_toml_list(config.loader.source_roots)}",
        f"categories = {_toml_list(config.loader.categories)}",
        "",
        "[logging]",
        f'level = "{config.logging.level}"',
    ])

    if config.logging.file:
        lines.append(f'file = "{config.logging.file}"')

    with open(path, "w") as f:
        f.write("\n".join(lines) + "\n")


def ensure_directories(config: CadenceConfig) -> None:
    """Ensure all required directories exist."""
    config.config_dir.mkdir(parents=True, exist_ok=True)
    config.data_dir.mkdir(parents=True, exist_ok=True)


def get_default_config() -> CadenceConfig:
    """Get the default configuration."""
    return CadenceConfig()


# Global configuration instance (lazy-loaded)
_global_config: Optional[CadenceConfig] = None


def get_config() -> CadenceConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def set_config(config: CadenceConfig) -> None:
    """Set the global configuration instance."""
    global _global_config
    _global_config = config


def clear_config_cache() -> None:
    """Clear the global configuration cache."""
    global _global_config
    _global_config = None


def validate_config(config: Optional[CadenceConfig] = None) -> List[ValidationError]:
    """
    Validate configuration and return list of errors.

    Args:
        config: Configuration to validate (default: loaded from file)

    Returns:
        List of validation errors (empty if valid)
    """
    if config is None:
        config = load_config()

    errors: List[ValidationError] = []

    # Scheduler validation
    if config.scheduler.check_interval_ms < 1000:
        errors.append(ValidationError(
            field="scheduler.check_interval_ms",
            message="Check interval below 1000ms will hammer the database.",
            severity="warning"
        ))

    if config.scheduler.max_concurrent < 1:
        errors.append(ValidationError(
            field="scheduler.max_concurrent",
            message="At least one concurrent job is required.",
            severity="error"
        ))

    if config.scheduler.stuck_job_threshold < 1:
        errors.append(ValidationError(
            field="scheduler.stuck_job_threshold",
            message="Stuck job threshold must be at least 1 minute.",
            severity="error"
        ))

    # Job defaults validation
    if config.jobs.max_retries < 0:
        errors.append(ValidationError(
            field="jobs.max_retries",
            message="Max retries cannot be negative.",
            severity="error"
        ))

    if config.jobs.timeout <= 0:
        errors.append(ValidationError(
            field="jobs.timeout",
            message="Job timeout must be positive.",
            severity="error"
        ))

    if config.jobs.timeout >= config.scheduler.stuck_job_threshold * 60:
        errors.append(ValidationError(
            field="jobs.timeout",
            message=(
                "Job timeout is longer than the stuck job threshold; "
                "long runs will be reaped as stuck."
            ),
            severity="warning"
        ))

    # Loader validation
    if config.loader.project_root and not config.loader.project_root.exists():
        errors.append(ValidationError(
            field="loader.project_root",
            message=f"Project root does not exist: {config.loader.project_root}",
            severity="warning"
        ))

    # Path validation
    if not config.data_dir.exists():
        errors.append(ValidationError(
            field="data_dir",
            message=f"Data directory does not exist: {config.data_dir}",
            severity="warning"
        ))

    try:
        if config.data_dir.exists():
            test_file = config.data_dir / ".write_test"
            test_file.touch()
            test_file.unlink()
    except (PermissionError, OSError):
        errors.append(ValidationError(
            field="data_dir",
            message=f"Data directory is not writable: {config.data_dir}",
            severity="error"
        ))

    return errors


def _config_to_dict(config: CadenceConfig) -> dict[str, Any]:
    """
    Convert configuration to dictionary.

    Args:
        config: Configuration to convert

    Returns:
        Dictionary representation of config
    """
    return {
        "config_dir": str(config.config_dir),
        "data_dir": str(config.data_dir),
        "database_url": config.database_url,
        "scheduler": {
            "enabled": config.scheduler.enabled,
            "check_interval_ms": config.scheduler.check_interval_ms,
            "max_concurrent": config.scheduler.max_concurrent,
            "auto_start": config.scheduler.auto_start,
            "stuck_job_threshold": config.scheduler.stuck_job_threshold,
            "stuck_check_interval": config.scheduler.stuck_check_interval,
            "misfire_grace_time": config.scheduler.misfire_grace_time,
        },
        "jobs": {
            "max_retries": config.jobs.max_retries,
            "retry_delay": config.jobs.retry_delay,
            "timeout": config.jobs.timeout,
        },
        "loader": {
            "project_root": (
                str(config.loader.project_root) if config.loader.project_root else None
            ),
            "artifact_roots": list(config.loader.artifact_roots),
            "source_roots": list(config.loader.source_roots),
            "categories": list(config.loader.categories),
        },
        "logging": {
            "level": config.logging.level,
            "format": config.logging.format,
            "file": str(config.logging.file) if config.logging.file else None,
        },
    }


def export_config_yaml(config: CadenceConfig) -> str:
    """Export configuration as YAML string."""
    config_dict = _config_to_dict(config)
    return yaml.dump(config_dict, default_flow_style=False, sort_keys=False, allow_unicode=True)


def export_config_json(config: CadenceConfig) -> str:
    """Export configuration as JSON string."""
    config_dict = _config_to_dict(config)
    return json.dumps(config_dict, indent=2)
