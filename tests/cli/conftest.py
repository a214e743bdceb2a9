"""Fixtures for CLI command tests."""

from pathlib import Path

import pytest

from cadence_cli.config import CadenceConfig, clear_config_cache, set_config
from cadence_cli.database.connection import reset_database_handle


@pytest.fixture
def cli_config(tmp_path: Path) -> CadenceConfig:
    """Install a throwaway global configuration backed by a file database."""
    config = CadenceConfig(
        config_dir=tmp_path / "config",
        data_dir=tmp_path / "data",
    )
    config.loader.project_root = tmp_path / "project"
    config.jobs.retry_delay = 0
    config.data_dir.mkdir(parents=True)

    reset_database_handle()
    set_config(config)
    yield config
    reset_database_handle()
    clear_config_cache()
