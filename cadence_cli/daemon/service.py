"""Main daemon service for Cadence CLI.

This module provides the core daemon functionality including:
- Wiring the database, executor and scheduler from configuration
- Signal handling for graceful shutdown
- Background daemon mode with process forking
"""

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from cadence_cli.config import CadenceConfig
from cadence_cli.database.connection import Database
from cadence_cli.database.repositories import JobRepository
from cadence_cli.scheduler.job_executor import JobExecutor
from cadence_cli.scheduler.job_scheduler import JobScheduler
from cadence_cli.scheduler.registry import TargetRegistry

logger = logging.getLogger(__name__)


class CadenceDaemon:
    """Long-running scheduler service.

    Builds the job repository, executor and scheduler from configuration
    and manages their lifecycle.

    Example:
        daemon = CadenceDaemon(config)

        await daemon.start()
        await daemon.run_until_shutdown()
        await daemon.stop()
    """

    def __init__(
        self,
        config: CadenceConfig,
        registry: Optional[TargetRegistry] = None,
        database: Optional[Database] = None,
    ):
        """Initialize the daemon service.

        Args:
            config: Cadence configuration
            registry: Target registry (entry points are discovered into it)
            database: Database handle (built from config if omitted)
        """
        self._config = config
        self._registry = registry or TargetRegistry()
        self._database = database
        self._owns_database = database is None
        self._scheduler: Optional[JobScheduler] = None
        self._running = False
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start the daemon services.

        Creates the tables, discovers installed targets and starts the
        scheduler.
        """
        logger.info("Starting Cadence daemon...")

        if self._database is None:
            self._database = Database.from_config(self._config)
        self._database.create_tables()

        self._registry.discover_entry_points()
        logger.info(f"Target registry has {len(self._registry)} target(s)")

        executor = JobExecutor(
            registry=self._registry,
            loader_config=self._config.loader,
        )
        self._scheduler = JobScheduler(
            JobRepository(self._database),
            executor,
            self._config.scheduler,
        )

        await self._scheduler.start()

        self._running = True
        logger.info("Cadence daemon started successfully")

    async def stop(self) -> None:
        """Stop the daemon services.

        In-flight executions are not awaited.
        """
        logger.info("Stopping Cadence daemon...")

        self._running = False

        if self._scheduler:
            try:
                await self._scheduler.stop()
            except Exception as e:
                logger.warning(f"Error stopping scheduler: {e}")

        if self._database is not None and self._owns_database:
            self._database.dispose()

        logger.info("Cadence daemon stopped")

    async def run_until_shutdown(self) -> None:
        """Block until request_shutdown() is called."""
        await self._shutdown_event.wait()

    def reload(self) -> int:
        """Re-read job definitions and re-register their triggers.

        Returns:
            Number of jobs scheduled after the reload
        """
        if not self._scheduler:
            return 0
        try:
            return self._scheduler.reload_all_jobs()
        except Exception as e:
            logger.error(f"Failed to reload jobs: {e}")
            return 0

    def request_shutdown(self) -> None:
        """Request daemon shutdown.

        This sets the shutdown event, which will cause run_until_shutdown()
        to return and allow the daemon to stop gracefully.
        """
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def registry(self) -> TargetRegistry:
        return self._registry

    @property
    def scheduler(self) -> Optional[JobScheduler]:
        """Get the job scheduler instance.

        Returns:
            The job scheduler, or None if not started
        """
        return self._scheduler


async def run_daemon(
    config: CadenceConfig,
    options: Optional[Dict[str, Any]] = None,
    registry: Optional[TargetRegistry] = None,
) -> None:
    """Run the Cadence daemon with signal handling.

    Args:
        config: Cadence configuration
        options: Daemon options including:
            - max_concurrent: Override for the concurrency ceiling
            - check_interval_ms: Override for the sweep interval
        registry: Target registry with pre-registered targets

    Example:
        await run_daemon(config, {"max_concurrent": 3})
    """
    options = options or {}
    if options.get("max_concurrent"):
        config.scheduler.max_concurrent = options["max_concurrent"]
    if options.get("check_interval_ms"):
        config.scheduler.check_interval_ms = options["check_interval_ms"]

    daemon = CadenceDaemon(config, registry=registry)

    loop = asyncio.get_running_loop()

    def handle_signal(sig: signal.Signals) -> None:
        logger.info(f"Received signal {sig.name}, initiating shutdown...")
        daemon.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda signum, frame: handle_signal(signal.Signals(signum)))

    # SIGHUP reloads job definitions (sent by `cadence jobs reload`)
    if hasattr(signal, "SIGHUP"):
        try:
            loop.add_signal_handler(signal.SIGHUP, daemon.reload)
        except NotImplementedError:
            pass

    try:
        await daemon.start()
        await daemon.run_until_shutdown()
    finally:
        await daemon.stop()


def daemonize(log_file: Optional[Path] = None) -> None:
    """Fork process to run as daemon.

    Forks twice and redirects the standard file descriptors to the log
    file (or /dev/null).

    Args:
        log_file: Path to log file for stdout/stderr redirection.

    Note:
        Unix only. On Windows this returns without doing anything.
    """
    if sys.platform == "win32":
        logger.warning("Daemon mode not supported on Windows")
        return

    # First fork
    pid = os.fork()
    if pid > 0:
        sys.exit(0)

    os.setsid()

    # Second fork
    pid = os.fork()
    if pid > 0:
        sys.exit(0)

    sys.stdout.flush()
    sys.stderr.flush()

    with open(os.devnull, "r") as devnull:
        os.dup2(devnull.fileno(), sys.stdin.fileno())

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        with open(log_file, "a+") as f:
            os.dup2(f.fileno(), sys.stdout.fileno())
            os.dup2(f.fileno(), sys.stderr.fileno())
    else:
        with open(os.devnull, "a+") as devnull:
            os.dup2(devnull.fileno(), sys.stdout.fileno())
            os.dup2(devnull.fileno(), sys.stderr.fileno())

    logger.info(f"Daemon process started (PID: {os.getpid()})")
