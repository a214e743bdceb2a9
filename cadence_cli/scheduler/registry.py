"""Target registry and filesystem discovery for job targets.

A job names its target by ``service_name`` and the operation to call by
``service_method``. Targets are resolved from:
- Factories registered explicitly on a TargetRegistry
- Entry points (installed packages) in the ``cadence_cli.targets`` group
- A legacy filesystem layout searched by TargetDiscovery
"""

import importlib
import importlib.util
import logging
import sys
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Dict, List, Optional

from cadence_cli.config import LoaderConfig
from cadence_cli.scheduler.exceptions import TargetNotFoundError

logger = logging.getLogger(__name__)

# A factory builds a fresh target instance per execution
TargetFactory = Callable[[], Any]

_SOURCE_SUFFIXES = (".pyc", ".py")


class TargetRegistry:
    """Registry of named target factories.

    Example:
        registry = TargetRegistry()
        registry.register("CleanupService", CleanupService)

        factory = registry.get("CleanupService")
        service = factory()
    """

    # Entry point group for installed targets
    ENTRY_POINT_GROUP = "cadence_cli.targets"

    def __init__(self) -> None:
        self._factories: Dict[str, TargetFactory] = {}

    def register(self, name: str, factory: TargetFactory) -> None:
        """Register a factory under a target name.

        Args:
            name: Target name jobs refer to via ``service_name``
            factory: Zero-argument callable returning a target instance

        Raises:
            TypeError: If the factory is not callable
        """
        if not callable(factory):
            raise TypeError(f"Factory for target '{name}' is not callable")
        if name in self._factories:
            logger.warning(f"Replacing registered target: {name}")
        self._factories[name] = factory
        logger.debug(f"Registered target: {name}")

    def unregister(self, name: str) -> bool:
        """Remove a target.

        Returns:
            True if the target was registered
        """
        return self._factories.pop(name, None) is not None

    def get(self, name: str) -> Optional[TargetFactory]:
        return self._factories.get(name)

    @property
    def names(self) -> List[str]:
        """Names of all registered targets, sorted."""
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories

    def __len__(self) -> int:
        return len(self._factories)

    def discover_entry_points(self) -> int:
        """Register targets published by installed packages.

        Entry points that fail to load are logged and skipped.

        Returns:
            Number of targets registered
        """
        from importlib.metadata import entry_points

        registered = 0
        for ep in entry_points(group=self.ENTRY_POINT_GROUP):
            try:
                factory = ep.load()
            except Exception as e:
                logger.warning(f"Failed to load target entry point '{ep.name}': {e}")
                continue

            if not callable(factory):
                logger.warning(f"Target entry point '{ep.name}' is not callable, skipping")
                continue

            self._factories[ep.name] = factory
            registered += 1

        if registered:
            logger.info(f"Discovered {registered} target(s) from entry points")
        return registered


class TargetDiscovery:
    """Resolve targets from files laid out by convention.

    Explicit ``service_path`` values are either dotted module paths
    (``myapp.services.cleanup``) or file paths relative to the artifact or
    source roots of the project. Without a path, each category directory is
    searched for ``<service_name>.pyc`` then ``<service_name>.py``, artifact
    roots before source roots. A category ending in ``/**`` is searched
    recursively.

    The module attribute named after the target is its factory.
    """

    def __init__(self, config: Optional[LoaderConfig] = None) -> None:
        self._config = config or LoaderConfig()

    @property
    def project_root(self) -> Path:
        return Path(self._config.project_root or Path.cwd())

    @property
    def roots(self) -> List[Path]:
        """Search roots, compiled artifacts first."""
        names = list(self._config.artifact_roots) + list(self._config.source_roots)
        return [self.project_root / name for name in names]

    def load_factory(self, service_name: str, service_path: Optional[str] = None) -> TargetFactory:
        """Load the factory for a target.

        Args:
            service_name: Target name, also the factory attribute name
            service_path: Optional explicit module or file path

        Returns:
            The factory callable

        Raises:
            TargetNotFoundError: If the module or its factory attribute is missing
        """
        if service_path:
            module = self._load_explicit(service_name, service_path)
        else:
            module = self._load_module(service_name, self.find(service_name))

        factory = getattr(module, service_name, None)
        if factory is None or not callable(factory):
            raise TargetNotFoundError(
                f"Target '{service_name}' not found in module '{module.__name__}'",
                service_name=service_name,
                service_path=service_path,
            )
        return factory

    def find(self, service_name: str) -> Path:
        """Search the conventional locations for a target file.

        Raises:
            TargetNotFoundError: If no location holds the target
        """
        for category in self._config.categories:
            recursive = category.endswith("/**")
            directory = category[:-3] if recursive else category

            for root in self.roots:
                base = root / directory
                if not base.is_dir():
                    continue
                for suffix in _SOURCE_SUFFIXES:
                    filename = f"{service_name}{suffix}"
                    matches = sorted(base.rglob(filename)) if recursive else [base / filename]
                    for match in matches:
                        if match.is_file():
                            logger.debug(f"Discovered target '{service_name}' at {match}")
                            return match

        raise TargetNotFoundError(
            f"Target '{service_name}' not found. Provide 'service_path' for the job.",
            service_name=service_name,
        )

    def resolve_path(self, service_path: str) -> Path:
        """Resolve an explicit file path against the search roots.

        Absolute paths are used as-is. A path without a suffix is tried
        with ``.pyc`` then ``.py``.

        Raises:
            TargetNotFoundError: If the file exists under no root
        """
        candidate = Path(service_path)
        suffixes = ("",) if candidate.suffix in _SOURCE_SUFFIXES else _SOURCE_SUFFIXES

        bases = [candidate] if candidate.is_absolute() else [root / candidate for root in self.roots]
        for base in bases:
            for suffix in suffixes:
                path = base.with_name(base.name + suffix) if suffix else base
                if path.is_file():
                    return path

        raise TargetNotFoundError(
            f"Target file not found: {service_path}",
            service_path=service_path,
        )

    def _load_explicit(self, service_name: str, service_path: str) -> ModuleType:
        if self._is_dotted(service_path):
            try:
                return importlib.import_module(service_path)
            except ImportError as e:
                raise TargetNotFoundError(
                    f"Cannot import target module '{service_path}': {e}",
                    service_name=service_name,
                    service_path=service_path,
                ) from e
        return self._load_module(service_name, self.resolve_path(service_path))

    @staticmethod
    def _is_dotted(service_path: str) -> bool:
        return (
            "/" not in service_path
            and "\\" not in service_path
            and not service_path.endswith(_SOURCE_SUFFIXES)
            and all(part.isidentifier() for part in service_path.split("."))
        )

    def _load_module(self, service_name: str, path: Path) -> ModuleType:
        """Load a module from a source or bytecode file."""
        module_name = f"cadence_targets.{service_name}"
        spec = importlib.util.spec_from_file_location(module_name, path)

        if not spec or not spec.loader:
            raise TargetNotFoundError(
                f"Cannot load target module from {path}",
                service_name=service_name,
                service_path=str(path),
            )

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception:
            sys.modules.pop(module_name, None)
            raise

        return module
