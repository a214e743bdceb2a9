"""Tests for target registry and filesystem discovery."""

import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from cadence_cli.config import LoaderConfig
from cadence_cli.scheduler.exceptions import TargetNotFoundError
from cadence_cli.scheduler.registry import TargetDiscovery, TargetRegistry

TARGET_SOURCE = '''
class {name}:
    def run(self, params):
        return {{"source": "{label}", "params": params}}
'''


def _write_target(path: Path, name: str, label: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(TARGET_SOURCE.format(name=name, label=label))
    return path


class FakeService:
    def run(self, params):
        return "ok"


class TestTargetRegistry:
    """Tests for TargetRegistry."""

    def test_register_and_get(self) -> None:
        registry = TargetRegistry()
        registry.register("FakeService", FakeService)

        assert registry.get("FakeService") is FakeService
        assert "FakeService" in registry
        assert len(registry) == 1

    def test_get_missing(self) -> None:
        assert TargetRegistry().get("Missing") is None

    def test_register_non_callable(self) -> None:
        registry = TargetRegistry()
        with pytest.raises(TypeError, match="not callable"):
            registry.register("Broken", "not a factory")  # type: ignore[arg-type]

    def test_register_replaces(self, caplog) -> None:
        registry = TargetRegistry()
        registry.register("FakeService", FakeService)

        replacement = lambda: FakeService()  # noqa: E731
        with caplog.at_level(logging.WARNING):
            registry.register("FakeService", replacement)

        assert registry.get("FakeService") is replacement
        assert "Replacing registered target" in caplog.text

    def test_unregister(self) -> None:
        registry = TargetRegistry()
        registry.register("FakeService", FakeService)

        assert registry.unregister("FakeService") is True
        assert registry.unregister("FakeService") is False
        assert "FakeService" not in registry

    def test_names_sorted(self) -> None:
        registry = TargetRegistry()
        registry.register("b", FakeService)
        registry.register("a", FakeService)

        assert registry.names == ["a", "b"]

    def test_discover_entry_points(self) -> None:
        good = MagicMock()
        good.name = "GoodService"
        good.load.return_value = FakeService

        broken = MagicMock()
        broken.name = "BrokenService"
        broken.load.side_effect = ImportError("missing dependency")

        not_callable = MagicMock()
        not_callable.name = "Constant"
        not_callable.load.return_value = 42

        with patch(
            "importlib.metadata.entry_points",
            return_value=[good, broken, not_callable],
        ) as mock_eps:
            registered = TargetRegistry().discover_entry_points()

        mock_eps.assert_called_once_with(group="cadence_cli.targets")
        assert registered == 1

    def test_discover_entry_points_registers_factory(self) -> None:
        ep = MagicMock()
        ep.name = "GoodService"
        ep.load.return_value = FakeService
        registry = TargetRegistry()

        with patch("importlib.metadata.entry_points", return_value=[ep]):
            registry.discover_entry_points()

        assert registry.get("GoodService") is FakeService


class TestTargetDiscovery:
    """Tests for the conventional filesystem layout."""

    @pytest.fixture
    def discovery(self, tmp_path: Path) -> TargetDiscovery:
        return TargetDiscovery(LoaderConfig(project_root=tmp_path))

    def test_roots_order(self, discovery: TargetDiscovery, tmp_path: Path) -> None:
        assert discovery.roots == [tmp_path / "build", tmp_path / "dist", tmp_path / "src"]

    def test_project_root_defaults_to_cwd(self) -> None:
        assert TargetDiscovery().project_root == Path.cwd()

    def test_find_in_services(self, discovery: TargetDiscovery, tmp_path: Path) -> None:
        path = _write_target(tmp_path / "src" / "services" / "ReportService.py", "ReportService", "src")

        assert discovery.find("ReportService") == path

    def test_find_recursive_use_cases(self, discovery: TargetDiscovery, tmp_path: Path) -> None:
        path = _write_target(
            tmp_path / "src" / "use_cases" / "reports" / "weekly" / "ReportService.py",
            "ReportService",
            "nested",
        )

        assert discovery.find("ReportService") == path

    def test_find_prefers_artifact_roots(self, discovery: TargetDiscovery, tmp_path: Path) -> None:
        _write_target(tmp_path / "src" / "services" / "ReportService.py", "ReportService", "src")
        built = _write_target(tmp_path / "dist" / "services" / "ReportService.py", "ReportService", "dist")

        assert discovery.find("ReportService") == built

    def test_find_prefers_earlier_category(self, discovery: TargetDiscovery, tmp_path: Path) -> None:
        use_case = _write_target(
            tmp_path / "src" / "use_cases" / "ReportService.py", "ReportService", "use_case"
        )
        _write_target(tmp_path / "build" / "core" / "services" / "ReportService.py", "ReportService", "core")

        assert discovery.find("ReportService") == use_case

    def test_find_missing(self, discovery: TargetDiscovery) -> None:
        with pytest.raises(TargetNotFoundError, match="service_path"):
            discovery.find("Missing")

    def test_load_factory_by_search(self, discovery: TargetDiscovery, tmp_path: Path) -> None:
        _write_target(tmp_path / "src" / "services" / "ReportService.py", "ReportService", "src")

        factory = discovery.load_factory("ReportService")

        assert factory().run({"a": 1}) == {"source": "src", "params": {"a": 1}}

    def test_load_factory_explicit_file(self, discovery: TargetDiscovery, tmp_path: Path) -> None:
        _write_target(tmp_path / "src" / "custom" / "reports.py", "ReportService", "explicit")

        factory = discovery.load_factory("ReportService", "custom/reports.py")

        assert factory().run({})["source"] == "explicit"

    def test_load_factory_explicit_file_without_suffix(
        self, discovery: TargetDiscovery, tmp_path: Path
    ) -> None:
        _write_target(tmp_path / "build" / "custom" / "reports.py", "ReportService", "built")

        factory = discovery.load_factory("ReportService", "custom/reports")

        assert factory().run({})["source"] == "built"

    def test_load_factory_absolute_path(self, discovery: TargetDiscovery, tmp_path: Path) -> None:
        path = _write_target(tmp_path / "elsewhere" / "reports.py", "ReportService", "absolute")

        factory = discovery.load_factory("ReportService", str(path))

        assert factory().run({})["source"] == "absolute"

    def test_load_factory_dotted_module(self, discovery: TargetDiscovery) -> None:
        factory = discovery.load_factory("OrderedDict", "collections")

        assert factory() == {}

    def test_load_factory_dotted_module_missing(self, discovery: TargetDiscovery) -> None:
        with pytest.raises(TargetNotFoundError, match="Cannot import"):
            discovery.load_factory("Thing", "no_such_package.targets")

    def test_load_factory_missing_file(self, discovery: TargetDiscovery) -> None:
        with pytest.raises(TargetNotFoundError, match="not found"):
            discovery.load_factory("ReportService", "custom/missing.py")

    def test_load_factory_missing_attribute(self, discovery: TargetDiscovery, tmp_path: Path) -> None:
        _write_target(tmp_path / "src" / "services" / "ReportService.py", "OtherName", "src")

        with pytest.raises(TargetNotFoundError, match="not found in module"):
            discovery.load_factory("ReportService")
