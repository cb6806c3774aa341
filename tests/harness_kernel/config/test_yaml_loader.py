from __future__ import annotations

from pathlib import Path

import pytest

from harness_kernel.config import ConfigError, load_yaml_config, require_unique_names, require_variable


def test_load_yaml_config_returns_mapping(tmp_path: Path) -> None:
    # The raw mapping is returned untouched; typing happens in the app models.
    path = tmp_path / "harness.yml"
    path.write_text("version: 1\nservices:\n  core: []\n", encoding="utf-8")
    assert load_yaml_config(path) == {"version": 1, "services": {"core": []}}


def test_load_yaml_config_rejects_non_mapping_root(tmp_path: Path) -> None:
    # A list at the root is a config shape error, not a pydantic concern.
    path = tmp_path / "harness.yml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="mapping"):
        load_yaml_config(path)


def test_load_yaml_config_wraps_missing_file(tmp_path: Path) -> None:
    # A missing file surfaces as ConfigError, not OSError.
    with pytest.raises(ConfigError, match="Cannot read"):
        load_yaml_config(tmp_path / "missing.yml")


def test_load_yaml_config_wraps_yaml_errors(tmp_path: Path) -> None:
    # Parse errors carry the file path in the message.
    path = tmp_path / "harness.yml"
    path.write_text("services: [unclosed\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="not valid YAML"):
        load_yaml_config(path)


def test_config_error_is_value_error() -> None:
    assert issubclass(ConfigError, ValueError)


def test_require_variable_returns_value() -> None:
    assert require_variable({"REGISTRY_ROOT": "/srv/registry"}, "REGISTRY_ROOT") == "/srv/registry"


@pytest.mark.parametrize("environment", [{}, {"REGISTRY_ROOT": ""}, {"REGISTRY_ROOT": "   "}])
def test_require_variable_rejects_missing_or_blank(environment: dict[str, str]) -> None:
    # Blank values count as missing.
    with pytest.raises(ConfigError, match="REGISTRY_ROOT"):
        require_variable(environment, "REGISTRY_ROOT")


def test_require_unique_names_reports_duplicates() -> None:
    # Every duplicate name is listed, not just the first.
    require_unique_names(["redis", "minio"], section="services")
    with pytest.raises(ConfigError, match="redis"):
        require_unique_names(["redis", "minio", "redis"], section="services")
