from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from harness_kernel.config.validator import require_variable
from harness_kernel.runtime.context import RunMode

_DEFAULT_APP_ENV_VALUES = {
    RunMode.UNIT.value: "test",
    RunMode.INTEGRATION.value: "integration",
    RunMode.INTERACTIVE.value: "integration",
    RunMode.END_TO_END.value: "integration",
}


@dataclass(frozen=True, slots=True)
class EnvironmentSettings:
    config_dir: Path
    app_env_var: str = "APT_ENV"
    app_env_values: Mapping[str, str] = field(default_factory=lambda: dict(_DEFAULT_APP_ENV_VALUES))
    config_dir_var: str = "APT_CONFIG_DIR"
    external_root_var: str = "REGISTRY_ROOT"
    e2e_marker_var: str = "APT_E2E"
    e2e_marker_value: str = "true"


def compose_environment(
    base_environment: Mapping[str, str],
    mode: RunMode,
    settings: EnvironmentSettings,
) -> dict[str, str]:
    # Every spawned process gets this mapping. A missing external root aborts
    # the run here, before any workspace or service state is touched.
    if mode.requires_external_root:
        require_variable(base_environment, settings.external_root_var)

    environment = dict(base_environment)
    environment[settings.app_env_var] = settings.app_env_values.get(mode.value, "test")
    environment[settings.config_dir_var] = str(settings.config_dir.expanduser().resolve())
    if mode is RunMode.END_TO_END:
        environment[settings.e2e_marker_var] = settings.e2e_marker_value
    else:
        environment.pop(settings.e2e_marker_var, None)
    return environment
