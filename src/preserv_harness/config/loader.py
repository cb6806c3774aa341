from __future__ import annotations

from pathlib import Path

from pydantic import ValidationError

from harness_kernel.config import ConfigError, load_yaml_config
from preserv_harness.usecases.config_models import HarnessConfig

DEFAULT_CONFIG_PATH = Path(__file__).with_name("harness.yml")


def load_config(path: Path | None = None) -> HarnessConfig:
    # Typed config; any schema problem surfaces as ConfigError before anything runs.
    raw = load_yaml_config(path if path is not None else DEFAULT_CONFIG_PATH)
    try:
        return HarnessConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid harness config: {exc}") from exc
