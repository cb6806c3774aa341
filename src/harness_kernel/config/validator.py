from __future__ import annotations

from collections.abc import Mapping


class ConfigError(ValueError):
    # Raised for invalid harness config or a missing required variable (fail fast).
    pass


def require_variable(environment: Mapping[str, str], name: str) -> str:
    # Required variables must be present and non-blank; callers abort the run otherwise.
    value = environment.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"Environment variable {name} must be set")
    return value


def require_unique_names(names: list[str], *, section: str) -> None:
    seen: set[str] = set()
    duplicates: list[str] = []
    for name in names:
        if name in seen and name not in duplicates:
            duplicates.append(name)
        seen.add(name)
    if duplicates:
        raise ConfigError(f"{section} has duplicate service names: {duplicates}")
