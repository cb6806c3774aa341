from __future__ import annotations

import platform
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from harness_kernel.config import ConfigError
from harness_kernel.integration import TopicSpec, WebAppSettings
from harness_kernel.services import ProbeSpec, ServiceDescriptor, ServiceSets
from preserv_harness.usecases.config_models import (
    PathsConfig,
    ProbeConfig,
    ServiceConfig,
    ServicesConfig,
    TopologyConfig,
    WebAppConfig,
)

# A "~" that starts a command token (or an --opt=~ value) means the user's home.
_HOME_TOKEN = re.compile(r"(?<![^\s=])~(?=/|\s|$)")


@dataclass(frozen=True, slots=True)
class ResolvedPaths:
    project_root: Path
    bin_dir: Path
    go_bin_dir: Path
    config_dir: Path
    scratch_root: Path

    def placeholders(self) -> dict[str, str]:
        return {
            "project_root": str(self.project_root),
            "bin_dir": str(self.bin_dir),
            "go_bin_dir": str(self.go_bin_dir),
            "scratch_root": str(self.scratch_root),
        }


def platform_name(system: str | None = None) -> str:
    # Third-party service binaries ship per platform under bin/<platform>.
    name = (system or platform.system()).lower()
    return "osx" if name == "darwin" else "linux"


def resolve_paths(
    config: PathsConfig,
    *,
    scratch_root: Path,
    cwd: Path | None = None,
    system: str | None = None,
) -> ResolvedPaths:
    base = cwd if cwd is not None else Path.cwd()
    project_root = (base / Path(config.project_root).expanduser()).resolve()

    def _under_root(value: str) -> Path:
        path = Path(expand(value, {"platform": platform_name(system)}))
        return path if path.is_absolute() else project_root / path

    return ResolvedPaths(
        project_root=project_root,
        bin_dir=_under_root(config.bin_dir),
        go_bin_dir=_under_root(config.go_bin_dir),
        config_dir=_under_root(config.config_dir),
        scratch_root=scratch_root,
    )


def expand(template: str, values: Mapping[str, str], *, home: Path | None = None) -> str:
    try:
        expanded = template.format_map(values)
    except (KeyError, IndexError) as exc:
        raise ConfigError(f"Unknown placeholder {exc} in '{template}'") from exc
    except ValueError as exc:
        raise ConfigError(f"Malformed placeholder in '{template}': {exc}") from exc
    home_dir = str(home if home is not None else Path.home())
    return _HOME_TOKEN.sub(lambda _: home_dir, expanded)


def build_probe_spec(probe: ProbeConfig | None) -> ProbeSpec | None:
    if probe is None:
        return None
    return ProbeSpec(kind=probe.kind, host=probe.host, port=probe.port, url=probe.url, pattern=probe.pattern)


def build_descriptor(service: ServiceConfig, paths: ResolvedPaths) -> ServiceDescriptor:
    values = paths.placeholders()
    if service.working_directory:
        working_directory = Path(expand(service.working_directory, values))
    else:
        working_directory = paths.project_root
    return ServiceDescriptor(
        name=service.name,
        command=expand(service.command, values),
        working_directory=working_directory,
        readiness_message=service.readiness_message,
        process_signature=service.process_signature,
        probe=build_probe_spec(service.probe),
        settle_seconds=service.settle_seconds,
        url=service.url,
        seeding=service.seeding,
    )


def build_service_sets(config: ServicesConfig, paths: ResolvedPaths) -> ServiceSets:
    def _group(items: list[ServiceConfig]) -> tuple[ServiceDescriptor, ...]:
        return tuple(build_descriptor(item, paths) for item in items)

    return ServiceSets(
        core=_group(config.core),
        broker=_group(config.broker),
        pipeline=_group(config.pipeline),
        extras=_group(config.extras),
        cleanup_stage=config.cleanup_stage,
    )


def build_topics(config: TopologyConfig) -> tuple[TopicSpec, ...]:
    # Topics without explicit channels get the single worker channel <topic><suffix>.
    topics: list[TopicSpec] = []
    for topic in config.topics:
        channels = topic.channels if topic.channels is not None else [f"{topic.name}{config.channel_suffix}"]
        topics.append(TopicSpec(name=topic.name, channels=tuple(channels)))
    return tuple(topics)


def build_webapp_settings(config: WebAppConfig, *, root: Path, paths: ResolvedPaths) -> WebAppSettings:
    values = {**paths.placeholders(), "app_root": str(root)}

    def _optional(command: str | None) -> str | None:
        return expand(command, values) if command else None

    return WebAppSettings(
        name=config.name,
        root=root,
        start_command=expand(config.start_command, values),
        reset_command=_optional(config.reset_command),
        migrate_command=_optional(config.migrate_command),
        fixtures_command=_optional(config.fixtures_command),
        build_command=_optional(config.build_command),
        stop_command=_optional(config.stop_command),
        process_signature=config.process_signature,
        probe=build_probe_spec(config.probe),
        settle_seconds=config.settle_seconds,
        url=config.url,
    )
