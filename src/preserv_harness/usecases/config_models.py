from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Config models map harness.yml sections to typed structures.


class PathsConfig(BaseModel):
    # Relative paths resolve against project_root; project_root resolves against the working directory.
    model_config = ConfigDict(extra="forbid")
    project_root: str = "."
    bin_dir: str = "bin/{platform}"
    go_bin_dir: str = "bin/go-bin"
    config_dir: str = "config"


class EnvironmentConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    app_env_var: str = "APT_ENV"
    app_env_values: dict[Literal["units", "integration", "interactive", "e2e"], str] = Field(
        default_factory=lambda: {
            "units": "test",
            "integration": "integration",
            "interactive": "integration",
            "e2e": "integration",
        }
    )
    config_dir_var: str = "APT_CONFIG_DIR"
    external_root_var: str = "REGISTRY_ROOT"
    e2e_marker_var: str = "APT_E2E"
    e2e_marker_value: str = "true"


class WorkspaceConfig(BaseModel):
    # Scratch root is <HOME>/<name>; name doubles as the deletion guard.
    model_config = ConfigDict(extra="forbid")
    name: str = "tmp"
    subdirectories: list[str] = Field(
        default_factory=lambda: ["bin", "logs", "minio", "nsq", "redis", "restore"]
    )
    object_store_dir: str = "minio"
    log_dir: str = "logs"
    buckets: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _require_known_dirs(self) -> WorkspaceConfig:
        for required in (self.object_store_dir, self.log_dir):
            if required not in self.subdirectories:
                raise ValueError(f"workspace.subdirectories must include '{required}'")
        return self


class ReadinessConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    timeout_seconds: float = Field(default=30.0, ge=0)
    initial_interval: float = Field(default=0.25, gt=0)
    max_interval: float = Field(default=2.0, gt=0)
    settle_seconds: float = Field(default=1.0, ge=0)
    launcher_settle_seconds: float = Field(default=5.0, ge=0)


class ProbeConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    kind: Literal["tcp", "http", "log_line"]
    host: str = "127.0.0.1"
    port: int | None = None
    url: str | None = None
    pattern: str | None = None

    @model_validator(mode="after")
    def _require_kind_fields(self) -> ProbeConfig:
        if self.kind == "tcp" and self.port is None:
            raise ValueError("probe.port is required when kind is 'tcp'")
        if self.kind == "http" and not self.url:
            raise ValueError("probe.url is required when kind is 'http'")
        if self.kind == "log_line" and not self.pattern:
            raise ValueError("probe.pattern is required when kind is 'log_line'")
        return self


class ServiceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str = Field(min_length=1)
    command: str = Field(min_length=1)
    working_directory: str | None = None
    readiness_message: str = ""
    process_signature: str | None = None
    probe: ProbeConfig | None = None
    settle_seconds: float | None = Field(default=None, ge=0)
    url: str | None = None
    seeding: bool = False


class ServicesConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    core: list[ServiceConfig] = Field(default_factory=list)
    broker: list[ServiceConfig] = Field(default_factory=list)
    pipeline: list[ServiceConfig] = Field(default_factory=list)
    extras: list[ServiceConfig] = Field(default_factory=list)
    cleanup_stage: str | None = None

    @model_validator(mode="after")
    def _cleanup_stage_is_a_worker(self) -> ServicesConfig:
        if self.cleanup_stage is None:
            return self
        names = {item.name for item in self.pipeline} | {item.name for item in self.extras}
        if self.cleanup_stage not in names:
            raise ValueError(f"services.cleanup_stage '{self.cleanup_stage}' is not a pipeline or extra service")
        return self


class WebAppConfig(BaseModel):
    # Commands run inside the directory named by environment.external_root_var.
    model_config = ConfigDict(extra="forbid")
    enabled: bool = True
    name: str = "registry"
    start_command: str
    reset_command: str | None = None
    migrate_command: str | None = None
    fixtures_command: str | None = None
    build_command: str | None = None
    stop_command: str | None = None
    process_signature: str | None = None
    probe: ProbeConfig | None = None
    settle_seconds: float = Field(default=8.0, ge=0)
    url: str | None = None


class TopicConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str = Field(min_length=1)
    channels: list[str] | None = None


class TopologyConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    admin_url: str = "http://127.0.0.1:4151"
    channel_suffix: str = "_worker_chan"
    timeout_seconds: float = Field(default=5.0, gt=0)
    topics: list[TopicConfig] = Field(default_factory=list)


class WorkloadsConfig(BaseModel):
    # {tags} expands to "-tags=a,b" (or nothing); {path_filter} to the CLI filter or the default.
    model_config = ConfigDict(extra="forbid")
    default_path_filter: str = "./..."
    unit: str = "go test -p 1 {tags} {path_filter}"
    integration: str = "go test -p 1 {tags} {path_filter}"
    e2e: str = "go test -p 1 {tags} {path_filter}"
    e2e_default_path_filter: str = "./e2e/..."
    e2e_trigger: str = "{go_bin_dir}/ingest_bucket_reader"
    e2e_settle_seconds: float = Field(default=60.0, ge=0)
    unit_tags: list[str] = Field(default_factory=list)
    integration_tags: list[str] = Field(default_factory=lambda: ["integration"])
    e2e_tags: list[str] = Field(default_factory=lambda: ["e2e"])
    format_tests_tag: str = "formats"
    interactive_poll_seconds: float = Field(default=1.0, gt=0)


class BuildConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    apps_dir: str = "apps"
    command: str = "go build -o {output_dir}/{exe} {file}"
    sources: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _sources_are_app_files(self) -> BuildConfig:
        # Each entry is <app dir>/<main file>.go, relative to apps_dir.
        for source in self.sources:
            parts = source.split("/")
            if len(parts) != 2 or not all(parts) or not parts[1].endswith(".go"):
                raise ValueError(f"build.sources entry must look like <dir>/<file>.go, got '{source}'")
        return self


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")
    console: Literal["text", "json", "off"] = "text"
    jsonl: bool = True


class HarnessConfig(BaseModel):
    # Top-level typed view of harness.yml.
    model_config = ConfigDict(extra="forbid")
    version: int
    paths: PathsConfig = Field(default_factory=PathsConfig)
    environment: EnvironmentConfig = Field(default_factory=EnvironmentConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    readiness: ReadinessConfig = Field(default_factory=ReadinessConfig)
    services: ServicesConfig
    webapp: WebAppConfig | None = None
    topology: TopologyConfig = Field(default_factory=TopologyConfig)
    workloads: WorkloadsConfig = Field(default_factory=WorkloadsConfig)
    build: BuildConfig = Field(default_factory=BuildConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
