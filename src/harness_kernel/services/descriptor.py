from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

ProbeKind = Literal["tcp", "http", "log_line"]


@dataclass(frozen=True, slots=True)
class ProbeSpec:
    # Liveness signal polled after start; which fields apply depends on kind.
    kind: ProbeKind
    host: str = "127.0.0.1"
    port: int | None = None
    url: str | None = None
    pattern: str | None = None

    def __post_init__(self) -> None:
        if self.kind == "tcp" and self.port is None:
            raise ValueError("tcp probe requires port")
        if self.kind == "http" and not self.url:
            raise ValueError("http probe requires url")
        if self.kind == "log_line" and not self.pattern:
            raise ValueError("log_line probe requires pattern")


@dataclass(frozen=True, slots=True)
class ServiceDescriptor:
    # Static definition of a launchable dependency; never mutated after startup.
    name: str
    command: str
    working_directory: Path
    readiness_message: str = ""
    process_signature: str | None = None
    probe: ProbeSpec | None = None
    settle_seconds: float | None = None
    url: str | None = None
    seeding: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("ServiceDescriptor.name must be a non-empty string")
        if not self.command.strip():
            raise ValueError(f"ServiceDescriptor.command must be non-empty for service '{self.name}'")
