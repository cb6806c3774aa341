from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


class RunMode(str, Enum):
    UNIT = "units"
    INTEGRATION = "integration"
    INTERACTIVE = "interactive"
    END_TO_END = "e2e"

    @classmethod
    def parse(cls, value: str) -> RunMode:
        for mode in cls:
            if mode.value == value:
                return mode
        raise ValueError(f"Unknown run mode: {value!r}")

    @property
    def requires_external_root(self) -> bool:
        return self is not RunMode.UNIT


@dataclass(frozen=True, slots=True)
class RunOptions:
    include_format_tests: bool = False
    skip_cleanup_stage: bool = False
    rebuild_dependency: bool = False
    leave_services_running: bool = False


@dataclass(slots=True)
class RunContext:
    # One per invocation; owned by the run-mode controller.
    mode: RunMode
    options: RunOptions = field(default_factory=RunOptions)
    path_filter: str | None = None
    environment: dict[str, str] = field(default_factory=dict)
    start_time: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    services_stopped: bool = False

    def mark_services_stopped(self) -> bool:
        # Returns True only for the call that performs the False -> True transition.
        if self.services_stopped:
            return False
        self.services_stopped = True
        return True
