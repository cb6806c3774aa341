from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path

from harness_kernel.observability.events import EventLog
from harness_kernel.services.commands import CommandRunner
from harness_kernel.services.descriptor import ProbeSpec, ServiceDescriptor
from harness_kernel.services.readiness import ReadinessPolicy, build_probe, wait_until_ready
from harness_kernel.services.supervisor import ProcessHandle, ProcessSupervisor


@dataclass(frozen=True, slots=True)
class WebAppSettings:
    # Commands run with the external application root as working directory.
    name: str
    root: Path
    start_command: str
    reset_command: str | None = None
    migrate_command: str | None = None
    fixtures_command: str | None = None
    build_command: str | None = None
    stop_command: str | None = None
    process_signature: str | None = None
    probe: ProbeSpec | None = None
    settle_seconds: float = 8.0
    url: str | None = None


class WebAppController:
    """Lifecycle of the web application under test.

    The harness only knows the application's command protocol: reset state,
    migrate schema, load fixtures, start server, and an optional stop.
    """

    def __init__(
        self,
        settings: WebAppSettings,
        *,
        supervisor: ProcessSupervisor,
        runner: CommandRunner,
        readiness: ReadinessPolicy,
        environment: Mapping[str, str],
        events: EventLog | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._supervisor = supervisor
        self._runner = runner
        self._readiness = readiness
        self._environment = dict(environment)
        self._events = events if events is not None else EventLog()
        self._sleep = sleep
        self._handle: ProcessHandle | None = None

    @property
    def started(self) -> bool:
        return self._handle is not None

    @property
    def handle(self) -> ProcessHandle | None:
        return self._handle

    @property
    def url(self) -> str | None:
        return self._settings.url

    def ensure_dependency(self, rebuild: bool) -> None:
        # The existing build is reused unless a rebuild is requested.
        if not rebuild or not self._settings.build_command:
            self._events.emit("webapp_dependency_reused", app=self._settings.name)
            return
        self._step("build", self._settings.build_command)

    def reset(self) -> None:
        self._step("reset", self._settings.reset_command)

    def migrate_schema(self) -> None:
        self._step("migrate", self._settings.migrate_command)

    def load_fixtures(self) -> None:
        self._step("fixtures", self._settings.fixtures_command)

    def start_server(self) -> ProcessHandle:
        descriptor = ServiceDescriptor(
            name=self._settings.name,
            command=self._settings.start_command,
            working_directory=self._settings.root,
            readiness_message=f"{self._settings.name} is running at {self._settings.url}" if self._settings.url else "",
            process_signature=self._settings.process_signature,
            url=self._settings.url,
        )
        handle = self._supervisor.start(descriptor, self._environment)
        self._handle = handle
        self._await_ready(handle)
        return handle

    def prepare_and_start(self) -> ProcessHandle:
        # Strict order: reset -> migrate -> fixtures -> start.
        self.reset()
        self.migrate_schema()
        self.load_fixtures()
        return self.start_server()

    def stop(self) -> None:
        if self._handle is None or not self._settings.stop_command:
            return
        self._step("stop", self._settings.stop_command)

    def _await_ready(self, handle: ProcessHandle) -> None:
        if self._settings.probe is None:
            self._sleep(self._settings.settle_seconds)
        else:
            probe = build_probe(self._settings.probe, log_path=handle.log_path)
            if not wait_until_ready(probe, self._readiness, sleep=self._sleep):
                self._events.emit(
                    "webapp_not_ready",
                    level="warning",
                    app=self._settings.name,
                    probe=probe.describe(),
                    timeout_seconds=self._readiness.timeout_seconds,
                )
        self._supervisor.mark_ready(handle)

    def _step(self, step: str, command: str | None) -> None:
        if not command:
            self._events.emit("webapp_step_skipped", app=self._settings.name, step=step)
            return
        exit_code = self._runner.run(
            command,
            cwd=self._settings.root,
            env=self._environment,
            log_path=self._supervisor.log_path_for(f"{self._settings.name}-{step}"),
        )
        if exit_code != 0:
            self._events.emit(
                "webapp_step_failed",
                level="error",
                app=self._settings.name,
                step=step,
                exit_code=exit_code,
            )
            return
        self._events.emit("webapp_step_done", app=self._settings.name, step=step)
