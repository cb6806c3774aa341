from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from harness_kernel.config.validator import ConfigError
from harness_kernel.integration.topology import TopicSpec, TopologyProvisioner
from harness_kernel.integration.webapp import WebAppController
from harness_kernel.observability.adapters.logging import LogSink
from harness_kernel.observability.events import EventLog
from harness_kernel.runtime.context import RunContext, RunMode
from harness_kernel.runtime.environment import EnvironmentSettings, compose_environment
from harness_kernel.runtime.report import PhaseTiming, ResultReporter, RunReport
from harness_kernel.runtime.teardown import TeardownCoordinator
from harness_kernel.runtime.workspace import WorkspaceError, WorkspacePreparer
from harness_kernel.services.descriptor import ServiceDescriptor
from harness_kernel.services.plan import ServicePlan
from harness_kernel.services.readiness import ReadinessPolicy, build_probe, wait_until_ready
from harness_kernel.services.supervisor import ProcessHandle, ProcessSupervisor, SpawnError

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_ABORTED = 2
EXIT_INTERRUPTED = 130


class RunState(str, Enum):
    IDLE = "idle"
    PREPARING_WORKSPACE = "preparing_workspace"
    STARTING_INFRASTRUCTURE = "starting_infrastructure"
    STARTING_APP = "starting_app"
    PROVISIONING_TOPOLOGY = "provisioning_topology"
    STARTING_WORKERS = "starting_workers"
    RUNNING_WORKLOAD = "running_workload"
    REPORTING_RESULT = "reporting_result"
    TEARING_DOWN = "tearing_down"
    DONE = "done"
    ABORTED = "aborted"


# Any active phase may end early (interrupt, build failure) and go straight to reporting.
_ACTIVE = frozenset(
    {
        RunState.PREPARING_WORKSPACE,
        RunState.STARTING_INFRASTRUCTURE,
        RunState.STARTING_APP,
        RunState.PROVISIONING_TOPOLOGY,
        RunState.STARTING_WORKERS,
        RunState.RUNNING_WORKLOAD,
    }
)

_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.IDLE: frozenset({RunState.PREPARING_WORKSPACE, RunState.ABORTED}),
    RunState.PREPARING_WORKSPACE: frozenset({RunState.STARTING_INFRASTRUCTURE, RunState.ABORTED}),
    RunState.STARTING_INFRASTRUCTURE: frozenset(
        {
            RunState.STARTING_APP,
            RunState.PROVISIONING_TOPOLOGY,
            RunState.STARTING_WORKERS,
            RunState.RUNNING_WORKLOAD,
        }
    ),
    RunState.STARTING_APP: frozenset(
        {RunState.PROVISIONING_TOPOLOGY, RunState.STARTING_WORKERS, RunState.RUNNING_WORKLOAD}
    ),
    RunState.PROVISIONING_TOPOLOGY: frozenset({RunState.STARTING_WORKERS, RunState.RUNNING_WORKLOAD}),
    RunState.STARTING_WORKERS: frozenset({RunState.RUNNING_WORKLOAD}),
    RunState.RUNNING_WORKLOAD: frozenset(),
    RunState.REPORTING_RESULT: frozenset({RunState.TEARING_DOWN}),
    RunState.TEARING_DOWN: frozenset({RunState.DONE}),
    RunState.DONE: frozenset(),
    RunState.ABORTED: frozenset(),
}


class PhaseError(RuntimeError):
    # A preparatory phase failed in a way the run cannot continue past.
    pass


class WorkloadFailure(RuntimeError):
    # The workload command exited non-zero; the only error that sets the run's exit status.
    def __init__(self, exit_code: int, description: str = "") -> None:
        detail = f": {description}" if description else ""
        super().__init__(f"Workload failed with exit code {exit_code}{detail}")
        self.exit_code = exit_code
        self.description = description


Workload = Callable[[RunContext], int]
WebAppFactory = Callable[[RunContext], WebAppController]


@dataclass(frozen=True, slots=True)
class ModePlan:
    # What one run mode starts, provisions and runs; sequencing lives in RunModeController.
    services: ServicePlan
    workload: Workload
    start_app: bool = False
    topics: tuple[TopicSpec, ...] = ()
    build: Callable[[], None] | None = None


class RunModeController:
    """Sequences one harness run through its phases.

    Environment composition happens first and is the only step that aborts
    outright: nothing is started or deleted before a required variable is
    known to be present. Teardown is registered before any service starts,
    and always runs from ``finally`` unless services are left running on
    purpose.
    """

    def __init__(
        self,
        context: RunContext,
        plan: ModePlan,
        *,
        base_environment: Mapping[str, str],
        environment_settings: EnvironmentSettings,
        workspace: WorkspacePreparer,
        supervisor: ProcessSupervisor,
        teardown: TeardownCoordinator,
        reporter: ResultReporter,
        readiness: ReadinessPolicy,
        default_settle_seconds: float = 1.0,
        topology: TopologyProvisioner | None = None,
        webapp_factory: WebAppFactory | None = None,
        events: EventLog | None = None,
        workspace_sinks: Sequence[LogSink] = (),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._context = context
        self._plan = plan
        self._base_environment = dict(base_environment)
        self._environment_settings = environment_settings
        self._workspace = workspace
        self._supervisor = supervisor
        self._teardown = teardown
        self._reporter = reporter
        self._readiness = readiness
        self._default_settle_seconds = default_settle_seconds
        self._topology = topology
        self._webapp_factory = webapp_factory
        self._events = events if events is not None else EventLog()
        self._workspace_sinks = tuple(workspace_sinks)
        self._sleep = sleep
        self._state = RunState.IDLE
        self._history: list[RunState] = [RunState.IDLE]
        self._phases: list[PhaseTiming] = []
        self._phase_started = time.monotonic()
        self._urls: dict[str, str] = {}
        self._failure: str | None = None

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def history(self) -> list[RunState]:
        return list(self._history)

    @property
    def context(self) -> RunContext:
        return self._context

    def run(self) -> int:
        self._events.emit(
            "run_started",
            mode=self._context.mode.value,
            path_filter=self._context.path_filter or "",
        )
        try:
            self._context.environment = compose_environment(
                self._base_environment,
                self._context.mode,
                self._environment_settings,
            )
        except ConfigError as exc:
            return self._abort(str(exc))

        self._transition(RunState.PREPARING_WORKSPACE)
        try:
            self._workspace.prepare()
        except WorkspaceError as exc:
            return self._abort(str(exc))
        # File sinks live inside the workspace; an aborted run must leave it untouched.
        for sink in self._workspace_sinks:
            self._events.attach(sink)

        if not self._context.options.leave_services_running:
            self._teardown.install()

        exit_code = EXIT_FAILURE
        try:
            try:
                exit_code = self._run_phases()
            except WorkloadFailure as exc:
                exit_code = exc.exit_code
                self._failure = str(exc)
            except PhaseError as exc:
                exit_code = EXIT_FAILURE
                self._failure = str(exc)
                self._events.emit("phase_failed", level="error", state=self._state.value, error=str(exc))
            except KeyboardInterrupt:
                exit_code = EXIT_OK if self._context.mode is RunMode.INTERACTIVE else EXIT_INTERRUPTED
                self._events.emit("run_interrupted", state=self._state.value)
            except SystemExit as exc:
                exit_code = exc.code if isinstance(exc.code, int) else EXIT_FAILURE
                self._failure = f"terminated by signal (exit code {exit_code})"
                self._events.emit("run_terminated", level="warning", state=self._state.value, exit_code=exit_code)
        finally:
            self._finish(exit_code)
        return exit_code

    def _run_phases(self) -> int:
        plan = self._plan
        self._transition(RunState.STARTING_INFRASTRUCTURE)
        if plan.build is not None:
            plan.build()
        self._start_services(plan.services.infrastructure)

        if plan.start_app and self._webapp_factory is not None:
            self._transition(RunState.STARTING_APP)
            self._start_app()

        if plan.topics and self._topology is not None:
            self._transition(RunState.PROVISIONING_TOPOLOGY)
            self._topology.provision_topics(plan.topics)

        if plan.services.workers:
            self._transition(RunState.STARTING_WORKERS)
            self._start_services(plan.services.workers)

        self._transition(RunState.RUNNING_WORKLOAD)
        exit_code = plan.workload(self._context)
        if exit_code != EXIT_OK:
            raise WorkloadFailure(exit_code)
        return EXIT_OK

    def _start_app(self) -> None:
        assert self._webapp_factory is not None
        webapp = self._webapp_factory(self._context)
        self._teardown.attach_webapp(webapp)
        # The dependency rebuild flag only applies to integration runs.
        rebuild = self._context.options.rebuild_dependency and self._context.mode is RunMode.INTEGRATION
        webapp.ensure_dependency(rebuild)
        try:
            handle = webapp.prepare_and_start()
        except SpawnError as exc:
            self._events.emit("app_degraded", level="error", error=str(exc))
            return
        self._record_url(handle.service_name, webapp.url)

    def _start_services(self, descriptors: Sequence[ServiceDescriptor]) -> None:
        for descriptor in descriptors:
            try:
                handle = self._supervisor.start(descriptor, self._context.environment)
            except SpawnError as exc:
                # Degraded environment: let the developer see which dependent call fails downstream.
                self._events.emit("service_degraded", level="error", service=descriptor.name, error=str(exc))
                continue
            self._await_ready(descriptor, handle)
            self._record_url(descriptor.name, descriptor.url)

    def _await_ready(self, descriptor: ServiceDescriptor, handle: ProcessHandle) -> None:
        if descriptor.probe is None:
            settle = descriptor.settle_seconds
            self._sleep(self._default_settle_seconds if settle is None else settle)
        else:
            probe = build_probe(descriptor.probe, log_path=handle.log_path)
            if wait_until_ready(probe, self._readiness, sleep=self._sleep):
                self._events.emit("service_ready", service=descriptor.name, probe=probe.describe())
            else:
                self._events.emit(
                    "service_not_ready",
                    level="warning",
                    service=descriptor.name,
                    probe=probe.describe(),
                    timeout_seconds=self._readiness.timeout_seconds,
                )
        self._supervisor.mark_ready(handle)

    def _record_url(self, name: str, url: str | None) -> None:
        if url:
            self._urls[name] = url

    def _finish(self, exit_code: int) -> None:
        self._transition(RunState.REPORTING_RESULT)
        report = RunReport(
            mode=self._context.mode.value,
            started_at=self._context.start_time.isoformat(),
            log_dir=str(self._supervisor.log_dir),
            exit_code=exit_code,
            failure=self._failure,
        )
        self._reporter.announce(report)

        self._transition(RunState.TEARING_DOWN)
        if self._context.options.leave_services_running:
            self._reporter.connection_info(self._supervisor.tracked(), self._urls)
        else:
            try:
                report.stop_results = self._teardown.teardown_all()
            except (KeyboardInterrupt, SystemExit):
                # Teardown already signaled every process before re-raising.
                report.stop_results = self._teardown.results
                self._events.emit("teardown_interrupt_ignored", level="warning")

        self._transition(RunState.DONE)
        report.phases = list(self._phases)
        self._reporter.write_summary(report)

    def _abort(self, reason: str) -> int:
        self._transition(RunState.ABORTED)
        self._events.emit("run_aborted", level="error", reason=reason)
        return EXIT_ABORTED

    def _transition(self, target: RunState) -> None:
        allowed = _TRANSITIONS[self._state]
        if target is RunState.REPORTING_RESULT and self._state in _ACTIVE:
            allowed = allowed | {RunState.REPORTING_RESULT}
        if target not in allowed:
            raise RuntimeError(f"Illegal run state transition: {self._state.value} -> {target.value}")

        now = time.monotonic()
        if self._phases:
            self._phases[-1].duration_sec = round(now - self._phase_started, 3)
        self._phases.append(PhaseTiming(state=target.value, started_at=datetime.now(tz=UTC).isoformat()))
        self._phase_started = now

        self._events.emit("state_changed", previous=self._state.value, state=target.value)
        self._state = target
        self._history.append(target)


def block_until_interrupted(
    *,
    sleep: Callable[[float], None] = time.sleep,
    interval_seconds: float = 1.0,
) -> int:
    # Interactive session: returns only through KeyboardInterrupt / SystemExit.
    while True:
        sleep(interval_seconds)
