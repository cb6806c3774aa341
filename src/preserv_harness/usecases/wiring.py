from __future__ import annotations

import atexit
import os
import signal
import subprocess
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TextIO

import requests

from harness_kernel.integration import TopologyProvisioner, WebAppController
from harness_kernel.observability import EventLog
from harness_kernel.observability.adapters import JsonlLogSink, build_log_sink
from harness_kernel.runtime import (
    EnvironmentSettings,
    RunContext,
    RunMode,
    WorkspaceLayout,
    WorkspacePreparer,
    resolve_scratch_root,
)
from harness_kernel.runtime.controller import RunModeController, Workload
from harness_kernel.runtime.report import ResultReporter
from harness_kernel.runtime.teardown import TeardownCoordinator
from harness_kernel.services import CommandRunner, ProcessSupervisor, ProcessTable, ReadinessPolicy
from preserv_harness.usecases.builder import BinaryBuilder
from preserv_harness.usecases.catalog import (
    ResolvedPaths,
    build_service_sets,
    build_topics,
    build_webapp_settings,
    expand,
    resolve_paths,
)
from preserv_harness.usecases.config_models import HarnessConfig
from preserv_harness.usecases.plans import build_mode_plan
from preserv_harness.usecases.workloads import EndToEndWorkload, GoTestWorkload, InteractiveWorkload

JSONL_LOG_NAME = "harness.jsonl"


@dataclass(slots=True)
class HarnessRuntime:
    # Everything one run needs; close() flushes the structured log sinks.
    controller: RunModeController
    events: EventLog
    paths: ResolvedPaths
    layout: WorkspaceLayout

    def run(self) -> int:
        try:
            return self.controller.run()
        finally:
            self.events.close()


def build_runtime(
    config: HarnessConfig,
    context: RunContext,
    environ: Mapping[str, str],
    *,
    cwd: Path | None = None,
    stream: TextIO | None = None,
    events: EventLog | None = None,
    spawner: Callable[..., Any] = subprocess.Popen,
    signal_sender: Callable[[int, int], None] = os.kill,
    process_table: ProcessTable | None = None,
    runner: CommandRunner | None = None,
    session: requests.Session | None = None,
    exit_registrar: Callable[[Callable[[], Any]], Any] = atexit.register,
    signal_installer: Callable[[int, Any], Any] = signal.signal,
    sleep: Callable[[float], None] = time.sleep,
) -> HarnessRuntime:
    # Composition root: config + process environment -> a ready-to-run controller.
    scratch_root = resolve_scratch_root(environ, config.workspace.name)
    paths = resolve_paths(config.paths, scratch_root=scratch_root, cwd=cwd)
    layout = WorkspaceLayout(
        root=scratch_root,
        expected_name=config.workspace.name,
        subdirectories=tuple(config.workspace.subdirectories),
        object_store_dir=config.workspace.object_store_dir,
        log_dir_name=config.workspace.log_dir,
        buckets=tuple(config.workspace.buckets),
    )

    if events is None:
        events = EventLog(build_log_sink(console=config.logging.console, jsonl_path=None))
    # Attached by the controller once the workspace exists.
    workspace_sinks = [JsonlLogSink(layout.log_dir / JSONL_LOG_NAME)] if config.logging.jsonl else []
    runner = runner if runner is not None else CommandRunner(events=events)

    readiness = ReadinessPolicy(
        timeout_seconds=config.readiness.timeout_seconds,
        initial_interval=config.readiness.initial_interval,
        max_interval=config.readiness.max_interval,
    )
    supervisor = ProcessSupervisor(
        layout.log_dir,
        events=events,
        spawner=spawner,
        signal_sender=signal_sender,
        process_table=process_table,
        sleep=sleep,
        launcher_settle_seconds=config.readiness.launcher_settle_seconds,
    )
    teardown = TeardownCoordinator(
        context,
        supervisor,
        events=events,
        exit_registrar=exit_registrar,
        signal_installer=signal_installer,
    )

    webapp_config = config.webapp
    webapp_enabled = webapp_config is not None and webapp_config.enabled
    external_root_var = config.environment.external_root_var

    def webapp_factory(run_context: RunContext) -> WebAppController:
        assert webapp_config is not None
        # The external root is guaranteed present: environment composition checked it.
        root = Path(run_context.environment[external_root_var]).expanduser()
        return WebAppController(
            build_webapp_settings(webapp_config, root=root, paths=paths),
            supervisor=supervisor,
            runner=runner,
            readiness=readiness,
            environment=run_context.environment,
            events=events,
            sleep=sleep,
        )

    builder = BinaryBuilder(
        config.build,
        project_root=paths.project_root,
        output_dir=paths.go_bin_dir,
        log_dir=layout.log_dir,
        runner=runner,
        events=events,
    )
    plan = build_mode_plan(
        context,
        service_sets=build_service_sets(config.services, paths),
        topics=build_topics(config.topology),
        workload=build_workload(config, context.mode, paths=paths, runner=runner, events=events, sleep=sleep),
        webapp_enabled=webapp_enabled,
        builder=builder,
    )
    topology = TopologyProvisioner(
        config.topology.admin_url,
        session=session,
        timeout_seconds=config.topology.timeout_seconds,
        events=events,
    )

    controller = RunModeController(
        context,
        plan,
        base_environment=environ,
        environment_settings=EnvironmentSettings(
            config_dir=paths.config_dir,
            app_env_var=config.environment.app_env_var,
            app_env_values=dict(config.environment.app_env_values),
            config_dir_var=config.environment.config_dir_var,
            external_root_var=external_root_var,
            e2e_marker_var=config.environment.e2e_marker_var,
            e2e_marker_value=config.environment.e2e_marker_value,
        ),
        workspace=WorkspacePreparer(layout, events=events),
        supervisor=supervisor,
        teardown=teardown,
        reporter=ResultReporter(layout.log_dir, stream=stream, events=events),
        readiness=readiness,
        default_settle_seconds=config.readiness.settle_seconds,
        topology=topology,
        webapp_factory=webapp_factory if webapp_enabled else None,
        events=events,
        workspace_sinks=workspace_sinks,
        sleep=sleep,
    )
    return HarnessRuntime(controller=controller, events=events, paths=paths, layout=layout)


def build_workload(
    config: HarnessConfig,
    mode: RunMode,
    *,
    paths: ResolvedPaths,
    runner: CommandRunner,
    events: EventLog,
    sleep: Callable[[float], None] = time.sleep,
) -> Workload:
    workloads = config.workloads
    if mode is RunMode.INTERACTIVE:
        return InteractiveWorkload(poll_seconds=workloads.interactive_poll_seconds, events=events, sleep=sleep)

    templates = {
        RunMode.UNIT: (workloads.unit, workloads.unit_tags, workloads.default_path_filter),
        RunMode.INTEGRATION: (workloads.integration, workloads.integration_tags, workloads.default_path_filter),
        RunMode.END_TO_END: (workloads.e2e, workloads.e2e_tags, workloads.e2e_default_path_filter),
    }
    template, tags, default_path_filter = templates[mode]
    tests = GoTestWorkload(
        template,
        tags=tags,
        runner=runner,
        cwd=paths.project_root,
        placeholders=paths.placeholders(),
        default_path_filter=default_path_filter,
        format_tag=workloads.format_tests_tag,
    )
    if mode is not RunMode.END_TO_END:
        return tests

    return EndToEndWorkload(
        expand(workloads.e2e_trigger, paths.placeholders()),
        tests,
        runner=runner,
        cwd=paths.project_root,
        settle_seconds=workloads.e2e_settle_seconds,
        trigger_log_path=paths.scratch_root / config.workspace.log_dir / "e2e-trigger.log",
        events=events,
        sleep=sleep,
    )
