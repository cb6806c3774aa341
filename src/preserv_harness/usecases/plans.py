from __future__ import annotations

from collections.abc import Callable, Sequence

from harness_kernel.integration import TopicSpec
from harness_kernel.runtime.context import RunContext, RunMode
from harness_kernel.runtime.controller import ModePlan, Workload
from harness_kernel.services import ServicePlanBuilder, ServiceSets
from preserv_harness.usecases.builder import BinaryBuilder

# Modes whose worker set is compiled from source before anything starts.
_BUILD_MODES = frozenset({RunMode.INTERACTIVE, RunMode.END_TO_END})


def build_mode_plan(
    context: RunContext,
    *,
    service_sets: ServiceSets,
    topics: Sequence[TopicSpec],
    workload: Workload,
    webapp_enabled: bool,
    builder: BinaryBuilder | None = None,
) -> ModePlan:
    # Unit runs need only the cache and object store: no broker, no app, no topics.
    mode = context.mode
    services = (
        ServicePlanBuilder(service_sets)
        .with_extras(service_sets.extras_for(mode))
        .skip_cleanup_stage(context.options.skip_cleanup_stage)
        .for_mode(mode)
    )
    build: Callable[[], None] | None = None
    if builder is not None and mode in _BUILD_MODES and services.workers:

        def _build() -> None:
            # Reads the environment at call time; it is composed after planning.
            builder.build_all(context.environment)

        build = _build

    return ModePlan(
        services=services,
        workload=workload,
        start_app=webapp_enabled and mode is not RunMode.UNIT,
        topics=tuple(topics) if mode is not RunMode.UNIT else (),
        build=build,
    )
