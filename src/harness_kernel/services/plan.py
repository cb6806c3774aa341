from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from harness_kernel.config.validator import require_unique_names
from harness_kernel.runtime.context import RunMode
from harness_kernel.services.descriptor import ServiceDescriptor


@dataclass(frozen=True, slots=True)
class ServicePlan:
    # Ordered start list: infrastructure first, then workers.
    infrastructure: tuple[ServiceDescriptor, ...] = ()
    workers: tuple[ServiceDescriptor, ...] = ()

    @property
    def ordered(self) -> tuple[ServiceDescriptor, ...]:
        return self.infrastructure + self.workers

    def names(self) -> list[str]:
        return [descriptor.name for descriptor in self.ordered]


@dataclass(frozen=True, slots=True)
class ServiceSets:
    # Named descriptor groups composed per run mode.
    core: tuple[ServiceDescriptor, ...] = ()
    broker: tuple[ServiceDescriptor, ...] = ()
    pipeline: tuple[ServiceDescriptor, ...] = ()
    extras: tuple[ServiceDescriptor, ...] = ()
    cleanup_stage: str | None = None

    def extras_for(self, mode: RunMode) -> tuple[ServiceDescriptor, ...]:
        # End-to-end runs seed the pipeline from the workload, so seeding extras stay out.
        if mode is RunMode.INTERACTIVE:
            return self.extras
        if mode is RunMode.END_TO_END:
            return tuple(item for item in self.extras if not item.seeding)
        return ()


@dataclass(slots=True)
class ServicePlanBuilder:
    sets: ServiceSets
    _extra: list[ServiceDescriptor] = field(default_factory=list)
    _skip_cleanup_stage: bool = False

    def with_extras(self, extras: Sequence[ServiceDescriptor]) -> ServicePlanBuilder:
        # Caller-supplied services appended after the base worker set.
        self._extra.extend(extras)
        return self

    def skip_cleanup_stage(self, skip: bool = True) -> ServicePlanBuilder:
        self._skip_cleanup_stage = skip
        return self

    def for_mode(self, mode: RunMode) -> ServicePlan:
        infrastructure: list[ServiceDescriptor] = list(self.sets.core)
        workers: list[ServiceDescriptor] = []
        if mode is not RunMode.UNIT:
            infrastructure.extend(self.sets.broker)
        if mode in (RunMode.INTERACTIVE, RunMode.END_TO_END):
            workers.extend(self.sets.pipeline)
        workers.extend(self._extra)

        if self._skip_cleanup_stage and self.sets.cleanup_stage:
            workers = [item for item in workers if item.name != self.sets.cleanup_stage]

        plan = ServicePlan(infrastructure=tuple(infrastructure), workers=tuple(workers))
        require_unique_names(plan.names(), section=f"service plan for mode '{mode.value}'")
        return plan
