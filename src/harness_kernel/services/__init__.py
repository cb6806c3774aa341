from .commands import COMMAND_NOT_RUNNABLE, CommandRunner
from .descriptor import ProbeSpec, ServiceDescriptor
from .plan import ServicePlan, ServicePlanBuilder, ServiceSets
from .process_table import ProcessTable, PsutilProcessTable
from .readiness import (
    HttpProbe,
    LogLineProbe,
    ReadinessPolicy,
    ReadinessProbe,
    TcpProbe,
    build_probe,
    wait_until_ready,
)
from .supervisor import (
    ProcessHandle,
    ProcessState,
    ProcessSupervisor,
    SpawnError,
    StopError,
    StopResult,
)

__all__ = [
    "COMMAND_NOT_RUNNABLE",
    "CommandRunner",
    "HttpProbe",
    "LogLineProbe",
    "ProbeSpec",
    "ProcessHandle",
    "ProcessState",
    "ProcessSupervisor",
    "ProcessTable",
    "PsutilProcessTable",
    "ReadinessPolicy",
    "ReadinessProbe",
    "ServiceDescriptor",
    "ServicePlan",
    "ServicePlanBuilder",
    "ServiceSets",
    "SpawnError",
    "StopError",
    "StopResult",
    "TcpProbe",
    "build_probe",
    "wait_until_ready",
]
