from .context import RunContext, RunMode, RunOptions
from .environment import EnvironmentSettings, compose_environment
from .workspace import WorkspaceError, WorkspaceLayout, WorkspacePreparer, resolve_scratch_root

__all__ = [
    "EnvironmentSettings",
    "RunContext",
    "RunMode",
    "RunOptions",
    "WorkspaceError",
    "WorkspaceLayout",
    "WorkspacePreparer",
    "compose_environment",
    "resolve_scratch_root",
]
