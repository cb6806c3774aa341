from __future__ import annotations

import shutil
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from harness_kernel.observability.events import EventLog

DEFAULT_SUBDIRECTORIES = ("bin", "logs", "minio", "nsq", "redis", "restore")


class WorkspaceError(RuntimeError):
    # Refusal to recreate a scratch root that fails the path guard.
    pass


@dataclass(frozen=True, slots=True)
class WorkspaceLayout:
    root: Path
    expected_name: str = "tmp"
    subdirectories: tuple[str, ...] = DEFAULT_SUBDIRECTORIES
    object_store_dir: str = "minio"
    log_dir_name: str = "logs"
    buckets: tuple[str, ...] = ()

    @property
    def log_dir(self) -> Path:
        return self.root / self.log_dir_name

    @property
    def object_store_root(self) -> Path:
        return self.root / self.object_store_dir

    def expected_directories(self, root: Path | None = None) -> list[Path]:
        base = root if root is not None else self.root
        dirs = [base / name for name in self.subdirectories]
        dirs.extend(base / self.object_store_dir / bucket for bucket in self.buckets)
        return dirs


def resolve_scratch_root(environment: Mapping[str, str], name: str = "tmp") -> Path:
    home = environment.get("HOME")
    base = Path(home) if home else Path.home()
    return base / name


class WorkspacePreparer:
    """Recreates the scratch tree before each run.

    The object-store emulator discovers its buckets from the directories
    beneath its root, so creating ``<object_store_root>/<bucket>`` is the
    whole of storage provisioning.
    """

    def __init__(self, layout: WorkspaceLayout, *, events: EventLog | None = None) -> None:
        self._layout = layout
        self._events = events if events is not None else EventLog()

    @property
    def layout(self) -> WorkspaceLayout:
        return self._layout

    def prepare(self) -> None:
        root = self._layout.root.expanduser().resolve()
        # Guard: never rmtree anything whose last segment is not the scratch name.
        if root.name != self._layout.expected_name:
            self._events.emit(
                "workspace_guard_refused",
                level="error",
                root=str(root),
                expected=self._layout.expected_name,
            )
            raise WorkspaceError(
                f"Refusing to recreate {root}: last path segment must be '{self._layout.expected_name}'"
            )

        if root.exists():
            self._events.emit("workspace_removed", root=str(root))
            shutil.rmtree(root)

        for directory in self._layout.expected_directories(root):
            directory.mkdir(parents=True, exist_ok=True)
        self._events.emit(
            "workspace_prepared",
            root=str(root),
            directories=len(self._layout.subdirectories),
            buckets=len(self._layout.buckets),
        )
