from __future__ import annotations

import os
import shlex
import signal
import subprocess
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from harness_kernel.observability.events import EventLog
from harness_kernel.services.descriptor import ServiceDescriptor
from harness_kernel.services.process_table import ProcessTable, PsutilProcessTable


class SpawnError(RuntimeError):
    # Service process could not be launched.
    def __init__(self, service_name: str, reason: str) -> None:
        super().__init__(f"Failed to start service '{service_name}': {reason}")
        self.service_name = service_name
        self.reason = reason


class StopError(RuntimeError):
    # Termination signal could not be delivered.
    def __init__(self, service_name: str, pid: int, reason: str) -> None:
        super().__init__(f"Failed to stop service '{service_name}' (pid {pid}): {reason}")
        self.service_name = service_name
        self.pid = pid
        self.reason = reason


class ProcessState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"
    UNKNOWN = "unknown"


@dataclass(slots=True)
class ProcessHandle:
    service_name: str
    pid: int | None
    state: ProcessState
    log_path: Path
    spawned_pid: int | None = None
    pid_reassigned: bool = False

    def reassign_pid(self, pid: int) -> None:
        # Forked launchers: the real worker id replaces the launcher id at most once.
        if self.pid_reassigned:
            raise RuntimeError(f"Process id for '{self.service_name}' was already reassigned")
        self.pid = pid
        self.pid_reassigned = True


@dataclass(frozen=True, slots=True)
class StopResult:
    service_name: str
    pid: int | None
    stopped: bool
    error: StopError | None = None
    skipped: bool = False


Spawner = Callable[..., Any]
SignalSender = Callable[[int, int], None]


class ProcessSupervisor:
    """Owns the OS processes of every started service.

    Each service writes stdout and stderr to ``<log_dir>/<name>.log``. Children
    run in their own session so they outlive the call that started them and
    do not receive the terminal's interrupt; they are stopped explicitly with
    :meth:`stop`.
    """

    def __init__(
        self,
        log_dir: Path,
        *,
        events: EventLog | None = None,
        spawner: Spawner = subprocess.Popen,
        signal_sender: SignalSender = os.kill,
        process_table: ProcessTable | None = None,
        sleep: Callable[[float], None] = time.sleep,
        launcher_settle_seconds: float = 5.0,
    ) -> None:
        self._log_dir = log_dir
        self._events = events if events is not None else EventLog()
        self._spawner = spawner
        self._signal_sender = signal_sender
        self._process_table = process_table if process_table is not None else PsutilProcessTable()
        self._sleep = sleep
        self._launcher_settle_seconds = launcher_settle_seconds
        self._handles: dict[str, ProcessHandle] = {}
        self._processes: dict[str, Any] = {}

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def log_path_for(self, service_name: str) -> Path:
        return self._log_dir / f"{service_name}.log"

    def start(self, descriptor: ServiceDescriptor, environment: Mapping[str, str]) -> ProcessHandle:
        existing = self._handles.get(descriptor.name)
        if existing is not None and self.is_alive(existing):
            self._events.emit(
                "service_already_running",
                level="warning",
                service=descriptor.name,
                pid=existing.pid,
            )
            return existing

        log_path = self.log_path_for(descriptor.name)
        try:
            argv = shlex.split(descriptor.command)
        except ValueError as exc:
            raise SpawnError(descriptor.name, f"cannot parse command: {exc}") from exc

        log_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with log_path.open("a", encoding="utf-8") as log_file:
                process = self._spawner(
                    argv,
                    cwd=str(descriptor.working_directory),
                    env=dict(environment),
                    stdin=subprocess.DEVNULL,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
        except OSError as exc:
            self._events.emit("service_spawn_failed", level="error", service=descriptor.name, error=str(exc))
            raise SpawnError(descriptor.name, str(exc)) from exc

        handle = ProcessHandle(
            service_name=descriptor.name,
            pid=process.pid,
            state=ProcessState.STARTING,
            log_path=log_path,
            spawned_pid=process.pid,
        )
        self._handles[descriptor.name] = handle
        self._processes[descriptor.name] = process
        self._events.emit(
            "service_started",
            service=descriptor.name,
            pid=process.pid,
            command=descriptor.command,
            log=str(log_path),
        )
        if descriptor.readiness_message:
            self._events.emit("service_info", service=descriptor.name, message=descriptor.readiness_message)

        if descriptor.process_signature:
            self._adopt_forked_worker(handle, descriptor.process_signature)
        return handle

    def _adopt_forked_worker(self, handle: ProcessHandle, signature: str) -> None:
        # The launcher compiles/forks the real server; signaling the launcher id would not stop it.
        self._sleep(self._launcher_settle_seconds)
        exclude = {handle.pid} if handle.pid is not None else set()
        actual = self._process_table.resolve_actual_process_id(signature, exclude=exclude)
        if actual is None:
            self._events.emit(
                "forked_worker_not_found",
                level="warning",
                service=handle.service_name,
                signature=signature,
                pid=handle.pid,
            )
            return
        handle.reassign_pid(actual)
        self._events.emit(
            "forked_worker_adopted",
            service=handle.service_name,
            launcher_pid=handle.spawned_pid,
            pid=actual,
        )

    def mark_ready(self, handle: ProcessHandle) -> ProcessHandle:
        handle.state = ProcessState.RUNNING if self.is_alive(handle) else ProcessState.UNKNOWN
        if handle.state is ProcessState.UNKNOWN:
            self._events.emit("service_exited_early", level="warning", service=handle.service_name, pid=handle.pid)
        return handle

    def is_alive(self, handle: ProcessHandle) -> bool:
        if handle.state in (ProcessState.STOPPED, ProcessState.UNKNOWN) or not handle.pid:
            return False
        process = self._processes.get(handle.service_name)
        if process is not None and process.pid == handle.pid:
            return process.poll() is None
        return self._process_table.is_alive(handle.pid)

    def stop(self, handle: ProcessHandle) -> StopResult:
        if handle.state is ProcessState.STOPPED:
            # The pid may already be reused by an unrelated process.
            self._events.emit(
                "service_stop_skipped",
                service=handle.service_name,
                pid=handle.pid,
                reason="already stopped",
            )
            return StopResult(service_name=handle.service_name, pid=handle.pid, stopped=False, skipped=True)
        if not handle.pid:
            self._events.emit("service_stop_skipped", level="warning", service=handle.service_name, reason="no pid")
            self._forget(handle.service_name)
            handle.state = ProcessState.STOPPED
            return StopResult(service_name=handle.service_name, pid=handle.pid, stopped=False, skipped=True)

        self._events.emit("service_stopping", service=handle.service_name, pid=handle.pid)
        try:
            self._signal_sender(handle.pid, signal.SIGTERM)
        except OSError as exc:
            error = StopError(handle.service_name, handle.pid, _describe_signal_error(exc))
            handle.state = ProcessState.UNKNOWN
            self._events.emit(
                "service_stop_failed",
                level="warning",
                service=handle.service_name,
                pid=handle.pid,
                error=error.reason,
            )
            return StopResult(service_name=handle.service_name, pid=handle.pid, stopped=False, error=error)

        handle.state = ProcessState.STOPPED
        process = self._processes.get(handle.service_name)
        if process is not None:
            # Reap the direct child if it already exited; never block teardown on it.
            process.poll()
        self._forget(handle.service_name)
        return StopResult(service_name=handle.service_name, pid=handle.pid, stopped=True)

    def tracked(self) -> list[ProcessHandle]:
        return list(self._handles.values())

    def get(self, service_name: str) -> ProcessHandle | None:
        return self._handles.get(service_name)

    def _forget(self, service_name: str) -> None:
        self._handles.pop(service_name, None)
        self._processes.pop(service_name, None)


def _describe_signal_error(exc: OSError) -> str:
    if isinstance(exc, ProcessLookupError):
        return "not running"
    if isinstance(exc, PermissionError):
        return "permission denied"
    return str(exc)
