from __future__ import annotations

import signal
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import pytest

from harness_kernel.services import CommandRunner, ProcessTable

# Shared in-memory stand-ins for the OS, the broker admin API and foreground commands.


class FakeProcess:
    def __init__(self, argv: list[str], pid: int, kwargs: dict[str, Any]) -> None:
        self.argv = argv
        self.pid = pid
        self.kwargs = kwargs
        self.returncode: int | None = None

    def poll(self) -> int | None:
        return self.returncode


class FakeOs:
    """Process table, spawner and kill() sharing one set of live pids."""

    def __init__(self, first_pid: int = 1000) -> None:
        self.next_pid = first_pid
        self.alive: set[int] = set()
        self.spawned: list[FakeProcess] = []
        self.signals: list[tuple[int, int]] = []
        self.fail_spawn: set[str] = set()
        self.deny_signal: set[int] = set()

    def spawn(self, argv: list[str], **kwargs: Any) -> FakeProcess:
        if argv[0] in self.fail_spawn:
            raise FileNotFoundError(2, "No such file or directory", argv[0])
        process = FakeProcess(argv, self.next_pid, kwargs)
        self.next_pid += 1
        self.alive.add(process.pid)
        self.spawned.append(process)
        return process

    def kill(self, pid: int, sig: int) -> None:
        self.signals.append((pid, sig))
        if pid in self.deny_signal:
            raise PermissionError(1, "Operation not permitted")
        if pid not in self.alive:
            raise ProcessLookupError(3, "No such process")
        self.alive.discard(pid)
        for process in self.spawned:
            if process.pid == pid:
                process.returncode = -sig

    def exit(self, pid: int, code: int = 1) -> None:
        # Simulates a child that dies on its own.
        self.alive.discard(pid)
        for process in self.spawned:
            if process.pid == pid:
                process.returncode = code

    def fork_worker(self) -> int:
        # A pid that exists in the table but was not spawned directly.
        pid = self.next_pid
        self.next_pid += 1
        self.alive.add(pid)
        return pid

    def spawned_names(self) -> list[str]:
        return [Path(process.argv[0]).name for process in self.spawned]

    def sigterms(self) -> list[int]:
        return [pid for pid, sig in self.signals if sig == signal.SIGTERM]


class FakeProcessTable(ProcessTable):
    def __init__(self, fake_os: FakeOs) -> None:
        self._os = fake_os
        self.signatures: dict[str, int] = {}
        self.lookups: list[str] = []

    def resolve_actual_process_id(self, signature: str, *, exclude: Iterable[int] = ()) -> int | None:
        self.lookups.append(signature)
        pid = self.signatures.get(signature)
        if pid is None or pid in set(exclude):
            return None
        return pid

    def is_alive(self, pid: int) -> bool:
        return pid in self._os.alive


class FakeRunner(CommandRunner):
    """Records foreground commands instead of running them."""

    def __init__(self, exit_codes: Mapping[str, int] | None = None) -> None:
        super().__init__()
        self.calls: list[tuple[str, Path, dict[str, str], Path | None]] = []
        self._exit_codes = dict(exit_codes or {})

    def run(
        self,
        command: str,
        *,
        cwd: Path,
        env: Mapping[str, str],
        log_path: Path | None = None,
    ) -> int:
        self.calls.append((command, cwd, dict(env), log_path))
        for needle, code in self._exit_codes.items():
            if needle in command:
                return code
        return 0

    def commands(self) -> list[str]:
        return [call[0] for call in self.calls]


class FakeResponse:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code


class FakeSession:
    """requests.Session stand-in for the broker admin API; creation is idempotent."""

    def __init__(self, *, fail_with: Exception | None = None, status_code: int = 200) -> None:
        self.posts: list[tuple[str, dict[str, str]]] = []
        self.topics: set[str] = set()
        self.channels: set[tuple[str, str]] = set()
        self._fail_with = fail_with
        self._status_code = status_code

    def post(self, url: str, *, params: dict[str, str], timeout: float) -> FakeResponse:
        _ = timeout
        self.posts.append((url, dict(params)))
        if self._fail_with is not None:
            raise self._fail_with
        if url.endswith("/topic/create"):
            self.topics.add(params["topic"])
        elif url.endswith("/channel/create"):
            self.channels.add((params["topic"], params["channel"]))
        return FakeResponse(self._status_code)

    def get(self, url: str, *, timeout: float) -> FakeResponse:
        _ = timeout
        self.posts.append((url, {}))
        if self._fail_with is not None:
            raise self._fail_with
        return FakeResponse(self._status_code)


class Sleeps:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_os() -> FakeOs:
    return FakeOs()


@pytest.fixture
def process_table(fake_os: FakeOs) -> FakeProcessTable:
    return FakeProcessTable(fake_os)


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def sleeps() -> Sleeps:
    return Sleeps()
