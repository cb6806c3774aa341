from __future__ import annotations

import shlex
import subprocess
import time
from collections.abc import Mapping
from pathlib import Path

from harness_kernel.observability.events import EventLog

COMMAND_NOT_RUNNABLE = 127


class CommandRunner:
    # Runs a foreground command to completion (compiler, test runner, migrations, fixtures).
    def __init__(self, *, events: EventLog | None = None) -> None:
        self._events = events if events is not None else EventLog()

    def run(
        self,
        command: str,
        *,
        cwd: Path,
        env: Mapping[str, str],
        log_path: Path | None = None,
    ) -> int:
        self._events.emit("command_started", command=command, cwd=str(cwd))
        start = time.monotonic()
        try:
            argv = shlex.split(command)
            if log_path is None:
                completed = subprocess.run(argv, cwd=str(cwd), env=dict(env), check=False)
            else:
                log_path.parent.mkdir(parents=True, exist_ok=True)
                with log_path.open("a", encoding="utf-8") as fh:
                    fh.write(f"$ {command}\n")
                    fh.flush()
                    completed = subprocess.run(
                        argv,
                        cwd=str(cwd),
                        env=dict(env),
                        stdout=fh,
                        stderr=subprocess.STDOUT,
                        check=False,
                    )
        except (OSError, ValueError) as exc:
            self._events.emit("command_not_runnable", level="error", command=command, error=str(exc))
            return COMMAND_NOT_RUNNABLE

        elapsed = time.monotonic() - start
        self._events.emit(
            "command_finished",
            level="info" if completed.returncode == 0 else "warning",
            command=command,
            exit_code=completed.returncode,
            duration_sec=round(elapsed, 3),
        )
        return completed.returncode
