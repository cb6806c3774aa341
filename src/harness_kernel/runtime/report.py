from __future__ import annotations

import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import TextIO

from harness_kernel.observability.events import EventLog
from harness_kernel.services.supervisor import ProcessHandle, StopResult

SUMMARY_FILE_NAME = "harness-summary.json"


@dataclass(slots=True)
class PhaseTiming:
    state: str
    started_at: str
    duration_sec: float = 0.0


@dataclass(slots=True)
class RunReport:
    mode: str
    started_at: str
    log_dir: str
    exit_code: int | None = None
    failure: str | None = None
    phases: list[PhaseTiming] = field(default_factory=list)
    stop_results: list[StopResult] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.exit_code == 0

    def to_dict(self) -> dict[str, object]:
        return {
            "mode": self.mode,
            "started_at": self.started_at,
            "log_dir": self.log_dir,
            "exit_code": self.exit_code,
            "passed": self.passed,
            "failure": self.failure,
            "phases": [asdict(phase) for phase in self.phases],
            "stopped_services": [
                {
                    "service": result.service_name,
                    "pid": result.pid,
                    "stopped": result.stopped,
                    "skipped": result.skipped,
                    "error": result.error.reason if result.error is not None else None,
                }
                for result in self.stop_results
            ],
        }


class ResultReporter:
    # Pass/fail banner for the developer plus a machine-readable run summary.
    def __init__(self, log_dir: Path, *, stream: TextIO | None = None, events: EventLog | None = None) -> None:
        self._log_dir = log_dir
        self._stream = stream
        self._events = events if events is not None else EventLog()

    def banner(self, report: RunReport) -> str:
        status = "PASSED" if report.passed else "FAILED"
        rule = "=" * 72
        lines = [rule, f"  {status}: {report.mode} (exit code {report.exit_code})"]
        if report.failure:
            lines.append(f"  {report.failure}")
        lines.append(f"  Service logs are in {report.log_dir}")
        lines.append(rule)
        return "\n".join(lines)

    def announce(self, report: RunReport) -> None:
        self._write(self.banner(report))
        self._events.emit(
            "run_result",
            level="info" if report.passed else "error",
            mode=report.mode,
            exit_code=report.exit_code,
        )

    def connection_info(self, handles: Sequence[ProcessHandle], urls: Mapping[str, str]) -> None:
        # Printed instead of teardown when services are left running.
        lines = ["Services left running:"]
        pids: list[str] = []
        for handle in handles:
            url = urls.get(handle.service_name)
            suffix = f" {url}" if url else ""
            lines.append(f"  {handle.service_name:<32} pid {handle.pid}{suffix}")
            if handle.pid:
                pids.append(str(handle.pid))
        if pids:
            lines.append(f"Stop them with: kill {' '.join(pids)}")
        self._write("\n".join(lines))

    def write_summary(self, report: RunReport) -> Path | None:
        path = self._log_dir / SUMMARY_FILE_NAME
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(report.to_dict(), indent=2) + "\n", encoding="utf-8")
        except OSError as exc:
            self._events.emit("summary_write_failed", level="warning", path=str(path), error=str(exc))
            return None
        return path

    def _write(self, text: str) -> None:
        stream = self._stream if self._stream is not None else sys.stdout
        stream.write(text + "\n")
        stream.flush()
