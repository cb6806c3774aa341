from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

from harness_kernel.observability.domain.logging import LogMessage


class LogSink:
    # Sink contract for structured harness logs.
    def emit(self, message: LogMessage) -> None:
        raise NotImplementedError("LogSink.emit must be implemented")

    def close(self) -> None:
        return None


class StdoutLogSink(LogSink):
    # Machine-readable JSON line per message on stdout.
    def emit(self, message: LogMessage) -> None:
        print(json.dumps(_log_to_dict(message), separators=(",", ":"), ensure_ascii=False, default=str))


class ConsoleLogSink(LogSink):
    # Human-oriented single line per message: "[ts] level message key=value ...".
    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    def emit(self, message: LogMessage) -> None:
        stream = self._stream if self._stream is not None else sys.stdout
        ts = message.timestamp.isoformat(timespec="seconds").replace("+00:00", "Z")
        parts = [f"[{ts}]", message.level.upper(), message.message]
        parts.extend(f"{key}={value}" for key, value in message.fields.items() if key != "kind")
        stream.write(" ".join(parts) + "\n")
        stream.flush()


class JsonlLogSink(LogSink):
    # File-backed structured log sink kept alongside the service logs. The file
    # is (re)opened on demand: workspace preparation may delete it mid-run.
    def __init__(self, path: Path) -> None:
        self._path = path
        self._file: TextIO | None = None
        self._closed = False

    @property
    def path(self) -> Path:
        return self._path

    def emit(self, message: LogMessage) -> None:
        if self._closed:
            return
        if self._file is None or not self._path.exists():
            self._reopen()
        assert self._file is not None
        payload = json.dumps(_log_to_dict(message), separators=(",", ":"), ensure_ascii=False, default=str)
        self._file.write(payload + "\n")
        self._file.flush()

    def close(self) -> None:
        self._closed = True
        if self._file is not None:
            self._file.close()
            self._file = None

    def _reopen(self) -> None:
        if self._file is not None:
            self._file.close()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self._path.open("a", encoding="utf-8")


@dataclass(slots=True)
class FanoutLogSink(LogSink):
    sinks: list[LogSink]

    def emit(self, message: LogMessage) -> None:
        for sink in list(self.sinks):
            try:
                sink.emit(message)
            except Exception:
                continue

    def close(self) -> None:
        for sink in list(self.sinks):
            try:
                sink.close()
            except Exception:
                continue


def build_log_sink(*, console: str, jsonl_path: Path | None) -> FanoutLogSink:
    # console: "text" | "json" | "off"; jsonl_path None disables the file sink.
    sinks: list[LogSink] = []
    if console == "text":
        sinks.append(ConsoleLogSink())
    elif console == "json":
        sinks.append(StdoutLogSink())
    elif console != "off":
        raise ValueError(f"logging.console must be one of: ['json', 'off', 'text'] (got {console!r})")
    if jsonl_path is not None:
        sinks.append(JsonlLogSink(jsonl_path))
    return FanoutLogSink(sinks=sinks)


def _log_to_dict(message: LogMessage) -> dict[str, object]:
    return {
        "level": message.level,
        "message": message.message,
        "timestamp": message.timestamp.isoformat().replace("+00:00", "Z"),
        "fields": message.fields,
    }
