from __future__ import annotations

import io
import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from harness_kernel.observability import EventLog, LogMessage
from harness_kernel.observability.adapters import (
    ConsoleLogSink,
    FanoutLogSink,
    JsonlLogSink,
    LogSink,
    StdoutLogSink,
    build_log_sink,
)


class _ExplodingSink(LogSink):
    def emit(self, message: LogMessage) -> None:
        raise RuntimeError("sink down")

    def close(self) -> None:
        raise RuntimeError("sink down")


class _ListSink(LogSink):
    def __init__(self) -> None:
        self.messages: list[LogMessage] = []
        self.closed = False

    def emit(self, message: LogMessage) -> None:
        self.messages.append(message)

    def close(self) -> None:
        self.closed = True


def test_log_message_requires_level_and_message() -> None:
    # Level and message are both mandatory.
    with pytest.raises(ValueError):
        LogMessage(level="", message="harness.x")


def test_event_log_keeps_events_and_forwards_to_sink() -> None:
    # Events are kept in memory and forwarded under the harness. prefix.
    sink = _ListSink()
    events = EventLog(sink)
    events.emit("service_started", service="redis", pid=10)
    events.emit("service_stopping", level="warning", service="redis")

    assert [event["kind"] for event in events.events()] == ["service_started", "service_stopping"]
    assert events.events("service_started")[0]["pid"] == 10
    assert [message.message for message in sink.messages] == ["harness.service_started", "harness.service_stopping"]
    assert sink.messages[1].level == "warning"
    assert "ts_epoch_ms" not in sink.messages[0].fields


def test_event_log_survives_failing_sink() -> None:
    # Logging problems must never interrupt service lifecycle handling.
    events = EventLog(_ExplodingSink())
    events.emit("teardown_started", services=2)
    assert len(events.events()) == 1


def test_console_sink_writes_one_human_line() -> None:
    # One line per event; the kind field is already in the message.
    stream = io.StringIO()
    ConsoleLogSink(stream).emit(
        LogMessage(
            level="info",
            message="harness.service_started",
            timestamp=datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC),
            fields={"kind": "service_started", "service": "redis", "pid": 7},
        )
    )
    assert stream.getvalue() == "[2026-01-02T03:04:05Z] INFO harness.service_started service=redis pid=7\n"


def test_stdout_sink_prints_json(capsys: pytest.CaptureFixture[str]) -> None:
    # The stdout sink emits one parseable JSON object per line.
    StdoutLogSink().emit(LogMessage(level="info", message="harness.run_started", fields={"mode": "units"}))
    payload = json.loads(capsys.readouterr().out)
    assert payload["message"] == "harness.run_started"
    assert payload["fields"] == {"mode": "units"}


def test_jsonl_sink_reopens_after_file_removal(tmp_path: Path) -> None:
    # Workspace preparation deletes the log directory after the first events are written.
    path = tmp_path / "logs" / "harness.jsonl"
    sink = JsonlLogSink(path)
    sink.emit(LogMessage(level="info", message="harness.before"))
    path.unlink()
    sink.emit(LogMessage(level="info", message="harness.after"))
    sink.close()
    sink.emit(LogMessage(level="info", message="harness.ignored"))

    lines = path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["message"] for line in lines] == ["harness.after"]


def test_fanout_isolates_sink_failures() -> None:
    # One broken sink must not starve the others.
    healthy = _ListSink()
    fanout = FanoutLogSink(sinks=[_ExplodingSink(), healthy])
    fanout.emit(LogMessage(level="info", message="harness.x"))
    fanout.close()
    assert len(healthy.messages) == 1
    assert healthy.closed


def test_build_log_sink_selects_sinks(tmp_path: Path) -> None:
    # Console mode and the file path decide which sinks are built.
    sink = build_log_sink(console="text", jsonl_path=tmp_path / "h.jsonl")
    assert [type(item) for item in sink.sinks] == [ConsoleLogSink, JsonlLogSink]
    assert build_log_sink(console="off", jsonl_path=None).sinks == []
    with pytest.raises(ValueError, match="logging.console"):
        build_log_sink(console="xml", jsonl_path=None)


def test_attached_sink_receives_earlier_events_first() -> None:
    # Sinks attached mid-run see the whole run, in emission order.
    events = EventLog()
    events.emit("run_started", mode="units")
    late = _ListSink()
    events.attach(late)
    events.emit("workspace_prepared")
    events.close()

    assert [message.message for message in late.messages] == ["harness.run_started", "harness.workspace_prepared"]
    assert late.closed
