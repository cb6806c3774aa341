from __future__ import annotations

import time
from datetime import UTC, datetime

from harness_kernel.observability.adapters.logging import LogSink
from harness_kernel.observability.domain.logging import LogMessage


class EventLog:
    # Shared lifecycle event channel: every emitted event is kept in memory and
    # forwarded to the configured sinks as a "harness.<kind>" LogMessage.
    def __init__(self, sink: LogSink | None = None) -> None:
        self._sinks: list[LogSink] = [sink] if sink is not None else []
        self._events: list[dict[str, object]] = []
        self._messages: list[LogMessage] = []

    def emit(self, kind: str, *, level: str = "info", **fields: object) -> None:
        event = {
            "kind": kind,
            "ts_epoch_ms": int(time.time() * 1000),
            **fields,
        }
        self._events.append(event)
        message = LogMessage(
            level=level,
            message=f"harness.{kind}",
            timestamp=datetime.now(tz=UTC),
            fields={key: value for key, value in event.items() if key != "ts_epoch_ms"},
        )
        self._messages.append(message)
        for sink in list(self._sinks):
            _forward(sink, message)

    def attach(self, sink: LogSink) -> None:
        # Late sinks (files inside the scratch workspace) first receive everything emitted so far.
        for message in self._messages:
            _forward(sink, message)
        self._sinks.append(sink)

    def events(self, kind: str | None = None) -> list[dict[str, object]]:
        if kind is None:
            return list(self._events)
        return [event for event in self._events if event.get("kind") == kind]

    def close(self) -> None:
        for sink in self._sinks:
            sink.close()


def _forward(sink: LogSink, message: LogMessage) -> None:
    try:
        sink.emit(message)
    except Exception:
        return
