from .logging import (
    ConsoleLogSink,
    FanoutLogSink,
    JsonlLogSink,
    LogSink,
    StdoutLogSink,
    build_log_sink,
)

__all__ = [
    "ConsoleLogSink",
    "FanoutLogSink",
    "JsonlLogSink",
    "LogSink",
    "StdoutLogSink",
    "build_log_sink",
]
