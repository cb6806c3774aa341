from .domain import LogMessage
from .events import EventLog

__all__ = ["EventLog", "LogMessage"]
