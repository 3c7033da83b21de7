#!/usr/bin/env python3
"""
Diagnostic trace buffer: a bounded, timestamped log of pipeline events.

The buffer is purely observational. Control logic never reads it; it exists so
a failed turn can be reconstructed across provider boundaries afterwards.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, List, Optional

from .config import default_config

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class TraceEvent:
    timestamp: float
    severity: Severity
    message: str

    def format(self) -> str:
        stamp = time.strftime("%H:%M:%S", time.localtime(self.timestamp))
        millis = int((self.timestamp % 1) * 1000)
        return f"{stamp}.{millis:03d} [{self.severity.value}] {self.message}"


class TraceBuffer:
    """Append-only ring buffer keeping the most recent pipeline events."""

    def __init__(self, capacity: Optional[int] = None, log: Optional[logging.Logger] = None):
        capacity = capacity or default_config.trace_capacity
        self._events: Deque[TraceEvent] = deque(maxlen=capacity)
        self._log = log or logger

    @property
    def capacity(self) -> int:
        return self._events.maxlen

    def record(self, severity: Severity, message: str) -> TraceEvent:
        event = TraceEvent(timestamp=time.time(), severity=Severity(severity), message=message)
        self._events.append(event)
        self._log.log(_LOG_LEVELS[event.severity], "%s", message)
        return event

    def info(self, message: str) -> TraceEvent:
        return self.record(Severity.INFO, message)

    def success(self, message: str) -> TraceEvent:
        return self.record(Severity.SUCCESS, message)

    def warning(self, message: str) -> TraceEvent:
        return self.record(Severity.WARNING, message)

    def error(self, message: str) -> TraceEvent:
        return self.record(Severity.ERROR, message)

    def events(self) -> List[TraceEvent]:
        """Snapshot of the buffered events, oldest first."""
        return list(self._events)

    def dump(self) -> str:
        return "\n".join(event.format() for event in self._events)

    def clear(self):
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)
