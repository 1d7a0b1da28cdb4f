"""Event recorders: one that writes to the log, one that keeps events in memory."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone

log = logging.getLogger(__name__)

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"


def _format(message_fmt: str, args: tuple) -> str:
    return message_fmt % args if args else message_fmt


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RecordedEvent:
    """An event as kept by an InMemoryRecorder."""

    type: str
    reason: str
    message: str
    timestamp: datetime = field(default_factory=_now)


class LoggingRecorder:
    """Records events by writing their messages to the log."""

    def event(self, reason: str, message: str) -> None:
        log.info("%s", message)

    def eventf(self, reason: str, message_fmt: str, *args: object) -> None:
        log.info("%s", _format(message_fmt, args))

    def warning(self, reason: str, message: str) -> None:
        log.warning("%s", message)

    def warningf(self, reason: str, message_fmt: str, *args: object) -> None:
        log.warning("%s", _format(message_fmt, args))


class InMemoryRecorder:
    """Keeps every recorded event, in order, for later inspection."""

    def __init__(self, source_component: str = "") -> None:
        self.source_component = source_component
        self._lock = threading.Lock()
        self._events: list[RecordedEvent] = []

    def _record(self, event_type: str, reason: str, message: str) -> None:
        with self._lock:
            self._events.append(RecordedEvent(event_type, reason, message))

    def event(self, reason: str, message: str) -> None:
        self._record(EVENT_TYPE_NORMAL, reason, message)

    def eventf(self, reason: str, message_fmt: str, *args: object) -> None:
        self._record(EVENT_TYPE_NORMAL, reason, _format(message_fmt, args))

    def warning(self, reason: str, message: str) -> None:
        self._record(EVENT_TYPE_WARNING, reason, message)

    def warningf(self, reason: str, message_fmt: str, *args: object) -> None:
        self._record(EVENT_TYPE_WARNING, reason, _format(message_fmt, args))

    def events(self) -> list[RecordedEvent]:
        """Return a copy of the events recorded so far."""
        with self._lock:
            return list(self._events)