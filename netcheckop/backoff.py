"""An event recorder that backs off when events arrive too quickly."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from .eventrecorder import EVENT_TYPE_NORMAL, EVENT_TYPE_WARNING

log = logging.getLogger(__name__)


class _Recorder(Protocol):
    def event(self, reason: str, message: str) -> None: ...

    def warning(self, reason: str, message: str) -> None: ...


def _rfc3339(moment: datetime) -> str:
    text = moment.strftime("%Y-%m-%dT%H:%M:%S")
    offset = moment.utcoffset()
    if offset is None or offset == timedelta(0):
        return text + "Z"
    sign = "+" if offset >= timedelta(0) else "-"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


@dataclass(frozen=True)
class EventInfo:
    """An event message and the time its recording was requested."""

    timestamp: datetime
    message: str

    def __str__(self) -> str:
        return f"{_rfc3339(self.timestamp)}: {self.message}"


def join_event_messages(event_infos: list[EventInfo]) -> str:
    """Join events into one summary message; a single event keeps its bare message."""
    if not event_infos:
        return ""
    if len(event_infos) == 1:
        return event_infos[0].message
    return "\n".join(str(info) for info in event_infos)


class _Ticker:
    """Reports whether a period boundary has passed since it was last asked."""

    def __init__(self, period: float, clock: Callable[[], float]) -> None:
        self._period = period
        self._clock = clock
        self._start = clock()
        self._next = self._start + period

    def fired(self) -> bool:
        now = self._clock()
        if now < self._next:
            return False
        ticks = (now - self._start) // self._period + 1
        self._next = self._start + ticks * self._period
        return True


class BackoffEventRecorder:
    """Wraps a recorder, holding events back while they arrive too fast.

    Events are counted over a short and a long window. If either count
    exceeds its maximum, recording pauses for the backoff duration and
    events are buffered. Once recording resumes, buffered events are
    recorded as one summary event per type and reason.
    """

    def __init__(
        self,
        recorder: _Recorder,
        *,
        short_window: timedelta = timedelta(seconds=30),
        short_window_count_max: int = 30,
        long_window: timedelta = timedelta(minutes=10),
        long_window_count_max: int = 600,
        backoff: timedelta = timedelta(minutes=30),
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._recorder = recorder
        self._lock = threading.Lock()
        self._clock = clock
        self._events: dict[str, dict[str, list[EventInfo]]] = {}
        self.short_window = short_window
        self.short_window_count_max = short_window_count_max
        self.long_window = long_window
        self.long_window_count_max = long_window_count_max
        self.backoff = backoff
        self._short_count = 0
        self._long_count = 0
        self._short_ticker = _Ticker(short_window.total_seconds(), clock)
        self._long_ticker = _Ticker(long_window.total_seconds(), clock)
        self._backoff_ticker: _Ticker | None = None

    def event(self, reason: str, message: str) -> None:
        self._record(EVENT_TYPE_NORMAL, reason, message)

    def eventf(self, reason: str, message_fmt: str, *args: object) -> None:
        self.event(reason, message_fmt % args if args else message_fmt)

    def warning(self, reason: str, message: str) -> None:
        self._record(EVENT_TYPE_WARNING, reason, message)

    def warningf(self, reason: str, message_fmt: str, *args: object) -> None:
        self.warning(reason, message_fmt % args if args else message_fmt)

    def _record(self, event_type: str, reason: str, message: str) -> None:
        with self._lock:
            by_reason = self._events.setdefault(event_type, {})
            by_reason.setdefault(reason, []).append(
                EventInfo(datetime.now(timezone.utc), message)
            )

            if self._backoff_ticker is not None:
                if not self._backoff_ticker.fired():
                    return
                log.debug("Resuming connectivity event recording.")
                self._backoff_ticker = None
                self._short_count = 0
                self._long_count = 0

            if self._short_ticker.fired():
                self._short_count = 0
            else:
                self._short_count += 1
            if self._long_ticker.fired():
                self._long_count = 0
            else:
                self._long_count += 1

            short_exceeded = self._short_count > self.short_window_count_max
            long_exceeded = self._long_count > self.long_window_count_max
            if short_exceeded or long_exceeded:
                if short_exceeded:
                    log.debug(
                        "More than %d events (%d) in the last %s.",
                        self.short_window_count_max,
                        self._short_count,
                        self.short_window,
                    )
                else:
                    log.debug(
                        "More than %d events (%d) in the last %s.",
                        self.long_window_count_max,
                        self._long_count,
                        self.long_window,
                    )
                log.debug("Backing off event recording for the next %s.", self.backoff)
                self._backoff_ticker = _Ticker(self.backoff.total_seconds(), self._clock)
                return

            for buffered_type, reasons in self._events.items():
                for buffered_reason, infos in reasons.items():
                    messages = join_event_messages(sorted(infos, key=lambda i: i.timestamp))
                    if buffered_type == EVENT_TYPE_NORMAL:
                        self._recorder.event(buffered_reason, messages)
                    elif buffered_type == EVENT_TYPE_WARNING:
                        self._recorder.warning(buffered_reason, messages)
            self._events = {}