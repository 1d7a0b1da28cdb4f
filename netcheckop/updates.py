"""A queue that sorts status updates by timestamp before releasing them."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Callable

from .connectivity import ZERO_TIME, UpdateStatusFunc

MAX_PENDING_UPDATES = 20

UpdatesProcessor = Callable[..., None]


class UpdatesManager:
    """Holds updates back long enough to put late arrivals in order.

    Updates added with a timestamp are released to ``processing_queue`` in
    timestamp order once they follow on from the previous release, or once
    waiting any longer for a missing update is pointless.
    """

    def __init__(
        self,
        check_period: timedelta,
        check_timeout: timedelta,
        processor: UpdatesProcessor,
        last_timestamp: datetime = ZERO_TIME,
    ) -> None:
        self.check_period = check_period
        self.check_timeout = check_timeout
        self.last_timestamp = last_timestamp
        self.processing_queue: list[UpdateStatusFunc] = []
        self._processor = processor
        self._lock = threading.Lock()
        self._sorting: dict[datetime, list[UpdateStatusFunc]] = {}
        self._timestamps: list[datetime] = []

    def add(self, timestamp: datetime, *updates: UpdateStatusFunc) -> None:
        """Queue the updates of one check, made at ``timestamp``."""
        with self._lock:
            self._sorting[timestamp] = list(updates)
            self._timestamps.append(timestamp)
            self._timestamps.sort()

            latest = self._timestamps[-1]
            requeue: list[datetime] = []
            for ts in self._timestamps:
                follows_on = ts - self.last_timestamp < self.check_period * 2
                waited_enough = latest - ts > self.check_timeout + self.check_period
                if follows_on or waited_enough:
                    self.processing_queue.extend(self._sorting.pop(ts, []))
                    self.last_timestamp = ts
                else:
                    requeue.append(ts)
            self._timestamps = requeue

    def process(self, flush: bool) -> None:
        """Hand ready updates to the processor once enough have gathered.

        With ``flush`` every queued update is processed, ready or not. If the
        processor raises, the updates stay queued for the next call.
        """
        with self._lock:
            if flush or len(self.processing_queue) > MAX_PENDING_UPDATES:
                self._processor(*self.processing_queue)
                self.processing_queue = []
            if flush:
                pending = [
                    update for ts in self._timestamps for update in self._sorting.get(ts, [])
                ]
                self._processor(*pending)
                self._sorting = {}
                self._timestamps = []