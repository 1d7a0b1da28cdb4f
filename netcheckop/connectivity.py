"""PodNetworkConnectivityCheck records and helpers that edit their status."""

from __future__ import annotations

import copy
import random
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from .apply import ConflictError

# The zero time: a log entry or outage end that has not been set.
ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

REACHABLE = "Reachable"

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"

LOG_REASON_DNS_RESOLVE = "DNSResolve"
LOG_REASON_DNS_ERROR = "DNSError"
LOG_REASON_TCP_CONNECT = "TCPConnect"
LOG_REASON_TCP_CONNECT_ERROR = "TCPConnectError"

MAX_LOG_ENTRIES = 10

_RETRY_STEPS = 4
_RETRY_DELAY = 0.01
_RETRY_FACTOR = 5.0


@dataclass
class LogEntry:
    """The result of one step of a connectivity check."""

    start: datetime = ZERO_TIME
    success: bool = False
    reason: str = ""
    message: str = ""
    latency: timedelta = timedelta(0)


@dataclass
class OutageEntry:
    """A period during which the target was unreachable."""

    start: datetime = ZERO_TIME
    end: datetime = ZERO_TIME
    start_logs: list[LogEntry] = field(default_factory=list)
    end_logs: list[LogEntry] = field(default_factory=list)
    message: str = ""


@dataclass
class CheckCondition:
    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = None


@dataclass
class CheckStatus:
    successes: list[LogEntry] = field(default_factory=list)
    failures: list[LogEntry] = field(default_factory=list)
    outages: list[OutageEntry] = field(default_factory=list)
    conditions: list[CheckCondition] = field(default_factory=list)


@dataclass
class CheckSpec:
    source_pod: str = ""
    target_endpoint: str = ""
    tls_client_cert: str = ""


@dataclass
class ConnectivityCheck:
    name: str = ""
    namespace: str = ""
    spec: CheckSpec = field(default_factory=CheckSpec)
    status: CheckStatus = field(default_factory=CheckStatus)


UpdateStatusFunc = Callable[[CheckStatus], None]


class _CheckClient(Protocol):
    def get(self, name: str) -> ConnectivityCheck: ...

    def update_status(self, check: ConnectivityCheck) -> ConnectivityCheck: ...


def set_condition(conditions: list[CheckCondition], new_condition: CheckCondition) -> None:
    """Add or update the condition of the same type in ``conditions``.

    The transition time is reset only when the status changes.
    """
    existing = None
    for condition in conditions:
        if condition.type == new_condition.type:
            existing = condition
    now = datetime.now(timezone.utc)
    if existing is None:
        conditions.append(replace(new_condition, last_transition_time=now))
        return
    if existing.status != new_condition.status:
        existing.status = new_condition.status
        existing.last_transition_time = now
    existing.reason = new_condition.reason
    existing.message = new_condition.message


def _try_update_status(
    client: _CheckClient, name: str, update_funcs: tuple[UpdateStatusFunc, ...]
) -> tuple[CheckStatus, bool]:
    check = client.get(name)
    new_status = copy.deepcopy(check.status)
    for update in update_funcs:
        update(new_status)
    if new_status == check.status:
        return new_status, False
    check = client.get(name)
    check.status = new_status
    updated = client.update_status(check)
    return updated.status, True


def update_status(
    client: _CheckClient, name: str, *update_funcs: UpdateStatusFunc
) -> tuple[CheckStatus, bool]:
    """Apply the update functions to the named check's status and store it.

    Returns the resulting status and whether a write took place. Conflicting
    writes are retried a few times before the ConflictError is raised.
    """
    delay = _RETRY_DELAY
    for attempt in range(1, _RETRY_STEPS + 1):
        try:
            return _try_update_status(client, name, update_funcs)
        except ConflictError:
            if attempt == _RETRY_STEPS:
                raise
            time.sleep(delay * (1 + random.random() * 0.1))
            delay *= _RETRY_FACTOR
    raise AssertionError("unreachable")


def _append_log_entry(log: list[LogEntry], *entries: LogEntry) -> list[LogEntry]:
    merged = sorted([*entries, *log], key=lambda entry: entry.start, reverse=True)
    return merged[:MAX_LOG_ENTRIES]


def add_success_log_entry(entry: LogEntry) -> UpdateStatusFunc:
    """Return an update that records a successful log entry, newest first."""

    def update(status: CheckStatus) -> None:
        status.successes = _append_log_entry(status.successes, entry)

    return update


def add_failure_log_entry(entry: LogEntry) -> UpdateStatusFunc:
    """Return an update that records a failed log entry, newest first."""

    def update(status: CheckStatus) -> None:
        status.failures = _append_log_entry(status.failures, entry)

    return update