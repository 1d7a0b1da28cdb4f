import copy
from datetime import datetime, timedelta, timezone

import pytest

from netcheckop.apply import ConflictError, NotFoundError
from netcheckop.connectivity import (
    CONDITION_FALSE,
    CONDITION_TRUE,
    REACHABLE,
    CheckCondition,
    CheckSpec,
    CheckStatus,
    ConnectivityCheck,
    LogEntry,
    add_failure_log_entry,
    add_success_log_entry,
    set_condition,
    update_status,
)


def at(sec):
    return datetime(2000, 1, 1, 0, 0, sec, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "conditions, condition, expected",
    [
        (
            [],
            CheckCondition(type=REACHABLE, status=CONDITION_TRUE, reason="A", message="Msg"),
            [CheckCondition(type=REACHABLE, status=CONDITION_TRUE, reason="A", message="Msg")],
        ),
        (
            [CheckCondition(type=REACHABLE, status=CONDITION_TRUE, reason="A", message="Msg")],
            CheckCondition(type=REACHABLE, status=CONDITION_FALSE, reason="B", message="MsgB"),
            [CheckCondition(type=REACHABLE, status=CONDITION_FALSE, reason="B", message="MsgB")],
        ),
    ],
)
def test_set_condition(conditions, condition, expected):
    check = ConnectivityCheck(status=CheckStatus(conditions=copy.deepcopy(conditions)))
    set_condition(check.status.conditions, condition)
    for item in check.status.conditions:
        item.last_transition_time = None
    assert check.status.conditions == expected


def test_set_condition_keeps_transition_time_when_status_unchanged():
    then = at(0)
    conditions = [
        CheckCondition(type=REACHABLE, status=CONDITION_TRUE, reason="A", last_transition_time=then)
    ]
    set_condition(conditions, CheckCondition(type=REACHABLE, status=CONDITION_TRUE, reason="B"))
    assert conditions[0].last_transition_time == then
    assert conditions[0].reason == "B"


def test_set_condition_stamps_new_condition():
    before = datetime.now(timezone.utc)
    conditions = []
    set_condition(conditions, CheckCondition(type=REACHABLE, status=CONDITION_TRUE))
    assert len(conditions) == 1
    assert conditions[0].last_transition_time >= before


def test_log_entries_sorted_newest_first():
    status = CheckStatus()
    for sec in (1, 3, 2):
        add_success_log_entry(LogEntry(start=at(sec), success=True))(status)
    assert [e.start for e in status.successes] == [at(3), at(2), at(1)]


def test_log_entries_limited_to_ten():
    status = CheckStatus()
    for sec in range(15):
        add_failure_log_entry(LogEntry(start=at(sec)))(status)
    assert len(status.failures) == 10
    assert status.failures[0].start == at(14)
    assert status.failures[-1].start == at(5)


class FakeChecks:
    def __init__(self, check, conflicts=0):
        self.check = check
        self.conflicts = conflicts
        self.writes = 0

    def get(self, name):
        if name != self.check.name:
            raise NotFoundError(name)
        return copy.deepcopy(self.check)

    def update_status(self, check):
        if self.conflicts:
            self.conflicts -= 1
            raise ConflictError("conflict")
        self.writes += 1
        self.check = copy.deepcopy(check)
        return copy.deepcopy(check)


def make_check():
    return ConnectivityCheck(name="c", namespace="ns", spec=CheckSpec(target_endpoint="host:port"))


def test_update_status_without_changes_does_not_write():
    client = FakeChecks(make_check())
    status, updated = update_status(client, "c")
    assert updated is False
    assert client.writes == 0
    assert status == CheckStatus()


def test_update_status_writes_changes():
    client = FakeChecks(make_check())
    entry = LogEntry(start=at(1), success=True, latency=timedelta(milliseconds=1))
    status, updated = update_status(client, "c", add_success_log_entry(entry))
    assert updated is True
    assert status.successes == [entry]
    assert client.check.status.successes == [entry]


def test_update_status_retries_conflict():
    client = FakeChecks(make_check(), conflicts=2)
    entry = LogEntry(start=at(1))
    _, updated = update_status(client, "c", add_failure_log_entry(entry))
    assert updated is True
    assert client.writes == 1
    assert client.check.status.failures == [entry]


def test_update_status_missing_check():
    with pytest.raises(NotFoundError):
        update_status(FakeChecks(make_check()), "other")