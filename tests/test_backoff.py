from datetime import datetime, timedelta, timezone

from netcheckop.backoff import BackoffEventRecorder, EventInfo, join_event_messages
from netcheckop.eventrecorder import EVENT_TYPE_NORMAL, EVENT_TYPE_WARNING, InMemoryRecorder


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def advance(self, duration):
        self.now += duration.total_seconds()


def make_recorder(clock, short, short_max, long, long_max, backoff):
    target = InMemoryRecorder("test")
    recorder = BackoffEventRecorder(
        target,
        short_window=short,
        short_window_count_max=short_max,
        long_window=long,
        long_window_count_max=long_max,
        backoff=backoff,
        clock=clock,
    )
    return target, recorder


def test_with_short_window():
    short_duration = timedelta(seconds=20)
    short_count_max = 3
    long_duration = 2 * short_duration
    long_count_max = 60
    backoff_duration = long_duration
    excessive_event_count = 10

    clock = FakeClock()
    target, r = make_recorder(
        clock, short_duration, short_count_max, long_duration, long_count_max, backoff_duration
    )

    r.eventf("TestWithShortWindow", "TEST")
    clock.advance(short_duration)
    for _ in range(short_count_max + excessive_event_count):
        r.eventf("TestWithShortWindow", "TEST")
    clock.advance(backoff_duration)
    for _ in range(short_count_max - 1):
        r.eventf("TestWithShortWindow", "TEST")

    events = target.events()
    assert len(events) == 1 + short_count_max + 1 + short_count_max - 1
    summary = events[1 + short_count_max + 1].message.split("\n")
    assert len(summary) == excessive_event_count
    assert all(line.endswith(": TEST") for line in summary)


def test_with_long_window():
    short_duration = timedelta(seconds=20)
    short_count_max = 3
    long_duration = 5 * short_duration
    long_count_max = (short_count_max - 1) * 3
    backoff_duration = long_duration
    excessive_event_count = 10

    clock = FakeClock()
    target, r = make_recorder(
        clock, short_duration, short_count_max, long_duration, long_count_max, backoff_duration
    )

    i = 0
    while i < long_count_max:
        for _ in range(short_count_max - 1):
            r.eventf("TestWithLongWindow", "TEST")
        clock.advance(short_duration)
        i += short_count_max - 1

    for _ in range(excessive_event_count):
        r.eventf("TestWithLongWindow", "TEST")

    clock.advance(backoff_duration)

    for _ in range(2):
        r.eventf("TestWithLongWindow", "TEST")

    events = target.events()
    assert len(events) == long_count_max + 1 + 1
    assert len(events[long_count_max].message.split("\n")) == excessive_event_count + 1


def test_events_below_threshold_pass_through_with_types():
    clock = FakeClock()
    target = InMemoryRecorder("test")
    r = BackoffEventRecorder(target, clock=clock)
    r.event("A", "one")
    r.warningf("B", "two %d", 2)
    r.eventf("A", "three")
    assert [(e.type, e.reason, e.message) for e in target.events()] == [
        (EVENT_TYPE_NORMAL, "A", "one"),
        (EVENT_TYPE_WARNING, "B", "two 2"),
        (EVENT_TYPE_NORMAL, "A", "three"),
    ]


def test_summary_groups_by_reason():
    clock = FakeClock()
    target = InMemoryRecorder("test")
    r = BackoffEventRecorder(
        target,
        short_window=timedelta(seconds=10),
        short_window_count_max=1,
        backoff=timedelta(seconds=5),
        clock=clock,
    )
    r.event("A", "a1")
    r.event("A", "a2")  # exceeds the short window and starts backoff
    r.warning("B", "b1")
    clock.advance(timedelta(seconds=5))
    r.event("A", "a3")
    events = target.events()
    assert events[0].message == "a1"
    reasons = {(e.type, e.reason): e.message for e in events[1:]}
    assert set(reasons) == {(EVENT_TYPE_NORMAL, "A"), (EVENT_TYPE_WARNING, "B")}
    assert reasons[(EVENT_TYPE_WARNING, "B")] == "b1"
    assert len(reasons[(EVENT_TYPE_NORMAL, "A")].split("\n")) == 2


def test_join_event_messages():
    start = datetime(2000, 1, 1, tzinfo=timezone.utc)
    first = EventInfo(start, "first")
    second = EventInfo(start + timedelta(seconds=1), "second")
    assert join_event_messages([]) == ""
    assert join_event_messages([first]) == "first"
    assert join_event_messages([first, second]) == f"{first}\n{second}"


def test_event_info_str_uses_rfc3339():
    info = EventInfo(datetime(2000, 1, 1, tzinfo=timezone.utc), "message")
    assert str(info) == "2000-01-01T00:00:00Z: message"