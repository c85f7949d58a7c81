from __future__ import annotations

import threading
from dataclasses import dataclass

import pytest

from shape_search.event_log import EventLog, EventRecord, EventType
from shape_search.search_core import StimulusKind


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


def test_records_are_stamped_relative_to_log_creation_and_ordered() -> None:
    clock = FakeClock(t=100.0)
    log = EventLog(clock=clock)

    log.log(EventType.EXPERIMENT, "state", "instructions")
    clock.advance(0.5)
    log.log(EventType.TRIAL, "score", 12)
    clock.advance(0.25)
    log.log(EventType.STIMULUS, "tap", [1, 2, 3, 4])

    records = log.records()
    assert [r.seq for r in records] == [0, 1, 2]
    assert [r.timestamp for r in records] == pytest.approx([0.0, 0.5, 0.75])
    assert len(log) == 3
    assert list(log) == records


def test_values_are_coerced_to_none_scalar_vector_or_tag() -> None:
    log = EventLog(clock=FakeClock())

    assert log.log(EventType.EXPERIMENT, "exit").value is None
    assert log.log(EventType.TRIAL, "score", 3).value == 3.0
    assert log.log(EventType.TRIAL, "flag", True).value == 1.0
    assert log.log(EventType.STIMULUS, "tap", [1, 2]).value == (1.0, 2.0)
    tag = log.log(EventType.TRIAL, "kind", StimulusKind.TARGET).value
    assert tag == "target" and type(tag) is str

    with pytest.raises(TypeError):
        log.log(EventType.TRIAL, "bad", {"a": 1})


def test_str_format() -> None:
    record = EventRecord(seq=0, type=EventType.TRIAL, name="state", timestamp=1.5, value="moving")
    assert str(record) == "trial.state at +1.500s: moving"


def test_sinks_receive_every_record_and_failures_are_isolated() -> None:
    log = EventLog(clock=FakeClock())
    received: list[EventRecord] = []

    def broken(record: EventRecord) -> None:
        raise RuntimeError("sink down")

    log.subscribe(broken)
    log.subscribe(received.append)

    log.log(EventType.TRIAL, "state", "searching")
    log.log(EventType.TRIAL, "state", "moving")
    assert [r.value for r in received] == ["searching", "moving"]

    log.unsubscribe(received.append)
    log.log(EventType.TRIAL, "state", "done")
    assert len(received) == 2
    assert len(log) == 3


def test_filters() -> None:
    log = EventLog(clock=FakeClock())
    log.log(EventType.TRIAL, "state", "searching")
    log.log(EventType.EXPERIMENT, "state", "in_trial")
    log.log(EventType.TRIAL, "score", 1.0)

    assert [r.value for r in log.by_name(EventType.TRIAL, "state")] == ["searching"]
    assert len(log.by_type(EventType.TRIAL)) == 2


def test_concurrent_appends_keep_unique_sequence_numbers() -> None:
    log = EventLog(clock=FakeClock())

    def writer(n: int) -> None:
        for i in range(200):
            log.log(EventType.STIMULUS, f"w{n}", i)

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    records = log.records()
    assert len(records) == 800
    assert [r.seq for r in records] == list(range(800))
    for n in range(4):
        values = [r.value for r in records if r.name == f"w{n}"]
        assert values == [float(i) for i in range(200)]
