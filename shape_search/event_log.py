"""Append-only, time-stamped record of experiment events.

Both state machines write ``(type, name, value)`` triples here; the log stamps
them with the injected clock and keeps them in append order. External sinks
(persistence, telemetry bridges) subscribe and receive every record as it is
appended.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Union

from .clock import Clock

logger = logging.getLogger(__name__)

EventValue = Union[None, float, tuple[float, ...], str]
EventSink = Callable[["EventRecord"], None]


class EventType(str, Enum):
    EXPERIMENT = "experiment"
    TRIAL = "trial"
    STIMULUS = "stimulus"


@dataclass(frozen=True, slots=True)
class EventRecord:
    seq: int
    type: EventType
    name: str
    timestamp: float
    value: EventValue = None

    def __str__(self) -> str:
        return f"{self.type.value}.{self.name} at +{self.timestamp:.3f}s: {self.value}"


def _coerce_value(value: object) -> EventValue:
    if isinstance(value, Enum):
        return str(value.value)
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, (tuple, list)):
        return tuple(float(v) for v in value)
    raise TypeError(f"unsupported event value: {value!r}")


class EventLog:
    def __init__(self, *, clock: Clock) -> None:
        self._clock = clock
        self._origin_s = clock.now()
        self._lock = threading.Lock()
        self._records: list[EventRecord] = []
        self._sinks: list[EventSink] = []

    def log(self, type: EventType, name: str, value: object = None) -> EventRecord:
        coerced = _coerce_value(value)
        with self._lock:
            record = EventRecord(
                seq=len(self._records),
                type=EventType(type),
                name=str(name),
                timestamp=self._clock.now() - self._origin_s,
                value=coerced,
            )
            self._records.append(record)
            sinks = tuple(self._sinks)

        logger.debug("%s", record)
        for sink in sinks:
            try:
                sink(record)
            except Exception:
                logger.exception("event sink %r failed on %s", sink, record)
        return record

    def subscribe(self, sink: EventSink) -> None:
        with self._lock:
            self._sinks.append(sink)

    def unsubscribe(self, sink: EventSink) -> None:
        with self._lock:
            if sink in self._sinks:
                self._sinks.remove(sink)

    def records(self) -> list[EventRecord]:
        with self._lock:
            return list(self._records)

    def by_type(self, type: EventType) -> list[EventRecord]:
        return [r for r in self.records() if r.type is type]

    def by_name(self, type: EventType, name: str) -> list[EventRecord]:
        return [r for r in self.records() if r.type is type and r.name == name]

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __iter__(self) -> Iterator[EventRecord]:
        return iter(self.records())
