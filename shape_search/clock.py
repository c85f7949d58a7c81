from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Monotonic clock abstraction.

    Core logic depends on this interface rather than calling real time directly.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


class FrameClock:
    """Turns successive clock readings into per-frame elapsed seconds.

    Drivers call :meth:`tick` once per frame and feed the result into the
    ``advance(elapsed_s)`` methods of the state machines.
    """

    def __init__(self, clock: Clock, *, max_step_s: float | None = None) -> None:
        if max_step_s is not None and max_step_s <= 0.0:
            raise ValueError("max_step_s must be > 0")
        self._clock = clock
        self._max_step_s = max_step_s
        self._last_s = clock.now()

    def tick(self) -> float:
        now = self._clock.now()
        dt = max(0.0, now - self._last_s)
        self._last_s = now
        if self._max_step_s is not None:
            dt = min(dt, self._max_step_s)
        return dt
