from __future__ import annotations

from collections.abc import Hashable


class TouchTracker:
    """Detects sustained contact ("long press") on one object.

    Feed it the object under the pointer and whether the pointer is down once
    per frame. A press fires once, after contact on the same object has lasted
    longer than ``click_time_s``; it fires again only after a release or a move
    to another object.
    """

    def __init__(self, *, click_time_s: float) -> None:
        if click_time_s < 0.0:
            raise ValueError("click_time_s must be >= 0")
        self._click_time_s = float(click_time_s)
        self._selected: Hashable | None = None
        self._touch_time_s = 0.0
        self._fired = False

    @property
    def selected(self) -> Hashable | None:
        return self._selected

    @property
    def touch_time_s(self) -> float:
        return self._touch_time_s

    def reset(self) -> None:
        self._selected = None
        self._touch_time_s = 0.0
        self._fired = False

    def update(self, *, hit: Hashable | None, pressed: bool, dt: float) -> Hashable | None:
        if dt < 0.0:
            raise ValueError("dt must be non-negative")

        if not pressed:
            self.reset()
            return None

        if hit != self._selected:
            self._selected = hit
            self._touch_time_s = 0.0
            self._fired = False
            return None

        self._touch_time_s += float(dt)
        if self._selected is None or self._fired:
            return None
        if self._touch_time_s > self._click_time_s:
            self._fired = True
            return self._selected
        return None
