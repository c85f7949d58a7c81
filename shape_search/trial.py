from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from .event_log import EventLog, EventType
from .layout import Layout, LayoutGenerator
from .search_core import StimulusKind, StimulusSpec, TrialConfiguration, TrialStats, Vec2

logger = logging.getLogger(__name__)

# Absorbs float drift from summing frame steps against the presentation period.
SERIAL_TIMER_TOLERANCE_S = 1e-9


class TapOutcome(str, Enum):
    PENDING = "pending"
    CORRECT = "correct"
    INCORRECT = "incorrect"


class Renderer(Protocol):
    def show(self, stimulus_id: int) -> None: ...
    def hide(self, stimulus_id: int) -> None: ...
    def mask(self, stimulus_id: int) -> None: ...
    def unmask(self, stimulus_id: int) -> None: ...
    def set_feedback_color(self, stimulus_id: int, outcome: TapOutcome) -> None: ...


class NullRenderer:
    def show(self, stimulus_id: int) -> None:
        pass

    def hide(self, stimulus_id: int) -> None:
        pass

    def mask(self, stimulus_id: int) -> None:
        pass

    def unmask(self, stimulus_id: int) -> None:
        pass

    def set_feedback_color(self, stimulus_id: int, outcome: TapOutcome) -> None:
        pass


class StimulusField:
    """Placed stimuli of one trial plus their visibility/mask/feedback state.

    Specs are immutable; everything the participant sees is tracked here and
    forwarded to the renderer.
    """

    def __init__(self, *, layout: Layout, event_log: EventLog, renderer: Renderer | None = None) -> None:
        self._layout = layout
        self._log = event_log
        self._renderer: Renderer = renderer or NullRenderer()
        self._by_id: dict[int, StimulusSpec] = {s.stimulus_id: s for s in layout.stimuli}
        self._visible: set[int] = set()
        self._masked: set[int] = set()
        self._feedback: dict[int, TapOutcome] = {}

    @property
    def cue(self) -> StimulusSpec:
        return self._layout.cue

    @property
    def stimuli(self) -> tuple[StimulusSpec, ...]:
        return self._layout.stimuli

    @property
    def layout(self) -> Layout:
        return self._layout

    def __contains__(self, stimulus_id: object) -> bool:
        return stimulus_id in self._by_id

    def __len__(self) -> int:
        return len(self._layout.stimuli)

    def spec(self, stimulus_id: int) -> StimulusSpec:
        if stimulus_id == self.cue.stimulus_id:
            return self.cue
        return self._by_id[stimulus_id]

    def is_visible(self, stimulus_id: int) -> bool:
        return stimulus_id in self._visible

    def is_masked(self, stimulus_id: int) -> bool:
        return stimulus_id in self._masked

    def feedback_for(self, stimulus_id: int) -> TapOutcome | None:
        return self._feedback.get(stimulus_id)

    def show(self, stimulus_id: int) -> None:
        spec = self.spec(stimulus_id)
        self._visible.add(stimulus_id)
        self._renderer.show(stimulus_id)
        if spec.kind is not StimulusKind.CUE:
            self._log.log(
                EventType.STIMULUS,
                f"show.{spec.kind.value}",
                (spec.position.x, spec.position.y, spec.rotation),
            )

    def hide(self, stimulus_id: int) -> None:
        self._visible.discard(stimulus_id)
        self._renderer.hide(stimulus_id)

    def mask_all(self) -> None:
        for spec in self.stimuli:
            self._masked.add(spec.stimulus_id)
            self._renderer.mask(spec.stimulus_id)

    def unmask_all(self) -> None:
        for spec in self.stimuli:
            self._masked.discard(spec.stimulus_id)
            self._renderer.unmask(spec.stimulus_id)

    def hide_all(self) -> None:
        for spec in self.stimuli:
            self.hide(spec.stimulus_id)

    def set_feedback(self, stimulus_id: int, outcome: TapOutcome) -> None:
        self._feedback[stimulus_id] = outcome
        self._renderer.set_feedback_color(stimulus_id, outcome)

    def tap(self, stimulus_id: int, position: Vec2) -> float:
        """Return the distance from a target's centre, or -1.0 for a distractor."""

        spec = self._by_id[stimulus_id]
        self._log.log(
            EventType.STIMULUS,
            "tap",
            (spec.position.x, spec.position.y, position.x, position.y),
        )
        if spec.kind is StimulusKind.TARGET:
            return position.distance_to(spec.position)
        return -1.0


class TrialState(str, Enum):
    INITIALISATION = "initialisation"
    SEARCHING = "searching"
    MOVING = "moving"
    CORRECT_TAP = "correct_tap"
    INCORRECT_TAP = "incorrect_tap"
    DONE = "done"


# Stimuli are masked while the participant's finger is off the home anchor.
AIRBORNE_STATES = frozenset({TrialState.MOVING, TrialState.CORRECT_TAP, TrialState.INCORRECT_TAP})


@dataclass(slots=True)
class _StatsAccumulator:
    targets: int
    trialtime: float = 0.0
    airtime: float = 0.0
    hits: int = 0
    misses: int = 0
    taps: int = 0
    tapdistance: float = 0.0

    def freeze(self) -> TrialStats:
        return TrialStats(
            trialtime=self.trialtime,
            airtime=self.airtime,
            hits=self.hits,
            misses=self.misses,
            targets=self.targets,
            taps=self.taps,
            tapdistance=self.tapdistance,
        )


class TrialSession:
    """State machine for one trial: search, lift-off, tap, return, done.

    Input methods are tolerant of out-of-order callbacks: a call with no
    transition from the current state does nothing (it is logged at DEBUG).
    Time only moves through :meth:`advance`.
    """

    def __init__(
        self,
        *,
        config: TrialConfiguration,
        layout: Layout,
        event_log: EventLog,
        renderer: Renderer | None = None,
    ) -> None:
        self._config = config
        self._log = event_log
        self._field = StimulusField(layout=layout, event_log=event_log, renderer=renderer)

        self._state = TrialState.INITIALISATION
        self._stats = _StatsAccumulator(targets=config.target_count)
        self._final: TrialStats | None = None
        self._tapped: int | None = None

        self._presentation_time_s = 0.0
        self._presentation_index = 0

        self._log_state()
        self._field.show(self._field.cue.stimulus_id)

    @property
    def config(self) -> TrialConfiguration:
        return self._config

    @property
    def field(self) -> StimulusField:
        return self._field

    @property
    def state(self) -> TrialState:
        return self._state

    @property
    def target_rotation(self) -> int:
        return self._field.layout.target_rotation

    @property
    def is_airborne(self) -> bool:
        return self._state in AIRBORNE_STATES

    @property
    def is_done(self) -> bool:
        return self._state is TrialState.DONE

    @property
    def presentation_index(self) -> int:
        return self._presentation_index

    def stats(self) -> TrialStats:
        if self._final is not None:
            return self._final
        return self._stats.freeze()

    def start_trial(self) -> None:
        if self._state is not TrialState.INITIALISATION:
            self._ignored("start_trial")
            return
        self._change_state(TrialState.SEARCHING)
        self._field.hide(self._field.cue.stimulus_id)
        if self._config.serial_presentation:
            self._field.show(self._field.stimuli[0].stimulus_id)
        else:
            for spec in self._field.stimuli:
                self._field.show(spec.stimulus_id)

    def leave_home(self) -> None:
        if self._state is not TrialState.SEARCHING:
            self._ignored("leave_home")
            return
        self._change_state(TrialState.MOVING)
        self._field.mask_all()

    def return_home(self) -> None:
        if self._state not in AIRBORNE_STATES:
            self._ignored("return_home")
            return
        self._field.unmask_all()
        if self._tapped is not None:
            if self._state is TrialState.CORRECT_TAP:
                self._field.set_feedback(self._tapped, TapOutcome.CORRECT)
            elif self._state is TrialState.INCORRECT_TAP:
                self._field.set_feedback(self._tapped, TapOutcome.INCORRECT)
        self._change_state(TrialState.SEARCHING)

    def tap_object(self, stimulus_id: int | None, position: Vec2) -> float | None:
        """Register a tap on a stimulus while airborne.

        Returns ``None`` when the tap does not apply (wrong state or not a
        stimulus of this trial), -1.0 for a distractor, otherwise the distance
        from the target's centre.
        """

        if self._state is not TrialState.MOVING or stimulus_id not in self._field:
            self._ignored("tap_object")
            return None

        assert stimulus_id is not None
        distance = self._field.tap(stimulus_id, position)
        self._field.set_feedback(stimulus_id, TapOutcome.PENDING)
        self._tapped = stimulus_id
        if distance >= 0.0:
            self._change_state(TrialState.CORRECT_TAP)
            self._stats.hits += 1
        else:
            self._change_state(TrialState.INCORRECT_TAP)
            self._stats.misses += 1
        self._stats.tapdistance += 1.0 - distance / self._config.stimulus_size
        self._stats.taps += 1
        return distance

    def end_trial(self) -> TrialStats:
        if self._final is not None:
            return self._final
        self._field.unmask_all()
        self._change_state(TrialState.DONE)
        self._field.hide_all()
        self._final = self._stats.freeze()
        logger.info(
            "trial '%s' done: hits=%d misses=%d taps=%d",
            self._config.name,
            self._final.hits,
            self._final.misses,
            self._final.taps,
        )
        return self._final

    def advance(self, elapsed_s: float) -> None:
        if elapsed_s < 0.0:
            raise ValueError("elapsed_s must be non-negative")
        dt = float(elapsed_s)

        if self._state is TrialState.SEARCHING:
            self._stats.trialtime += dt
        elif self._state in AIRBORNE_STATES:
            self._stats.airtime += dt

        if not self._config.serial_presentation or self._state is not TrialState.SEARCHING:
            return

        self._presentation_time_s += dt
        period = self._config.serial_presentation_time
        while self._presentation_time_s >= period - SERIAL_TIMER_TOLERANCE_S:
            self._presentation_time_s -= period
            if not self._show_next():
                self.end_trial()
                return

    def close(self) -> None:
        self._field.hide(self._field.cue.stimulus_id)
        self._field.hide_all()

    def _show_next(self) -> bool:
        stimuli = self._field.stimuli
        self._field.hide(stimuli[self._presentation_index].stimulus_id)
        self._presentation_index += 1
        if self._presentation_index < len(stimuli):
            self._field.show(stimuli[self._presentation_index].stimulus_id)
            return True
        return False

    def _change_state(self, state: TrialState) -> None:
        self._state = state
        self._log_state()

    def _log_state(self) -> None:
        self._log.log(EventType.TRIAL, "state", self._state)

    def _ignored(self, action: str) -> None:
        logger.debug("trial '%s' ignored %s in state %s", self._config.name, action, self._state.value)


def build_trial_session(
    *,
    config: TrialConfiguration,
    generator: LayoutGenerator,
    event_log: EventLog,
    renderer: Renderer | None = None,
) -> TrialSession:
    layout = generator.generate(config)
    return TrialSession(config=config, layout=layout, event_log=event_log, renderer=renderer)
