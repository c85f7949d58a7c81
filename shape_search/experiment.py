from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from .clock import Clock
from .event_log import EventLog, EventType
from .layout import LayoutGenerator
from .search_core import (
    ConfigurationError,
    ConstraintUnsatisfiable,
    SeededRng,
    TrialConfiguration,
    TrialStats,
    Vec2,
)
from .trial import Renderer, TrialSession, build_trial_session

logger = logging.getLogger(__name__)


class ExperimentState(str, Enum):
    INITIALISATION = "initialisation"
    INSTRUCTIONS = "instructions"
    PRE_TRIAL = "pre_trial"
    IN_TRIAL = "in_trial"
    POST_TRIAL = "post_trial"
    THANK_YOU = "thank_you"


class Control(str, Enum):
    HOME = "home"
    DONE = "done"


INSTRUCTIONS_TEXT = (
    "Remember the shape you are shown, then find every copy of it.\n"
    "Keep your finger on the home pad to see the shapes.\n"
    "Lift it and tap a shape to select it; the shapes are covered while you move.\n"
    "Hold the home pad to continue..."
)
PRE_TRIAL_PROMPT = "Look for the following shape:"
THANK_YOU_TEXT = "Thank you for your participation!"

# Indexed like the loss terms of ScoreBreakdown.losses().
FEEDBACK_MESSAGES = (
    "move faster, reducing airtime,",
    "complete trials faster",
    "prevent tapping incorrect targets",
    "make sure that you do not miss any targets",
    "hit targets more closely in the center",
)


@dataclass(frozen=True, slots=True)
class ExperimentConfig:
    trial_types: tuple[TrialConfiguration, ...] = (TrialConfiguration(),)
    repetitions: int = 1

    hit_score: float = 5.0
    miss_penalty: float = 20.0
    time_penalty: float = 0.5
    distance_score_multiplier: float = 15.0
    airtime_penalty: float = 2.0

    touch_click_time: float = 0.5
    max_layout_attempts: int = 3

    def __post_init__(self) -> None:
        if not self.trial_types:
            raise ConfigurationError("trial_types must not be empty")
        if self.repetitions < 1:
            raise ConfigurationError("repetitions must be >= 1")
        if self.touch_click_time < 0.0:
            raise ConfigurationError("touch_click_time must be >= 0")
        if self.max_layout_attempts < 1:
            raise ConfigurationError("max_layout_attempts must be >= 1")


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    airscore: float
    timescore: float
    missscore: float
    hitscore: float
    distancescore: float
    hit_score: float
    distance_score_multiplier: float

    @property
    def total(self) -> float:
        return self.airscore + self.timescore + self.missscore + self.hitscore + self.distancescore

    def losses(self) -> tuple[float, float, float, float, float]:
        """Distance of every term from its best possible value."""

        return (
            self.airscore,
            self.timescore,
            self.missscore,
            self.hitscore - self.hit_score,
            self.distancescore - self.distance_score_multiplier,
        )

    def feedback_index(self) -> int:
        losses = self.losses()
        return losses.index(min(losses))


def score_trial(stats: TrialStats, config: ExperimentConfig) -> ScoreBreakdown:
    distancescore = 0.0
    if stats.taps > 0:
        distancescore = stats.tapdistance / stats.taps * config.distance_score_multiplier
    return ScoreBreakdown(
        airscore=-stats.airtime * config.airtime_penalty,
        timescore=-stats.trialtime * config.time_penalty,
        missscore=-(stats.misses / stats.targets) * config.miss_penalty,
        hitscore=(stats.hits / stats.targets) * config.hit_score,
        distancescore=distancescore,
        hit_score=config.hit_score,
        distance_score_multiplier=config.distance_score_multiplier,
    )


def live_tap_score(distance: float, config: ExperimentConfig) -> float:
    if distance >= 0.0:
        return config.hit_score + (0.5 - distance) * config.distance_score_multiplier
    return -config.miss_penalty


def format_feedback(index: int) -> str:
    return f"Try to {FEEDBACK_MESSAGES[index]}\nto improve your score!\nTap to continue..."


def build_trial_sequence(
    trial_types: Sequence[TrialConfiguration],
    *,
    repetitions: int,
    rng: SeededRng,
) -> tuple[TrialConfiguration, ...]:
    sequence = [trial_types[i % len(trial_types)] for i in range(len(trial_types) * repetitions)]
    rng.shuffle(sequence)
    return tuple(sequence)


@dataclass(frozen=True, slots=True)
class TrialOutcome:
    trial_number: int
    config_name: str
    target_rotation: int
    stats: TrialStats
    breakdown: ScoreBreakdown
    feedback_index: int
    live_score: float
    score_after: float


@dataclass(slots=True)
class _Scores:
    live: float = 0.0
    trial: float = 0.0
    live_this_trial: float = 0.0
    outcomes: list[TrialOutcome] = field(default_factory=list)


class ExperimentSession:
    """Sequences trials and turns their statistics into a score and feedback.

    Instructions -> pre-trial -> in-trial -> post-trial, looping back to
    pre-trial until the shuffled trial sequence is used up, then thank-you.
    Two score accumulators run side by side: ``live_score`` collects per-tap
    points during a trial, ``trial_score`` the end-of-trial formula. ``score``
    is their sum.
    """

    def __init__(
        self,
        *,
        config: ExperimentConfig,
        seed: int,
        event_log: EventLog,
        renderer: Renderer | None = None,
    ) -> None:
        self._config = config
        self._seed = int(seed)
        self._log = event_log
        self._renderer = renderer

        rng = SeededRng(self._seed)
        self._sequence_rng = rng.spawn()
        self._generator = LayoutGenerator(rng.spawn())

        self._state = ExperimentState.INITIALISATION
        self._sequence: tuple[TrialConfiguration, ...] = ()
        self._trial_index = 0
        self._trial_count = 0
        self._trial: TrialSession | None = None

        self._scores = _Scores()
        self._feedback = ""
        self._overlay_text = ""
        self._exit_requested = False

    @property
    def config(self) -> ExperimentConfig:
        return self._config

    @property
    def seed(self) -> int:
        return self._seed

    @property
    def event_log(self) -> EventLog:
        return self._log

    @property
    def state(self) -> ExperimentState:
        return self._state

    @property
    def sequence(self) -> tuple[TrialConfiguration, ...]:
        return self._sequence

    @property
    def trials(self) -> int:
        return len(self._sequence)

    @property
    def trial_index(self) -> int:
        return self._trial_index

    @property
    def trial_count(self) -> int:
        return self._trial_count

    @property
    def active_trial(self) -> TrialSession | None:
        return self._trial

    @property
    def live_score(self) -> float:
        return self._scores.live

    @property
    def trial_score(self) -> float:
        return self._scores.trial

    @property
    def score(self) -> float:
        return self._scores.live + self._scores.trial

    @property
    def feedback(self) -> str:
        return self._feedback

    @property
    def overlay_text(self) -> str:
        return self._overlay_text

    @property
    def exit_requested(self) -> bool:
        return self._exit_requested

    def outcomes(self) -> list[TrialOutcome]:
        return list(self._scores.outcomes)

    def start(self) -> None:
        if self._state is not ExperimentState.INITIALISATION:
            self._ignored("start")
            return
        self._sequence = build_trial_sequence(
            self._config.trial_types,
            repetitions=self._config.repetitions,
            rng=self._sequence_rng,
        )
        logger.info("experiment seed=%d with %d trials", self._seed, len(self._sequence))
        self._overlay_text = INSTRUCTIONS_TEXT
        self._change_state(ExperimentState.INSTRUCTIONS)

    def long_press(self, control: Control) -> None:
        if control is Control.HOME:
            if self._state is ExperimentState.INSTRUCTIONS:
                self._prepare_trial()
            elif self._state is ExperimentState.PRE_TRIAL:
                self._start_trial()
            elif self._state is ExperimentState.POST_TRIAL:
                if self._trial_index >= len(self._sequence):
                    self._thank_you()
                else:
                    self._prepare_trial()
            else:
                self._ignored("long_press(home)")
        elif control is Control.DONE:
            if self._state is ExperimentState.IN_TRIAL:
                assert self._trial is not None
                self._trial.leave_home()
                self._end_trial()
            elif self._state is ExperimentState.THANK_YOU:
                self._exit_requested = True
                self._log.log(EventType.EXPERIMENT, "exit")
            else:
                self._ignored("long_press(done)")

    def leave_home(self) -> None:
        if self._state is not ExperimentState.IN_TRIAL or self._trial is None:
            self._ignored("leave_home")
            return
        self._trial.leave_home()

    def return_home(self) -> None:
        if self._state is not ExperimentState.IN_TRIAL or self._trial is None:
            self._ignored("return_home")
            return
        self._trial.return_home()

    def tap(self, stimulus_id: int | None, position: Vec2) -> float | None:
        if self._state is not ExperimentState.IN_TRIAL or self._trial is None:
            self._ignored("tap")
            return None
        self._trial.leave_home()
        distance = self._trial.tap_object(stimulus_id, position)
        if distance is not None:
            delta = live_tap_score(distance, self._config)
            self._scores.live += delta
            self._scores.live_this_trial += delta
        return distance

    def advance(self, elapsed_s: float) -> None:
        if elapsed_s < 0.0:
            raise ValueError("elapsed_s must be non-negative")
        if self._state is not ExperimentState.IN_TRIAL or self._trial is None:
            return
        self._trial.advance(elapsed_s)
        if self._trial.is_done:
            # Serial presentation finished on its own.
            self._end_trial()

    def _prepare_trial(self) -> None:
        if self._trial is not None:
            self._trial.close()
            self._trial = None

        while self._trial_index < len(self._sequence):
            config = self._sequence[self._trial_index]
            self._trial_index += 1
            trial = self._build_trial(config)
            if trial is not None:
                self._trial = trial
                self._overlay_text = PRE_TRIAL_PROMPT
                self._change_state(ExperimentState.PRE_TRIAL)
                return
            logger.warning("skipping trial %d ('%s'): layout could not be placed", self._trial_index, config.name)
            self._log.log(EventType.EXPERIMENT, "trial_skipped", config.name)

        self._thank_you()

    def _build_trial(self, config: TrialConfiguration) -> TrialSession | None:
        for attempt in range(1, self._config.max_layout_attempts + 1):
            try:
                return build_trial_session(
                    config=config,
                    generator=self._generator,
                    event_log=self._log,
                    renderer=self._renderer,
                )
            except ConstraintUnsatisfiable as exc:
                logger.warning("layout attempt %d/%d failed: %s", attempt, self._config.max_layout_attempts, exc)
        return None

    def _start_trial(self) -> None:
        assert self._trial is not None
        self._overlay_text = ""
        self._scores.live_this_trial = 0.0
        self._trial.start_trial()
        self._trial_count += 1
        self._change_state(ExperimentState.IN_TRIAL)

    def _end_trial(self) -> None:
        assert self._trial is not None
        self._change_state(ExperimentState.POST_TRIAL)
        stats = self._trial.end_trial()

        breakdown = score_trial(stats, self._config)
        self._scores.trial += breakdown.total
        index = breakdown.feedback_index()
        self._feedback = format_feedback(index)
        self._overlay_text = self._feedback

        self._log.log(EventType.TRIAL, "score", self.score)
        for key, value in stats.as_dict().items():
            self._log.log(EventType.TRIAL, f"stats.{key}", value)
        self._log.log(EventType.TRIAL, "cue", FEEDBACK_MESSAGES[index])
        logger.debug("trial losses: %s", ", ".join(f"{v:.3f}" for v in breakdown.losses()))

        self._scores.outcomes.append(
            TrialOutcome(
                trial_number=self._trial_count,
                config_name=self._trial.config.name,
                target_rotation=self._trial.target_rotation,
                stats=stats,
                breakdown=breakdown,
                feedback_index=index,
                live_score=self._scores.live_this_trial,
                score_after=self.score,
            )
        )

    def _thank_you(self) -> None:
        if self._trial is not None:
            self._trial.close()
            self._trial = None
        self._overlay_text = THANK_YOU_TEXT
        self._change_state(ExperimentState.THANK_YOU)
        logger.info("experiment finished with score %.2f", self.score)

    def _change_state(self, state: ExperimentState) -> None:
        self._state = state
        self._log.log(EventType.EXPERIMENT, "state", state)

    def _ignored(self, action: str) -> None:
        logger.debug("experiment ignored %s in state %s", action, self._state.value)


def build_experiment_session(
    *,
    clock: Clock,
    seed: int,
    config: ExperimentConfig | None = None,
    renderer: Renderer | None = None,
) -> ExperimentSession:
    cfg = config or ExperimentConfig()
    return ExperimentSession(
        config=cfg,
        seed=seed,
        event_log=EventLog(clock=clock),
        renderer=renderer,
    )
