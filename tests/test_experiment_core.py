from __future__ import annotations

from collections import Counter
from dataclasses import dataclass

import pytest

from shape_search.event_log import EventLog, EventType
from shape_search.experiment import (
    FEEDBACK_MESSAGES,
    PRE_TRIAL_PROMPT,
    THANK_YOU_TEXT,
    Control,
    ExperimentConfig,
    ExperimentSession,
    ExperimentState,
    build_experiment_session,
    build_trial_sequence,
    format_feedback,
    live_tap_score,
    score_trial,
)
from shape_search.search_core import (
    ConfigurationError,
    Rect,
    SeededRng,
    StimulusKind,
    TrialConfiguration,
    TrialStats,
)


@dataclass
class FakeClock:
    t: float = 0.0

    def now(self) -> float:
        return self.t

    def advance(self, dt: float) -> None:
        self.t += float(dt)


ROOMY = TrialConfiguration(name="roomy", region=Rect(0.0, 0.0, 30.0, 20.0), stimulus_count=10, target_count=3)
CRAMPED = TrialConfiguration(
    name="cramped",
    region=Rect(0.0, 0.0, 1.0, 1.0),
    stimulus_count=4,
    target_count=1,
    minimum_stimulus_spacing=5.0,
)


def _session(config: ExperimentConfig, seed: int = 42) -> ExperimentSession:
    return ExperimentSession(config=config, seed=seed, event_log=EventLog(clock=FakeClock()))


def test_score_formula_golden_value() -> None:
    stats = TrialStats(trialtime=10.0, airtime=2.0, hits=3, misses=0, targets=3, taps=3, tapdistance=1.5)
    breakdown = score_trial(stats, ExperimentConfig())

    assert breakdown.airscore == pytest.approx(-4.0)
    assert breakdown.timescore == pytest.approx(-5.0)
    assert breakdown.missscore == pytest.approx(0.0)
    assert breakdown.hitscore == pytest.approx(5.0)
    assert breakdown.distancescore == pytest.approx(7.5)
    assert breakdown.total == pytest.approx(3.5)

    assert breakdown.losses() == pytest.approx((-4.0, -5.0, 0.0, 0.0, -7.5))
    assert breakdown.feedback_index() == 4


def test_score_without_taps_has_no_distance_term() -> None:
    stats = TrialStats(trialtime=4.0, airtime=0.0, hits=0, misses=0, targets=2, taps=0, tapdistance=0.0)
    breakdown = score_trial(stats, ExperimentConfig())

    assert breakdown.distancescore == 0.0
    assert breakdown.total == pytest.approx(-2.0)
    # Nothing hit: -5 hit loss vs -15 distance loss.
    assert breakdown.feedback_index() == 4


def test_feedback_points_at_largest_loss() -> None:
    config = ExperimentConfig()
    slow = TrialStats(trialtime=60.0, airtime=1.0, hits=2, misses=0, targets=2, taps=2, tapdistance=2.0)
    assert score_trial(slow, config).feedback_index() == 1

    sloppy = TrialStats(trialtime=1.0, airtime=1.0, hits=1, misses=3, targets=2, taps=4, tapdistance=10.0)
    assert score_trial(sloppy, config).feedback_index() == 2

    airborne = TrialStats(trialtime=1.0, airtime=30.0, hits=2, misses=0, targets=2, taps=2, tapdistance=2.0)
    assert score_trial(airborne, config).feedback_index() == 0

    text = format_feedback(0)
    assert text == f"Try to {FEEDBACK_MESSAGES[0]}\nto improve your score!\nTap to continue..."


def test_live_tap_score() -> None:
    config = ExperimentConfig()
    assert live_tap_score(0.1, config) == pytest.approx(11.0)
    assert live_tap_score(0.0, config) == pytest.approx(12.5)
    assert live_tap_score(-1.0, config) == pytest.approx(-20.0)


def test_trial_sequence_contains_each_type_repetitions_times() -> None:
    a = TrialConfiguration(name="a")
    b = TrialConfiguration(name="b", target_count=2)
    c = TrialConfiguration(name="c", serial_presentation=True)

    seq = build_trial_sequence((a, b, c), repetitions=4, rng=SeededRng(5))

    assert len(seq) == 12
    assert Counter(t.name for t in seq) == {"a": 4, "b": 4, "c": 4}
    assert seq == build_trial_sequence((a, b, c), repetitions=4, rng=SeededRng(5))


@pytest.mark.parametrize(
    "kwargs",
    [
        {"trial_types": ()},
        {"repetitions": 0},
        {"touch_click_time": -1.0},
        {"max_layout_attempts": 0},
    ],
)
def test_invalid_experiment_config(kwargs: dict[str, object]) -> None:
    with pytest.raises(ConfigurationError):
        ExperimentConfig(**kwargs)  # type: ignore[arg-type]


def test_state_flow_and_guarded_inputs() -> None:
    session = _session(ExperimentConfig(trial_types=(ROOMY,), repetitions=1))
    assert session.state is ExperimentState.INITIALISATION

    session.long_press(Control.HOME)
    assert session.state is ExperimentState.INITIALISATION

    session.start()
    assert session.state is ExperimentState.INSTRUCTIONS
    assert session.trials == 1

    session.long_press(Control.HOME)
    assert session.state is ExperimentState.PRE_TRIAL
    assert session.overlay_text == PRE_TRIAL_PROMPT
    assert session.active_trial is not None
    assert session.trial_index == 1

    session.long_press(Control.DONE)
    session.leave_home()
    assert session.tap(1, session.active_trial.field.stimuli[0].position) is None
    assert session.state is ExperimentState.PRE_TRIAL

    session.long_press(Control.HOME)
    assert session.state is ExperimentState.IN_TRIAL
    assert session.trial_count == 1

    session.long_press(Control.DONE)
    assert session.state is ExperimentState.POST_TRIAL
    assert session.feedback.startswith("Try to ")
    assert session.overlay_text == session.feedback

    session.long_press(Control.HOME)
    assert session.state is ExperimentState.THANK_YOU
    assert session.overlay_text == THANK_YOU_TEXT
    assert not session.exit_requested

    session.long_press(Control.DONE)
    assert session.exit_requested


def test_taps_fold_into_live_score_and_trial_score_separately() -> None:
    session = _session(ExperimentConfig(trial_types=(ROOMY,), repetitions=1))
    session.start()
    session.long_press(Control.HOME)
    session.long_press(Control.HOME)
    trial = session.active_trial
    assert trial is not None

    target = trial.field.layout.targets()[0]
    distractor = trial.field.layout.distractors()[0]

    assert session.tap(target.stimulus_id, target.position) == pytest.approx(0.0)
    session.return_home()
    assert session.tap(distractor.stimulus_id, distractor.position) == -1.0
    session.return_home()

    assert session.live_score == pytest.approx(12.5 - 20.0)
    assert session.trial_score == 0.0

    session.long_press(Control.DONE)
    outcome = session.outcomes()[0]
    assert outcome.stats.hits == 1
    assert outcome.stats.misses == 1
    assert outcome.live_score == pytest.approx(-7.5)
    assert session.trial_score == pytest.approx(outcome.breakdown.total)
    assert session.score == pytest.approx(session.live_score + session.trial_score)
    assert outcome.score_after == pytest.approx(session.score)


def test_unplaceable_trial_type_is_skipped() -> None:
    session = _session(ExperimentConfig(trial_types=(CRAMPED,), repetitions=2))
    session.start()
    session.long_press(Control.HOME)

    assert session.state is ExperimentState.THANK_YOU
    assert session.active_trial is None
    skipped = session.event_log.by_name(EventType.EXPERIMENT, "trial_skipped")
    assert [r.value for r in skipped] == ["cramped", "cramped"]


def test_skip_moves_on_to_next_placeable_trial() -> None:
    session = _session(ExperimentConfig(trial_types=(CRAMPED, ROOMY), repetitions=1), seed=9)
    session.start()

    completed = 0
    session.long_press(Control.HOME)
    while session.state is not ExperimentState.THANK_YOU:
        assert session.state is ExperimentState.PRE_TRIAL
        assert session.active_trial is not None
        assert session.active_trial.config.name == "roomy"
        session.long_press(Control.HOME)
        session.long_press(Control.DONE)
        completed += 1
        session.long_press(Control.HOME)

    assert completed == 1
    assert session.trial_index == 2
    assert [o.config_name for o in session.outcomes()] == ["roomy"]


def test_previous_trial_is_closed_when_next_is_prepared() -> None:
    session = _session(ExperimentConfig(trial_types=(ROOMY,), repetitions=2))
    session.start()
    session.long_press(Control.HOME)
    first = session.active_trial
    assert first is not None
    assert first.field.is_visible(first.field.cue.stimulus_id)

    session.long_press(Control.HOME)
    session.long_press(Control.DONE)
    session.long_press(Control.HOME)

    second = session.active_trial
    assert second is not None and second is not first
    assert not first.field.is_visible(first.field.cue.stimulus_id)
    assert second.field.cue.kind is StimulusKind.CUE


def test_build_experiment_session_uses_defaults() -> None:
    session = build_experiment_session(clock=FakeClock(), seed=3)
    session.start()
    assert session.config == ExperimentConfig()
    assert session.trials == 1
    assert session.event_log.by_name(EventType.EXPERIMENT, "state")[0].value == "instructions"
