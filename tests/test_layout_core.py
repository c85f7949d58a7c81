from __future__ import annotations

from itertools import combinations

import pytest

from shape_search.layout import (
    CUE_ID,
    MAX_PLACEMENT_ATTEMPTS,
    LayoutGenerator,
    target_window_start,
)
from shape_search.search_core import (
    ConfigurationError,
    ConstraintUnsatisfiable,
    Rect,
    SeededRng,
    StimulusKind,
    TrialConfiguration,
)

ROOMY = TrialConfiguration(
    name="roomy",
    region=Rect(0.0, 0.0, 30.0, 20.0),
    stimulus_count=20,
    target_count=3,
    minimum_stimulus_spacing=1.0,
    minimum_target_spacing=3.0,
)


def test_generator_determinism_same_seed_same_layout() -> None:
    a = LayoutGenerator(SeededRng(2468)).generate(ROOMY)
    b = LayoutGenerator(SeededRng(2468)).generate(ROOMY)
    assert a == b


def test_layout_counts_ids_and_region() -> None:
    layout = LayoutGenerator(SeededRng(1)).generate(ROOMY)

    assert len(layout.stimuli) == ROOMY.stimulus_count + ROOMY.target_count
    assert len(layout.targets()) == ROOMY.target_count
    assert len(layout.distractors()) == ROOMY.stimulus_count
    assert [s.stimulus_id for s in layout.stimuli] == list(range(1, len(layout.stimuli) + 1))
    assert all(ROOMY.region.contains(s.position) for s in layout.stimuli)

    assert layout.cue.stimulus_id == CUE_ID
    assert layout.cue.kind is StimulusKind.CUE
    assert layout.cue.position.x == pytest.approx(15.0)
    assert layout.cue.position.y == pytest.approx(8.0)


@pytest.mark.parametrize("seed", range(25))
def test_minimum_spacing_holds_for_every_pair(seed: int) -> None:
    layout = LayoutGenerator(SeededRng(seed)).generate(ROOMY)
    for a, b in combinations(layout.stimuli, 2):
        assert a.position.distance_to(b.position) >= ROOMY.minimum_stimulus_spacing


@pytest.mark.parametrize("seed", range(25))
def test_target_spacing_holds_inside_window(seed: int) -> None:
    layout = LayoutGenerator(SeededRng(seed)).generate(ROOMY)
    start = target_window_start(ROOMY)
    window = layout.stimuli[start:]
    for a, b in combinations(window, 2):
        assert a.position.distance_to(b.position) >= ROOMY.minimum_target_spacing


def test_target_window_start_is_clamped() -> None:
    assert target_window_start(TrialConfiguration()) == 21
    assert target_window_start(TrialConfiguration(stimulus_count=2, target_count=3)) == 0


def test_orientations_never_match_target_and_cover_the_rest() -> None:
    config = TrialConfiguration(
        region=Rect(0.0, 0.0, 30.0, 20.0),
        stimulus_count=20,
        target_count=2,
        rotation_step=45,
        target_rotation=90,
    )
    seen: set[float] = set()
    for seed in range(30):
        layout = LayoutGenerator(SeededRng(seed)).generate(config)
        assert layout.target_rotation == 90
        assert layout.cue.rotation == 90.0
        for s in layout.targets():
            assert s.rotation == 90.0
        for s in layout.distractors():
            assert s.rotation % 45 == 0
            assert 0 <= s.rotation < 360
            assert s.rotation != 90.0
            seen.add(s.rotation)

    assert seen == {0.0, 45.0, 135.0, 180.0, 225.0, 270.0, 315.0}


def test_random_target_rotation_is_multiple_of_ninety() -> None:
    rotations = {LayoutGenerator(SeededRng(seed)).generate(ROOMY).target_rotation for seed in range(40)}
    assert rotations <= {0, 90, 180, 270}
    assert len(rotations) > 1


def test_unplaceable_layout_raises_recoverable_error() -> None:
    cramped = TrialConfiguration(
        name="cramped",
        region=Rect(0.0, 0.0, 1.0, 1.0),
        stimulus_count=4,
        target_count=1,
        minimum_stimulus_spacing=5.0,
        minimum_target_spacing=5.0,
    )
    with pytest.raises(ConstraintUnsatisfiable) as info:
        LayoutGenerator(SeededRng(3)).generate(cramped)

    assert info.value.index == 1
    assert info.value.attempts == MAX_PLACEMENT_ATTEMPTS
    assert info.value.config_name == "cramped"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"stimulus_count": 0},
        {"target_count": 0},
        {"stimulus_size": 0.0},
        {"minimum_stimulus_spacing": -1.0},
        {"minimum_target_spacing": -1.0},
        {"region": Rect(0.0, 0.0, 0.0, 5.0)},
        {"rotation_step": 7},
        {"rotation_step": 360},
        {"serial_presentation_time": 0.0},
        {"target_rotation": 45},
        {"target_rotation": 360},
    ],
)
def test_invalid_configuration_rejected_before_placement(kwargs: dict[str, object]) -> None:
    with pytest.raises(ConfigurationError):
        TrialConfiguration(**kwargs)  # type: ignore[arg-type]
