from __future__ import annotations

import logging
from dataclasses import dataclass

from .search_core import (
    ConstraintUnsatisfiable,
    SeededRng,
    StimulusKind,
    StimulusSpec,
    TrialConfiguration,
    Vec2,
)

logger = logging.getLogger(__name__)

MAX_PLACEMENT_ATTEMPTS = 100
CUE_ID = 0
CUE_OFFSET = Vec2(0.0, -2.0)


@dataclass(frozen=True, slots=True)
class Layout:
    config_name: str
    target_rotation: int
    cue: StimulusSpec
    stimuli: tuple[StimulusSpec, ...]  # placement (shuffled) order

    def targets(self) -> tuple[StimulusSpec, ...]:
        return tuple(s for s in self.stimuli if s.kind is StimulusKind.TARGET)

    def distractors(self) -> tuple[StimulusSpec, ...]:
        return tuple(s for s in self.stimuli if s.kind is StimulusKind.DISTRACTOR)


def target_window_start(config: TrialConfiguration) -> int:
    """First placement index checked by the target spacing rule."""

    return max(0, config.stimulus_count - config.target_count - 1)


class LayoutGenerator:
    """Deterministic (given a seed) rejection-sampling layout generator.

    Every stimulus is kept at least ``minimum_stimulus_spacing`` away from all
    earlier-placed stimuli. The target spacing rule only looks at the tail of
    the placement order, from :func:`target_window_start` up to the stimulus
    being placed.
    """

    def __init__(self, rng: SeededRng) -> None:
        self._rng = rng

    def pick_target_rotation(self, config: TrialConfiguration) -> int:
        if config.target_rotation is not None:
            return int(config.target_rotation)
        return self._rng.randint(0, 3) * 90

    def distractor_rotation(self, config: TrialConfiguration, *, target_rotation: int) -> int:
        step = config.rotation_step
        rotation = step * int(self._rng.random() * config.orientations)
        if rotation >= target_rotation:
            rotation += step
        return rotation

    def generate(self, config: TrialConfiguration) -> Layout:
        target_rotation = self.pick_target_rotation(config)

        entries: list[tuple[StimulusKind, int]] = []
        for i in range(config.total_count):
            if i >= config.stimulus_count:
                entries.append((StimulusKind.TARGET, target_rotation))
            else:
                rotation = self.distractor_rotation(config, target_rotation=target_rotation)
                entries.append((StimulusKind.DISTRACTOR, rotation))
        self._rng.shuffle(entries)

        m = config.max_spacing
        sentinel = config.region.origin - Vec2(m, m)
        positions = [sentinel] * len(entries)
        window_start = target_window_start(config)

        for i in range(len(entries)):
            positions[i] = self._place(config, positions, i, window_start)

        stimuli = tuple(
            StimulusSpec(
                stimulus_id=i + 1,
                kind=kind,
                position=positions[i],
                rotation=float(rotation),
            )
            for i, (kind, rotation) in enumerate(entries)
        )
        cue = StimulusSpec(
            stimulus_id=CUE_ID,
            kind=StimulusKind.CUE,
            position=config.region.center + CUE_OFFSET,
            rotation=float(target_rotation),
        )
        return Layout(
            config_name=config.name,
            target_rotation=target_rotation,
            cue=cue,
            stimuli=stimuli,
        )

    def _place(self, config: TrialConfiguration, positions: list[Vec2], index: int, window_start: int) -> Vec2:
        region = config.region
        for _ in range(MAX_PLACEMENT_ATTEMPTS):
            candidate = region.origin + Vec2(
                self._rng.uniform(0.0, region.width),
                self._rng.uniform(0.0, region.height),
            )
            if _is_touching(candidate, positions, 0, index, config.minimum_stimulus_spacing):
                continue
            if _is_touching(candidate, positions, window_start, index, config.minimum_target_spacing):
                continue
            return candidate

        logger.warning(
            "placement failed for stimulus %d of %d in '%s'",
            index,
            len(positions),
            config.name,
        )
        raise ConstraintUnsatisfiable(index=index, attempts=MAX_PLACEMENT_ATTEMPTS, config_name=config.name)


def _is_touching(candidate: Vec2, positions: list[Vec2], start: int, stop: int, spacing: float) -> bool:
    for j in range(start, stop):
        if candidate.distance_to(positions[j]) < spacing:
            return True
    return False
