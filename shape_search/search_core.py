from __future__ import annotations

import math
import random
from collections.abc import MutableSequence
from dataclasses import dataclass
from enum import Enum
from typing import TypeVar

T = TypeVar("T")


class ConfigurationError(ValueError):
    """Raised when a trial or experiment configuration cannot be used."""


class ConstraintUnsatisfiable(RuntimeError):
    """Raised when a stimulus cannot be placed within the retry cap."""

    def __init__(self, *, index: int, attempts: int, config_name: str = "") -> None:
        self.index = int(index)
        self.attempts = int(attempts)
        self.config_name = str(config_name)
        label = f" in trial type '{config_name}'" if config_name else ""
        super().__init__(f"could not place stimulus {index}{label} after {attempts} attempts")


class StimulusKind(str, Enum):
    CUE = "cue"
    DISTRACTOR = "distractor"
    TARGET = "target"


@dataclass(frozen=True, slots=True)
class Vec2:
    x: float
    y: float

    def __add__(self, other: Vec2) -> Vec2:
        return Vec2(self.x + other.x, self.y + other.y)

    def __sub__(self, other: Vec2) -> Vec2:
        return Vec2(self.x - other.x, self.y - other.y)

    def distance_to(self, other: Vec2) -> float:
        return math.hypot(self.x - other.x, self.y - other.y)


@dataclass(frozen=True, slots=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @property
    def origin(self) -> Vec2:
        return Vec2(self.x, self.y)

    @property
    def center(self) -> Vec2:
        return Vec2(self.x + self.width / 2.0, self.y + self.height / 2.0)

    def contains(self, point: Vec2) -> bool:
        return self.x <= point.x <= self.x + self.width and self.y <= point.y <= self.y + self.height


@dataclass(frozen=True, slots=True)
class StimulusSpec:
    stimulus_id: int
    kind: StimulusKind
    position: Vec2
    rotation: float  # degrees in [0, 360); masking never changes it


@dataclass(frozen=True, slots=True)
class TrialStats:
    trialtime: float = 0.0
    airtime: float = 0.0
    hits: int = 0
    misses: int = 0
    targets: int = 0
    taps: int = 0
    tapdistance: float = 0.0

    def as_dict(self) -> dict[str, float]:
        return {
            "trialtime": float(self.trialtime),
            "airtime": float(self.airtime),
            "hits": float(self.hits),
            "misses": float(self.misses),
            "targets": float(self.targets),
            "taps": float(self.taps),
            "tapdistance": float(self.tapdistance),
        }


DEFAULT_REGION = Rect(-10.0, -3.0, 16.0, 8.0)


@dataclass(frozen=True, slots=True)
class TrialConfiguration:
    """Immutable inputs of one trial type.

    ``stimulus_count`` is the number of distractors; ``target_count`` targets are
    placed on top of that. ``target_rotation`` of ``None`` lets each trial draw
    its own multiple of 90 degrees.
    """

    name: str = "default"
    region: Rect = DEFAULT_REGION
    stimulus_count: int = 25
    target_count: int = 3
    stimulus_size: float = 0.5
    minimum_stimulus_spacing: float = 1.0
    minimum_target_spacing: float = 3.0
    rotation_step: int = 45
    serial_presentation: bool = False
    serial_presentation_time: float = 2.0
    target_rotation: int | None = None

    def __post_init__(self) -> None:
        if self.stimulus_count <= 0:
            raise ConfigurationError("stimulus_count must be > 0")
        if self.target_count <= 0:
            raise ConfigurationError("target_count must be > 0")
        if self.stimulus_size <= 0.0:
            raise ConfigurationError("stimulus_size must be > 0")
        if self.minimum_stimulus_spacing < 0.0:
            raise ConfigurationError("minimum_stimulus_spacing must be >= 0")
        if self.minimum_target_spacing < 0.0:
            raise ConfigurationError("minimum_target_spacing must be >= 0")
        if self.region.width <= 0.0 or self.region.height <= 0.0:
            raise ConfigurationError("region must have a positive area")
        if self.rotation_step <= 0 or 360 % self.rotation_step != 0:
            raise ConfigurationError("rotation_step must evenly divide 360")
        if self.rotation_step >= 360:
            raise ConfigurationError("rotation_step leaves no distractor orientation")
        if self.serial_presentation_time <= 0.0:
            raise ConfigurationError("serial_presentation_time must be > 0")
        if self.target_rotation is not None and (
            self.target_rotation % 90 != 0 or not (0 <= self.target_rotation < 360)
        ):
            raise ConfigurationError("target_rotation must be one of 0, 90, 180, 270")

    @property
    def total_count(self) -> int:
        return self.stimulus_count + self.target_count

    @property
    def orientations(self) -> int:
        return 360 // self.rotation_step - 1

    @property
    def max_spacing(self) -> float:
        return max(self.minimum_stimulus_spacing, self.minimum_target_spacing)


class SeededRng:
    """Simple seeded RNG wrapper to keep deterministic streams explicit."""

    def __init__(self, seed: int | None) -> None:
        self._rng = random.Random(None if seed is None else int(seed))

    def random(self) -> float:
        return self._rng.random()

    def randint(self, a: int, b: int) -> int:
        return self._rng.randint(a, b)

    def uniform(self, a: float, b: float) -> float:
        return self._rng.uniform(a, b)

    def shuffle(self, items: MutableSequence[T]) -> None:
        self._rng.shuffle(items)

    def spawn(self) -> SeededRng:
        # Independent child stream, still derived from the parent seed.
        return SeededRng(self._rng.getrandbits(63))
