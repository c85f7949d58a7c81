"""JSON (de)serialisation of experiment configurations.

A config file looks like::

    {
      "repetitions": 2,
      "hit_score": 5.0,
      "trial_types": [
        {"name": "easy", "stimulus_count": 12, "target_count": 2},
        {"name": "serial", "serial_presentation": true, "region": [-10, -3, 16, 8]}
      ]
    }

Omitted keys keep their defaults; unknown keys are rejected.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import fields
from pathlib import Path
from typing import Any

from .experiment import ExperimentConfig
from .search_core import ConfigurationError, Rect, TrialConfiguration

CONFIG_PATH_ENV = "SHAPE_SEARCH_CONFIG"

_TRIAL_FLOATS = ("stimulus_size", "minimum_stimulus_spacing", "minimum_target_spacing", "serial_presentation_time")
_TRIAL_INTS = ("stimulus_count", "target_count", "rotation_step")
_EXPERIMENT_FLOATS = (
    "hit_score",
    "miss_penalty",
    "time_penalty",
    "distance_score_multiplier",
    "airtime_penalty",
    "touch_click_time",
)
_EXPERIMENT_INTS = ("repetitions", "max_layout_attempts")


def _check_keys(data: Mapping[str, Any], allowed: set[str], what: str) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ConfigurationError(f"unknown {what} keys: {', '.join(unknown)}")


def _as_number(data: Mapping[str, Any], key: str, kind: type) -> Any:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{key} must be a number")
    if kind is int and float(value) != int(value):
        raise ConfigurationError(f"{key} must be a whole number")
    return kind(value)


def _region_from(value: object) -> Rect:
    if isinstance(value, Mapping):
        _check_keys(value, {"x", "y", "width", "height"}, "region")
        try:
            return Rect(float(value["x"]), float(value["y"]), float(value["width"]), float(value["height"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigurationError(f"invalid region: {value!r}") from exc
    if isinstance(value, (list, tuple)) and len(value) == 4:
        try:
            return Rect(*(float(v) for v in value))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"invalid region: {value!r}") from exc
    raise ConfigurationError("region must be [x, y, width, height] or an object with those keys")


def trial_configuration_from_dict(data: object) -> TrialConfiguration:
    if not isinstance(data, Mapping):
        raise ConfigurationError("trial type must be an object")
    _check_keys(data, {f.name for f in fields(TrialConfiguration)}, "trial type")

    kwargs: dict[str, Any] = {}
    if "name" in data:
        kwargs["name"] = str(data["name"])
    if "region" in data:
        kwargs["region"] = _region_from(data["region"])
    for key in _TRIAL_FLOATS:
        if key in data:
            kwargs[key] = _as_number(data, key, float)
    for key in _TRIAL_INTS:
        if key in data:
            kwargs[key] = _as_number(data, key, int)
    if "serial_presentation" in data:
        if not isinstance(data["serial_presentation"], bool):
            raise ConfigurationError("serial_presentation must be true or false")
        kwargs["serial_presentation"] = data["serial_presentation"]
    if data.get("target_rotation") is not None:
        kwargs["target_rotation"] = _as_number(data, "target_rotation", int)
    return TrialConfiguration(**kwargs)


def trial_configuration_to_dict(config: TrialConfiguration) -> dict[str, Any]:
    r = config.region
    return {
        "name": config.name,
        "region": [r.x, r.y, r.width, r.height],
        "stimulus_count": config.stimulus_count,
        "target_count": config.target_count,
        "stimulus_size": config.stimulus_size,
        "minimum_stimulus_spacing": config.minimum_stimulus_spacing,
        "minimum_target_spacing": config.minimum_target_spacing,
        "rotation_step": config.rotation_step,
        "serial_presentation": config.serial_presentation,
        "serial_presentation_time": config.serial_presentation_time,
        "target_rotation": config.target_rotation,
    }


def experiment_config_from_dict(data: object) -> ExperimentConfig:
    if not isinstance(data, Mapping):
        raise ConfigurationError("experiment config must be an object")
    _check_keys(data, {f.name for f in fields(ExperimentConfig)}, "experiment")

    kwargs: dict[str, Any] = {}
    if "trial_types" in data:
        raw = data["trial_types"]
        if not isinstance(raw, list):
            raise ConfigurationError("trial_types must be a list")
        kwargs["trial_types"] = tuple(trial_configuration_from_dict(item) for item in raw)
    for key in _EXPERIMENT_FLOATS:
        if key in data:
            kwargs[key] = _as_number(data, key, float)
    for key in _EXPERIMENT_INTS:
        if key in data:
            kwargs[key] = _as_number(data, key, int)
    return ExperimentConfig(**kwargs)


def experiment_config_to_dict(config: ExperimentConfig) -> dict[str, Any]:
    return {
        "trial_types": [trial_configuration_to_dict(t) for t in config.trial_types],
        "repetitions": config.repetitions,
        "hit_score": config.hit_score,
        "miss_penalty": config.miss_penalty,
        "time_penalty": config.time_penalty,
        "distance_score_multiplier": config.distance_score_multiplier,
        "airtime_penalty": config.airtime_penalty,
        "touch_click_time": config.touch_click_time,
        "max_layout_attempts": config.max_layout_attempts,
    }


def load_experiment_config(path: Path) -> ExperimentConfig:
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"{path}: {exc}") from exc
    return experiment_config_from_dict(payload)


def save_experiment_config(path: Path, config: ExperimentConfig) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(f"{path.suffix}.tmp")
    tmp_path.write_text(json.dumps(experiment_config_to_dict(config), indent=2), encoding="utf-8")
    tmp_path.replace(path)


def config_from_env(environ: Mapping[str, str] | None = None) -> ExperimentConfig:
    env = os.environ if environ is None else environ
    explicit = env.get(CONFIG_PATH_ENV)
    if explicit:
        return load_experiment_config(Path(explicit).expanduser())
    return ExperimentConfig()
