from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping

import yaml


@dataclass
class BandConfig:
    min_distance: float
    max_distance: float
    weight: float

    def validate(self, name: str) -> None:
        if self.min_distance < 0.0:
            raise ValueError(f"{name} band minimum must be non-negative, got {self.min_distance}")
        if self.min_distance >= self.max_distance:
            raise ValueError(
                f"{name} band is empty: min {self.min_distance} must be below max {self.max_distance}"
            )


@dataclass
class FlockingParams:
    cohesion: BandConfig = field(default_factory=lambda: BandConfig(20.0, 50.0, 0.01))
    alignment: BandConfig = field(default_factory=lambda: BandConfig(20.0, 50.0, 0.02))
    separation: BandConfig = field(default_factory=lambda: BandConfig(5.0, 20.0, 0.03))
    # Chance per agent per tick that the three rules are evaluated at all.
    rule_probability: float = 0.7
    slow_factor: float = 0.999
    fast_factor: float = 1.001

    def validate(self) -> None:
        self.cohesion.validate("cohesion")
        self.alignment.validate("alignment")
        self.separation.validate("separation")
        if not 0.0 <= self.rule_probability <= 1.0:
            raise ValueError(f"rule_probability must lie in [0, 1], got {self.rule_probability}")
        if self.slow_factor <= 0.0 or self.fast_factor <= 0.0:
            raise ValueError(
                f"speed drift factors must be positive, got {self.slow_factor} and {self.fast_factor}"
            )


@dataclass
class SimulationConfig:
    seed: int = 42
    population: int = 100
    # Half extents: agents spawn in [-width, width) x [-height, height).
    width: float = 400.0
    height: float = 300.0
    initial_speed: float = 1.0
    time_step: float = 1.0 / 60.0
    config_version: str = "v1"
    flocking: FlockingParams = field(default_factory=FlockingParams)

    @staticmethod
    def from_yaml(path: Path) -> "SimulationConfig":
        data = yaml.safe_load(Path(path).read_text()) or {}
        return load_config(data)

    def validate(self) -> None:
        if self.population <= 0:
            raise ValueError(f"population must be positive, got {self.population}")
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"domain must have positive extents, got {self.width}x{self.height}")
        if self.initial_speed <= 0:
            raise ValueError(f"initial_speed must be positive, got {self.initial_speed}")
        self.flocking.validate()


@dataclass
class AppConfig:
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    broadcast_interval: int = 2
    # Frames kept for slow viewers before the oldest are discarded.
    frame_buffer_limit: int = 64

    @staticmethod
    def from_yaml(path: Path) -> "AppConfig":
        data = yaml.safe_load(Path(path).read_text()) or {}
        return load_app_config(data)


def _band(value: Any, default: BandConfig, name: str) -> BandConfig:
    if value is None:
        return BandConfig(default.min_distance, default.max_distance, default.weight)
    if isinstance(value, Mapping):
        merged = {
            "min_distance": default.min_distance,
            "max_distance": default.max_distance,
            "weight": default.weight,
        }
        unknown = set(value) - set(merged)
        if unknown:
            raise ValueError(f"unknown keys in {name} band: {sorted(unknown)}")
        merged.update(value)
        return BandConfig(
            float(merged["min_distance"]), float(merged["max_distance"]), float(merged["weight"])
        )
    if isinstance(value, (tuple, list)) and len(value) == 3:
        return BandConfig(float(value[0]), float(value[1]), float(value[2]))
    raise ValueError(f"{name} band must be a mapping or [min, max, weight], got {value!r}")


def _check_keys(raw: Mapping[str, Any], allowed: set[str], section: str) -> None:
    unknown = set(raw) - allowed
    if unknown:
        raise ValueError(f"unknown keys in {section}: {sorted(unknown)}")


def _require_mapping(raw: Any, section: str) -> Mapping[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ValueError(f"{section} must be a mapping, got {type(raw).__name__}")
    return raw


def load_config(raw: Mapping[str, Any]) -> SimulationConfig:
    raw = _require_mapping(raw, "config")
    defaults = FlockingParams()
    flocking_raw = dict(_require_mapping(raw.get("flocking"), "flocking"))
    _check_keys(flocking_raw, {f.name for f in fields(FlockingParams)}, "flocking")
    flocking = FlockingParams(
        cohesion=_band(flocking_raw.pop("cohesion", None), defaults.cohesion, "cohesion"),
        alignment=_band(flocking_raw.pop("alignment", None), defaults.alignment, "alignment"),
        separation=_band(flocking_raw.pop("separation", None), defaults.separation, "separation"),
        **{k: float(v) for k, v in flocking_raw.items()},
    )
    # The server section belongs to AppConfig; see load_app_config.
    sim_values = {k: v for k, v in raw.items() if k not in {"flocking", "server"}}
    _check_keys(sim_values, {f.name for f in fields(SimulationConfig)} - {"flocking"}, "simulation")
    return SimulationConfig(flocking=flocking, **sim_values)


def load_app_config(raw: Mapping[str, Any]) -> AppConfig:
    raw = _require_mapping(raw, "config")
    server_raw = _require_mapping(raw.get("server"), "server")
    _check_keys(server_raw, {"broadcast_interval", "frame_buffer_limit"}, "server")
    return AppConfig(simulation=load_config(raw), **{k: int(v) for k, v in server_raw.items()})
