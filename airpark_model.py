"""Entity and parameter model for the airpark avoidance simulation.

The controller set is closed: every consumer (integrator, trigger logic,
drivers, scorer) matches over exactly ``NormalMotion``, ``ArcTurn`` and
``ReturnToBox``. Per-aircraft timers live on the aircraft itself so that a
roster reset drops them together with the aircraft.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Optional, Union

import numpy as np

from vector_math import Vec2

# ---------------------------- Constants ----------------------------

G = 9.81                        # m/s^2, coordinated-turn approximation

WORLD_W_M = 900.0
WORLD_H_M = 600.0
MAX_AIRCRAFT = 8
INITIAL_AIRCRAFT = 5
MIN_AIRCRAFT = 2

AIRCRAFT_SPEED_MPS = 53.6
AIRCRAFT_ACCEL_MPS2 = 10.0
AIRCRAFT_DECEL_MPS2 = 10.0

# Arc manoeuvre geometry
ARC_TOTAL_ANGLE_RAD = math.pi
ARC_EXIT_FRACTION = 0.5
WALL_TURN_G = 3.0
WALL_PADDING_EXTRA_M = 5.0
MIDAIR_TAU_FLOOR_S = 0.5

# Baseline pilot heading bumps on NormalMotion
PILOT_BUMP_INTERVAL_S = 2.0
PILOT_BUMP_DEG = 10.0

SOURCE_MIDAIR = "midair"
SOURCE_WALL = "wall"


# ---------------------------- Controllers ----------------------------


@dataclass
class NormalMotion:
    """Baseline straight flight; carries no state."""

    name = "NormalMotion"


@dataclass
class ArcTurn:
    """Coordinated constant-g turn held until ``advanced`` hits the exit angle."""

    direction: int
    g_limit: float
    total_angle: float = ARC_TOTAL_ANGLE_RAD
    advanced: float = 0.0
    source: str = SOURCE_MIDAIR
    exit_fraction: float = ARC_EXIT_FRACTION
    trigger_id: Optional[str] = None
    done: bool = False

    name = "ArcTurn"


@dataclass
class ReturnToBox:
    """Proportional steer toward ``desired``; only ever armed in the wall slot."""

    g_limit: float
    desired: Vec2
    trigger_id: Optional[str] = None

    name = "ReturnToBox"


Controller = Union[NormalMotion, ArcTurn, ReturnToBox]


def copy_controller(ctrl: Optional[Controller]) -> Optional[Controller]:
    if ctrl is None:
        return None
    if isinstance(ctrl, (NormalMotion, ArcTurn, ReturnToBox)):
        return replace(ctrl)
    raise TypeError(f"unknown controller variant: {type(ctrl).__name__}")


def is_midair_arc(ctrl: Optional[Controller]) -> bool:
    return isinstance(ctrl, ArcTurn) and ctrl.source == SOURCE_MIDAIR


# ---------------------------- Aircraft ----------------------------


@dataclass
class Aircraft:
    id: str
    pos: Vec2
    vel: Vec2
    speed: float
    target_speed: float
    accel: float = AIRCRAFT_ACCEL_MPS2
    decel: float = AIRCRAFT_DECEL_MPS2
    midair: Optional[Controller] = None
    wall: Optional[Controller] = None
    motion: Controller = field(default_factory=NormalMotion)
    # seconds since the last baseline heading bump
    pilot_timer: float = 0.0
    # seconds spent continuously outside the arena
    oob_time: float = 0.0
    # seconds of continuously opening range during a midair arc
    open_time: float = 0.0

    def active_controller(self) -> Controller:
        """Midair override, else wall override, else base motion."""

        if self.midair is not None:
            return self.midair
        if self.wall is not None:
            return self.wall
        return self.motion

    def has_override(self) -> bool:
        return self.midair is not None or self.wall is not None

    def clone(self) -> "Aircraft":
        return replace(
            self,
            midair=copy_controller(self.midair),
            wall=copy_controller(self.wall),
            motion=copy_controller(self.motion),
        )

    def snapshot(self) -> "AircraftSnapshot":
        return AircraftSnapshot(
            id=self.id,
            x=self.pos.x,
            y=self.pos.y,
            vx=self.vel.x,
            vy=self.vel.y,
            speed=self.speed,
            active_ctrl=self.active_controller().name,
        )


@dataclass(frozen=True)
class AircraftSnapshot:
    """Immutable per-tick view handed to consumers."""

    id: str
    x: float
    y: float
    vx: float
    vy: float
    speed: float
    active_ctrl: str


@dataclass(frozen=True)
class World:
    width: float = WORLD_W_M
    height: float = WORLD_H_M

    @property
    def center(self) -> Vec2:
        return Vec2(self.width * 0.5, self.height * 0.5)

    def is_out_of_bounds(self, p: Vec2) -> bool:
        return p.x < 0 or p.x > self.width or p.y < 0 or p.y > self.height

    def is_inside_margin(self, p: Vec2, margin: float) -> bool:
        return (
            margin <= p.x <= self.width - margin
            and margin <= p.y <= self.height - margin
        )

    def wall_distance(self, p: Vec2) -> float:
        return min(p.x, self.width - p.x, p.y, self.height - p.y)


@dataclass(frozen=True)
class TriggerLogRow:
    t: float
    aircraft_id: str
    trigger_id: str
    source: str
    note: str


def make_aircraft(
    aid: str,
    rng: np.random.Generator,
    world: World,
    speed: float = AIRCRAFT_SPEED_MPS,
) -> Aircraft:
    """Aircraft at a uniform random position and heading inside ``world``."""

    pos = Vec2(float(rng.uniform()) * world.width, float(rng.uniform()) * world.height)
    heading = float(rng.uniform()) * 2.0 * math.pi
    return Aircraft(
        id=aid,
        pos=pos,
        vel=Vec2(math.cos(heading) * speed, math.sin(heading) * speed),
        speed=speed,
        target_speed=speed,
    )


# ---------------------------- Parameters ----------------------------

_PARAM_ALIASES = {
    "MID_TTC_THRESHOLD": "mid_ttc_threshold",
    "MID_SEP_TRIGGER": "mid_sep_trigger",
    "WALL_TTC_THRESHOLD": "wall_ttc_threshold",
    "WALL_PADDING": "wall_padding",
    "K_GAIN": "k_gain",
    "G_MIN": "g_min",
    "G_MAX": "g_max",
    "HORIZON_S": "horizon_s",
    "H_DT": "h_dt",
    "OPEN_SAFE_SEP": "open_safe_sep",
    "OPEN_HOLD_S": "open_hold_s",
    "OOB_RETURN_AFTER": "oob_return_after",
    "OOB_RETURN_G": "oob_return_g",
    "OOB_RELEASE_MARGIN": "oob_release_margin",
    "enableMidair": "enable_midair",
    "enableWall": "enable_wall",
    "enableGuardrail": "enable_guardrail",
    "enableOOBReturn": "enable_oob_return",
}


@dataclass(frozen=True)
class Params:
    """Thresholds, gains and feature toggles for the avoidance logic.

    Values are taken as given; range checking is left to the caller.
    """

    mid_ttc_threshold: float = 3.0     # s
    mid_sep_trigger: float = 60.0      # m
    wall_ttc_threshold: float = 2.5    # s
    wall_padding: float = 10.0         # m
    k_gain: float = 0.2
    g_min: float = 2.0
    g_max: float = 4.5
    horizon_s: float = 3.0
    h_dt: float = 0.05
    open_safe_sep: float = 90.0        # m
    open_hold_s: float = 0.5
    oob_return_after: float = 1.5      # s
    oob_return_g: float = 3.0
    oob_release_margin: float = 5.0    # m
    enable_midair: bool = True
    enable_wall: bool = True
    enable_guardrail: bool = True
    enable_oob_return: bool = True

    def with_updates(self, **changes: Any) -> "Params":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "Params":
        """Build from snake_case or upper-case/camelCase keys; missing keys keep defaults."""

        known = {f.name: f for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, raw in mapping.items():
            name = _PARAM_ALIASES.get(key, key)
            if name not in known:
                raise ValueError(f"Unknown parameter: {key!r}")
            if name.startswith("enable_"):
                values[name] = bool(raw)
            else:
                try:
                    values[name] = float(raw)
                except (TypeError, ValueError) as exc:
                    raise ValueError(f"Parameter {key!r} must be numeric") from exc
        return cls(**values)


DEFAULT_PARAMS = Params()


__all__ = [
    "G",
    "WORLD_W_M",
    "WORLD_H_M",
    "MAX_AIRCRAFT",
    "INITIAL_AIRCRAFT",
    "MIN_AIRCRAFT",
    "AIRCRAFT_SPEED_MPS",
    "AIRCRAFT_ACCEL_MPS2",
    "AIRCRAFT_DECEL_MPS2",
    "ARC_TOTAL_ANGLE_RAD",
    "ARC_EXIT_FRACTION",
    "WALL_TURN_G",
    "WALL_PADDING_EXTRA_M",
    "MIDAIR_TAU_FLOOR_S",
    "PILOT_BUMP_INTERVAL_S",
    "PILOT_BUMP_DEG",
    "SOURCE_MIDAIR",
    "SOURCE_WALL",
    "NormalMotion",
    "ArcTurn",
    "ReturnToBox",
    "Controller",
    "copy_controller",
    "is_midair_arc",
    "Aircraft",
    "AircraftSnapshot",
    "World",
    "TriggerLogRow",
    "make_aircraft",
    "Params",
    "DEFAULT_PARAMS",
]
