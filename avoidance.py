"""Trigger, behaviour, guardrail and cleanup phases of one simulation step.

These phases are shared verbatim by the real-time driver (fixed frame
``dt``) and the Monte Carlo scorer (adaptive ``dt``). Each phase mutates the
roster it is given in place; callers own the copy-on-write discipline.

Per step the order is: trigger phase (midair strictly before wall), then the
behaviour pass (pilot bump, out-of-bounds return arming, integration,
return release), then the guardrail pass, then cleanup with midair
re-trigger.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, List, Optional, Sequence

import numpy as np

from airpark_model import (
    ARC_EXIT_FRACTION,
    ARC_TOTAL_ANGLE_RAD,
    PILOT_BUMP_DEG,
    PILOT_BUMP_INTERVAL_S,
    SOURCE_MIDAIR,
    SOURCE_WALL,
    WALL_PADDING_EXTRA_M,
    WALL_TURN_G,
    Aircraft,
    ArcTurn,
    NormalMotion,
    Params,
    ReturnToBox,
    TriggerLogRow,
    World,
    is_midair_arc,
)
from controllers import update_aircraft
from predictors import (
    closure_g_load,
    inbound_unit_vector,
    nearest_intruder,
    pick_turn_direction,
    range_rate,
    should_trigger_midair,
    wall_time_to_collision,
)
from vector_math import cross, distance, mul, norm, rot, sub

log = logging.getLogger(__name__)

TriggerSink = Optional[Callable[[TriggerLogRow], None]]

PILOT_BUMP_RAD = math.radians(PILOT_BUMP_DEG)
OOB_RELEASE_ID = "OOB-RELEASE"
OOB_SOURCE = "oob-return"


def trigger_id(prefix: str, t: float) -> str:
    return f"{prefix}{int(math.floor(t * 1000)):06d}"


def _emit(sink: TriggerSink, t: float, aid: str, trig: str, source: str, note: str) -> None:
    log.debug("t=%.3f %s %s %s: %s", t, aid, source, trig, note)
    if sink is not None:
        sink(TriggerLogRow(t=t, aircraft_id=aid, trigger_id=trig, source=source, note=note))


# ------------------------------ Triggers ------------------------------


def attempt_midair(
    a: Aircraft,
    roster: Sequence[Aircraft],
    params: Params,
    t: float,
    sink: TriggerSink = None,
) -> bool:
    """Arm a midair ``ArcTurn`` against the qualifying intruder with the smallest t*."""

    if not params.enable_midair:
        return False
    if is_midair_arc(a.midair):
        return False

    best = None
    for b in roster:
        if b.id == a.id:
            continue
        trigger, t_star, d_min = should_trigger_midair(a, b, params)
        if trigger and (best is None or t_star < best[1]):
            best = (b, t_star, d_min)
    if best is None:
        return False

    intruder, t_star, d_min = best
    g_needed = closure_g_load(a, intruder, t_star, params)
    direction, proj_min = pick_turn_direction(a, intruder, g_needed, params)

    trig = trigger_id("M", t)
    a.midair = ArcTurn(
        direction=direction,
        g_limit=g_needed,
        total_angle=ARC_TOTAL_ANGLE_RAD,
        advanced=0.0,
        source=SOURCE_MIDAIR,
        exit_fraction=ARC_EXIT_FRACTION,
        trigger_id=trig,
    )
    a.open_time = 0.0
    _emit(
        sink, t, a.id, trig, SOURCE_MIDAIR,
        f"vs {intruder.id} tca={t_star:.2f} dmin={d_min:.1f} projMin={proj_min:.1f}",
    )
    return True


def attempt_wall(
    a: Aircraft,
    params: Params,
    world: World,
    t: float,
    sink: TriggerSink = None,
) -> bool:
    """Arm a wall ``ArcTurn`` toward the arena centre when a wall is close."""

    if not params.enable_wall:
        return False
    if a.wall is not None or is_midair_arc(a.midair):
        return False
    ttc, _ = wall_time_to_collision(a, world)
    if ttc is None:
        return False
    dist = world.wall_distance(a.pos)
    if not (ttc < params.wall_ttc_threshold or dist < params.wall_padding + WALL_PADDING_EXTRA_M):
        return False

    to_center = sub(world.center, a.pos)
    direction = 1 if cross(a.vel, to_center) >= 0 else -1
    trig = trigger_id("W", t)
    a.wall = ArcTurn(
        direction=direction,
        g_limit=WALL_TURN_G,
        total_angle=ARC_TOTAL_ANGLE_RAD,
        advanced=0.0,
        source=SOURCE_WALL,
        exit_fraction=ARC_EXIT_FRACTION,
        trigger_id=trig,
    )
    _emit(sink, t, a.id, trig, SOURCE_WALL, f"ttc~{ttc:.2f}")
    return True


def arm_return_to_box(
    a: Aircraft,
    params: Params,
    world: World,
    t: float,
    sink: TriggerSink = None,
) -> bool:
    """Arm, or refresh the heading of, a ``ReturnToBox`` in the wall slot.

    Returns True only when a new controller was armed.
    """

    if not params.enable_oob_return or not world.is_out_of_bounds(a.pos):
        return False
    if is_midair_arc(a.midair):
        return False

    desired = inbound_unit_vector(a, world)
    if isinstance(a.wall, ReturnToBox):
        a.wall.desired = desired
        return False

    trig = trigger_id("RTO", t)
    a.wall = ReturnToBox(g_limit=params.oob_return_g, desired=desired, trigger_id=trig)
    _emit(sink, t, a.id, trig, OOB_SOURCE, "align to nearest-box-point")
    return True


def run_trigger_phase(
    roster: Sequence[Aircraft],
    params: Params,
    world: World,
    t: float,
    sink: TriggerSink = None,
) -> int:
    """At most one new override per aircraft; midair is tried before wall."""

    armed = 0
    for a in roster:
        if attempt_midair(a, roster, params, t, sink) or attempt_wall(a, params, world, t, sink):
            armed += 1
    return armed


# ------------------------------ Behaviour ------------------------------


def _pilot_bump(a: Aircraft, dt: float, rng: np.random.Generator) -> None:
    a.pilot_timer += dt
    if a.pilot_timer < PILOT_BUMP_INTERVAL_S:
        return
    a.pilot_timer = 0.0
    sign = 1.0 if rng.uniform() < 0.5 else -1.0
    a.vel = mul(rot(norm(a.vel), sign * PILOT_BUMP_RAD), a.speed)


def run_behavior_pass(
    roster: Sequence[Aircraft],
    dt: float,
    params: Params,
    world: World,
    t: float,
    rng: np.random.Generator,
    sink: TriggerSink = None,
) -> None:
    for a in roster:
        if not a.has_override() and isinstance(a.motion, NormalMotion):
            _pilot_bump(a, dt, rng)

        was_oob = world.is_out_of_bounds(a.pos)
        a.oob_time = a.oob_time + dt if was_oob else 0.0
        if params.enable_oob_return and was_oob and a.oob_time >= params.oob_return_after:
            arm_return_to_box(a, params, world, t, sink)

        update_aircraft(a, dt)

        if isinstance(a.wall, ReturnToBox) and world.is_inside_margin(a.pos, params.oob_release_margin):
            a.wall = None
            a.motion = NormalMotion()
            _emit(sink, t, a.id, OOB_RELEASE_ID, OOB_SOURCE, f"inside by {params.oob_release_margin:g}m")


def run_guardrail_pass(
    roster: Sequence[Aircraft],
    dt: float,
    params: Params,
    t: float,
    sink: TriggerSink = None,
) -> None:
    """Early exit of a midair arc once the range has been opening long enough."""

    if not params.enable_guardrail:
        return
    for a in roster:
        arc = a.midair
        if not is_midair_arc(arc) or arc.done:
            continue
        intr = nearest_intruder(a, roster)
        if intr is None:
            continue
        a.open_time = a.open_time + dt if range_rate(a, intr) > 0 else 0.0
        sep = distance(a.pos, intr.pos)
        if sep > params.open_safe_sep and a.open_time >= params.open_hold_s:
            arc.done = True
            _emit(sink, t, a.id, arc.trigger_id or "M", SOURCE_MIDAIR, f"early-exit open sep={sep:.1f}")


def run_cleanup_pass(
    roster: Sequence[Aircraft],
    params: Params,
    t: float,
    sink: TriggerSink = None,
) -> None:
    """Clear finished arcs; re-arm midair if the nearest intruder is still closing."""

    for a in roster:
        for slot in (SOURCE_MIDAIR, SOURCE_WALL):
            ctrl = getattr(a, slot)
            if not (isinstance(ctrl, ArcTurn) and ctrl.done):
                continue
            setattr(a, slot, None)
            a.motion = NormalMotion()
            if slot != SOURCE_MIDAIR:
                continue
            intr = nearest_intruder(a, roster)
            if intr is None:
                continue
            if range_rate(a, intr) < 0 and distance(a.pos, intr.pos) < params.open_safe_sep:
                attempt_midair(a, roster, params, t, sink)


def run_motion_phases(
    roster: Sequence[Aircraft],
    dt: float,
    params: Params,
    world: World,
    t: float,
    rng: np.random.Generator,
    sink: TriggerSink = None,
) -> None:
    """Everything after the trigger phase: behaviour, guardrail, cleanup."""

    run_behavior_pass(roster, dt, params, world, t, rng, sink)
    run_guardrail_pass(roster, dt, params, t, sink)
    run_cleanup_pass(roster, params, t, sink)


def step_roster(
    roster: List[Aircraft],
    dt: float,
    params: Params,
    world: World,
    t: float,
    rng: np.random.Generator,
    sink: TriggerSink = None,
) -> None:
    run_trigger_phase(roster, params, world, t, sink)
    run_motion_phases(roster, dt, params, world, t, rng, sink)


__all__ = [
    "OOB_RELEASE_ID",
    "OOB_SOURCE",
    "PILOT_BUMP_RAD",
    "TriggerSink",
    "trigger_id",
    "attempt_midair",
    "attempt_wall",
    "arm_return_to_box",
    "run_trigger_phase",
    "run_behavior_pass",
    "run_guardrail_pass",
    "run_cleanup_pass",
    "run_motion_phases",
    "step_roster",
]
