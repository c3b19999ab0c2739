"""Closed-form and shadow-simulation predictors for wall and midair conflicts.

Everything here is a pure function of the aircraft state passed in; the
real-time driver and the batch scorer call the same functions.
"""

from __future__ import annotations

import math
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np

from airpark_model import (
    G,
    MIDAIR_TAU_FLOOR_S,
    Aircraft,
    Params,
    World,
)
from vector_math import (
    EPS,
    Vec2,
    add,
    clamp,
    distance,
    dot,
    length,
    mul,
    norm,
    rot,
    sub,
)

REL_SPEED_SQ_EPS = 1e-12


def wall_time_to_collision(
    a: Aircraft, world: World
) -> Tuple[Optional[float], Optional[str]]:
    """Return ``(ttc, wall)`` for straight-line flight at the current heading.

    ``wall`` is one of ``left``/``right``/``top``/``bottom``. Both entries are
    ``None`` when the aircraft is receding from every wall.
    """

    vhat = norm(a.vel)
    s = a.speed if a.speed > EPS else EPS
    cands = []
    if vhat.x < -EPS:
        cands.append(("left", -a.pos.x / (vhat.x * s)))
    if vhat.x > EPS:
        cands.append(("right", (world.width - a.pos.x) / (vhat.x * s)))
    if vhat.y < -EPS:
        cands.append(("top", -a.pos.y / (vhat.y * s)))
    if vhat.y > EPS:
        cands.append(("bottom", (world.height - a.pos.y) / (vhat.y * s)))

    ahead = [(wall, t) for wall, t in cands if t >= 0]
    if not ahead:
        return None, None
    wall, ttc = min(ahead, key=lambda c: c[1])
    return ttc, wall


def midair_time_of_closest_approach(
    a: Aircraft, b: Aircraft
) -> Tuple[Optional[float], Optional[float]]:
    """Return ``(t_star, d_min)`` under a constant-velocity model.

    ``(None, None)`` for parallel tracks or when the pair is already receding.
    """

    r = sub(a.pos, b.pos)
    v = sub(a.vel, b.vel)
    v2 = dot(v, v)
    if v2 < REL_SPEED_SQ_EPS:
        return None, None
    t_star = -dot(r, v) / v2
    if t_star < 0:
        return None, None
    d_min = length(add(r, mul(v, t_star)))
    return t_star, d_min


def should_trigger_midair(
    a: Aircraft, b: Aircraft, params: Params
) -> Tuple[bool, Optional[float], Optional[float]]:
    t_star, d_min = midair_time_of_closest_approach(a, b)
    if t_star is None or d_min is None:
        return False, t_star, d_min
    trigger = t_star <= params.mid_ttc_threshold and d_min <= params.mid_sep_trigger
    return trigger, t_star, d_min


def turn_rate(g_limit: float, speed: float) -> float:
    """Coordinated-turn rate (rad/s) at ``g_limit``; speed floored at EPS."""

    return (g_limit * G) / (speed if speed > EPS else EPS)


def _shadow_min_separation(
    a: Aircraft, intruder: Aircraft, g_limit: float, direction: int, params: Params
) -> float:
    pos = a.pos
    vel = a.vel
    speed = a.speed
    omega = turn_rate(g_limit, speed)
    steps = int(math.ceil(params.horizon_s / params.h_dt))
    dtheta = clamp(omega * params.h_dt, -math.pi, math.pi) * direction
    min_sep = math.inf
    for k in range(steps):
        vel = mul(rot(norm(vel), dtheta), speed)
        pos = add(pos, mul(vel, params.h_dt))
        intr_pos = add(intruder.pos, mul(intruder.vel, (k + 1) * params.h_dt))
        d = distance(pos, intr_pos)
        if d < min_sep:
            min_sep = d
    return min_sep


def pick_turn_direction(
    a: Aircraft, intruder: Aircraft, g_limit: float, params: Params
) -> Tuple[int, float]:
    """Shadow-fly both turn senses and return ``(direction, projected_min_sep)``.

    The intruder is continued in a straight line. Ties go to ``+1``.
    """

    left = _shadow_min_separation(a, intruder, g_limit, +1, params)
    right = _shadow_min_separation(a, intruder, g_limit, -1, params)
    if left >= right:
        return +1, left
    return -1, right


def nearest_intruder(a: Aircraft, roster: Iterable[Aircraft]) -> Optional[Aircraft]:
    best: Optional[Aircraft] = None
    best_d = math.inf
    for b in roster:
        if b.id == a.id:
            continue
        d = distance(a.pos, b.pos)
        if best is None or d < best_d:
            best, best_d = b, d
    return best


def inbound_unit_vector(a: Aircraft, world: World) -> Vec2:
    """Unit vector toward the nearest point of the arena rectangle."""

    tx = clamp(a.pos.x, 0.0, world.width)
    ty = clamp(a.pos.y, 0.0, world.height)
    return norm(Vec2(tx - a.pos.x, ty - a.pos.y))


def range_rate(a: Aircraft, b: Aircraft) -> float:
    """d/dt of ``|b.pos - a.pos|``; positive when the pair is opening."""

    r_hat = norm(sub(b.pos, a.pos))
    return dot(sub(b.vel, a.vel), r_hat)


def pairwise_distances(roster: Sequence[Aircraft]) -> np.ndarray:
    """Current separation of every ``i < j`` pair, in ``get_pairs`` order."""

    if len(roster) < 2:
        return np.zeros(0, dtype=float)
    pts = np.array([[a.pos.x, a.pos.y] for a in roster], dtype=float)
    diff = pts[:, None, :] - pts[None, :, :]
    dist = np.hypot(diff[..., 0], diff[..., 1])
    iu = np.triu_indices(len(roster), k=1)
    return dist[iu]


def closure_g_load(a: Aircraft, b: Aircraft, t_star: float, params: Params) -> float:
    """g-load for a midair arc, scaled by closing speed over time to go."""

    v_closure = max(0.0, -range_rate(a, b))
    g_needed = params.k_gain * v_closure / max(t_star, MIDAIR_TAU_FLOOR_S)
    return clamp(g_needed, params.g_min, params.g_max)


__all__ = [
    "REL_SPEED_SQ_EPS",
    "wall_time_to_collision",
    "midair_time_of_closest_approach",
    "should_trigger_midair",
    "turn_rate",
    "pick_turn_direction",
    "nearest_intruder",
    "inbound_unit_vector",
    "range_rate",
    "closure_g_load",
    "pairwise_distances",
]
