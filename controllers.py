"""One deterministic physics + manoeuvre step for a single aircraft."""

from __future__ import annotations

import math

from airpark_model import Aircraft, ArcTurn, NormalMotion, ReturnToBox
from predictors import turn_rate
from vector_math import add, clamp, cross, dot, mul, norm, rot


def update_aircraft(a: Aircraft, dt: float) -> None:
    """Advance ``a`` in place by ``dt`` seconds under its active controller.

    Speed first converges toward ``target_speed`` within the accel/decel
    limits, then the active controller (midair, else wall, else base motion)
    turns the velocity, which is re-normalised to ``speed`` before the
    position update.
    """

    dv = a.target_speed - a.speed
    accel = clamp(dv / dt if dt else 0.0, -a.decel, a.accel)
    a.speed += accel * dt

    active = a.active_controller()
    if isinstance(active, ArcTurn):
        vhat = norm(a.vel)
        omega = turn_rate(active.g_limit, a.speed)
        dtheta = clamp(omega * dt, -math.pi, math.pi) * active.direction
        a.vel = mul(rot(vhat, dtheta), a.speed)
        active.advanced += abs(dtheta)
        frac = active.advanced / (active.total_angle or math.pi)
        if frac >= active.exit_fraction:
            active.done = True
    elif isinstance(active, ReturnToBox):
        vhat = norm(a.vel)
        omega = turn_rate(active.g_limit, a.speed)
        desired = active.desired
        ang = math.atan2(cross(vhat, desired), clamp(dot(vhat, desired), -1.0, 1.0))
        dtheta = clamp(ang, -omega * dt, omega * dt)
        a.vel = mul(rot(vhat, dtheta), a.speed)
    elif not isinstance(active, NormalMotion):
        raise TypeError(f"unknown controller variant: {type(active).__name__}")

    a.vel = mul(norm(a.vel), a.speed)
    a.pos = add(a.pos, mul(a.vel, dt))


__all__ = ["update_aircraft"]
