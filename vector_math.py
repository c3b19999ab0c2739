"""Planar vector helpers shared by the predictors, integrator and drivers."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

EPS = 1e-9


@dataclass(frozen=True)
class Vec2:
    x: float
    y: float


def clamp(x: float, lo: float, hi: float) -> float:
    if x < lo:
        return lo
    if x > hi:
        return hi
    return x


def length(v: Vec2) -> float:
    return math.hypot(v.x, v.y)


def dot(a: Vec2, b: Vec2) -> float:
    return a.x * b.x + a.y * b.y


def cross(a: Vec2, b: Vec2) -> float:
    """z-component of the planar cross product ``a × b``."""

    return a.x * b.y - a.y * b.x


def add(a: Vec2, b: Vec2) -> Vec2:
    return Vec2(a.x + b.x, a.y + b.y)


def sub(a: Vec2, b: Vec2) -> Vec2:
    return Vec2(a.x - b.x, a.y - b.y)


def mul(a: Vec2, s: float) -> Vec2:
    return Vec2(a.x * s, a.y * s)


def norm(v: Vec2) -> Vec2:
    """Unit vector along ``v``; a zero vector stays (numerically) zero."""

    L = length(v) or EPS
    return Vec2(v.x / L, v.y / L)


def rot(v: Vec2, ang: float) -> Vec2:
    """Rotate ``v`` counter-clockwise by ``ang`` radians."""

    c, s = math.cos(ang), math.sin(ang)
    return Vec2(c * v.x - s * v.y, s * v.x + c * v.y)


def distance(a: Vec2, b: Vec2) -> float:
    return math.hypot(a.x - b.x, a.y - b.y)


def get_pairs(ids: Sequence[str]) -> List[Tuple[str, str]]:
    """Unordered id pairs ``(ids[i], ids[j])`` with ``i < j``."""

    pairs: List[Tuple[str, str]] = []
    for i in range(len(ids)):
        for j in range(i + 1, len(ids)):
            pairs.append((ids[i], ids[j]))
    return pairs


def pair_name(a: str, b: str) -> str:
    return f"{a}-{b}"


__all__ = [
    "EPS",
    "Vec2",
    "clamp",
    "length",
    "dot",
    "cross",
    "add",
    "sub",
    "mul",
    "norm",
    "rot",
    "distance",
    "get_pairs",
    "pair_name",
]
