"""Monte Carlo safety scoring of a parameter set.

Each seed flies an independent roster for a fixed simulated duration using
the same trigger, guardrail and integration phases as the real-time driver,
but with an adaptive, event-driven timestep::

    dt = clamp(0.25 * next_event_time, dt_min, dt_max)

so fast-closing geometry is not stepped over. Per-seed statistics are
collected into a DataFrame and reduced into a single :class:`ScoreResult`.
"""

from __future__ import annotations

import logging
import math
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from airpark_model import (
    Aircraft,
    ArcTurn,
    Params,
    World,
    make_aircraft,
)
from avoidance import run_motion_phases, run_trigger_phase
from predictors import (
    midair_time_of_closest_approach,
    pairwise_distances,
    turn_rate,
    wall_time_to_collision,
)
from vector_math import clamp

log = logging.getLogger(__name__)

# ---------------------------- Constants ----------------------------

FAST_COLLISION_RADIUS_M = 20.0
NEAR_MISS_M = 30.0
DEFAULT_SEEDS = 64
DEFAULT_MINUTES = 2.0
DEFAULT_AIRCRAFT = 8
DT_MIN_S = 0.01
DT_MAX_S = 0.2
ADAPTIVE_DT_FRACTION = 0.25
NEXT_EVENT_DEFAULT_S = 1.0
OOB_IMMINENT_HORIZON_S = 0.05
HOURS_PER_DECADE = 10 * 365 * 24

SEED_COLUMNS = [
    "seed",
    "collisions",
    "near_misses",
    "sep_sum",
    "sep_count",
    "system_time",
    "total_time",
    "steps",
    "sim_time_s",
]


class ScoringCancelled(RuntimeError):
    """Raised when a scoring run observes its cancel event."""


@dataclass(frozen=True)
class ScoreResult:
    collisions: int
    exposure_hours: float
    lambda_per_hour: float
    ten_year_risk: float
    near_misses: int
    avg_sep: float
    system_frac: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass
class SeedStats:
    seed: int
    collisions: int = 0
    near_misses: int = 0
    sep_sum: float = 0.0
    sep_count: int = 0
    system_time: float = 0.0
    total_time: float = 0.0
    steps: int = 0
    sim_time_s: float = 0.0


def next_event_time(
    roster: Sequence[Aircraft],
    params: Params,
    world: World,
    dt_max: float = DT_MAX_S,
) -> float:
    """Earliest of wall crossing, pairwise TCA, arc completion and OOB arming."""

    horizon = NEXT_EVENT_DEFAULT_S
    for a in roster:
        ttc, _ = wall_time_to_collision(a, world)
        if ttc is not None:
            horizon = min(horizon, ttc)

    for i in range(len(roster)):
        for j in range(i + 1, len(roster)):
            t_star, _ = midair_time_of_closest_approach(roster[i], roster[j])
            if t_star is not None:
                horizon = min(horizon, t_star)

    for a in roster:
        ctrl = a.active_controller()
        if isinstance(ctrl, ArcTurn):
            remain = max(0.0, ctrl.exit_fraction * (ctrl.total_angle or math.pi) - ctrl.advanced)
            horizon = min(horizon, remain / turn_rate(ctrl.g_limit, a.speed))

    if params.enable_oob_return:
        for a in roster:
            if world.is_out_of_bounds(a.pos) and a.oob_time + dt_max >= params.oob_return_after:
                horizon = min(horizon, OOB_IMMINENT_HORIZON_S)

    return horizon


def adaptive_dt(next_event: float, dt_min: float = DT_MIN_S, dt_max: float = DT_MAX_S) -> float:
    return clamp(ADAPTIVE_DT_FRACTION * next_event, dt_min, dt_max)


def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise ScoringCancelled("scoring cancelled")


def run_seed(
    params: Params,
    seed: int,
    *,
    n: int = DEFAULT_AIRCRAFT,
    minutes: float = DEFAULT_MINUTES,
    world: Optional[World] = None,
    dt_min: float = DT_MIN_S,
    dt_max: float = DT_MAX_S,
    near_miss_m: float = NEAR_MISS_M,
    collision_radius_m: float = FAST_COLLISION_RADIUS_M,
    cancel: Optional[threading.Event] = None,
) -> SeedStats:
    """Fly one seeded roster for ``minutes`` of simulated time."""

    world = world or World()
    rng = np.random.default_rng(int(seed))
    roster: List[Aircraft] = [make_aircraft(f"A{i + 1}", rng, world) for i in range(int(n))]
    stats = SeedStats(seed=int(seed))

    t_end = float(minutes) * 60.0
    t = 0.0
    while t < t_end:
        _check_cancel(cancel)

        run_trigger_phase(roster, params, world, t)
        dt = adaptive_dt(next_event_time(roster, params, world, dt_max), dt_min, dt_max)
        run_motion_phases(roster, dt, params, world, t, rng)

        dists = pairwise_distances(roster)
        stats.collisions += int(np.count_nonzero(dists < collision_radius_m))
        stats.near_misses += int(
            np.count_nonzero((dists >= collision_radius_m) & (dists < near_miss_m))
        )
        stats.sep_sum += float(dists.sum())
        stats.sep_count += int(dists.size)

        engaged = sum(1 for a in roster if a.has_override())
        stats.system_time += engaged * dt
        stats.total_time += len(roster) * dt
        stats.steps += 1
        t += dt

    stats.sim_time_s = t
    return stats


def run_seeds(
    params: Params,
    *,
    seeds: int = DEFAULT_SEEDS,
    base_seed: int = 1,
    workers: int = 1,
    cancel: Optional[threading.Event] = None,
    **seed_opts,
) -> pd.DataFrame:
    """Run ``seeds`` independent simulations; one row per seed, in seed order."""

    seed_values = [int(base_seed) + k for k in range(int(seeds))]

    def one(seed: int) -> SeedStats:
        return run_seed(params, seed, cancel=cancel, **seed_opts)

    if workers > 1 and len(seed_values) > 1:
        with ThreadPoolExecutor(max_workers=int(workers)) as pool:
            results = list(pool.map(one, seed_values))
    else:
        results = []
        for seed in seed_values:
            _check_cancel(cancel)
            results.append(one(seed))

    return pd.DataFrame([asdict(r) for r in results], columns=SEED_COLUMNS)


def aggregate_scores(df: pd.DataFrame, minutes: float = DEFAULT_MINUTES) -> ScoreResult:
    """Reduce per-seed rows into the aggregate risk record."""

    seeds = len(df)
    collisions = int(df["collisions"].sum()) if seeds else 0
    near_misses = int(df["near_misses"].sum()) if seeds else 0
    sep_sum = float(df["sep_sum"].sum()) if seeds else 0.0
    sep_count = int(df["sep_count"].sum()) if seeds else 0
    system_time = float(df["system_time"].sum()) if seeds else 0.0
    total_time = float(df["total_time"].sum()) if seeds else 0.0

    exposure_hours = seeds * (float(minutes) / 60.0)
    lambda_per_hour = collisions / max(exposure_hours, 1e-9)
    ten_year_risk = 1.0 - math.exp(-lambda_per_hour * HOURS_PER_DECADE)

    return ScoreResult(
        collisions=collisions,
        exposure_hours=exposure_hours,
        lambda_per_hour=lambda_per_hour,
        ten_year_risk=ten_year_risk,
        near_misses=near_misses,
        avg_sep=sep_sum / sep_count if sep_count > 0 else 0.0,
        system_frac=system_time / total_time if total_time > 0 else 0.0,
    )


def score_params(
    params: Optional[Params] = None,
    *,
    seeds: int = DEFAULT_SEEDS,
    minutes: float = DEFAULT_MINUTES,
    n: int = DEFAULT_AIRCRAFT,
    dt_min: float = DT_MIN_S,
    dt_max: float = DT_MAX_S,
    near_miss_m: float = NEAR_MISS_M,
    collision_radius_m: float = FAST_COLLISION_RADIUS_M,
    world: Optional[World] = None,
    base_seed: int = 1,
    workers: int = 1,
    cancel: Optional[threading.Event] = None,
) -> ScoreResult:
    params = params or Params()
    df = run_seeds(
        params,
        seeds=seeds,
        base_seed=base_seed,
        workers=workers,
        cancel=cancel,
        n=n,
        minutes=minutes,
        world=world,
        dt_min=dt_min,
        dt_max=dt_max,
        near_miss_m=near_miss_m,
        collision_radius_m=collision_radius_m,
    )
    result = aggregate_scores(df, minutes=minutes)
    log.info(
        "scored %d seeds x %.1f min: collisions=%d near_misses=%d ten_year_risk=%.4f",
        seeds, minutes, result.collisions, result.near_misses, result.ten_year_risk,
    )
    return result


__all__ = [
    "FAST_COLLISION_RADIUS_M",
    "NEAR_MISS_M",
    "DEFAULT_SEEDS",
    "DEFAULT_MINUTES",
    "DEFAULT_AIRCRAFT",
    "DT_MIN_S",
    "DT_MAX_S",
    "ADAPTIVE_DT_FRACTION",
    "NEXT_EVENT_DEFAULT_S",
    "OOB_IMMINENT_HORIZON_S",
    "HOURS_PER_DECADE",
    "SEED_COLUMNS",
    "ScoringCancelled",
    "ScoreResult",
    "SeedStats",
    "next_event_time",
    "adaptive_dt",
    "run_seed",
    "run_seeds",
    "aggregate_scores",
    "score_params",
]
