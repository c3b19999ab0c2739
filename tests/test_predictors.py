import math
import sys
from pathlib import Path

import numpy as np

sys.path.append(str(Path(__file__).resolve().parents[1]))

from airpark_model import Aircraft, Params, World
from predictors import (
    closure_g_load,
    inbound_unit_vector,
    midair_time_of_closest_approach,
    nearest_intruder,
    pairwise_distances,
    pick_turn_direction,
    range_rate,
    should_trigger_midair,
    wall_time_to_collision,
)
from vector_math import Vec2

SPEED = 53.6
WORLD = World(900.0, 600.0)


def make(aid, x, y, vx, vy):
    return Aircraft(id=aid, pos=Vec2(x, y), vel=Vec2(vx, vy), speed=math.hypot(vx, vy),
                    target_speed=math.hypot(vx, vy))


def head_on_pair(gap=120.0):
    a = make("A1", 450.0 - gap / 2, 300.0, SPEED, 0.0)
    b = make("A2", 450.0 + gap / 2, 300.0, -SPEED, 0.0)
    return a, b


def test_wall_ttc_zero_when_on_boundary_heading_out():
    a = make("A1", 0.0, 300.0, -SPEED, 0.0)
    ttc, wall = wall_time_to_collision(a, WORLD)
    assert wall == "left"
    assert ttc == 0.0


def test_wall_ttc_ignores_wall_being_receded_from():
    a = make("A1", 0.0, 300.0, SPEED, 0.0)
    ttc, wall = wall_time_to_collision(a, WORLD)
    assert wall == "right"
    assert np.isclose(ttc, 900.0 / SPEED)


def test_wall_ttc_none_when_receding_from_every_wall():
    a = make("A1", -10.0, 300.0, -SPEED, 0.0)
    assert wall_time_to_collision(a, WORLD) == (None, None)


def test_wall_ttc_floors_zero_speed():
    a = Aircraft(id="A1", pos=Vec2(450.0, 300.0), vel=Vec2(1.0, 0.0), speed=0.0, target_speed=SPEED)
    ttc, wall = wall_time_to_collision(a, WORLD)
    assert wall == "right"
    assert ttc > 1e9


def test_wall_ttc_picks_nearest_of_two_walls():
    a = make("A1", 880.0, 590.0, SPEED / math.sqrt(2), SPEED / math.sqrt(2))
    ttc, wall = wall_time_to_collision(a, WORLD)
    assert wall == "bottom"
    assert np.isclose(ttc, 10.0 / (SPEED / math.sqrt(2)))


def test_head_on_tca_matches_gap_over_closure():
    a, b = head_on_pair(120.0)
    t_star, d_min = midair_time_of_closest_approach(a, b)
    assert np.isclose(t_star, 120.0 / (2 * SPEED))
    assert np.isclose(d_min, 0.0, atol=1e-9)


def test_tca_none_for_parallel_tracks():
    a = make("A1", 100.0, 100.0, SPEED, 0.0)
    b = make("A2", 100.0, 200.0, SPEED, 0.0)
    assert midair_time_of_closest_approach(a, b) == (None, None)


def test_tca_none_when_already_receding():
    a = make("A1", 390.0, 300.0, -SPEED, 0.0)
    b = make("A2", 510.0, 300.0, SPEED, 0.0)
    assert midair_time_of_closest_approach(a, b) == (None, None)


def test_should_trigger_midair_respects_both_thresholds():
    a, b = head_on_pair(120.0)
    params = Params()
    trigger, t_star, _ = should_trigger_midair(a, b, params)
    assert trigger
    assert t_star < params.mid_ttc_threshold

    far_a, far_b = head_on_pair(400.0)
    trigger, t_star, _ = should_trigger_midair(far_a, far_b, params)
    assert not trigger
    assert t_star > params.mid_ttc_threshold

    offset = make("A3", 390.0, 380.0, SPEED, 0.0)
    trigger, _, d_min = should_trigger_midair(offset, b, params)
    assert not trigger
    assert np.isclose(d_min, 80.0)


def test_pick_turn_direction_tie_resolves_positive():
    a, b = head_on_pair(120.0)
    direction, min_sep = pick_turn_direction(a, b, 4.5, Params())
    assert direction == 1
    assert min_sep > 0.0


def test_pick_turn_direction_turns_away_from_offset_intruder():
    a = make("A1", 390.0, 300.0, SPEED, 0.0)
    b = make("A2", 510.0, 310.0, -SPEED, 0.0)
    direction, _ = pick_turn_direction(a, b, 4.5, Params())
    assert direction == -1


def test_nearest_intruder_excludes_self():
    a = make("A1", 0.0, 0.0, SPEED, 0.0)
    b = make("A2", 100.0, 0.0, SPEED, 0.0)
    c = make("A3", 30.0, 40.0, SPEED, 0.0)
    assert nearest_intruder(a, [a, b, c]).id == "A3"
    assert nearest_intruder(a, [a]) is None


def test_inbound_unit_vector_points_to_nearest_box_point():
    side = make("A1", -30.0, 300.0, SPEED, 0.0)
    v = inbound_unit_vector(side, WORLD)
    assert np.isclose(v.x, 1.0) and np.isclose(v.y, 0.0)

    corner = make("A2", -30.0, -40.0, SPEED, 0.0)
    v = inbound_unit_vector(corner, WORLD)
    assert np.isclose(v.x, 0.6) and np.isclose(v.y, 0.8)


def test_range_rate_and_closure_g_load_for_head_on():
    a, b = head_on_pair(120.0)
    assert np.isclose(range_rate(a, b), -2 * SPEED)
    params = Params()
    t_star, _ = midair_time_of_closest_approach(a, b)
    assert closure_g_load(a, b, t_star, params) == params.g_max

    slow = params.with_updates(k_gain=0.01)
    assert closure_g_load(a, b, t_star, slow) == slow.g_min


def test_pairwise_distances_follow_pair_order():
    roster = [
        make("A1", 0.0, 0.0, SPEED, 0.0),
        make("A2", 3.0, 4.0, SPEED, 0.0),
        make("A3", 0.0, 10.0, SPEED, 0.0),
    ]
    dists = pairwise_distances(roster)
    assert np.allclose(dists, [5.0, 10.0, math.hypot(3.0, 6.0)])
    assert pairwise_distances(roster[:1]).size == 0
