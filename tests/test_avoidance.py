import math
import sys
from pathlib import Path

import numpy as np

sys.path.append(str(Path(__file__).resolve().parents[1]))

from airpark_model import Aircraft, ArcTurn, NormalMotion, Params, ReturnToBox, World
from avoidance import (
    OOB_RELEASE_ID,
    attempt_wall,
    run_behavior_pass,
    run_cleanup_pass,
    run_guardrail_pass,
    run_trigger_phase,
    step_roster,
    trigger_id,
)
from vector_math import Vec2

SPEED = 53.6
WORLD = World(900.0, 600.0)


def make(aid, x, y, vx, vy):
    return Aircraft(id=aid, pos=Vec2(x, y), vel=Vec2(vx, vy), speed=math.hypot(vx, vy),
                    target_speed=math.hypot(vx, vy))


def collect():
    rows = []
    return rows, rows.append


def test_trigger_id_is_zero_padded_milliseconds():
    assert trigger_id("M", 0.0) == "M000000"
    assert trigger_id("W", 1.2345) == "W001234"
    assert trigger_id("RTO", 12.0) == "RTO012000"


def test_head_on_pair_both_arm_midair_arcs():
    a = make("A1", 390.0, 300.0, SPEED, 0.0)
    b = make("A2", 510.0, 300.0, -SPEED, 0.0)
    rows, sink = collect()
    armed = run_trigger_phase([a, b], Params(), WORLD, 0.0, sink)

    assert armed == 2
    for ac in (a, b):
        assert isinstance(ac.midair, ArcTurn)
        assert ac.midair.source == "midair"
        assert ac.midair.g_limit == Params().g_max
        assert ac.midair.direction == 1
        assert ac.midair.trigger_id == "M000000"
        assert ac.wall is None
    assert [r.source for r in rows] == ["midair", "midair"]
    assert rows[0].note.startswith("vs A2 tca=1.12")


def test_midair_precedes_wall_in_same_tick():
    a = make("A1", 100.0, 300.0, -SPEED, 0.0)
    b = make("A2", 40.0, 300.0, SPEED, 0.0)
    run_trigger_phase([a, b], Params(), WORLD, 0.0)
    assert isinstance(a.midair, ArcTurn)
    assert a.wall is None


def test_wall_trigger_suppressed_while_midair_arc_active():
    a = make("A1", 100.0, 300.0, -SPEED, 0.0)
    a.midair = ArcTurn(direction=1, g_limit=3.0, source="midair")
    assert not attempt_wall(a, Params(), WORLD, 0.0)
    assert a.wall is None


def test_wall_trigger_turns_toward_centre():
    a = make("A1", 850.0, 200.0, SPEED, 0.0)
    rows, sink = collect()
    assert attempt_wall(a, Params(), WORLD, 0.5, sink)
    assert isinstance(a.wall, ArcTurn)
    assert a.wall.source == "wall"
    assert a.wall.direction == 1
    assert rows[0].trigger_id == "W000500"
    assert rows[0].note.startswith("ttc~")

    b = make("A2", 850.0, 400.0, SPEED, 0.0)
    assert attempt_wall(b, Params(), WORLD, 0.5)
    assert b.wall.direction == -1


def test_wall_trigger_respects_toggle_and_existing_override():
    a = make("A1", 850.0, 200.0, SPEED, 0.0)
    assert not attempt_wall(a, Params(enable_wall=False), WORLD, 0.0)
    a.wall = ReturnToBox(g_limit=3.0, desired=Vec2(-1.0, 0.0))
    assert not attempt_wall(a, Params(), WORLD, 0.0)


def test_out_of_bounds_arms_return_to_box_after_delay():
    a = make("A1", -20.0, 300.0, -SPEED, 0.0)
    a.oob_time = 1.5
    rows, sink = collect()
    run_behavior_pass([a], 0.05, Params(), WORLD, 3.0, np.random.default_rng(0), sink)

    assert isinstance(a.wall, ReturnToBox)
    assert np.isclose(a.wall.desired.x, 1.0)
    assert rows[0].source == "oob-return"
    assert rows[0].trigger_id == "RTO003000"


def test_out_of_bounds_timer_resets_inside_arena():
    a = make("A1", 300.0, 300.0, SPEED, 0.0)
    a.oob_time = 1.0
    run_behavior_pass([a], 0.05, Params(), WORLD, 0.0, np.random.default_rng(0))
    assert a.oob_time == 0.0


def test_out_of_bounds_return_suppressed_by_midair_arc():
    a = make("A1", -20.0, 300.0, -SPEED, 0.0)
    a.oob_time = 2.0
    a.midair = ArcTurn(direction=1, g_limit=3.0, source="midair")
    run_behavior_pass([a], 0.05, Params(), WORLD, 0.0, np.random.default_rng(0))
    assert a.wall is None


def test_return_to_box_released_inside_margin():
    a = make("A1", 10.0, 300.0, SPEED, 0.0)
    a.wall = ReturnToBox(g_limit=3.0, desired=Vec2(1.0, 0.0))
    rows, sink = collect()
    run_behavior_pass([a], 0.05, Params(), WORLD, 1.0, np.random.default_rng(0), sink)

    assert a.wall is None
    assert isinstance(a.motion, NormalMotion)
    assert rows[-1].trigger_id == OOB_RELEASE_ID


def test_pilot_bump_rotates_heading_by_ten_degrees():
    a = make("A1", 300.0, 300.0, SPEED, 0.0)
    a.pilot_timer = 1.99
    run_behavior_pass([a], 0.02, Params(), WORLD, 0.0, np.random.default_rng(1))
    assert a.pilot_timer == 0.0
    assert np.isclose(abs(math.degrees(math.atan2(a.vel.y, a.vel.x))), 10.0)


def test_pilot_bump_paused_while_override_active():
    a = make("A1", 300.0, 300.0, SPEED, 0.0)
    a.pilot_timer = 1.99
    a.wall = ArcTurn(direction=1, g_limit=3.0, source="wall")
    run_behavior_pass([a], 0.02, Params(), WORLD, 0.0, np.random.default_rng(1))
    assert a.pilot_timer == 1.99


def test_guardrail_exit_clears_midair_override_same_tick():
    a = make("A1", 300.0, 300.0, -SPEED, 0.0)
    b = make("A2", 500.0, 300.0, SPEED, 0.0)
    a.midair = ArcTurn(direction=1, g_limit=2.0, source="midair", trigger_id="M000100")
    a.open_time = 0.46
    rows, sink = collect()
    step_roster([a, b], 0.05, Params(), WORLD, 1.0, np.random.default_rng(0), sink)

    assert a.midair is None
    assert isinstance(a.motion, NormalMotion)
    assert any(r.note.startswith("early-exit open sep=") for r in rows)


def test_guardrail_timer_resets_while_closing():
    a = make("A1", 300.0, 300.0, SPEED, 0.0)
    b = make("A2", 600.0, 300.0, -SPEED, 0.0)
    a.midair = ArcTurn(direction=1, g_limit=2.0, source="midair")
    a.open_time = 0.3
    run_guardrail_pass([a, b], 0.05, Params(), 0.0)
    assert a.open_time == 0.0
    assert not a.midair.done


def test_guardrail_disabled_leaves_arc_running():
    a = make("A1", 300.0, 300.0, -SPEED, 0.0)
    b = make("A2", 500.0, 300.0, SPEED, 0.0)
    a.midair = ArcTurn(direction=1, g_limit=2.0, source="midair")
    a.open_time = 5.0
    run_guardrail_pass([a, b], 0.05, Params(enable_guardrail=False), 0.0)
    assert not a.midair.done


def test_cleanup_rearms_midair_when_still_closing():
    a = make("A1", 400.0, 300.0, SPEED, 0.0)
    b = make("A2", 460.0, 300.0, -SPEED, 0.0)
    old = ArcTurn(direction=1, g_limit=2.0, source="midair", advanced=math.pi / 2, done=True)
    a.midair = old
    run_cleanup_pass([a, b], Params(), 2.0)

    assert isinstance(a.midair, ArcTurn)
    assert a.midair is not old
    assert not a.midair.done
    assert a.midair.advanced == 0.0


def test_cleanup_clears_done_wall_arc_without_retrigger():
    a = make("A1", 400.0, 300.0, SPEED, 0.0)
    b = make("A2", 800.0, 500.0, SPEED, 0.0)
    a.wall = ArcTurn(direction=1, g_limit=3.0, source="wall", done=True)
    run_cleanup_pass([a, b], Params(), 2.0)
    assert a.wall is None
    assert a.midair is None
