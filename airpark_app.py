#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Airpark Avoidance Lab: Streamlit app
Live view of the predictive avoidance controller plus a Monte Carlo fast score:
 A) Arena snapshot with active controller per aircraft
 B) Pairwise separation and distance-from-centre histories (throttled)
 C) Trigger log, newest first
 D) Fast score of the current parameters in the background
 E) Collision packet download when a pair closes inside the collision threshold
"""
from __future__ import annotations

import logging

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import streamlit as st

from airpark_model import DEFAULT_PARAMS, MAX_AIRCRAFT, MIN_AIRCRAFT, INITIAL_AIRCRAFT, Params
from fastscore import DEFAULT_MINUTES, DEFAULT_SEEDS, NEAR_MISS_M
from log_filters import build_trigger_log_preview
from realtime import AirparkSimulation

logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(name)s: %(message)s")

FRAME_DT_S = 1.0 / 30.0
CTRL_COLORS = {"NormalMotion": "#76c7ff", "ArcTurn": "#ff8fa3", "ReturnToBox": "#ffd480"}
SIM_KEY = "airpark_sim"

st.set_page_config(page_title="Airpark Avoidance Lab", layout="wide")
st.title("Airpark Avoidance Lab")

if SIM_KEY not in st.session_state:
    st.session_state[SIM_KEY] = AirparkSimulation(initial_n=INITIAL_AIRCRAFT, seed=26)
sim: AirparkSimulation = st.session_state[SIM_KEY]

with st.sidebar:
    st.header("Simulation Controls")

    with st.expander("Midair", expanded=True):
        enable_midair = st.checkbox("Midair avoidance", value=sim.params.enable_midair)
        mid_ttc = st.slider("TCA threshold (s)", 0.5, 8.0, float(sim.params.mid_ttc_threshold), 0.1,
                            help="Arm an arc when time of closest approach falls below this.")
        mid_sep = st.slider("Separation trigger (m)", 10.0, 200.0, float(sim.params.mid_sep_trigger), 5.0,
                            help="Predicted miss distance that qualifies as a conflict.")
        k_gain = st.slider("g gain", 0.05, 1.0, float(sim.params.k_gain), 0.05)
        g_range = st.slider("g range", 1.0, 9.0, (float(sim.params.g_min), float(sim.params.g_max)), 0.1)
        horizon = st.slider("Shadow horizon (s)", 0.5, 6.0, float(sim.params.horizon_s), 0.25)
        h_dt = st.slider("Shadow step (s)", 0.01, 0.2, float(sim.params.h_dt), 0.01)

    with st.expander("Guardrail", expanded=False):
        enable_guardrail = st.checkbox("Early exit when opening", value=sim.params.enable_guardrail)
        open_safe = st.slider("Safe separation (m)", 20.0, 300.0, float(sim.params.open_safe_sep), 5.0)
        open_hold = st.slider("Opening hold (s)", 0.0, 3.0, float(sim.params.open_hold_s), 0.1)

    with st.expander("Walls", expanded=False):
        enable_wall = st.checkbox("Wall avoidance", value=sim.params.enable_wall)
        wall_ttc = st.slider("Wall TTC threshold (s)", 0.5, 8.0, float(sim.params.wall_ttc_threshold), 0.1)
        wall_pad = st.slider("Wall padding (m)", 0.0, 60.0, float(sim.params.wall_padding), 1.0)
        enable_oob = st.checkbox("Return to box", value=sim.params.enable_oob_return)
        oob_after = st.slider("Return after (s)", 0.0, 5.0, float(sim.params.oob_return_after), 0.1)
        oob_g = st.slider("Return g", 1.0, 6.0, float(sim.params.oob_return_g), 0.1)
        oob_margin = st.slider("Release margin (m)", 0.0, 50.0, float(sim.params.oob_release_margin), 1.0)

    sim.set_params(
        Params(
            mid_ttc_threshold=mid_ttc,
            mid_sep_trigger=mid_sep,
            wall_ttc_threshold=wall_ttc,
            wall_padding=wall_pad,
            k_gain=k_gain,
            g_min=g_range[0],
            g_max=g_range[1],
            horizon_s=horizon,
            h_dt=h_dt,
            open_safe_sep=open_safe,
            open_hold_s=open_hold,
            oob_return_after=oob_after,
            oob_return_g=oob_g,
            oob_release_margin=oob_margin,
            enable_midair=enable_midair,
            enable_wall=enable_wall,
            enable_guardrail=enable_guardrail,
            enable_oob_return=enable_oob,
        )
    )
    if st.button("Restore defaults"):
        sim.set_params(DEFAULT_PARAMS)
        st.rerun()

    st.header("Roster")
    n_aircraft = st.number_input("Aircraft", min_value=MIN_AIRCRAFT, max_value=MAX_AIRCRAFT,
                                 value=len(sim.aircraft), step=1)
    c_reset, c_start = st.columns(2)
    if c_reset.button("Reset"):
        sim.reset(int(n_aircraft))
    if c_start.button("Reset & run"):
        sim.reset_and_start(int(n_aircraft))

c1, c2, c3, c4 = st.columns(4)
advance_s = c1.number_input("Advance (s)", value=5.0, min_value=0.5, step=0.5,
                            help="Simulated seconds to fly per click, in 30 Hz frames.")
if c2.button("Run / advance"):
    sim.set_running(True)
    for _ in range(int(round(float(advance_s) / FRAME_DT_S))):
        if not sim.tick(FRAME_DT_S):
            break
if c3.button("Pause"):
    sim.set_running(False)
c4.metric("Sim time", f"{sim.time:.2f} s")

if sim.collided:
    meta = sim.collision_packet["meta"]
    st.error(
        f"Collision at t={meta['collision_time_s']:.2f} s between {meta['collision_pair']} "
        f"({meta['min_sep_m']:.2f} m). Reset to continue."
    )
    stamp = int(round(meta["collision_time_s"] * 1000))
    st.download_button("Download collision packet", sim.collision_packet_json(),
                       file_name=f"coll_{stamp}.json", mime="application/json")

arena_col, charts_col = st.columns([3, 2])

with arena_col:
    fig, ax = plt.subplots(figsize=(9, 6))
    ax.add_patch(plt.Rectangle((0, 0), sim.world.width, sim.world.height, fill=False, lw=1.5))
    for snap in sim.aircraft:
        color = CTRL_COLORS.get(snap.active_ctrl, "#cccccc")
        ax.scatter([snap.x], [snap.y], s=60, color=color, edgecolor="k", zorder=3)
        ax.arrow(snap.x, snap.y, snap.vx * 0.5, snap.vy * 0.5, width=1.5, color=color, zorder=2)
        ax.annotate(snap.id, (snap.x, snap.y), textcoords="offset points", xytext=(6, 6), fontsize=9)
    ax.set_xlim(-50, sim.world.width + 50)
    ax.set_ylim(sim.world.height + 50, -50)
    ax.set_aspect("equal")
    ax.set_title("Arena (colour = active controller)")
    st.pyplot(fig)
    plt.close(fig)

with charts_col:
    history = sim.history_frame()
    if history.empty:
        st.caption("Histories populate once the simulation runs.")
    else:
        st.markdown("**Pairwise separation (m)**")
        st.line_chart(history.set_index("t"))
        st.markdown("**Distance from centre (m)**")
        st.line_chart(sim.center_history_frame().set_index("t"))

st.markdown("### Trigger log")
source_filter = st.selectbox("Source", ["all", "midair", "wall", "oob-return", "collision"])
preview = build_trigger_log_preview(
    sim.trigger_log_frame(),
    source=None if source_filter == "all" else source_filter,
)
if preview.empty:
    st.info("No triggers yet.")
else:
    st.dataframe(preview, use_container_width=True)

st.markdown("### Fast score")
f1, f2, f3 = st.columns(3)
seeds = f1.number_input("Seeds", min_value=1, max_value=512, value=DEFAULT_SEEDS, step=8)
minutes = f2.number_input("Minutes per seed", min_value=0.25, value=DEFAULT_MINUTES, step=0.25)
near_miss = f3.number_input("Near-miss radius (m)", min_value=1.0, value=NEAR_MISS_M, step=1.0)

b1, b2, b3 = st.columns(3)
if b1.button("Score now", disabled=sim.scoring):
    sim.score_now(seeds=int(seeds), minutes=float(minutes), near_miss_m=float(near_miss))
if b2.button("Cancel", disabled=not sim.scoring):
    sim.scorer.cancel()
if b3.button("Refresh"):
    st.rerun()

if sim.scoring:
    st.caption("Scoring in progress…")
elif sim.scorer.cancelled:
    st.caption("Last scoring run was cancelled.")
elif sim.scorer.error is not None:
    st.warning(f"Scoring failed: {sim.scorer.error}")

score = sim.fast_score
if score is not None:
    m1, m2, m3, m4 = st.columns(4)
    m1.metric("Collisions", f"{score.collisions}")
    m2.metric("λ per hour", f"{score.lambda_per_hour:,.3f}")
    m3.metric("10-year risk", f"{100 * score.ten_year_risk:,.2f}%")
    m4.metric("Near misses", f"{score.near_misses}")
    st.caption(
        f"Exposure {score.exposure_hours:,.2f} h; mean separation {score.avg_sep:,.1f} m; "
        f"system engaged {100 * score.system_frac:,.1f}% of aircraft-time."
    )
