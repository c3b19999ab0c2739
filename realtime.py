"""Real-time driver: one call per external frame tick.

``AirparkSimulation`` owns the authoritative roster, parameters, simulated
time and logs. Each tick works on a cloned roster, runs the shared
avoidance phases, records metrics and then commits the clone. Consumers
only ever receive frozen snapshots or freshly built DataFrames.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from airpark_model import (
    INITIAL_AIRCRAFT,
    MAX_AIRCRAFT,
    MIN_AIRCRAFT,
    Aircraft,
    AircraftSnapshot,
    Params,
    TriggerLogRow,
    World,
    make_aircraft,
)
from avoidance import step_roster
from background import BackgroundScorer
from fastscore import ScoreResult
from log_filters import filter_time_window
from predictors import pairwise_distances
from vector_math import clamp, get_pairs, pair_name

log = logging.getLogger(__name__)

# ---------------------------- Constants ----------------------------

COLLISION_THRESH_M = 10.0     # stop & export if any pair closer than this
COLLISION_WINDOW_S = 10.0     # trailing window kept in the collision packet
HIST_DT = 0.08                # chart throttle, independent of physics dt
HIST_RETENTION_S = 120.0
HISTORY_MAX_ROWS = int(round(HIST_RETENTION_S / HIST_DT))
MAX_FRAME_DT_S = 0.06

SIM_LOG_COLUMNS = ["time", "aircraft_id", "x", "y", "vx", "vy", "speed_mps", "active_ctrl"]
TRIGGER_LOG_COLUMNS = ["time", "aircraft_id", "trigger_id", "source", "note"]


class AirparkSimulation:
    def __init__(
        self,
        world: Optional[World] = None,
        params: Optional[Params] = None,
        initial_n: int = INITIAL_AIRCRAFT,
        max_aircraft: int = MAX_AIRCRAFT,
        seed: Optional[int] = None,
        start_paused: bool = True,
        collision_thresh_m: float = COLLISION_THRESH_M,
        collision_window_s: float = COLLISION_WINDOW_S,
        scorer: Optional[BackgroundScorer] = None,
    ) -> None:
        self.world = world or World()
        self.params = params or Params()
        self.max_aircraft = int(max_aircraft)
        self.collision_thresh_m = float(collision_thresh_m)
        self.collision_window_s = float(collision_window_s)
        self.scorer = scorer or BackgroundScorer()
        self._rng = np.random.default_rng(seed)
        self._next_id = 0
        self._roster: List[Aircraft] = []
        self.running = not start_paused
        self.reset(initial_n)

    # ------------------------------ Roster ------------------------------

    def _new_id(self) -> str:
        self._next_id += 1
        return f"A{self._next_id}"

    def reset(self, n: Optional[int] = None) -> None:
        """Rebuild the roster and clear time, logs, histories and timers."""

        count = len(self._roster) if n is None else int(n)
        count = int(clamp(count, MIN_AIRCRAFT, self.max_aircraft))
        self._next_id = 0
        roster = [make_aircraft(self._new_id(), self._rng, self.world) for _ in range(count)]
        self._install(roster)
        log.info("reset roster with %d aircraft", count)

    def reset_and_start(self, n: Optional[int] = None) -> None:
        self.reset(n)
        self.running = True

    def load_roster(self, aircraft: Iterable[Aircraft]) -> None:
        """Replace the roster with caller-built aircraft (ids must be unique)."""

        roster = [a.clone() for a in aircraft]
        ids = [a.id for a in roster]
        if len(set(ids)) != len(ids):
            raise ValueError("Aircraft ids must be unique within a roster")
        if len(roster) > self.max_aircraft:
            raise ValueError(f"At most {self.max_aircraft} aircraft are supported")
        self._next_id = len(roster)
        self._install(roster)

    def _install(self, roster: List[Aircraft]) -> None:
        self._roster = roster
        self.time = 0.0
        self._last_hist_t = 0.0
        self.collision_packet: Optional[Dict[str, Any]] = None
        self._pair_ids: List[Tuple[str, str]] = get_pairs([a.id for a in roster])
        self._pair_names = [pair_name(a, b) for a, b in self._pair_ids]
        self._trigger_rows: List[TriggerLogRow] = []
        self._sim_rows: List[Dict[str, Any]] = []
        self._pair_rows: List[Dict[str, Any]] = []
        self._history: Deque[Dict[str, float]] = deque(maxlen=HISTORY_MAX_ROWS)
        self._center_history: Deque[Dict[str, float]] = deque(maxlen=HISTORY_MAX_ROWS)

    # ------------------------------ Controls ------------------------------

    def set_running(self, value: Union[bool, Callable[[bool], bool]]) -> None:
        val = bool(value(self.running)) if callable(value) else bool(value)
        if val and self.collision_packet is not None:
            log.info("ignoring run request after collision; reset first")
            return
        self.running = val

    def set_params(self, updater: Union[Params, Callable[[Params], Params]]) -> None:
        self.params = updater(self.params) if callable(updater) else updater

    # ------------------------------ Stepping ------------------------------

    def tick(self, frame_dt: float) -> bool:
        """Advance by one frame if running; returns whether a step happened."""

        if not self.running:
            return False
        self.step(clamp(float(frame_dt), 0.0, MAX_FRAME_DT_S))
        return True

    def step(self, dt: float) -> None:
        working = [a.clone() for a in self._roster]
        step_roster(working, dt, self.params, self.world, self.time, self._rng, self._log_trigger)

        t_next = self.time + dt
        dists = pairwise_distances(working)
        self._record_rows(working, t_next, dists)

        self._roster = working
        self.time = t_next

        if t_next - self._last_hist_t >= HIST_DT:
            self._last_hist_t = t_next
            self._record_history(working, t_next, dists)

        if dists.size:
            idx = int(np.argmin(dists))
            if dists[idx] < self.collision_thresh_m:
                self._on_collision(t_next, idx, float(dists[idx]))

    def _log_trigger(self, row: TriggerLogRow) -> None:
        self._trigger_rows.append(row)

    def _record_rows(self, roster: List[Aircraft], t: float, dists: np.ndarray) -> None:
        for a in roster:
            self._sim_rows.append(
                dict(
                    time=t,
                    aircraft_id=a.id,
                    x=a.pos.x,
                    y=a.pos.y,
                    vx=a.vel.x,
                    vy=a.vel.y,
                    speed_mps=a.speed,
                    active_ctrl=a.active_controller().name,
                )
            )
        active = []
        for a in roster:
            for slot in ("midair", "wall"):
                ctrl = getattr(a, slot)
                trig = getattr(ctrl, "trigger_id", None)
                if trig:
                    active.append(f"{trig}:{slot}:{a.id}")
        row: Dict[str, Any] = {"time": t, "trigger_id": "|".join(sorted(active))}
        row.update(zip(self._pair_names, (float(d) for d in dists)))
        self._pair_rows.append(row)

    def _record_history(self, roster: List[Aircraft], t: float, dists: np.ndarray) -> None:
        t_round = round(t, 2)
        row = {"t": t_round}
        row.update({name: round(float(d), 1) for name, d in zip(self._pair_names, dists)})
        self._history.append(row)

        center = self.world.center
        c_row = {"t": t_round}
        for a in roster:
            c_row[a.id] = round(float(np.hypot(a.pos.x - center.x, a.pos.y - center.y)), 1)
        self._center_history.append(c_row)

    def _on_collision(self, t: float, idx: int, min_sep: float) -> None:
        a_id, b_id = self._pair_ids[idx]
        pair = pair_name(a_id, b_id)
        self._log_trigger(
            TriggerLogRow(
                t=t,
                aircraft_id=a_id,
                trigger_id=f"C{int(round(t * 1000))}",
                source="collision",
                note=f"pair {pair} d={min_sep:.2f}m",
            )
        )
        self.running = False
        self.collision_packet = self._build_collision_packet(t, pair, min_sep)
        log.warning("collision at t=%.3f pair %s d=%.2fm; stepping halted", t, pair, min_sep)

    def _build_collision_packet(self, t: float, pair: str, min_sep: float) -> Dict[str, Any]:
        t_start = max(0.0, t - self.collision_window_s)
        return {
            "meta": {
                "collision_time_s": round(t, 3),
                "collision_pair": pair,
                "min_sep_m": round(min_sep, 2),
                "window_s": self.collision_window_s,
                "world": {"width": self.world.width, "height": self.world.height},
            },
            "sim_log": filter_time_window(self.sim_log_frame(), t_start, t),
            "pair_distances": filter_time_window(self.pair_log_frame(), t_start, t),
            "trigger_log": filter_time_window(self.trigger_log_frame(), t_start, t),
        }

    # ------------------------------ Outputs ------------------------------

    @property
    def aircraft(self) -> Tuple[AircraftSnapshot, ...]:
        return tuple(a.snapshot() for a in self._roster)

    @property
    def pairs(self) -> List[str]:
        return list(self._pair_names)

    @property
    def collided(self) -> bool:
        return self.collision_packet is not None

    def aircraft_state(self, aid: str) -> Aircraft:
        """Detached copy of one aircraft's full state, controllers included."""

        for a in self._roster:
            if a.id == aid:
                return a.clone()
        raise KeyError(aid)

    def trigger_log_frame(self) -> pd.DataFrame:
        rows = [
            dict(time=r.t, aircraft_id=r.aircraft_id, trigger_id=r.trigger_id, source=r.source, note=r.note)
            for r in self._trigger_rows
        ]
        return pd.DataFrame(rows, columns=TRIGGER_LOG_COLUMNS)

    def sim_log_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self._sim_rows, columns=SIM_LOG_COLUMNS)

    def pair_log_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self._pair_rows, columns=["time", "trigger_id", *self._pair_names])

    def history_frame(self) -> pd.DataFrame:
        return pd.DataFrame(list(self._history), columns=["t", *self._pair_names])

    def center_history_frame(self) -> pd.DataFrame:
        return pd.DataFrame(list(self._center_history), columns=["t", *(a.id for a in self._roster)])

    def collision_packet_json(self) -> Optional[str]:
        if self.collision_packet is None:
            return None
        packet = self.collision_packet
        payload = {
            "meta": packet["meta"],
            "sim_log": packet["sim_log"].to_dict(orient="records"),
            "pair_distances": packet["pair_distances"].to_dict(orient="records"),
            "trigger_log": packet["trigger_log"].to_dict(orient="records"),
        }
        return json.dumps(payload, separators=(",", ":"))

    # ------------------------------ Scoring ------------------------------

    def score_now(self, **opts: Any) -> bool:
        """Start a background fast score of the current params and roster size."""

        return self.scorer.submit(self.params, len(self._roster), world=self.world, **opts)

    def close(self) -> None:
        """Cancel any running score and stop the scorer's worker thread."""

        self.scorer.shutdown()

    @property
    def scoring(self) -> bool:
        return self.scorer.busy

    @property
    def fast_score(self) -> Optional[ScoreResult]:
        return self.scorer.result


__all__ = [
    "COLLISION_THRESH_M",
    "COLLISION_WINDOW_S",
    "HIST_DT",
    "HISTORY_MAX_ROWS",
    "MAX_FRAME_DT_S",
    "SIM_LOG_COLUMNS",
    "TRIGGER_LOG_COLUMNS",
    "AirparkSimulation",
]
