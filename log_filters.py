"""Filtering helpers over the tabular logs produced by the real-time driver."""
from __future__ import annotations

from typing import Optional

import pandas as pd

TRIGGER_LOG_PREVIEW_ROWS = 2000


def filter_time_window(
    df: pd.DataFrame,
    t_start: float,
    t_end: float,
    *,
    time_col: str = "time",
) -> pd.DataFrame:
    """Return the rows with ``t_start <= time <= t_end``, header preserved."""

    if df is None:
        return pd.DataFrame()
    if df.empty or time_col not in df.columns:
        return df.iloc[0:0].copy()

    times = pd.to_numeric(df[time_col], errors="coerce")
    mask = times.notna() & (times >= float(t_start)) & (times <= float(t_end))
    return df.loc[mask].copy()


def build_trigger_log_preview(
    df: pd.DataFrame,
    *,
    source: Optional[str] = None,
    limit: int = TRIGGER_LOG_PREVIEW_ROWS,
) -> pd.DataFrame:
    """Newest-first view of the trigger log, optionally for one source."""

    if df is None:
        return pd.DataFrame()
    if df.empty:
        return df.iloc[0:0].copy()

    preview_df = df
    if source is not None:
        if "source" not in df.columns:
            return df.iloc[0:0].copy()
        preview_df = preview_df.loc[preview_df["source"] == source]

    preview_df = preview_df.iloc[::-1]
    if limit is not None and limit >= 0:
        preview_df = preview_df.head(int(limit))
    return preview_df.reset_index(drop=True)


__all__ = [
    "TRIGGER_LOG_PREVIEW_ROWS",
    "filter_time_window",
    "build_trigger_log_preview",
]
