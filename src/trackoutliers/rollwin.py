"""Rolling-window outlier detection on canonical trajectories."""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from .mapping import CANONICAL_COLUMNS, MissingColumn

logger = logging.getLogger(__name__)

MAD_TO_SD = 1.4826     # MAD → sigma for normally distributed data
_FLAT_TOL = 1e-12


def _mad(window: np.ndarray) -> float:
    window = window[~np.isnan(window)]
    if window.size == 0:
        return np.nan
    return float(np.median(np.abs(window - np.median(window))))


def _score_track(meas: pd.Series, window: int) -> pd.DataFrame:
    interp = meas.interpolate(limit_direction="both")
    roll = interp.rolling(window, center=True, min_periods=1)
    med = roll.median()
    sigma = MAD_TO_SD * roll.apply(_mad, raw=True)

    dev = (interp - med).abs()
    with np.errstate(divide="ignore", invalid="ignore"):
        score = dev / sigma
    # flat window: any deviation at all is an outlier
    flat = sigma <= _FLAT_TOL
    score[flat] = np.where(dev[flat] > _FLAT_TOL, np.inf, 0.0)
    return pd.DataFrame({"MEAS_INTERP": interp, "ROLL_MED": med, "SCORE": score})


def detect_outliers(
    table: pd.DataFrame, window: int = 25, threshold: float = 3.0
) -> pd.DataFrame:
    """
    Score every point against a centred rolling median of its own track.

    ``SCORE = |x − median| / (1.4826 · MAD)`` over *window* points; points
    with ``SCORE > threshold`` get ``OUTLIER = True``.  Missing and
    non-finite MEAS values are linearly interpolated first (``MEAS_INTERP``).
    The result is sorted by ID then TIME.

    Raises
    ------
    ValueError
        *window* < 3 or *threshold* ≤ 0.
    MissingColumn
        *table* lacks a canonical column.
    """
    if window < 3:
        raise ValueError("Rolling window must span at least 3 points")
    if threshold <= 0:
        raise ValueError("Outlier threshold must be positive")
    missing = [c for c in CANONICAL_COLUMNS if c not in table.columns]
    if missing:
        raise MissingColumn(f"Canonical column(s) missing: {', '.join(missing)}")

    df = table.sort_values(["ID", "TIME"], kind="mergesort").reset_index(drop=True)
    meas = pd.to_numeric(df["MEAS"], errors="coerce")
    non_finite = ~np.isfinite(meas.to_numpy(dtype=float))
    if non_finite.any():
        logger.warning("%d non-finite measurement(s) will be interpolated", int(non_finite.sum()))
    df["MEAS"] = meas.where(~non_finite)

    parts = [
        _score_track(grp["MEAS"], window)
        for _, grp in df.groupby("ID", sort=False)
    ]
    scored = pd.concat([df, pd.concat(parts).sort_index()], axis=1)
    scored["OUTLIER"] = scored["SCORE"] > threshold

    logger.info(
        "Rolling window %d, threshold %.2f: %d outlier point(s) in %d track(s)",
        window,
        threshold,
        int(scored["OUTLIER"].sum()),
        scored.loc[scored["OUTLIER"], "ID"].nunique(),
    )
    return scored


def summarize_outliers(scored: pd.DataFrame) -> pd.DataFrame:
    """Per-track ``N_POINTS · N_OUTLIERS · MAX_SCORE``, most affected first."""
    summary = scored.groupby("ID").agg(
        N_POINTS=("MEAS_INTERP", "size"),
        N_OUTLIERS=("OUTLIER", "sum"),
        MAX_SCORE=("SCORE", "max"),
    )
    summary["N_OUTLIERS"] = summary["N_OUTLIERS"].astype(int)
    return summary.sort_values(["N_OUTLIERS", "MAX_SCORE"], ascending=False)
