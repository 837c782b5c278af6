"""
Synthetic single-cell trajectories for trying the outlier detector without
uploading data.

The generator reproduces the layout of a CellProfiler-style time-lapse
export (one row per track and time point), so its output goes through the
same column mapping as an uploaded file – with a fixed selection.
"""

from __future__ import annotations

import logging
import string
from typing import Sequence, Tuple

import numpy as np
import pandas as pd

from .mapping import SYNTHETIC_SELECTION, map_columns

__all__ = [
    "OUTLIER_ROWS",
    "OUTLIER_VALUE",
    "generate_trajectories",
    "inject_outliers",
    "synthetic_canonical",
]

logger = logging.getLogger(__name__)

# 1-based, inclusive.  Sized for the default 60 × 10 × 6 = 3600-row output.
OUTLIER_ROWS: Tuple[Tuple[int, int], ...] = ((320, 330), (1400, 1410))
OUTLIER_VALUE = 10.0
SPIKE_VALUE = 5.0

# (mean, sd) of the three sub-populations, cytoplasm then nucleus
_CYTO_POPS = ((1.0, 0.2), (1.2, 0.1), (0.5, 0.1))
_NUC_POPS = ((0.25, 0.1), (0.8, 0.2), (0.5, 0.1))


def _populations(rng: np.random.Generator, n: int, pops) -> np.ndarray:
    chunks = np.array_split(np.arange(n), len(pops))
    return np.concatenate(
        [rng.normal(mu, sd, len(chunk)) for (mu, sd), chunk in zip(pops, chunks)]
    )


def generate_trajectories(
    n_outliers: int = 0,
    n_timepoints: int = 60,
    n_tracks: int = 10,
    n_fov: int = 6,
    n_wells: int = 1,
    seed: int | None = None,
) -> pd.DataFrame:
    """
    Raw synthetic table, ``n_timepoints × n_tracks × n_fov`` rows.

    Tracks fall into three equally sized sub-populations with different
    mean intensities.  ``n_outliers`` single time points (drawn at random)
    are replaced by a spike of :data:`SPIKE_VALUE` in both intensity columns.
    """
    if min(n_timepoints, n_tracks, n_fov, n_wells) < 1:
        raise ValueError("Synthetic dimensions must all be ≥ 1")
    if n_wells > len(string.ascii_uppercase):
        raise ValueError("At most 26 wells are supported")

    rng = np.random.default_rng(seed)
    n_ids = n_tracks * n_fov
    n_rows = n_timepoints * n_ids

    cyto = _populations(rng, n_rows, _CYTO_POPS)
    nuc = _populations(rng, n_rows, _NUC_POPS)

    n_outliers = int(n_outliers or 0)
    if n_outliers > 0:
        idx = rng.choice(n_rows, size=min(n_outliers, n_rows), replace=False)
        cyto[idx] = SPIKE_VALUE
        nuc[idx] = SPIKE_VALUE

    wells = np.array_split(np.arange(n_rows), n_wells)
    well_labels = np.empty(n_rows, dtype=object)
    for letter, rows in zip(string.ascii_uppercase, wells):
        well_labels[rows] = letter

    df = pd.DataFrame(
        {
            "Metadata_Well": well_labels,
            "Metadata_Site": np.repeat(np.arange(1, n_fov + 1), n_timepoints * n_tracks),
            "Metadata_RealTime": np.tile(np.arange(1, n_timepoints + 1), n_ids),
            "objCyto_Intensity_MeanIntensity_imErkCor": cyto,
            "objNuc_Intensity_MeanIntensity_imErkCor": nuc,
            "TrackLabel": np.repeat(np.arange(1, n_ids + 1), n_timepoints),
        }
    )
    logger.info(
        "Generated %d synthetic rows (%d tracks, %d spikes)", n_rows, n_ids, n_outliers
    )
    return df


def inject_outliers(
    canonical: pd.DataFrame,
    rows: Sequence[Tuple[int, int]] = OUTLIER_ROWS,
    value: float = OUTLIER_VALUE,
) -> pd.DataFrame:
    """
    Copy of *canonical* with MEAS set to *value* on the given row ranges.

    Ranges are 1-based and inclusive; the parts beyond the table are ignored.
    """
    out = canonical.copy()
    meas = out.columns.get_loc("MEAS")
    for first, last in rows:
        lo, hi = max(first - 1, 0), min(last, len(out))
        if lo >= hi:
            logger.warning("Outlier rows %d-%d outside table of %d rows", first, last, len(out))
            continue
        out.iloc[lo:hi, meas] = value
    return out


def synthetic_canonical(
    n_outliers: int = 0,
    inject: bool = False,
    *,
    outlier_rows: Sequence[Tuple[int, int]] = OUTLIER_ROWS,
    outlier_value: float = OUTLIER_VALUE,
    **generator_kwargs,
) -> pd.DataFrame:
    """Generate, map with the fixed synthetic selection, optionally inject."""
    raw = generate_trajectories(n_outliers, **generator_kwargs)
    canonical = map_columns(raw, SYNTHETIC_SELECTION)
    if inject:
        canonical = inject_outliers(canonical, outlier_rows, outlier_value)
    return canonical
