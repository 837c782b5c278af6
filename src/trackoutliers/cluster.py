"""
Hierarchical clustering of trajectories.

* **to_wide**        – canonical table → ID × TIME matrix of MEAS
* **cluster_tracks** – linkage, dendrogram leaf order and flat cluster labels
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy.cluster import hierarchy

from .mapping import CANONICAL_COLUMNS, MissingColumn

logger = logging.getLogger(__name__)

LINKAGE_METHODS = ("average", "complete", "single", "ward", "centroid", "median", "weighted")


@dataclass(slots=True, frozen=True)
class ClusterResult:
    """
    Parameters
    ----------
    wide
        ID × TIME matrix, rows in the original (sorted ID) order.
    linkage
        SciPy linkage matrix.
    order
        Row positions of *wide* in dendrogram leaf order.
    labels
        Flat cluster number per ID (1-based), indexed like *wide*.
    """

    wide: pd.DataFrame
    linkage: np.ndarray
    order: list[int]
    labels: pd.Series

    @property
    def ordered(self) -> pd.DataFrame:
        return self.wide.iloc[self.order]


def _check_canonical(table: pd.DataFrame) -> None:
    missing = [c for c in CANONICAL_COLUMNS if c not in table.columns]
    if missing:
        raise MissingColumn(f"Canonical column(s) missing: {', '.join(missing)}")


def to_wide(table: pd.DataFrame) -> pd.DataFrame:
    """
    Pivot to one row per track and one column per time point.

    Non-finite MEAS values are dropped first, duplicate (ID, TIME) pairs are
    averaged and gaps are interpolated along time (edges take the nearest
    value).  Tracks with no finite value at all are removed.
    """
    _check_canonical(table)
    meas = pd.to_numeric(table["MEAS"], errors="coerce").replace([np.inf, -np.inf], np.nan)
    n_bad = int(meas.isna().sum())
    if n_bad:
        logger.warning("Clustering ignores %d non-finite measurement(s)", n_bad)

    df = table.assign(MEAS=meas).dropna(subset=["MEAS"])
    wide = df.pivot_table(index="ID", columns="TIME", values="MEAS", aggfunc="mean")
    wide = wide.sort_index(axis=1)
    wide = wide.interpolate(axis=1, limit_direction="both")
    return wide.dropna(how="all")


def cluster_tracks(
    wide: pd.DataFrame,
    method: str = "average",
    metric: str = "euclidean",
    n_clusters: int = 4,
) -> ClusterResult:
    """
    Cluster the rows of *wide*.

    Raises
    ------
    ValueError
        Unknown *method*, fewer than two tracks, or *n_clusters* < 1.
    """
    if method not in LINKAGE_METHODS:
        raise ValueError(f"Unknown linkage method '{method}'")
    if n_clusters < 1:
        raise ValueError("n_clusters must be ≥ 1")
    if len(wide) < 2:
        raise ValueError("At least two tracks are needed for clustering")

    # time points missing for every track of a column stay NaN
    values = wide.to_numpy(dtype=float)
    values = np.where(np.isnan(values), np.nanmean(values), values)
    if method in ("ward", "centroid", "median") and metric != "euclidean":
        raise ValueError(f"'{method}' linkage requires the euclidean metric")

    link = hierarchy.linkage(values, method=method, metric=metric)
    order = [int(i) for i in hierarchy.leaves_list(link)]
    labels = pd.Series(
        hierarchy.fcluster(link, t=min(n_clusters, len(wide)), criterion="maxclust"),
        index=wide.index,
        name="CLUSTER",
    )
    logger.info(
        "Clustered %d tracks (%s/%s) into %d cluster(s)",
        len(wide),
        method,
        metric,
        labels.nunique(),
    )
    return ClusterResult(wide, link, order, labels)
