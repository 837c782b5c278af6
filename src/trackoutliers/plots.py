from __future__ import annotations

from typing import Dict, List

import numpy as np
import pandas as pd
import plotly.graph_objects as go
from plotly.subplots import make_subplots
from matplotlib.cm import tab20
from matplotlib.colors import to_hex
from scipy.cluster import hierarchy

from .cluster import ClusterResult
from .util import matplotlib_cycle_index, rgba

# ───────────────────────────── palette ──────────────────────────────
_SAFE_HEX: List[str] = [
    "#3E79F7", "#F75F00", "#8E44AD", "#2ECC71",
    "#F1C40F", "#16A085", "#E74C3C", "#34495E",
]
_OUTLIER_HEX = "#E63946"
_TRUNK_HEX = "#888888"


def _palette_hex(n: int) -> List[str]:
    """Return *n* distinct colours, colour-blind-safe first, then tab20."""
    cols = _SAFE_HEX.copy()
    while len(cols) < n:
        idx = len(cols)
        cols.append(to_hex(tab20(idx / 20)))
    return cols[:n]


# ────────────────────────── trajectories ────────────────────────────
def make_trajectories(
    table: pd.DataFrame,
    scored: pd.DataFrame | None = None,
) -> go.Figure:
    """
    One line per track, coloured by FOV.

    Parameters
    ----------
    table
        Canonical table (**ID · TIME · MEAS · FOV**).
    scored
        Output of :func:`trackoutliers.rollwin.detect_outliers`; when given,
        the interpolated series is drawn and outlier points are marked.

    Returns
    -------
    plotly.graph_objects.Figure
    """
    source = scored if scored is not None else table
    y_col = "MEAS_INTERP" if scored is not None else "MEAS"

    fovs = list(pd.unique(source["FOV"]))
    palette = _palette_hex(len(fovs))
    colour: Dict[object, str] = dict(zip(fovs, palette))

    fig = go.Figure()
    shown: set = set()
    for track, grp in source.groupby("ID", sort=False):
        grp = grp.sort_values("TIME")
        fov = grp["FOV"].iat[0]
        fig.add_trace(
            go.Scattergl(
                x=grp["TIME"],
                y=grp[y_col],
                mode="lines",
                line=dict(color=rgba(colour[fov], 0.6), width=1),
                name=f"FOV {fov}",
                legendgroup=str(fov),
                showlegend=fov not in shown,
                hovertemplate=f"track {track}<br>t=%{{x}}<br>%{{y:.3f}}<extra></extra>",
            )
        )
        shown.add(fov)

    n_out = 0
    if scored is not None:
        out = scored[scored["OUTLIER"]]
        n_out = len(out)
        if n_out:
            fig.add_trace(
                go.Scattergl(
                    x=out["TIME"],
                    y=out["MEAS_INTERP"],
                    mode="markers",
                    marker=dict(color=_OUTLIER_HEX, size=7, symbol="x"),
                    name="Outliers",
                    customdata=out[["ID", "SCORE"]].astype({"ID": str}).to_numpy(dtype=object),
                    hovertemplate=(
                        "track %{customdata[0]}<br>t=%{x}<br>%{y:.3f}"
                        "<br>score %{customdata[1]:.1f}<extra></extra>"
                    ),
                )
            )

    fig.update_layout(
        template="plotly_white",
        height=600,
        margin=dict(l=60, r=200, t=100, b=50),
        xaxis=dict(title="Time"),
        yaxis=dict(title="Measurement"),
        title=dict(
            text="<b>Trajectories</b>",
            x=0.005, y=0.97, xanchor="left", yanchor="top",
        ),
        annotations=[
            dict(
                text=f"{source['ID'].nunique()} tracks · {len(fovs)} FOV"
                     + (f" · {n_out} outlier points" if scored is not None else ""),
                x=0.005, y=1.06, xref="paper", yref="paper",
                xanchor="left", yanchor="top",
                showarrow=False, font=dict(size=12, color="#444"),
            )
        ],
        legend=dict(
            y=1, x=1.02, yanchor="top", xanchor="left",
            bgcolor="rgba(255,255,255,0.9)",
            borderwidth=1,
        ),
    )
    return fig


# ────────────────────────── clustered heatmap ───────────────────────
def _leaf_y(n: int) -> List[float]:
    # scipy places leaf i at 5 + 10·i
    return [5.0 + 10.0 * i for i in range(n)]


def make_heatmap(result: ClusterResult, n_clusters: int | None = None) -> go.Figure:
    """
    Heatmap of the ID × TIME matrix, rows in dendrogram order, with the
    dendrogram to the left coloured by flat cluster.
    """
    n_tracks = len(result.wide)
    k = min(n_clusters or int(result.labels.nunique()), n_tracks)
    # height at which the tree splits into k clusters
    heights = result.linkage[:, 2]
    threshold = heights[-(k - 1)] if 1 < k <= len(heights) else heights.max() + 1

    dendro = hierarchy.dendrogram(
        result.linkage,
        orientation="left",
        no_plot=True,
        color_threshold=threshold,
        above_threshold_color=_TRUNK_HEX,
    )
    palette = _palette_hex(max(k, 1))

    fig = make_subplots(
        rows=1,
        cols=2,
        shared_yaxes=True,
        column_widths=[0.2, 0.8],
        horizontal_spacing=0.01,
    )

    for xs, ys, code in zip(dendro["dcoord"], dendro["icoord"], dendro["color_list"]):
        idx = matplotlib_cycle_index(code)
        colour = palette[(idx - 1) % len(palette)] if idx is not None else code
        fig.add_trace(
            go.Scatter(
                x=xs, y=ys, mode="lines",
                line=dict(color=colour, width=1.5),
                hoverinfo="skip", showlegend=False,
            ),
            row=1, col=1,
        )

    ordered = result.ordered
    y = _leaf_y(n_tracks)
    fig.add_trace(
        go.Heatmap(
            z=ordered.to_numpy(),
            x=list(ordered.columns),
            y=y,
            colorscale="RdYlBu_r",
            colorbar=dict(title="MEAS"),
            customdata=np.repeat(
                ordered.index.astype(str).to_numpy()[:, None], ordered.shape[1], axis=1
            ),
            hovertemplate="track %{customdata}<br>t=%{x}<br>%{z:.3f}<extra></extra>",
        ),
        row=1, col=2,
    )

    fig.update_xaxes(autorange="reversed", showticklabels=False, showgrid=False,
                     zeroline=False, row=1, col=1)
    fig.update_xaxes(title_text="Time", row=1, col=2)
    fig.update_yaxes(
        tickvals=y,
        ticktext=[str(i) for i in ordered.index],
        showgrid=False,
        row=1, col=1,
    )
    fig.update_layout(
        template="plotly_white",
        height=max(450, 14 * n_tracks + 150),
        margin=dict(l=60, r=40, t=100, b=50),
        title=dict(
            text=f"<b>Hierarchical clustering</b><br>"
                 f"<sup>{n_tracks} tracks · {k} clusters</sup>",
            x=0.005, y=0.97, xanchor="left", yanchor="top",
        ),
    )
    return fig
