"""
trackoutliers.ui.app
====================

Interactive Dash front-end for outlier detection in time-series data.

* Data comes either from an uploaded file (columns mapped by the user) or
  from the synthetic generator; the most recent *Load data* / *Generate
  synthetic data* click decides which one feeds the analysis views.
* Views: hierarchical clustering heatmap and rolling-window outliers.
* The canonical table plus outlier scores can be downloaded as Excel.
"""

from __future__ import annotations

import logging
import uuid
from io import StringIO
from typing import List

import dash_bootstrap_components as dbc
import numpy as np
import pandas as pd
from dash import Dash, dcc, html, dash_table, no_update
from dash.dependencies import Input, Output, State
from dash.exceptions import PreventUpdate

from ..arbitration import Publication, SessionControllers, Source
from ..cluster import LINKAGE_METHODS, cluster_tracks, to_wide
from ..io.config import Settings
from ..io.export import to_excel_bytes
from ..io.loader import ParseFailure, load_upload
from ..mapping import NONE, ColumnSelection, MappingError, Operator, columns_of, map_columns
from ..plots import make_heatmap, make_trajectories
from ..rollwin import detect_outliers, summarize_outliers
from ..synthetic import synthetic_canonical

# ────────────── constants ──────────────
HIDDEN = {"display": "none"}
SHOWN = {"display": "block"}

OPERATOR_OPTIONS = [
    {"label": "None", "value": Operator.NONE.value},
    {"label": "Divide", "value": Operator.DIVIDE.value},
    {"label": "Sum", "value": Operator.SUM.value},
    {"label": "Multiply", "value": Operator.MULTIPLY.value},
    {"label": "Subtract", "value": Operator.SUBTRACT.value},
    {"label": "1 / X", "value": Operator.RECIPROCAL.value},
]

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

# trigger state of every browser session, shared by all callbacks
SESSIONS = SessionControllers()


def _set_log_level(enabled: bool) -> None:
    level = logging.DEBUG if enabled else logging.INFO
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)
    logger.setLevel(level)


# ────────────── store (de)serialisation ──────────────
def _table_to_store(df: pd.DataFrame) -> str:
    return df.to_json(orient="split", index=False)


def _table_from_store(payload: str | None) -> pd.DataFrame | None:
    if not payload:
        return None
    return pd.read_json(StringIO(payload), orient="split", dtype=False)


# ────────────── column discovery ──────────────
def _discover_columns(contents: str | None, filename: str | None) -> tuple[List[str], str | None]:
    """Raw column names of the upload and an error message (if unreadable)."""
    try:
        raw = load_upload(contents, filename)
    except ParseFailure as exc:
        return [], str(exc)
    return columns_of(raw), None


def _options(columns: List[str], optional: bool = False) -> list[dict]:
    values = ([NONE] if optional else []) + columns
    return [{"label": c, "value": c} for c in values]


def _ops_style(meas2: str | None) -> dict:
    """Operator choice only makes sense once a 2nd measurement is chosen."""
    return HIDDEN if not meas2 or meas2 == NONE else SHOWN


# ────────────── arbitration ──────────────
def _publish(
    session_id: str,
    load_clicks: int | None,
    syn_clicks: int | None,
    contents: str | None,
    filename: str | None,
    selectors: tuple,
    n_spikes: int | None,
    inject: bool,
    settings: Settings,
    sessions: SessionControllers | None = None,
) -> Publication:
    """
    One arbitration step for *session_id*, against the counters that
    session's controller has kept on the server.

    *selectors* are the raw widget values in
    ``ColumnSelection.from_inputs`` order.  The providers are only called
    for the winning source, so an unset selector cannot fail a synthetic
    click.
    """
    controller = (SESSIONS if sessions is None else sessions).get(session_id)

    def _file_table() -> pd.DataFrame | None:
        raw = load_upload(contents, filename)
        if raw is None:
            return None
        return map_columns(raw, ColumnSelection.from_inputs(*selectors))

    def _synthetic_table() -> pd.DataFrame:
        syn = settings.synthetic
        return synthetic_canonical(
            int(n_spikes or 0),
            inject,
            outlier_rows=syn.outlier_rows,
            outlier_value=syn.outlier_value,
            **syn.generator_kwargs(),
        )

    return controller.publish(load_clicks, syn_clicks, _file_table, _synthetic_table)


def _publication_alert(pub: Publication) -> tuple[str, str]:
    """(message, colour) for the source status alert."""
    if pub.table is not None:
        label = "file" if pub.source is Source.FILE else "synthetic generator"
        return (
            f"{len(pub.table)} rows · {pub.table['ID'].nunique()} tracks from {label}",
            "success",
        )
    if pub.failed:
        return pub.message, "danger"
    if pub.source is Source.FILE:
        return "No data file chosen yet.", "warning"
    return "The synthetic generator returned no data.", "warning"


# ────────────── analysis views ──────────────
def _placeholder() -> html.Div:
    return html.Div(
        "Upload a file and press “Load data”, or generate synthetic data.",
        className="text-muted p-4",
    )


def _render_graph(fig, alt: str) -> html.Div:
    return html.Div(
        dcc.Graph(figure=fig, config={"displaylogo": False}),
        role="img",
        **{"aria-label": alt},
    )


def _heatmap_view(table: pd.DataFrame, method: str, n_clusters: int | None) -> list:
    try:
        result = cluster_tracks(to_wide(table), method=method, n_clusters=int(n_clusters or 1))
    except (ValueError, MappingError) as exc:
        return [dbc.Alert(f"Clustering not possible: {exc}", color="warning")]
    return [_render_graph(make_heatmap(result, int(n_clusters or 1)), "Clustered heatmap")]


def _outlier_view(table: pd.DataFrame, window: int | None, threshold: float | None) -> list:
    try:
        scored = detect_outliers(table, int(window or 0), float(threshold or 0))
    except (ValueError, MappingError) as exc:
        return [dbc.Alert(f"Outlier detection not possible: {exc}", color="warning")]

    summary = summarize_outliers(scored).reset_index()
    summary = summary[summary["N_OUTLIERS"] > 0].copy()
    children = [_render_graph(make_trajectories(table, scored), "Trajectories with outliers")]
    if summary.empty:
        children.append(dbc.Alert("No outliers at this threshold.", color="success"))
    else:
        summary["ID"] = summary["ID"].astype(str)
        summary["MAX_SCORE"] = summary["MAX_SCORE"].map(
            lambda s: "∞" if np.isinf(s) else f"{s:.2f}"
        )
        children.append(
            dash_table.DataTable(
                id="outlier-table",
                columns=[{"name": c, "id": c} for c in summary.columns],
                data=summary.to_dict("records"),
                page_size=15,
                sort_action="native",
                style_table={"overflowX": "auto"},
                style_header={"backgroundColor": "#f7f7f9"},
            )
        )
    return children


def _download_sheets(table: pd.DataFrame, window: int, threshold: float) -> dict[str, pd.DataFrame]:
    sheets = {"Canonical": table}
    try:
        scored = detect_outliers(table, window, threshold)
    except (ValueError, MappingError) as exc:
        logger.warning("Download without outlier sheets: %s", exc)
        return sheets
    sheets["Outliers"] = scored
    sheets["Summary"] = summarize_outliers(scored)
    return sheets


# ═══════════ APP ═══════════
def build_dash_app(settings: Settings | None = None) -> Dash:
    settings = settings or Settings()

    app = Dash(
        __name__,
        external_stylesheets=[dbc.themes.BOOTSTRAP],
        title="Outlier detection",
        suppress_callback_exceptions=True,
    )

    # ═══════════ LAYOUT ═══════════

    def _header() -> dbc.Row:
        return dbc.Row(
            dbc.Col(html.H3("Outlier Detection in Time-Series Data"), width="auto"),
            className="mt-2 mb-3",
        )

    def _selector(label: str, sel_id: str) -> dbc.Col:
        return dbc.Col(
            [
                dbc.Label(label, html_for=sel_id),
                dcc.Dropdown(id=sel_id, options=[], clearable=False),
            ],
            md=4,
            className="mb-2",
        )

    file_card = dbc.Card(
        [
            dbc.CardHeader("Load data from file"),
            dbc.CardBody(
                [
                    dcc.Upload(
                        id="upload-data",
                        children=dbc.Button("Choose data file", color="primary", id="btn-upload"),
                        multiple=False,
                        max_size=settings.upload.max_size_bytes,
                    ),
                    html.Small(id="upload-msg", className="text-muted d-block mb-2"),
                    dbc.Row(
                        [
                            _selector("ID column (e.g. TrackLabel):", "sel-id"),
                            _selector("Time column (e.g. Metadata_Time):", "sel-time"),
                            _selector("First measurement column:", "sel-meas1"),
                            _selector("2nd measurement (optional):", "sel-meas2"),
                            _selector("FOV column (optional):", "sel-fov"),
                        ],
                        className="g-2",
                    ),
                    html.Div(
                        [
                            dbc.Label("Math operation 1st and 2nd meas.:"),
                            dbc.RadioItems(
                                id="sel-ops",
                                options=OPERATOR_OPTIONS,
                                value=Operator.NONE.value,
                                inline=True,
                            ),
                        ],
                        id="ops-container",
                        style=HIDDEN,
                    ),
                    dbc.Button("Load data", id="btn-load", color="primary", className="mt-2"),
                ]
            ),
        ],
        className="mb-3 shadow-sm",
    )

    synthetic_card = dbc.Card(
        [
            dbc.CardHeader("Synthetic data"),
            dbc.CardBody(
                [
                    dbc.Label("Number of random outlier points:", html_for="syn-spikes"),
                    dcc.Slider(id="syn-spikes", min=0, max=20, step=1, value=0),
                    dbc.Checklist(
                        id="syn-inject",
                        options=[{"label": " Add outlier segments", "value": "inject"}],
                        value=[],
                        switch=True,
                    ),
                    dbc.Button(
                        "Generate synthetic data", id="btn-syn", color="secondary", className="mt-2"
                    ),
                ]
            ),
        ],
        className="mb-3 shadow-sm",
    )

    status = dbc.Alert(id="source-alert", is_open=False, className="mb-3")

    view_dd = dcc.Dropdown(
        id="view",
        options=[{"label": "Clustered heatmap", "value": "heatmap"},
                 {"label": "Rolling-window outliers", "value": "outliers"}],
        value="heatmap",
        clearable=False,
        style={"width": "240px"},
    )

    controls_card = dbc.Card(
        dbc.CardBody(
            dbc.Row(
                [
                    dbc.Col(view_dd, width="auto"),
                    dbc.Col(dbc.Label("Linkage"), width="auto"),
                    dbc.Col(
                        dcc.Dropdown(
                            id="cluster-method",
                            options=[{"label": m, "value": m} for m in LINKAGE_METHODS],
                            value=settings.cluster.method,
                            clearable=False,
                            style={"width": "140px"},
                        ),
                        width="auto",
                    ),
                    dbc.Col(dbc.Label("Clusters"), width="auto"),
                    dbc.Col(dbc.Input(id="cluster-k", type="number", min=1, step=1,
                                      value=settings.cluster.n_clusters), width=1),
                    dbc.Col(dbc.Label("Window"), width="auto"),
                    dbc.Col(dbc.Input(id="rw-window", type="number", min=3, step=1,
                                      value=settings.rollwin.window), width=1),
                    dbc.Col(dbc.Label("Threshold"), width="auto"),
                    dbc.Col(dbc.Input(id="rw-threshold", type="number", min=0.1, step=0.1,
                                      value=settings.rollwin.threshold), width=1),
                    dbc.Col(dbc.Button("Download Excel", id="btn-dl", color="info"),
                            width="auto", className="ms-auto"),
                ],
                className="g-2 align-items-center flex-wrap",
            )
        ),
        className="mb-3 shadow-sm",
    )

    debug_row = dbc.Row(
        [
            dbc.Col(
                dbc.Checklist(
                    id="debug-toggle",
                    options=[{"label": " Enable debug logging", "value": "debug"}],
                    value=[],
                    switch=True,
                    className="mb-0",
                ),
                width="auto",
            ),
            dbc.Col(
                html.Span(
                    "Debug logging is off. Enable to print debug statements to the server console.",
                    id="debug-toggle-status",
                    className="text-muted",
                )
            ),
        ],
        className="align-items-center g-2 mt-3 mb-4",
    )

    # served per page load: every load is a new session with fresh counters
    def _serve_layout() -> dbc.Container:
        return dbc.Container(
            [
                _header(),
                dbc.Row(
                    [dbc.Col(file_card, lg=8), dbc.Col(synthetic_card, lg=4)],
                    className="g-3",
                ),
                status,
                controls_card,
                dbc.Card(dbc.CardBody(html.Div(_placeholder(), id="fig-container")),
                         className="shadow-sm"),
                debug_row,
                dcc.Download(id="dl-data"),
                dcc.Store(id="canonical-data"),
                dcc.Store(id="session-id", data=uuid.uuid4().hex),
            ],
            fluid=True,
            style={"maxWidth": "1400px"},
        )

    app.layout = _serve_layout

    # ═══════════ CALLBACKS ═══════════

    @app.callback(
        Output("debug-toggle-status", "children"),
        Input("debug-toggle", "value"),
        prevent_initial_call=True,
    )
    def _toggle_debug_logging(values):
        enabled = "debug" in (values or [])
        _set_log_level(enabled)
        if enabled:
            logger.debug("Debug logging enabled via toggle.")
            return "Debug logging is on. Check the server console for detailed output."
        logger.info("Debug logging disabled via toggle.")
        return "Debug logging is off. Enable to print debug statements to the server console."

    # Upload status + column discovery
    @app.callback(
        Output("btn-upload", "color"),
        Output("upload-msg", "children"),
        Output("sel-id", "options"),
        Output("sel-time", "options"),
        Output("sel-meas1", "options"),
        Output("sel-meas2", "options"),
        Output("sel-fov", "options"),
        Output("sel-id", "value"),
        Output("sel-time", "value"),
        Output("sel-meas1", "value"),
        Output("sel-meas2", "value"),
        Output("sel-fov", "value"),
        Input("upload-data", "contents"),
        State("upload-data", "filename"),
        prevent_initial_call=True,
    )
    def _upload_status(contents, filename):
        logger.debug("Discovering columns of %s", filename)
        cols, error = _discover_columns(contents, filename)
        if error:
            colour, msg = "danger", error
        elif cols:
            colour, msg = "success", f"Loaded: {filename} ({len(cols)} columns)"
        else:
            colour, msg = "primary", ""
        first = cols[0] if cols else None
        return (
            colour,
            msg,
            _options(cols),
            _options(cols),
            _options(cols),
            _options(cols, optional=True),
            _options(cols, optional=True),
            first,
            first,
            first,
            NONE,
            NONE,
        )

    @app.callback(Output("ops-container", "style"), Input("sel-meas2", "value"))
    def _toggle_ops(meas2):
        return _ops_style(meas2)

    # Source arbitration – the only writer of the canonical store
    @app.callback(
        Output("canonical-data", "data"),
        Output("source-alert", "children"),
        Output("source-alert", "color"),
        Output("source-alert", "is_open"),
        Input("btn-load", "n_clicks"),
        Input("btn-syn", "n_clicks"),
        State("session-id", "data"),
        State("upload-data", "contents"),
        State("upload-data", "filename"),
        State("sel-id", "value"),
        State("sel-time", "value"),
        State("sel-meas1", "value"),
        State("sel-meas2", "value"),
        State("sel-ops", "value"),
        State("sel-fov", "value"),
        State("syn-spikes", "value"),
        State("syn-inject", "value"),
        prevent_initial_call=True,
    )
    def _arbitrate(
        load_clicks, syn_clicks, session_id, contents, filename,
        id_col, time_col, meas1, meas2, op_code, fov_col, n_spikes, inject,
    ):
        if not session_id:
            raise PreventUpdate
        pub = _publish(
            session_id, load_clicks, syn_clicks, contents, filename,
            (id_col, time_col, meas1, meas2, op_code, fov_col),
            n_spikes, "inject" in (inject or []), settings,
        )
        if pub.source is None:
            raise PreventUpdate

        message, colour = _publication_alert(pub)
        data = _table_to_store(pub.table) if pub.table is not None else no_update
        return data, message, colour, True

    # Analysis views
    @app.callback(
        Output("fig-container", "children"),
        Input("view", "value"),
        Input("canonical-data", "data"),
        Input("cluster-method", "value"),
        Input("cluster-k", "value"),
        Input("rw-window", "value"),
        Input("rw-threshold", "value"),
    )
    def _draw(view, payload, method, n_clusters, window, threshold):
        table = _table_from_store(payload)
        if table is None:
            return _placeholder()
        if view == "outliers":
            return html.Div(_outlier_view(table, window, threshold))
        return html.Div(_heatmap_view(table, method, n_clusters))

    @app.callback(
        Output("dl-data", "data"),
        Input("btn-dl", "n_clicks"),
        State("canonical-data", "data"),
        State("rw-window", "value"),
        State("rw-threshold", "value"),
        prevent_initial_call=True,
    )
    def _download(_, payload, window, threshold):
        table = _table_from_store(payload)
        if table is None:
            raise PreventUpdate
        sheets = _download_sheets(
            table,
            int(window or settings.rollwin.window),
            float(threshold or settings.rollwin.threshold),
        )
        return dcc.send_bytes(to_excel_bytes(sheets), "trackoutliers.xlsx")

    return app


# module-level instance (picked up by unit tests)
app: Dash = build_dash_app()
__all__ = ["build_dash_app", "app"]
