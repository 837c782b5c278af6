from __future__ import annotations

import base64
import threading

import dash_bootstrap_components as dbc
import pandas as pd
import pytest
from dash import dash_table

import trackoutliers.ui.app as ui
from trackoutliers.arbitration import SessionControllers, Source, TriggerState
from trackoutliers.io.config import Settings, SyntheticSettings


SELECTORS = ("Track", "Time", "I1", "I2", "-", "Site")


@pytest.fixture
def upload(csv_bytes) -> str:
    return "data:text/csv;base64," + base64.b64encode(csv_bytes).decode()


@pytest.fixture
def small_settings() -> Settings:
    return Settings(synthetic=SyntheticSettings(n_timepoints=20, n_tracks=3, n_fov=2, seed=1))


@pytest.fixture
def sessions() -> SessionControllers:
    return SessionControllers()


def _publish(sessions, session_id, load, syn, contents, settings, selectors=SELECTORS, inject=False):
    return ui._publish(
        session_id, load, syn, contents, "tracks.csv", selectors, 0, inject, settings,
        sessions=sessions,
    )


# ---------- arbitration step ------------------------------------------
def test_load_publishes_mapped_file(upload, small_settings, sessions):
    pub = _publish(sessions, "s", 1, None, upload, small_settings)

    assert pub.source is Source.FILE
    assert list(pub.table.columns) == ["ID", "TIME", "MEAS", "FOV"]
    assert pub.table["MEAS"].tolist()[:2] == [5, 6]
    assert pub.state == TriggerState(1, 0)


def test_synthetic_click_ignores_unset_selectors(small_settings, sessions):
    pub = _publish(sessions, "s", None, 1, None, small_settings, selectors=(None,) * 6)

    assert pub.source is Source.SYNTHETIC
    assert len(pub.table) == 20 * 3 * 2
    assert not pub.failed


def test_synthetic_then_load(upload, small_settings, sessions):
    first = _publish(sessions, "s", 0, 1, upload, small_settings)
    second = _publish(sessions, "s", 1, 1, upload, small_settings)
    assert first.source is Source.SYNTHETIC
    assert second.source is Source.FILE
    assert second.table["ID"].tolist()[0] == "a"
    assert sessions.get("s").state == TriggerState(1, 1)


def test_bad_mapping_is_reported(upload, small_settings, sessions):
    pub = _publish(
        sessions, "s", 1, 0, upload, small_settings,
        selectors=("Nope", "Time", "I1", None, None, None),
    )
    assert pub.failed
    assert pub.table is None
    assert "Nope" in pub.message
    assert ui._publication_alert(pub) == (pub.message, "danger")


def test_repeated_callback_is_a_no_op(small_settings, sessions):
    assert _publish(sessions, "s", 2, 1, None, small_settings).source is Source.FILE
    assert _publish(sessions, "s", 2, 1, None, small_settings).source is Source.SYNTHETIC
    assert _publish(sessions, "s", 2, 1, None, small_settings).source is None


def test_concurrent_callbacks_serve_one_click(small_settings, sessions):
    results = []
    start = threading.Barrier(4)

    def _callback():
        start.wait()
        results.append(_publish(sessions, "s", 0, 1, None, small_settings))

    threads = [threading.Thread(target=_callback) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert [r.source for r in results].count(Source.SYNTHETIC) == 1
    assert [r.source for r in results].count(None) == 3


def test_sessions_do_not_share_counters(small_settings, sessions):
    a = _publish(sessions, "tab-a", 0, 1, None, small_settings)
    b = _publish(sessions, "tab-b", 0, 1, None, small_settings)
    assert a.source is b.source is Source.SYNTHETIC


def test_default_registry_is_module_level(small_settings):
    sid = "default-registry-session"
    ui._publish(sid, 0, 1, None, None, SELECTORS, 0, False, small_settings)
    assert sid in ui.SESSIONS


# ---------- alerts / widgets ------------------------------------------
def test_alert_texts(upload, small_settings, sessions):
    ok = _publish(sessions, "syn", 0, 1, None, small_settings)
    msg, colour = ui._publication_alert(ok)
    assert colour == "success"
    assert msg.startswith("120 rows · 6 tracks") and msg.endswith("synthetic generator")

    nofile = _publish(sessions, "file", 1, 0, None, small_settings)
    assert ui._publication_alert(nofile) == ("No data file chosen yet.", "warning")


def test_discover_columns(upload):
    cols, err = ui._discover_columns(upload, "tracks.csv")
    assert cols == ["Track", "Time", "I1", "I2", "Site"]
    assert err is None

    assert ui._discover_columns(None, None) == ([], None)

    empty = "data:text/csv;base64," + base64.b64encode(b"A,B\n").decode()
    cols, err = ui._discover_columns(empty, "empty.csv")
    assert cols == [] and "no data rows" in err


def test_options_and_ops_visibility():
    assert ui._options(["a"]) == [{"label": "a", "value": "a"}]
    assert [o["value"] for o in ui._options(["a"], optional=True)] == ["none", "a"]
    assert ui._ops_style(None) == ui.HIDDEN
    assert ui._ops_style("none") == ui.HIDDEN
    assert ui._ops_style("I2") == ui.SHOWN


def test_store_roundtrip(raw_tracks):
    table = raw_tracks.rename(columns={"Track": "ID", "Time": "TIME", "I1": "MEAS", "Site": "FOV"})
    table = table[["ID", "TIME", "MEAS", "FOV"]]
    back = ui._table_from_store(ui._table_to_store(table))
    pd.testing.assert_frame_equal(back, table, check_dtype=False)
    assert ui._table_from_store(None) is None


# ---------- views ------------------------------------------------------
def test_outlier_view_lists_affected_tracks():
    from trackoutliers.synthetic import synthetic_canonical

    children = ui._outlier_view(synthetic_canonical(inject=True, seed=0), 25, 3.0)
    tables = [c for c in children if isinstance(c, dash_table.DataTable)]
    assert len(tables) == 1
    ids = {row["ID"] for row in tables[0].data}
    assert {"6", "24"} <= ids


def test_views_report_bad_parameters(raw_tracks):
    table = raw_tracks.rename(columns={"Track": "ID", "Time": "TIME", "I1": "MEAS", "Site": "FOV"})
    out = ui._outlier_view(table, 1, 3.0)
    assert isinstance(out[0], dbc.Alert)
    heat = ui._heatmap_view(table.iloc[:4], "average", 2)
    assert isinstance(heat[0], dbc.Alert)


def test_download_sheets(raw_tracks):
    table = raw_tracks.rename(columns={"Track": "ID", "Time": "TIME", "I1": "MEAS", "Site": "FOV"})
    assert list(ui._download_sheets(table, 5, 3.0)) == ["Canonical", "Outliers", "Summary"]
    assert list(ui._download_sheets(table, 1, 3.0)) == ["Canonical"]


def test_layout_ids():
    app = ui.build_dash_app(Settings())
    ids = {c.id for c in app.layout()._traverse() if getattr(c, "id", None)}
    for cid in ("upload-data", "btn-load", "btn-syn", "sel-ops", "canonical-data", "session-id"):
        assert cid in ids


def test_every_page_load_is_a_new_session():
    app = ui.build_dash_app(Settings())

    def _sid(layout):
        return next(c.data for c in layout._traverse() if getattr(c, "id", None) == "session-id")

    assert _sid(app.layout()) != _sid(app.layout())
