from __future__ import annotations

import logging
import sys
import traceback
from pathlib import Path

import click

from .cluster import cluster_tracks, to_wide
from .io.config import ConfigError, Settings, load_settings
from .io.export import save_table, save_tables
from .io.loader import ParseFailure, load_path
from .mapping import NONE, ColumnSelection, MappingError, map_columns
from .plots import make_heatmap, make_trajectories
from .rollwin import detect_outliers, summarize_outliers
from .synthetic import synthetic_canonical
from .ui import build_dash_app


def _settings(config: Path | None) -> Settings:
    try:
        return load_settings(config)
    except FileNotFoundError:
        click.echo(f"Settings file not found: {config}", err=True)
        sys.exit(1)
    except ConfigError as err:
        click.echo(str(err), err=True)
        sys.exit(1)


def _set_debug(debug: bool) -> None:
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)


config_option = click.option(
    "--config",
    type=click.Path(exists=False, dir_okay=False, path_type=Path),
    default=None,
    help="settings.yml (upload limit, synthetic, rolling window, clustering)",
)
debug_option = click.option("--debug", is_flag=True, help="Verbose logging.")


# ───────────────────────── click root ─────────────────────────
@click.group()
def cli() -> None:  # pragma: no cover
    """Outlier detection for time-series track data."""
    pass  # noqa: WPS420


# ─────────────────────────── run ──────────────────────────────
@cli.command(help="Normalise a data file and run clustering + outlier detection.")
@click.option(
    "-i",
    "--input",
    "input_file",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Data file (CSV / TSV / Excel) with a header row",
)
@click.option("--id", "id_col", required=True, help="ID column, e.g. TrackLabel")
@click.option("--time", "time_col", required=True, help="Time column")
@click.option("--meas1", required=True, help="First measurement column")
@click.option("--meas2", default=NONE, show_default=True, help="Second measurement column")
@click.option(
    "--op",
    "op_code",
    default="none",
    show_default=True,
    help="Combine meas1 and meas2: none, /, +, *, -, 1/",
)
@click.option("--fov", "fov_col", default=NONE, show_default=True, help="FOV / grouping column")
@click.option(
    "-o",
    "--out",
    "out_dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Output directory (default: <input folder>/results)",
)
@config_option
@debug_option
def run(
    input_file: Path,
    id_col: str,
    time_col: str,
    meas1: str,
    meas2: str,
    op_code: str,
    fov_col: str,
    out_dir: Path | None,
    config: Path | None,
    debug: bool,
) -> None:
    """CLI pipeline – mirrors the dashboard views."""
    _set_debug(debug)
    settings = _settings(config)
    try:
        selection = ColumnSelection.from_inputs(id_col, time_col, meas1, meas2, op_code, fov_col)
        raw = load_path(input_file)
        canonical = map_columns(raw, selection)

        scored = detect_outliers(
            canonical, settings.rollwin.window, settings.rollwin.threshold
        )
        summary = summarize_outliers(scored)

        out_dir = out_dir or input_file.parent / "results"
        out_dir.mkdir(parents=True, exist_ok=True)

        save_table(canonical, out_dir / "canonical.xlsx")
        save_tables({"Outliers": scored, "Summary": summary}, out_dir / "outliers.xlsx")
        click.echo(f"✓ Excel written → {out_dir}")

        make_trajectories(canonical, scored).write_html(
            out_dir / "trajectories.html", include_plotlyjs="cdn"
        )
        try:
            result = cluster_tracks(
                to_wide(canonical),
                method=settings.cluster.method,
                n_clusters=settings.cluster.n_clusters,
            )
        except ValueError as err:
            click.echo(f"Heatmap skipped: {err}", err=True)
        else:
            make_heatmap(result, settings.cluster.n_clusters).write_html(
                out_dir / "heatmap.html", include_plotlyjs="cdn"
            )
        click.echo(f"✓ Plots written → {out_dir}")

    except (MappingError, ParseFailure) as err:
        click.echo(str(err), err=True)
        sys.exit(1)
    except Exception as exc:  # pragma: no cover
        click.echo("✖ Unhandled error – see traceback below", err=True)
        traceback.print_exception(exc, file=sys.stderr)
        sys.exit(1)


# ───────────────────────── synthetic ──────────────────────────
@cli.command(help="Write a synthetic canonical dataset (CSV or Excel).")
@click.option("-n", "--spikes", default=0, show_default=True, type=click.IntRange(min=0),
              help="Random single-point outliers")
@click.option("--inject/--no-inject", default=False, show_default=True,
              help="Overwrite the fixed outlier segments")
@click.option("--seed", type=int, default=None, help="Random seed (overrides settings)")
@click.option(
    "-o",
    "--out",
    "out_file",
    required=True,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Target file, .csv or .xlsx",
)
@config_option
def synthetic(spikes: int, inject: bool, seed: int | None, out_file: Path, config: Path | None) -> None:
    settings = _settings(config).synthetic
    kwargs = settings.generator_kwargs()
    if seed is not None:
        kwargs["seed"] = seed
    table = synthetic_canonical(
        spikes,
        inject,
        outlier_rows=settings.outlier_rows,
        outlier_value=settings.outlier_value,
        **kwargs,
    )
    save_table(table, out_file)
    click.echo(f"✓ {len(table)} synthetic rows written → {out_file}")


# ────────────────────────── serve (Dash) ──────────────────────
@cli.command(help="Launch Dash UI on http://127.0.0.1:8050")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8050, show_default=True, type=int)
@config_option
@debug_option
def serve(host: str, port: int, config: Path | None, debug: bool) -> None:  # pragma: no cover
    _set_debug(debug)
    app = build_dash_app(_settings(config))
    app.run(host=host, port=port, debug=debug)


# -----------------------------------------------------------------
def _main() -> None:  # pragma: no cover
    """Console-script entry point."""
    cli()


if __name__ == "__main__":  # pragma: no cover
    _main()
