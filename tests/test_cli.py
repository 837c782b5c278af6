from pathlib import Path

import pandas as pd
from click.testing import CliRunner

from trackoutliers.cli import cli


def _csv(tmp_path: Path, raw_tracks: pd.DataFrame) -> Path:
    p = tmp_path / "tracks.csv"
    raw_tracks.to_csv(p, index=False)
    return p


def test_cli_run_writes_results(tmp_path: Path, raw_tracks):
    data = _csv(tmp_path, raw_tracks)
    out_dir = tmp_path / "results"

    runner = CliRunner()
    result = runner.invoke(
        cli,
        [
            "run", "-i", str(data),
            "--id", "Track", "--time", "Time",
            "--meas1", "I1", "--meas2", "I2", "--op", "/",
            "--fov", "Site", "-o", str(out_dir),
        ],
        catch_exceptions=False,
    )

    assert result.exit_code == 0, result.output
    for name in ("canonical.xlsx", "outliers.xlsx", "trajectories.html", "heatmap.html"):
        assert (out_dir / name).exists(), name

    canonical = pd.read_excel(out_dir / "canonical.xlsx")
    assert canonical["MEAS"].tolist()[:2] == [2.0, 2.0]


def test_cli_run_missing_column(tmp_path: Path, raw_tracks):
    data = _csv(tmp_path, raw_tracks)
    result = CliRunner().invoke(
        cli, ["run", "-i", str(data), "--id", "Nope", "--time", "Time", "--meas1", "I1"]
    )
    assert result.exit_code == 1
    assert "ID column 'Nope' not found" in result.output


def test_cli_run_bad_operator(tmp_path: Path, raw_tracks):
    data = _csv(tmp_path, raw_tracks)
    result = CliRunner().invoke(
        cli,
        ["run", "-i", str(data), "--id", "Track", "--time", "Time",
         "--meas1", "I1", "--meas2", "I2", "--op", "%"],
    )
    assert result.exit_code == 1
    assert "Unknown operator" in result.output


def test_cli_synthetic(tmp_path: Path):
    out = tmp_path / "syn.csv"
    result = CliRunner().invoke(
        cli, ["synthetic", "-n", "3", "--inject", "--seed", "2", "-o", str(out)]
    )
    assert result.exit_code == 0, result.output
    assert "3600 synthetic rows" in result.output

    df = pd.read_csv(out)
    assert list(df.columns) == ["ID", "TIME", "MEAS", "FOV"]
    assert (df["MEAS"] == 10).sum() >= 22


def test_cli_bad_settings(tmp_path: Path):
    cfg = tmp_path / "settings.yml"
    cfg.write_text("rollwin:\n  window: 1\n")
    result = CliRunner().invoke(
        cli, ["synthetic", "-o", str(tmp_path / "x.csv"), "--config", str(cfg)]
    )
    assert result.exit_code == 1
    assert "rollwin.window" in result.output


def test_cli_missing_settings(tmp_path: Path):
    result = CliRunner().invoke(
        cli, ["synthetic", "-o", str(tmp_path / "x.csv"), "--config", str(tmp_path / "nope.yml")]
    )
    assert result.exit_code == 1
    assert "Settings file not found" in result.output
