"""
Load an optional *settings.yml* and expose validated :class:`Settings`.

YAML schema
~~~~~~~~~~~
upload:
  max_size_mb: 400
synthetic:
  n_timepoints: 60
  n_tracks: 10
  n_fov: 6
  seed: null
  outlier_value: 10
  outlier_rows: "320-330,1400-1410"   # 1-based, inclusive ranges
rollwin:
  window: 25
  threshold: 3.0
cluster:
  method: average
  n_clusters: 4

Every section and key is optional; missing values fall back to the defaults.
"""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple

import yaml

from ..cluster import LINKAGE_METHODS
from ..synthetic import OUTLIER_ROWS, OUTLIER_VALUE

__all__ = [
    "ConfigError",
    "UploadSettings",
    "SyntheticSettings",
    "RollWinSettings",
    "ClusterSettings",
    "Settings",
    "load_settings",
    "dump_settings",
]

# ───────────────────────── exceptions ──────────────────────────
class ConfigError(Exception):
    """Invalid or inconsistent *settings.yml*."""


# ───────────────────────── dataclasses ─────────────────────────
@dataclass(slots=True, frozen=True)
class UploadSettings:
    max_size_mb: float = 400

    @property
    def max_size_bytes(self) -> int:
        return int(self.max_size_mb * 1024 ** 2)


@dataclass(slots=True, frozen=True)
class SyntheticSettings:
    """
    Parameters of the synthetic generator.

    ``outlier_rows`` are the MEAS rows overwritten with ``outlier_value``
    when injection is switched on.  They index the generator's output, so
    changing the dimensions usually means changing the rows too.
    """

    n_timepoints: int = 60
    n_tracks: int = 10
    n_fov: int = 6
    seed: int | None = None
    outlier_value: float = OUTLIER_VALUE
    outlier_rows: Tuple[Tuple[int, int], ...] = field(default=OUTLIER_ROWS, repr=False)

    def generator_kwargs(self) -> Dict[str, Any]:
        return {
            "n_timepoints": self.n_timepoints,
            "n_tracks": self.n_tracks,
            "n_fov": self.n_fov,
            "seed": self.seed,
        }


@dataclass(slots=True, frozen=True)
class RollWinSettings:
    window: int = 25
    threshold: float = 3.0


@dataclass(slots=True, frozen=True)
class ClusterSettings:
    method: str = "average"
    n_clusters: int = 4


@dataclass(slots=True, frozen=True)
class Settings:
    upload: UploadSettings = field(default_factory=UploadSettings)
    synthetic: SyntheticSettings = field(default_factory=SyntheticSettings)
    rollwin: RollWinSettings = field(default_factory=RollWinSettings)
    cluster: ClusterSettings = field(default_factory=ClusterSettings)


# ───────────────────── helper – expand & validate row ranges ───────────
_RANGE_RE = re.compile(r"^\d+(-\d+)?$")


def _expand_ranges(text: str) -> Tuple[Tuple[int, int], ...]:
    """
    `"320-330,1400"` → ``((320, 330), (1400, 1400))``

    Raises
    ------
    ConfigError
        Malformed token, row 0, or reversed range.
    """
    out: List[Tuple[int, int]] = []
    for token in text.split(","):
        token = token.strip()
        if not token:
            continue
        if not _RANGE_RE.match(token):
            raise ConfigError(f"Bad row token '{token}'")

        a, _, b = token.partition("-")
        first, last = int(a), int(b or a)
        if first < 1:
            raise ConfigError(f"Rows are 1-based, got '{token}'")
        if last < first:
            raise ConfigError(f"Range '{token}' is reversed")
        out.append((first, last))
    return tuple(out)


def _compress_ranges(ranges: Sequence[Tuple[int, int]]) -> str:
    """((320, 330), (7, 7)) → '320-330,7'"""
    return ",".join(str(a) if a == b else f"{a}-{b}" for a, b in ranges)


# ───────────────────── section parsers ────────────────────────────────
def _section(data: dict, name: str) -> dict:
    sec = data.get(name) or {}
    if not isinstance(sec, dict):
        raise ConfigError(f"Section '{name}' must be a mapping")
    unknown = set(sec) - _KNOWN_KEYS[name]
    if unknown:
        raise ConfigError(f"Unknown key(s) in '{name}': {', '.join(sorted(unknown))}")
    return sec


def _number(sec: dict, key: str, default, cast, minimum=None, name: str = ""):
    if sec.get(key) is None:
        return default
    try:
        value = cast(sec[key])
    except (TypeError, ValueError):
        raise ConfigError(f"{name}.{key} must be a number") from None
    if minimum is not None and value < minimum:
        raise ConfigError(f"{name}.{key} must be ≥ {minimum}")
    return value


_KNOWN_KEYS = {
    "upload": {"max_size_mb"},
    "synthetic": {
        "n_timepoints",
        "n_tracks",
        "n_fov",
        "seed",
        "outlier_value",
        "outlier_rows",
    },
    "rollwin": {"window", "threshold"},
    "cluster": {"method", "n_clusters"},
}


def _parse(data: dict) -> Settings:
    up = _section(data, "upload")
    syn = _section(data, "synthetic")
    rw = _section(data, "rollwin")
    cl = _section(data, "cluster")

    rows = syn.get("outlier_rows")
    synthetic = SyntheticSettings(
        n_timepoints=_number(syn, "n_timepoints", 60, int, 1, "synthetic"),
        n_tracks=_number(syn, "n_tracks", 10, int, 1, "synthetic"),
        n_fov=_number(syn, "n_fov", 6, int, 1, "synthetic"),
        seed=_number(syn, "seed", None, int, 0, "synthetic"),
        outlier_value=_number(syn, "outlier_value", OUTLIER_VALUE, float, None, "synthetic"),
        outlier_rows=OUTLIER_ROWS if rows is None else _expand_ranges(str(rows)),
    )

    method = str(cl.get("method") or "average")
    if method not in LINKAGE_METHODS:
        raise ConfigError(
            f"cluster.method must be one of {', '.join(LINKAGE_METHODS)}, got '{method}'"
        )

    return Settings(
        upload=UploadSettings(_number(up, "max_size_mb", 400, float, 1, "upload")),
        synthetic=synthetic,
        rollwin=RollWinSettings(
            window=_number(rw, "window", 25, int, 3, "rollwin"),
            threshold=_number(rw, "threshold", 3.0, float, None, "rollwin"),
        ),
        cluster=ClusterSettings(
            method=method,
            n_clusters=_number(cl, "n_clusters", 4, int, 1, "cluster"),
        ),
    )


# ───────────────────── public loader ──────────────────────────────────
def load_settings(path: Path | str | None = None) -> Settings:
    """
    Read *path* and return :class:`Settings`; defaults when *path* is ``None``.

    Raises
    ------
    FileNotFoundError
        An explicit *path* does not exist.
    ConfigError
        Schema errors (unknown keys, bad numbers, bad row ranges, …).
    """
    if path is None:
        return Settings()

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)

    try:
        data = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path.name} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError("Top level of the settings file must be a mapping")

    unknown = set(data) - set(_KNOWN_KEYS)
    if unknown:
        raise ConfigError(f"Unknown section(s): {', '.join(sorted(unknown))}")

    settings = _parse(data)
    if settings.rollwin.threshold <= 0:
        raise ConfigError("rollwin.threshold must be > 0")
    return settings


# ───────────────────── public dumper ──────────────────────────────────
def dump_settings(settings: Settings, file: Path | str) -> None:
    """Write *settings* back to YAML in the schema accepted by :func:`load_settings`."""
    doc = asdict(settings)
    doc["synthetic"]["outlier_rows"] = _compress_ranges(settings.synthetic.outlier_rows)
    Path(file).write_text(yaml.safe_dump(doc, sort_keys=False))
