"""
Project an arbitrary raw table onto the canonical ``ID · TIME · MEAS · FOV``
layout consumed by the analysis views.

* **map_columns**  – column mapper (pure projection, row order preserved)
* **evaluate**     – MEAS from one or two columns through a fixed operator
* **columns_of**   – raw column names for the selector widgets
"""

from __future__ import annotations

import logging
import operator as _op
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Mapping

import numpy as np
import pandas as pd

__all__ = [
    "CANONICAL_COLUMNS",
    "NONE",
    "FOV_DEFAULT",
    "MappingError",
    "MissingColumn",
    "BadExpression",
    "Operator",
    "ColumnSelection",
    "SYNTHETIC_SELECTION",
    "evaluate",
    "map_columns",
    "columns_of",
]

logger = logging.getLogger(__name__)

CANONICAL_COLUMNS = ["ID", "TIME", "MEAS", "FOV"]
NONE = "none"          # sentinel of the optional selectors
FOV_DEFAULT = "-"


# ───────────────────────── exceptions ──────────────────────────
class MappingError(Exception):
    """Raw table cannot be projected with the current selection."""


class MissingColumn(MappingError):
    """A required column is unset or absent from the raw table."""


class BadExpression(MappingError):
    """Unknown operator or operands that are not numeric."""


# ───────────────────────── operators ───────────────────────────
class Operator(str, Enum):
    NONE = "none"
    DIVIDE = "/"
    SUM = "+"
    MULTIPLY = "*"
    SUBTRACT = "-"
    RECIPROCAL = "1/"

    @classmethod
    def parse(cls, value: "Operator | str | None") -> "Operator":
        """
        Accept a member, its code (blanks ignored, ``" / "``), its name
        (``"divide"``) or the long spelling ``"reciprocal-of-1st"``.

        ``None`` is read as :attr:`NONE` – the operator selector is hidden
        until a second measurement column is chosen.
        """
        if isinstance(value, cls):
            return value
        if value is None:
            return cls.NONE
        token = "".join(str(value).split())
        if not token:
            return cls.NONE
        for member in cls:
            if token == member.value or token.upper() == member.name:
                return member
        if token.lower() in _OPERATOR_ALIASES:
            return _OPERATOR_ALIASES[token.lower()]
        raise BadExpression(f"Unknown operator '{value}'")


_OPERATOR_ALIASES: Dict[str, Operator] = {
    "reciprocal-of-1st": Operator.RECIPROCAL,
}

_BINARY: Dict[Operator, Callable] = {
    Operator.DIVIDE: _op.truediv,
    Operator.SUM: _op.add,
    Operator.MULTIPLY: _op.mul,
    Operator.SUBTRACT: _op.sub,
}


# ───────────────────────── selection ───────────────────────────
@dataclass(slots=True, frozen=True)
class ColumnSelection:
    """
    Which raw columns feed the canonical fields.

    Parameters
    ----------
    id_col, time_col, meas1_col
        Required. ``None`` means the selector has not been set yet.
    meas2_col
        Optional second measurement, ``"none"`` when unused.
    operator
        How *meas1* and *meas2* combine; ignored when *meas2* is ``"none"``.
        :attr:`Operator.RECIPROCAL` uses *meas1* only.
    fov_col
        Optional grouping column, ``"none"`` → every row gets ``"-"``.
    """

    id_col: str | None
    time_col: str | None
    meas1_col: str | None
    meas2_col: str = NONE
    operator: Operator = Operator.NONE
    fov_col: str = NONE

    def __post_init__(self) -> None:
        object.__setattr__(self, "operator", Operator.parse(self.operator))
        object.__setattr__(self, "meas2_col", self.meas2_col or NONE)
        object.__setattr__(self, "fov_col", self.fov_col or NONE)

    @classmethod
    def from_inputs(
        cls,
        id_col: str | None,
        time_col: str | None,
        meas1_col: str | None,
        meas2_col: str | None = None,
        op_code: str | None = None,
        fov_col: str | None = None,
    ) -> "ColumnSelection":
        """Build a selection from raw widget values (``None`` = unset)."""
        return cls(
            id_col=id_col or None,
            time_col=time_col or None,
            meas1_col=meas1_col or None,
            meas2_col=meas2_col or NONE,
            operator=Operator.parse(op_code),
            fov_col=fov_col or NONE,
        )

    def required(self) -> Dict[str, str | None]:
        return {"ID": self.id_col, "TIME": self.time_col, "MEAS": self.meas1_col}


# Fixed mapping of the synthetic generator's output.
SYNTHETIC_SELECTION = ColumnSelection(
    id_col="TrackLabel",
    time_col="Metadata_RealTime",
    meas1_col="objCyto_Intensity_MeanIntensity_imErkCor",
    fov_col="Metadata_Site",
)


# ───────────────────────── evaluator ───────────────────────────
def _numeric(values, name: str):
    """Coerce a column (or scalar) to numbers, ``BadExpression`` otherwise."""
    try:
        if isinstance(values, pd.Series):
            return pd.to_numeric(values, errors="raise")
        if isinstance(values, (bool, np.bool_)):
            raise TypeError(name)
        return np.float64(values)
    except (TypeError, ValueError) as exc:
        raise BadExpression(f"Column '{name}' is not numeric") from exc


def _operand(row, name: str):
    try:
        return row[name]
    except KeyError:
        raise MissingColumn(f"Measurement column '{name}' not found") from None


def evaluate(
    row: Mapping | pd.DataFrame,
    meas1: str,
    meas2: str = NONE,
    operator: Operator | str = Operator.NONE,
):
    """
    MEAS for *row* – a single row mapping (scalar) or a DataFrame (Series).

    A second column of ``"none"`` returns the first column unchanged,
    whatever the operator. Division by zero yields ``inf``/``nan`` rather than raising.
    """
    op = Operator.parse(operator)
    first = _operand(row, meas1)

    if op is Operator.NONE or (meas2 or NONE) == NONE:
        return first

    with np.errstate(divide="ignore", invalid="ignore"):
        if op is Operator.RECIPROCAL:
            return 1 / _numeric(first, meas1)
        second = _operand(row, meas2)
        return _BINARY[op](_numeric(first, meas1), _numeric(second, meas2))


# ───────────────────────── mapper ──────────────────────────────
def _as_frame(raw) -> pd.DataFrame:
    if isinstance(raw, pd.DataFrame):
        return raw
    return pd.DataFrame(list(raw))


def map_columns(raw, selection: ColumnSelection) -> pd.DataFrame:
    """
    Project *raw* onto the canonical columns.

    Raises
    ------
    MissingColumn
        ID / TIME / first measurement unset or absent, or a chosen optional
        column (meas2, FOV) absent.
    BadExpression
        Non-numeric operands for an arithmetic operator.
    """
    df = _as_frame(raw)
    cols = set(df.columns)

    for field, col in selection.required().items():
        if not col:
            raise MissingColumn(f"No column selected for {field}")
        if col not in cols:
            raise MissingColumn(f"{field} column '{col}' not found")
    if selection.fov_col != NONE and selection.fov_col not in cols:
        raise MissingColumn(f"FOV column '{selection.fov_col}' not found")

    meas = evaluate(df, selection.meas1_col, selection.meas2_col, selection.operator)

    out = pd.DataFrame(
        {
            "ID": df[selection.id_col].to_numpy(),
            "TIME": df[selection.time_col].to_numpy(),
            "MEAS": pd.Series(meas).to_numpy(),
            "FOV": (
                FOV_DEFAULT
                if selection.fov_col == NONE
                else df[selection.fov_col].to_numpy()
            ),
        },
        columns=CANONICAL_COLUMNS,
    )
    logger.debug(
        "Mapped %d rows (ID=%s, TIME=%s, MEAS=%s %s %s, FOV=%s)",
        len(out),
        selection.id_col,
        selection.time_col,
        selection.meas1_col,
        selection.operator.value,
        selection.meas2_col,
        selection.fov_col,
    )
    return out


# ───────────────────────── discovery ───────────────────────────
def columns_of(raw: pd.DataFrame | None) -> List[str]:
    """Column names of *raw* in file order; ``[]`` when nothing is loaded."""
    if raw is None:
        return []
    return [str(c) for c in raw.columns]
