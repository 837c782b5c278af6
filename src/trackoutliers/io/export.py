"""
Excel / CSV writers for canonical and outlier tables.

Public API
~~~~~~~~~~
to_excel_bytes(sheets)     – in-memory workbook (Dash download)
save_tables(sheets, path)  – same workbook written to *path*
save_table(df, path)       – single table, CSV or Excel by suffix

All writers overwrite *path* if it exists.
"""
from __future__ import annotations

from io import BytesIO
from pathlib import Path
from typing import Mapping

import pandas as pd

__all__ = ["to_excel_bytes", "save_tables", "save_table"]


def _write_sheets(target, sheets: Mapping[str, pd.DataFrame]) -> None:
    with pd.ExcelWriter(target, engine="xlsxwriter") as xl:
        book = xl.book
        hdr = book.add_format({"bold": True, "bg_color": "#dfe6e9",
                               "border": 1, "align": "center"})
        f_num = book.add_format({"num_format": "0.000"})

        for sheet, df in sheets.items():
            # summaries are indexed by ID; plain tables carry a RangeIndex
            keep_index = not isinstance(df.index, pd.RangeIndex)
            df.to_excel(xl, sheet_name=sheet, index=keep_index)

            ws = xl.sheets[sheet]
            ws.freeze_panes(1, 0)
            ws.set_row(0, None, hdr)

            columns = ([df.index.name or ""] if keep_index else []) + list(df.columns)
            for col_i, name in enumerate(columns):
                width = max(10, len(str(name)) + 2)
                series = df.index if keep_index and col_i == 0 else df[name]
                fmt = f_num if pd.api.types.is_float_dtype(series) else None
                ws.set_column(col_i, col_i, width, fmt)


def to_excel_bytes(sheets: Mapping[str, pd.DataFrame]) -> bytes:
    """Write several DataFrames to an in-memory workbook."""
    buf = BytesIO()
    _write_sheets(buf, sheets)
    buf.seek(0)
    return buf.getvalue()


def save_tables(sheets: Mapping[str, pd.DataFrame], path: Path | str) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    _write_sheets(path, sheets)


def save_table(df: pd.DataFrame, path: Path | str, sheet: str = "Canonical") -> None:
    """``.csv`` → CSV without index, anything else → one-sheet workbook."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() == ".csv":
        df.to_csv(path, index=not isinstance(df.index, pd.RangeIndex))
    else:
        save_tables({sheet: df}, path)
