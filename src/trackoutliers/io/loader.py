"""
Read an uploaded (or on-disk) measurement table into a raw DataFrame.

Delimited text (comma, tab, semicolon or whitespace; optionally gzipped)
and Excel workbooks (.xlsx / .xlsm) are accepted.  A header row is required.
"""

from __future__ import annotations

import base64
import binascii
import csv
import gzip
import logging
import re
import zipfile
from io import BytesIO, StringIO
from pathlib import Path

import pandas as pd

__all__ = ["ParseFailure", "decode_upload", "read_table", "load_upload", "load_path"]

logger = logging.getLogger(__name__)

_EXCEL_SUFFIXES = {".xlsx", ".xlsm"}
_DELIMITERS = ",\t;"


class ParseFailure(ValueError):
    """Uploaded file could not be read as a table."""


def decode_upload(contents: str) -> bytes:
    """Dash ``dcc.Upload`` payload (``data:<mime>;base64,<data>``) → bytes."""
    try:
        return base64.b64decode(contents.partition(",")[2], validate=False)
    except (binascii.Error, ValueError) as exc:
        raise ParseFailure("Upload is not valid base64") from exc


def _suffixes(filename: str | None) -> list[str]:
    return [s.lower() for s in Path(filename or "").suffixes]


def _decode_text(raw: bytes) -> str:
    # UTF-16 only with a BOM (common in instrument exports)
    if raw[:2] in (b"\xff\xfe", b"\xfe\xff"):
        return raw.decode("utf-16")
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def _sniff_sep(header: str) -> str:
    try:
        return csv.Sniffer().sniff(header, delimiters=_DELIMITERS).delimiter
    except csv.Error:
        return r"\s+" if re.search(r"\S\s+\S", header) else ","


def read_table(raw: bytes, filename: str | None = None) -> pd.DataFrame:
    """
    Parse *raw* file content into a DataFrame.

    Raises
    ------
    ParseFailure
        Empty content, no data rows, or content pandas cannot read.
    """
    if not raw:
        raise ParseFailure("File is empty")

    suffixes = _suffixes(filename)
    if suffixes and suffixes[-1] == ".gz" or raw[:2] == b"\x1f\x8b":
        try:
            raw = gzip.decompress(raw)
        except OSError as exc:
            raise ParseFailure(f"Cannot decompress {filename}") from exc
        suffixes = suffixes[:-1]

    if suffixes and suffixes[-1] == ".xls":
        raise ParseFailure(
            f"{filename}: legacy .xls workbooks are not supported, save as .xlsx or CSV"
        )

    try:
        if suffixes and suffixes[-1] in _EXCEL_SUFFIXES:
            df = pd.read_excel(BytesIO(raw), sheet_name=0)
        else:
            text = _decode_text(raw)
            header = next((ln for ln in text.splitlines() if ln.strip()), "")
            sep = _sniff_sep(header)
            logger.debug("Reading %s with separator %r", filename or "<upload>", sep)
            df = pd.read_csv(StringIO(text), sep=sep, engine="python")
    except (ValueError, pd.errors.ParserError, OSError, zipfile.BadZipFile) as exc:
        raise ParseFailure(f"Cannot read {filename or 'upload'}: {exc}") from exc

    df.rename(columns=lambda c: str(c).strip(), inplace=True)
    if df.empty:
        raise ParseFailure(f"{filename or 'Upload'} contains no data rows")

    logger.info("Loaded %s: %d rows × %d columns", filename or "upload", *df.shape)
    return df


def load_upload(contents: str | None, filename: str | None = None) -> pd.DataFrame | None:
    """Raw table of a ``dcc.Upload`` payload, ``None`` when nothing was chosen."""
    if not contents:
        return None
    return read_table(decode_upload(contents), filename)


def load_path(path: str | Path | None) -> pd.DataFrame | None:
    """Raw table of a file on disk, ``None`` for an empty path."""
    if path is None or str(path).strip() == "":
        return None
    path = Path(path)
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise ParseFailure(f"Cannot open {path}: {exc}") from exc
    return read_table(raw, path.name)
