import base64
import gzip
from io import BytesIO

import pandas as pd
import pytest

from trackoutliers.io.loader import (
    ParseFailure,
    decode_upload,
    load_path,
    load_upload,
    read_table,
)


def _payload(raw: bytes, mime: str = "text/csv") -> str:
    return f"data:{mime};base64," + base64.b64encode(raw).decode()


@pytest.mark.parametrize("sep", [",", "\t", ";"])
def test_delimited_text(raw_tracks, sep):
    raw = raw_tracks.to_csv(index=False, sep=sep).encode()
    df = read_table(raw, "tracks.txt")
    assert list(df.columns) == list(raw_tracks.columns)
    assert len(df) == len(raw_tracks)


def test_whitespace_separated():
    raw = b"Track Time I1\na 0 1.5\na 1 2.5\n"
    df = read_table(raw, "tracks.dat")
    assert list(df.columns) == ["Track", "Time", "I1"]
    assert df["I1"].tolist() == [1.5, 2.5]


def test_header_names_are_stripped():
    df = read_table(b" Track , Time\na,0\n", "x.csv")
    assert list(df.columns) == ["Track", "Time"]


def test_gzip(csv_bytes, raw_tracks):
    df = read_table(gzip.compress(csv_bytes), "tracks.csv.gz")
    assert len(df) == len(raw_tracks)
    # magic bytes are enough
    df = read_table(gzip.compress(csv_bytes), "upload")
    assert len(df) == len(raw_tracks)


def test_excel(raw_tracks):
    buf = BytesIO()
    raw_tracks.to_excel(buf, index=False, engine="openpyxl")
    df = read_table(buf.getvalue(), "tracks.xlsx")
    pd.testing.assert_frame_equal(df, raw_tracks)


@pytest.mark.parametrize("raw", [b"", b"Track,Time,I1\n"])
def test_empty_or_header_only(raw):
    with pytest.raises(ParseFailure):
        read_table(raw, "empty.csv")


def test_broken_excel():
    with pytest.raises(ParseFailure):
        read_table(b"not a workbook", "tracks.xlsx")


def test_truncated_workbook(raw_tracks):
    buf = BytesIO()
    raw_tracks.to_excel(buf, index=False, engine="openpyxl")
    damaged = buf.getvalue()[: len(buf.getvalue()) // 2]
    assert damaged[:2] == b"PK"

    with pytest.raises(ParseFailure, match="Cannot read tracks.xlsx"):
        read_table(damaged, "tracks.xlsx")


def test_legacy_xls_is_rejected():
    ole = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 504
    with pytest.raises(ParseFailure, match="xls"):
        read_table(ole, "tracks.xls")


def test_upload_payload(csv_bytes, raw_tracks):
    assert decode_upload(_payload(csv_bytes)) == csv_bytes
    df = load_upload(_payload(csv_bytes), "tracks.csv")
    assert df["Track"].tolist() == raw_tracks["Track"].tolist()


def test_nothing_chosen():
    assert load_upload(None) is None
    assert load_upload("") is None
    assert load_path(None) is None
    assert load_path("") is None


def test_load_path(tmp_path, csv_bytes):
    f = tmp_path / "tracks.csv"
    f.write_bytes(csv_bytes)
    assert len(load_path(f)) == 8

    with pytest.raises(ParseFailure):
        load_path(tmp_path / "missing.csv")
