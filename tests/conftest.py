"""
Global pytest fixtures / hooks.

``pytest_setup_options`` is the *dash.testing* hook: it must return a
*ChromeOptions* object, which is passed straight into the **options=…**
parameter of the browser wrapper.  The matching ChromeDriver (downloaded via
*webdriver-manager*) is prepended to PATH first.
"""

from __future__ import annotations

import os
from pathlib import Path

import pandas as pd
import pytest


def _chrome_options():
    """Headless Chrome options suitable for Dash smoke-tests."""
    from selenium.webdriver.chrome.options import Options

    opts = Options()
    opts.add_argument("--headless=new")          # modern headless mode
    opts.add_argument("--disable-gpu")
    opts.add_argument("--no-sandbox")
    opts.add_argument("--window-size=1280,800")
    return opts


# ─────────────────────────── dash.testing hook ─────────────────────────
@pytest.hookimpl(optionalhook=True)
def pytest_setup_options():          # noqa: D401  (dash.testing name)
    from webdriver_manager.chrome import ChromeDriverManager

    drv_path = Path(ChromeDriverManager().install())
    os.environ["PATH"] = f"{drv_path.parent}{os.pathsep}{os.environ['PATH']}"
    return _chrome_options()


# ─────────────────────────── data fixtures ─────────────────────────────
@pytest.fixture
def raw_tracks() -> pd.DataFrame:
    """Two tracks × four time points in a CellProfiler-like layout."""
    return pd.DataFrame(
        {
            "Track": ["a"] * 4 + ["b"] * 4,
            "Time": [0, 1, 2, 3] * 2,
            "I1": [10, 12, 14, 16, 20, 22, 24, 26],
            "I2": [5, 6, 7, 8, 2, 2, 4, 4],
            "Site": ["f1"] * 4 + ["f2"] * 4,
        }
    )


@pytest.fixture
def csv_bytes(raw_tracks) -> bytes:
    return raw_tracks.to_csv(index=False).encode()
