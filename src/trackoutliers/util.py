"""Colour helpers shared by the figures."""

from __future__ import annotations

from typing import Sequence

import numpy as np
from matplotlib.colors import to_rgb  # <- the real colour converter


def rgba(mat_color: str | Sequence[float], alpha: float = 1.0) -> str:
    """
    Convert a Matplotlib-style colour (hex or RGB-tuple) to a Plotly-style
    string: "rgba(r,g,b,a)" with r,g,b in 0-255 and a 0-1.

    Examples
    --------
    >>> rgba("#2a9d8f", 0.3)
    'rgba(42,157,143,0.3)'
    >>> rgba((0.5, 0.8, 1.0), 1)
    'rgba(127,204,255,1)'
    """
    r, g, b = (np.array(to_rgb(mat_color)) * 255).astype(int)
    return f"rgba({r},{g},{b},{alpha})"


def matplotlib_cycle_index(code: str) -> int | None:
    """'C3' → 3 ; anything that is not a colour-cycle code → None."""
    if len(code) > 1 and code[0] == "C" and code[1:].isdigit():
        return int(code[1:])
    return None
