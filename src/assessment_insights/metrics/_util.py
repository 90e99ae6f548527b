from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd


def mean_or_none(values: pd.Series | Sequence[float]) -> float | None:
    s = pd.to_numeric(pd.Series(values, dtype="float64"), errors="coerce").dropna()
    if s.empty:
        return None
    return float(s.mean())


def median_or_none(values: pd.Series | Sequence[float]) -> float | None:
    s = pd.to_numeric(pd.Series(values, dtype="float64"), errors="coerce").dropna()
    if s.empty:
        return None
    return float(s.median())


def pearson(xs: Sequence[float], ys: Sequence[float], *, min_points: int = 3) -> float | None:
    """Pearson correlation, or None with too few points or zero variance."""
    if len(xs) < min_points or len(xs) != len(ys):
        return None
    x = np.asarray(xs, dtype="float64")
    y = np.asarray(ys, dtype="float64")
    dx = x - x.mean()
    dy = y - y.mean()
    denom = float(np.sqrt(np.sum(dx * dx) * np.sum(dy * dy)))
    if denom == 0.0:
        return None
    r = float(np.sum(dx * dy)) / denom
    # float noise can push |r| a hair past 1
    return max(-1.0, min(1.0, r))


def count_words(text: str) -> int:
    return len(text.split())


def has_transcript(value: str | None) -> bool:
    # only null or "" count as missing; whitespace-only text is present with zero words
    return value is not None and value != ""
