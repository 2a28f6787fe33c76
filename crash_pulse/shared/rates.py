"""
Crash Pulse - Safe Ratios

Division with explicit missing values: a ratio is defined only when its
denominator is positive, and an undefined ratio is pd.NA, never 0 or NaN.
"""

from __future__ import annotations

import numpy as np
import pandas as pd


def safe_ratio(
    numerator: pd.Series,
    denominator: pd.Series,
    scale: float = 1.0,
) -> pd.Series:
    """
    numerator / denominator * scale, missing unless denominator > 0.

    Returns a nullable Float64 series; undefined values are pd.NA.
    """
    num = pd.to_numeric(numerator, errors="coerce").astype("Float64")
    den = pd.to_numeric(denominator, errors="coerce").astype("Float64")
    defined = (den > 0).fillna(False).to_numpy(dtype=bool) & num.notna().to_numpy()

    values = np.full(len(num), np.nan)
    values[defined] = (
        num.to_numpy(dtype="float64", na_value=np.nan)[defined]
        / den.to_numpy(dtype="float64", na_value=np.nan)[defined]
        * scale
    )
    # NaN from a numpy float array becomes pd.NA
    return pd.Series(pd.array(values, dtype="Float64"), index=numerator.index)
