"""
Unit tests for safe_ratio.
"""

import pandas as pd

from crash_pulse.shared.rates import safe_ratio


def test_defined_only_for_positive_denominator():
    """Test zero, negative and missing denominators."""
    num = pd.Series([3, 3, 3, 3])
    den = pd.Series([1000.0, 0.0, -5.0, None])

    result = safe_ratio(num, den, 1000)

    assert str(result.dtype) == "Float64"
    assert result.iloc[0] == 3.0
    assert result.iloc[1:].isna().all()


def test_missing_numerator():
    """Test that a missing numerator gives a missing ratio, not 0."""
    num = pd.Series(pd.array([None, 2], dtype="Int64"))
    den = pd.Series([10.0, 10.0])

    result = safe_ratio(num, den)

    assert pd.isna(result.iloc[0])
    assert result.iloc[1] == 0.2


def test_keeps_index():
    """Test that the numerator's index is kept."""
    num = pd.Series([1.0, 2.0], index=[5, 7])
    den = pd.Series([2.0, 4.0], index=[5, 7])

    result = safe_ratio(num, den)

    assert result.index.tolist() == [5, 7]
    assert result.tolist() == [0.5, 0.5]
