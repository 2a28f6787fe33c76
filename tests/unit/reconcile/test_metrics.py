"""
Unit tests for MetricSynthesizer and rate computation.
"""

import pandas as pd
import pytest

from crash_pulse.reconcile.metrics import (
    MetricSynthesizer,
    compute_rates,
    fill_known_zero_counts,
)
from crash_pulse.validation.schema_enforcer import DuplicateKeyError, SchemaViolationError

AREA_X = "36061000100"
AREA_Y = "36061000200"
AREA_T1 = "36061000300"


@pytest.fixture
def counts(test_config):
    """Incident counts: X 2021, T1 2020 (zero population) and Y 2019 (no population)."""
    df = pd.DataFrame({"area_id": [AREA_X, AREA_T1, AREA_Y], "year": [2021, 2020, 2019]})
    for col in test_config.collisions.count_columns:
        df[col] = pd.array([0, 0, 0], dtype="Int64")
    df["total_crashes"] = pd.array([4, 3, 2], dtype="Int64")
    df["persons_injured"] = pd.array([2, 1, 0], dtype="Int64")
    df["persons_killed"] = pd.array([0, 1, 0], dtype="Int64")
    return df


@pytest.fixture
def population():
    """Population for X and Y in 2021 and T1 in 2020."""
    return pd.DataFrame(
        {
            "area_id": [AREA_X, AREA_Y, AREA_T1],
            "year": [2021, 2021, 2020],
            "total_population": [2000.0, 500.0, 0.0],
        }
    )


class TestMetricSynthesizer:
    """Test cases for MetricSynthesizer."""

    @pytest.fixture
    def synthesizer(self, test_config):
        """Create a MetricSynthesizer instance."""
        return MetricSynthesizer(test_config)

    def test_rows_and_order(self, synthesizer, counts, population):
        """Test the outer key set and ordering."""
        metrics = synthesizer.synthesize(counts, population).metrics

        assert metrics[["area_id", "year"]].values.tolist() == [
            [AREA_X, 2021],
            [AREA_Y, 2019],
            [AREA_Y, 2021],
            [AREA_T1, 2020],
        ]
        assert list(metrics.columns[:4]) == [
            "area_id",
            "year",
            "total_population",
            "total_crashes",
        ]

    def test_rate_values(self, synthesizer, counts, population):
        """Test rate per 1000 and the injury/fatality ratio."""
        metrics = synthesizer.synthesize(counts, population).metrics.set_index(["area_id", "year"])

        assert metrics.loc[(AREA_X, 2021), "crash_rate_per_1000"] == pytest.approx(2.0)
        assert metrics.loc[(AREA_X, 2021), "injury_rate_per_1000"] == pytest.approx(1.0)
        assert metrics.loc[(AREA_T1, 2020), "injury_fatality_ratio"] == pytest.approx(1.0)

    def test_zero_population_keeps_count_not_rate(self, synthesizer, counts, population):
        """Test that a count over zero population has an undefined rate."""
        metrics = synthesizer.synthesize(counts, population).metrics.set_index(["area_id", "year"])

        assert metrics.loc[(AREA_T1, 2020), "total_crashes"] == 3
        assert pd.isna(metrics.loc[(AREA_T1, 2020), "crash_rate_per_1000"])

    def test_known_population_gets_zero_counts(self, synthesizer, counts, population):
        """Test that an area-year with population and no incidents has count 0."""
        result = synthesizer.synthesize(counts, population)
        metrics = result.metrics.set_index(["area_id", "year"])

        assert metrics.loc[(AREA_Y, 2021), "total_crashes"] == 0
        assert metrics.loc[(AREA_Y, 2021), "crash_rate_per_1000"] == 0.0
        assert result.keys_zero_filled == 1

    def test_missing_population_keeps_incidents(self, synthesizer, counts, population):
        """Test that incidents without population are kept with undefined rates."""
        result = synthesizer.synthesize(counts, population)
        metrics = result.metrics.set_index(["area_id", "year"])

        assert metrics.loc[(AREA_Y, 2019), "total_crashes"] == 2
        assert pd.isna(metrics.loc[(AREA_Y, 2019), "total_population"])
        assert pd.isna(metrics.loc[(AREA_Y, 2019), "crash_rate_per_1000"])
        assert result.keys_without_population == 1
        assert result.years_missing_population == [2019]

    def test_missing_category_stays_missing_without_population(self, synthesizer, counts):
        """Test that counts are never invented where population is unknown."""
        population = pd.DataFrame(
            {"area_id": [AREA_X], "year": [2021], "total_population": [100.0]}
        )
        partial = counts.drop(columns="pedestrians_injured")

        result = synthesizer.synthesize(partial, population)
        metrics = result.metrics.set_index(["area_id", "year"])

        assert metrics.loc[(AREA_X, 2021), "pedestrians_injured"] == 0
        assert pd.isna(metrics.loc[(AREA_Y, 2019), "pedestrians_injured"])

    def test_dtypes(self, synthesizer, counts, population):
        """Test nullable dtypes of the output."""
        metrics = synthesizer.synthesize(counts, population).metrics

        assert str(metrics["total_crashes"].dtype) == "Int64"
        assert str(metrics["total_population"].dtype) == "Float64"
        assert str(metrics["crash_rate_per_1000"].dtype) == "Float64"
        assert metrics["year"].dtype == "int64"

    def test_duplicate_keys_rejected(self, synthesizer, counts, population):
        """Test that a duplicated count key is fatal."""
        duplicated = pd.concat([counts, counts.iloc[[0]]], ignore_index=True)

        with pytest.raises(DuplicateKeyError):
            synthesizer.synthesize(duplicated, population)

    def test_population_column_required(self, synthesizer, counts, population):
        """Test that population input must carry the population column."""
        with pytest.raises(SchemaViolationError):
            synthesizer.synthesize(counts, population.drop(columns="total_population"))

    def test_undefined_rates_reported(self, synthesizer, counts, population):
        """Test per-column counts of undefined rates."""
        result = synthesizer.synthesize(counts, population)

        # Y 2019 (no population) and T1 2020 (zero population)
        assert result.undefined_rates["crash_rate_per_1000"] == 2


def test_fill_known_zero_counts():
    """Test zero filling only where population is known."""
    df = pd.DataFrame(
        {
            "total_population": pd.array([10.0, None], dtype="Float64"),
            "total_crashes": pd.array([None, None], dtype="Int64"),
        }
    )

    filled, rows = fill_known_zero_counts(
        df, ["total_crashes", "persons_killed"], "total_population"
    )

    assert rows == 1
    assert filled["total_crashes"].iloc[0] == 0
    assert pd.isna(filled["total_crashes"].iloc[1])
    assert filled["persons_killed"].iloc[0] == 0
    assert pd.isna(filled["persons_killed"].iloc[1])


def test_compute_rates_skips_absent_inputs(test_config):
    """Test that rates without their count column are not created."""
    df = pd.DataFrame({"total_population": [1000.0], "total_crashes": [5]})

    result = compute_rates(df, test_config)

    assert result["crash_rate_per_1000"].iloc[0] == pytest.approx(5.0)
    assert "injury_rate_per_1000" not in result.columns
    assert "injury_fatality_ratio" not in result.columns
