"""
Crash Pulse - Metric Synthesizer

Joins area-year incident counts with population and derives rates.

Semantics:
- Every (area_id, year) with known population appears in the output, with
  counts filled to 0 when no incident was recorded there.
- Incident rows without population are kept; their counts stay as recorded
  and their rates are missing.
- rate = count / population * per (default 1000) only when population > 0.
  A population of 0 yields a missing rate, never 0.
- A ratio between two counts is defined only when the denominator is > 0.

Missing values are pd.NA in nullable Float64 columns.

Usage:
    from crash_pulse.reconcile.metrics import MetricSynthesizer

    synthesizer = MetricSynthesizer()
    result = synthesizer.synthesize(counts_df, population_df)
    metrics_df = result.metrics
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import pandas as pd

from crash_pulse.shared.config import Settings, get_config
from crash_pulse.shared.rates import safe_ratio
from crash_pulse.validation.schema_enforcer import (
    AREA_YEAR_KEY,
    ensure_unique_keys,
    require_columns,
)

logger = logging.getLogger(__name__)


def compute_rates(df: pd.DataFrame, config: Settings | None = None) -> pd.DataFrame:
    """
    (Re)compute every configured rate and ratio column.

    Definitions whose inputs are absent from ``df`` are skipped.

    Args:
        df: Table with population and count columns
        config: Configuration object (uses default if not provided)

    Returns:
        Copy of ``df`` with rate and ratio columns replaced
    """
    config = config or get_config()
    metrics = config.metrics
    df = df.copy()

    if metrics.population_column in df.columns:
        population = df[metrics.population_column]
        for rate in metrics.rates:
            if rate.numerator in df.columns:
                df[rate.name] = safe_ratio(df[rate.numerator], population, rate.per)

    for ratio in metrics.ratios:
        if ratio.numerator in df.columns and ratio.denominator in df.columns:
            df[ratio.name] = safe_ratio(df[ratio.numerator], df[ratio.denominator])

    return df


def align_keys(df: pd.DataFrame) -> pd.DataFrame:
    """Copy of ``df`` with area_id as string and year as int64, so merges line up."""
    return df.astype({"area_id": "string", "year": "int64"})


def fill_known_zero_counts(
    df: pd.DataFrame,
    count_columns: list[str],
    population_column: str,
) -> tuple[pd.DataFrame, int]:
    """
    Fill missing counts with 0 where population is known.

    Where population is missing, counts stay missing.

    Returns:
        (filled copy, number of rows that received zeros)
    """
    df = df.copy()
    known = df[population_column].notna()
    filled_rows = pd.Series(False, index=df.index)
    for col in count_columns:
        if col not in df.columns:
            df[col] = pd.array([pd.NA] * len(df), dtype="Int64")
        fill = known & df[col].isna()
        filled_rows |= fill
        df[col] = df[col].astype("Int64").mask(fill, 0)
    return df, int(filled_rows.sum())


@dataclass
class SynthesisResult:
    """Incident metrics plus join diagnostics."""

    metrics: pd.DataFrame
    rows_counts: int
    rows_population: int
    keys_without_population: int = 0
    keys_zero_filled: int = 0
    undefined_rates: dict[str, int] = field(default_factory=dict)
    years_missing_population: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert result to dictionary for diagnostics."""
        return {
            "rows_counts": self.rows_counts,
            "rows_population": self.rows_population,
            "rows_output": len(self.metrics),
            "keys_without_population": self.keys_without_population,
            "keys_zero_filled": self.keys_zero_filled,
            "undefined_rates": self.undefined_rates,
            "years_missing_population": self.years_missing_population,
        }


class MetricSynthesizer:
    """Builds the incident-metric table from counts and population."""

    def __init__(self, config: Settings | None = None):
        """
        Initialize the synthesizer.

        Args:
            config: Configuration object (uses default if not provided)
        """
        self.config = config or get_config()

    @property
    def count_columns(self) -> list[str]:
        return self.config.collisions.count_columns

    def synthesize(self, counts: pd.DataFrame, population: pd.DataFrame) -> SynthesisResult:
        """
        Join counts with population and compute rates.

        Args:
            counts: One row per (area_id, year) with count columns
            population: One row per (area_id, year) with the population column

        Returns:
            SynthesisResult; ``metrics`` is sorted by (area_id, year)

        Raises:
            SchemaViolationError: If a key or the population column is absent
            DuplicateKeyError: If either input repeats an (area_id, year)
        """
        population_col = self.config.metrics.population_column
        require_columns(counts, "incident_counts", AREA_YEAR_KEY)
        require_columns(population, "population", [*AREA_YEAR_KEY, population_col])
        ensure_unique_keys(counts, "incident_counts")
        ensure_unique_keys(population, "population")

        count_cols = [c for c in self.count_columns if c in counts.columns]
        left = population[[*AREA_YEAR_KEY, population_col]].copy()
        left[population_col] = pd.to_numeric(left[population_col], errors="coerce").astype(
            "Float64"
        )
        right = counts[[*AREA_YEAR_KEY, *count_cols]]
        left, right = align_keys(left), align_keys(right)

        merged = left.merge(right, on=AREA_YEAR_KEY, how="outer", indicator=True)
        keys_without_population = int((merged["_merge"] == "right_only").sum())
        merged = merged.drop(columns="_merge")

        if keys_without_population > 0:
            logger.warning(
                f"{keys_without_population} area-years have incidents but no population; "
                "their rates are undefined",
                extra={"count": keys_without_population},
            )

        years_missing = sorted(
            set(counts["year"].astype(int)) - set(population["year"].astype(int))
        )
        if years_missing:
            logger.warning(
                f"Population is missing for years {years_missing}",
                extra={"years": years_missing},
            )

        merged, zero_filled = fill_known_zero_counts(merged, self.count_columns, population_col)
        merged = compute_rates(merged, self.config)

        merged["year"] = merged["year"].astype("int64")
        ordered = [
            *AREA_YEAR_KEY,
            population_col,
            *self.count_columns,
            *[c for c in self.config.metrics.derived_columns if c in merged.columns],
        ]
        metrics = merged[ordered].sort_values(AREA_YEAR_KEY).reset_index(drop=True)

        undefined = {
            col: int(metrics[col].isna().sum())
            for col in self.config.metrics.derived_columns
            if col in metrics.columns
        }

        result = SynthesisResult(
            metrics=metrics,
            rows_counts=len(counts),
            rows_population=len(population),
            keys_without_population=keys_without_population,
            keys_zero_filled=zero_filled,
            undefined_rates=undefined,
            years_missing_population=years_missing,
        )
        logger.info(
            f"Synthesized metrics for {len(metrics)} area-years",
            extra=result.to_dict(),
        )
        return result
