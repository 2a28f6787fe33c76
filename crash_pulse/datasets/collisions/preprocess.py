"""
Crash Pulse - Collision Data Preprocessor

Cleans motor vehicle collision records from NYC Open Data.

Transformations:
    - Column renaming to canonical names (crash_date -> timestamp, ...)
    - Numeric coercion of coordinates and category counts
    - Removal of records without a usable location

Timestamps are left as delivered; they are parsed by the aggregator, which
counts the unparseable ones.

Usage:
    from crash_pulse.datasets.collisions.preprocess import CollisionPreprocessor

    preprocessor = CollisionPreprocessor()
    result = preprocessor.run(raw_df)
    processed_df = preprocessor.get_data()
"""

from __future__ import annotations

import logging
from typing import Any

import pandas as pd

from crash_pulse.datasets.base import BasePreprocessor
from crash_pulse.shared.config import Settings

logger = logging.getLogger(__name__)

# Passed through when present
OPTIONAL_COLUMNS = ["collision_id", "borough"]


class CollisionPreprocessor(BasePreprocessor):
    """
    Preprocessor for NYC motor vehicle collision records.

    Column names come from ``config.collisions`` so other incident sources can
    reuse the same cleaning steps.
    """

    def __init__(self, config: Settings | None = None):
        """Initialize collision preprocessor."""
        super().__init__(config)
        self.collisions = self.config.collisions

    def get_dataset_name(self) -> str:
        """Return dataset name."""
        return "incidents"

    def get_required_columns(self) -> list[str]:
        """Return required columns after renaming."""
        return ["timestamp", "longitude", "latitude", *self.collisions.category_columns.values()]

    def get_column_mappings(self) -> dict[str, str]:
        """Return column name mappings."""
        return {
            self.collisions.timestamp_column: "timestamp",
            self.collisions.longitude_column: "longitude",
            self.collisions.latitude_column: "latitude",
            **self.collisions.category_columns,
        }

    def get_dtype_mappings(self) -> dict[str, str]:
        """Return data type mappings."""
        mappings = {"longitude": "float", "latitude": "float"}
        for col in self.collisions.category_columns.values():
            mappings[col] = "float"
        return mappings

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Apply collision-specific transformations.

        Args:
            df: DataFrame with canonical column names

        Returns:
            Incidents with a usable location
        """
        df = self._drop_unlocatable(df)
        df = self._select_output_columns(df)
        return df

    def _drop_unlocatable(self, df: pd.DataFrame) -> pd.DataFrame:
        """Drop records with a null coordinate or a zero sentinel coordinate."""
        missing = df["longitude"].isna() | df["latitude"].isna()
        df = self.drop_where(df, missing, "missing_coordinates")

        # Either coordinate at 0 is the source's placeholder for "not geocoded"
        zero = (df["longitude"] == 0) | (df["latitude"] == 0)
        df = self.drop_where(df, zero, "zero_coordinates")

        dropped = self._drop_reasons.get("missing_coordinates", 0) + self._drop_reasons.get(
            "zero_coordinates", 0
        )
        if dropped > 0:
            logger.warning(
                f"Dropped {dropped} collisions without a usable location",
                extra={"drop_reasons": dict(self._drop_reasons)},
            )

        self.log_transformation("drop_unlocatable")
        return df

    def _select_output_columns(self, df: pd.DataFrame) -> pd.DataFrame:
        """Select and order output columns."""
        output_columns = [
            *[c for c in OPTIONAL_COLUMNS if c in df.columns],
            "timestamp",
            "longitude",
            "latitude",
            *self.collisions.category_columns.values(),
        ]
        df = df[output_columns]

        self.log_transformation("select_output_columns")
        return df


# =============================================================================
# Convenience Functions
# =============================================================================


def preprocess_collision_data(
    df: pd.DataFrame,
    execution_date: str | None = None,
    config: Settings | None = None,
) -> dict[str, Any]:
    """
    Convenience function for preprocessing collision data.

    Returns result dictionary suitable for diagnostics.
    """
    preprocessor = CollisionPreprocessor(config)
    result = preprocessor.run(df, execution_date)
    return result.to_dict()
