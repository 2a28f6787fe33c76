"""
Crash Pulse - Collision Feature Builder

Aggregates area-assigned collisions into one row per (area_id, year).

Features:
    - total_crashes: number of collisions in the area-year
    - one sum per incident category (injuries and fatalities by road user)

Collisions with a null or unparseable timestamp are excluded before grouping
and counted. Missing category values count as 0, so a sum is never null.
Area-years without collisions are not emitted; whether such an absence means
zero is decided later against population.

Usage:
    from crash_pulse.datasets.collisions.features import CollisionFeatureBuilder

    builder = CollisionFeatureBuilder()
    result = builder.run(assigned_df)
    counts_df = builder.get_data()
"""

from __future__ import annotations

import logging
from typing import Any

import pandas as pd

from crash_pulse.datasets.base import BaseFeatureBuilder, FeatureDefinition
from crash_pulse.shared.config import Settings
from crash_pulse.validation.schema_enforcer import AREA_YEAR_KEY, require_columns

logger = logging.getLogger(__name__)


def parse_timestamps(values: pd.Series) -> pd.Series:
    """
    Parse incident timestamps of mixed formats.

    Unparseable values become NaT. Offsets are normalized to UTC; naive values
    are taken as they are.
    """
    return pd.to_datetime(values, errors="coerce", format="mixed", utc=True)


class CollisionFeatureBuilder(BaseFeatureBuilder):
    """
    Feature builder for assigned collision records.

    Produces the incident-count table keyed by (area_id, year).
    """

    def __init__(self, config: Settings | None = None):
        """Initialize collision feature builder."""
        super().__init__(config)
        self.collisions = self.config.collisions

    def get_dataset_name(self) -> str:
        """Return dataset name."""
        return "incident_counts"

    def get_entity_key(self) -> list[str]:
        """Return entity key for aggregation."""
        return AREA_YEAR_KEY

    def get_feature_definitions(self) -> list[FeatureDefinition]:
        """Return feature definitions."""
        features = [
            FeatureDefinition(
                name="area_id",
                description="New-generation area identifier",
                dtype="string",
                source_columns=["area_id"],
            ),
            FeatureDefinition(
                name="year",
                description="Calendar year of the incident timestamp",
                dtype="int",
                source_columns=["timestamp"],
            ),
            FeatureDefinition(
                name=self.collisions.total_count_column,
                description="Number of collisions",
                dtype="int",
                source_columns=["timestamp"],
                aggregation="count",
                min_value=0,
            ),
        ]
        for category in self.collisions.category_columns.values():
            features.append(
                FeatureDefinition(
                    name=category,
                    description=f"Sum of {category.replace('_', ' ')}",
                    dtype="int",
                    source_columns=[category],
                    aggregation="sum",
                    min_value=0,
                )
            )
        return features

    def build_features(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Aggregate assigned collisions.

        Args:
            df: Assigned collisions with ``area_id``, ``timestamp`` and
                category columns

        Returns:
            One row per (area_id, year) with at least one collision
        """
        categories = list(self.collisions.category_columns.values())
        require_columns(df, "incidents", ["area_id", "timestamp", *categories])

        timestamps = parse_timestamps(df["timestamp"])
        invalid = timestamps.isna()
        if invalid.any():
            self.log_excluded_rows("invalid_timestamp", int(invalid.sum()))
            logger.warning(
                f"Excluding {int(invalid.sum())} collisions with missing or unparseable timestamps",
                extra={"count": int(invalid.sum())},
            )

        valid = df.loc[~invalid, ["area_id", *categories]].copy()
        valid["year"] = timestamps[~invalid].dt.year.astype("int64")

        counts = self.sum_by_key(
            valid,
            AREA_YEAR_KEY,
            categories,
            size_col=self.collisions.total_count_column,
        )
        for col in self.collisions.count_columns:
            counts[col] = counts[col].astype("Int64")
        counts["year"] = counts["year"].astype("int64")

        logger.info(
            f"Aggregated {len(valid)} collisions into {len(counts)} area-years",
            extra={"incidents": len(valid), "area_years": len(counts)},
        )

        return counts[[*AREA_YEAR_KEY, *self.collisions.count_columns]]


# =============================================================================
# Convenience Functions
# =============================================================================


def build_collision_features(
    df: pd.DataFrame,
    execution_date: str | None = None,
    config: Settings | None = None,
) -> dict[str, Any]:
    """
    Convenience function for aggregating assigned collisions.

    Returns result dictionary suitable for diagnostics.
    """
    builder = CollisionFeatureBuilder(config)
    result = builder.run(df, execution_date)
    return result.to_dict()
