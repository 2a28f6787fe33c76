"""
Crash Pulse - Base Feature Builder

Abstract base class for area-level feature builders. Provides a consistent
interface for aggregation with:
- Keyed aggregation onto (area_id, year)
- Feature statistics for diagnostics
- Range and nullability checks against feature definitions

Usage:
    class CollisionFeatureBuilder(BaseFeatureBuilder):
        def build_features(self, df: pd.DataFrame) -> pd.DataFrame:
            ...
        def get_feature_definitions(self) -> list[FeatureDefinition]:
            ...
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import pandas as pd

from crash_pulse.shared.config import Settings, get_config
from crash_pulse.validation.schema_enforcer import ReconciliationError, ensure_unique_keys

logger = logging.getLogger(__name__)


@dataclass
class FeatureDefinition:
    """Definition of a computed feature."""

    name: str
    description: str
    dtype: str
    source_columns: list[str]
    aggregation: str | None = None  # sum, mean, count, max, min, etc.
    nullable: bool = False
    min_value: float | None = None
    max_value: float | None = None


@dataclass
class FeatureBuildResult:
    """Result of a feature building operation."""

    dataset: str
    execution_date: str
    rows_input: int
    rows_output: int
    features_computed: int
    duration_seconds: float = 0.0
    success: bool = True
    error_message: str | None = None
    rows_excluded: dict[str, int] = field(default_factory=dict)
    feature_stats: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert result to dictionary for diagnostics/logging."""
        return {
            "dataset": self.dataset,
            "execution_date": self.execution_date,
            "rows_input": self.rows_input,
            "rows_output": self.rows_output,
            "features_computed": self.features_computed,
            "duration_seconds": self.duration_seconds,
            "success": self.success,
            "error_message": self.error_message,
            "rows_excluded": self.rows_excluded,
            "feature_stats": self.feature_stats,
        }


class BaseFeatureBuilder(ABC):
    """
    Abstract base class for feature building.

    Subclasses must implement:
    - build_features(): Compute features from processed data
    - get_dataset_name(): Return the dataset name
    - get_feature_definitions(): Return list of feature definitions
    - get_entity_key(): Return the entity key column(s)
    """

    def __init__(self, config: Settings | None = None):
        """
        Initialize the feature builder.

        Args:
            config: Configuration object (uses default if not provided)
        """
        self.config = config or get_config()
        self._feature_stats: dict[str, dict[str, Any]] = {}
        self._excluded: dict[str, int] = {}

    @abstractmethod
    def build_features(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Build features from processed data.

        Args:
            df: Processed DataFrame

        Returns:
            DataFrame with computed features
        """
        pass

    @abstractmethod
    def get_dataset_name(self) -> str:
        """
        Get the dataset name.

        Returns:
            Dataset name (e.g., "incidents")
        """
        pass

    @abstractmethod
    def get_feature_definitions(self) -> list[FeatureDefinition]:
        """
        Get list of feature definitions.

        Returns:
            List of FeatureDefinition objects describing each feature
        """
        pass

    @abstractmethod
    def get_entity_key(self) -> list[str]:
        """
        Get the entity key columns of the output.

        Returns:
            List of column names, unique per output row
        """
        pass

    def run(
        self,
        df: pd.DataFrame,
        execution_date: str | None = None,
    ) -> FeatureBuildResult:
        """
        Run the feature building pipeline.

        Args:
            df: Processed DataFrame
            execution_date: Run date in YYYY-MM-DD format (defaults to today, UTC)

        Returns:
            FeatureBuildResult with details about the feature building

        Raises:
            ReconciliationError: On a data-contract violation
        """
        start_time = time.time()
        execution_date = execution_date or datetime.now(UTC).strftime("%Y-%m-%d")
        dataset_name = self.get_dataset_name()
        rows_input = len(df)

        logger.info(
            f"Starting feature building for {dataset_name}",
            extra={
                "dataset": dataset_name,
                "execution_date": execution_date,
                "rows_input": rows_input,
            },
        )

        try:
            # Reset tracking
            self._feature_stats = {}
            self._excluded = {}
            self._data = None

            # Build features
            features_df = self.build_features(df)

            # Output must be unique on its entity key
            ensure_unique_keys(features_df, dataset_name, self.get_entity_key())

            # Compute feature statistics
            self._compute_feature_stats(features_df)

            # Validate features
            self._validate_features(features_df)

            duration = time.time() - start_time

            result = FeatureBuildResult(
                dataset=dataset_name,
                execution_date=execution_date,
                rows_input=rows_input,
                rows_output=len(features_df),
                features_computed=len(features_df.columns),
                duration_seconds=duration,
                success=True,
                rows_excluded=self._excluded,
                feature_stats=self._feature_stats,
            )

            logger.info(
                f"Feature building complete for {dataset_name}: "
                f"{len(features_df)} rows, {len(features_df.columns)} features",
                extra=result.to_dict(),
            )

            # Store features
            self._data = features_df

            return result

        except ReconciliationError:
            raise

        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"Feature building failed for {dataset_name}: {e}",
                extra={"dataset": dataset_name, "error": str(e)},
                exc_info=True,
            )

            return FeatureBuildResult(
                dataset=dataset_name,
                execution_date=execution_date,
                rows_input=rows_input,
                rows_output=0,
                features_computed=0,
                duration_seconds=duration,
                success=False,
                error_message=str(e),
            )

    def get_data(self) -> pd.DataFrame | None:
        """Get the most recently built features."""
        return getattr(self, "_data", None)

    def log_excluded_rows(self, reason: str, count: int) -> None:
        """Record input rows left out of the aggregation."""
        if count > 0:
            self._excluded[reason] = self._excluded.get(reason, 0) + count

    def _compute_feature_stats(self, df: pd.DataFrame) -> None:
        """Compute statistics for each feature."""
        for col in df.columns:
            stats: dict[str, Any] = {
                "dtype": str(df[col].dtype),
                "null_count": int(df[col].isna().sum()),
                "null_ratio": float(df[col].isna().mean()) if len(df) > 0 else 0.0,
            }

            if pd.api.types.is_numeric_dtype(df[col]):
                non_null = df[col].dropna()
                if len(non_null) > 0:
                    stats.update(
                        {
                            "mean": float(non_null.mean()),
                            "std": float(non_null.std()) if len(non_null) > 1 else 0.0,
                            "min": float(non_null.min()),
                            "max": float(non_null.max()),
                            "median": float(non_null.median()),
                        }
                    )
            else:
                stats["unique_count"] = int(df[col].nunique())

            self._feature_stats[col] = stats

    def _validate_features(self, df: pd.DataFrame) -> None:
        """Validate features against definitions."""
        definitions = {f.name: f for f in self.get_feature_definitions()}

        for col in df.columns:
            if col not in definitions:
                continue

            defn = definitions[col]

            # Check for nulls if not nullable
            if not defn.nullable and df[col].isna().any():
                logger.warning(f"Feature '{col}' has null values but is marked as non-nullable")

            # Check value ranges for numeric features
            if pd.api.types.is_numeric_dtype(df[col]):
                if defn.min_value is not None and (df[col] < defn.min_value).any():
                    logger.warning(f"Feature '{col}' has values below minimum {defn.min_value}")
                if defn.max_value is not None and (df[col] > defn.max_value).any():
                    logger.warning(f"Feature '{col}' has values above maximum {defn.max_value}")

    # ==========================================================================
    # Common Feature Building Utilities
    # ==========================================================================

    def sum_by_key(
        self,
        df: pd.DataFrame,
        key: list[str],
        value_cols: list[str],
        size_col: str | None = None,
    ) -> pd.DataFrame:
        """
        Sum value columns per key, treating missing values as 0.

        Only keys present in ``df`` are emitted.

        Args:
            df: Input DataFrame
            key: Grouping columns
            value_cols: Columns to sum
            size_col: Optional output column holding the row count per key

        Returns:
            One row per key, sorted by key
        """
        values = df[key].copy()
        for col in value_cols:
            values[col] = pd.to_numeric(df[col], errors="coerce").fillna(0)

        grouped = values.groupby(key, sort=True)
        sums = grouped[value_cols].sum()
        if size_col is not None:
            sums.insert(0, size_col, grouped.size())

        return sums.reset_index()
