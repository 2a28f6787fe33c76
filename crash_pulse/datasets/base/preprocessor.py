"""
Crash Pulse - Base Preprocessor

Abstract base class for all source preprocessors. Provides a consistent interface
for data cleaning and transformation with:
- Column standardization
- Data type conversion
- Upstream contract checks
- Drop accounting by reason

Usage:
    class CollisionPreprocessor(BasePreprocessor):
        def transform(self, df: pd.DataFrame) -> pd.DataFrame:
            ...
        def get_column_mappings(self) -> dict[str, str]:
            return {"crash_date": "timestamp"}
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
from crash_pulse.validation.schema_enforcer import ReconciliationError, require_columns

logger = logging.getLogger(__name__)


@dataclass
class PreprocessingResult:
    """Result of a preprocessing operation."""

    dataset: str
    execution_date: str
    rows_input: int
    rows_output: int
    rows_dropped: int
    columns_input: int
    columns_output: int
    duration_seconds: float = 0.0
    success: bool = True
    error_message: str | None = None
    transformations_applied: list[str] = field(default_factory=list)
    drop_reasons: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert result to dictionary for diagnostics/logging."""
        return {
            "dataset": self.dataset,
            "execution_date": self.execution_date,
            "rows_input": self.rows_input,
            "rows_output": self.rows_output,
            "rows_dropped": self.rows_dropped,
            "columns_input": self.columns_input,
            "columns_output": self.columns_output,
            "duration_seconds": self.duration_seconds,
            "success": self.success,
            "error_message": self.error_message,
            "transformations_applied": self.transformations_applied,
            "drop_reasons": self.drop_reasons,
        }


class BasePreprocessor(ABC):
    """
    Abstract base class for source preprocessing.

    Subclasses must implement:
    - transform(): Apply source-specific transformations
    - get_dataset_name(): Return the dataset name
    - get_required_columns(): Return list of required columns after renaming
    """

    def __init__(self, config: Settings | None = None):
        """
        Initialize the preprocessor.

        Args:
            config: Configuration object (uses default if not provided)
        """
        self.config = config or get_config()
        self._transformations: list[str] = []
        self._drop_reasons: dict[str, int] = {}

    @abstractmethod
    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Apply source-specific transformations.

        Args:
            df: DataFrame with renamed columns

        Returns:
            Transformed DataFrame
        """
        pass

    @abstractmethod
    def get_dataset_name(self) -> str:
        """
        Get the dataset name.

        Returns:
            Dataset name (e.g., "incidents", "survey")
        """
        pass

    @abstractmethod
    def get_required_columns(self) -> list[str]:
        """
        Get list of columns the source must provide.

        Checked after column mappings are applied and before transform(), so a
        missing column is reported under its canonical name.

        Returns:
            List of column names
        """
        pass

    def get_column_mappings(self) -> dict[str, str]:
        """
        Get column name mappings (old -> new).

        Override this method to rename columns during preprocessing.

        Returns:
            Dictionary mapping old column names to new names
        """
        return {}

    def get_dtype_mappings(self) -> dict[str, str]:
        """
        Get data type mappings for columns.

        Override this method to specify target data types.

        Returns:
            Dictionary mapping column names to target dtypes
        """
        return {}

    def run(
        self,
        df: pd.DataFrame,
        execution_date: str | None = None,
    ) -> PreprocessingResult:
        """
        Run the preprocessing pipeline.

        The input frame is never modified; the cleaned frame is available
        through get_data().

        Args:
            df: Raw DataFrame to preprocess
            execution_date: Run date in YYYY-MM-DD format (defaults to today, UTC)

        Returns:
            PreprocessingResult with details about the preprocessing

        Raises:
            ReconciliationError: On a data-contract violation (missing columns,
                duplicate keys); other failures are reported in the result
        """
        start_time = time.time()
        execution_date = execution_date or datetime.now(UTC).strftime("%Y-%m-%d")
        dataset_name = self.get_dataset_name()
        rows_input = len(df)
        columns_input = len(df.columns)

        logger.info(
            f"Starting preprocessing for {dataset_name}",
            extra={
                "dataset": dataset_name,
                "execution_date": execution_date,
                "rows_input": rows_input,
            },
        )

        try:
            # Reset tracking
            self._transformations = []
            self._drop_reasons = {}
            self._data = None

            df = df.copy()

            # Apply column mappings
            df = self._apply_column_mappings(df)

            # Fail fast on the upstream contract
            require_columns(df, dataset_name, self.get_required_columns())

            # Apply data type conversions
            df = self._apply_dtype_conversions(df)

            # Apply source-specific transformations
            df = self.transform(df)

            duration = time.time() - start_time
            rows_output = len(df)

            result = PreprocessingResult(
                dataset=dataset_name,
                execution_date=execution_date,
                rows_input=rows_input,
                rows_output=rows_output,
                rows_dropped=rows_input - rows_output,
                columns_input=columns_input,
                columns_output=len(df.columns),
                duration_seconds=duration,
                success=True,
                transformations_applied=self._transformations,
                drop_reasons=self._drop_reasons,
            )

            logger.info(
                f"Preprocessing complete for {dataset_name}: {rows_input} -> {rows_output} rows",
                extra=result.to_dict(),
            )

            # Store processed data
            self._data = df

            return result

        except ReconciliationError:
            raise

        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                f"Preprocessing failed for {dataset_name}: {e}",
                extra={"dataset": dataset_name, "error": str(e)},
                exc_info=True,
            )

            return PreprocessingResult(
                dataset=dataset_name,
                execution_date=execution_date,
                rows_input=rows_input,
                rows_output=0,
                rows_dropped=rows_input,
                columns_input=columns_input,
                columns_output=0,
                duration_seconds=duration,
                success=False,
                error_message=str(e),
            )

    def get_data(self) -> pd.DataFrame | None:
        """Get the most recently processed data."""
        return getattr(self, "_data", None)

    def _apply_column_mappings(self, df: pd.DataFrame) -> pd.DataFrame:
        """Apply column name mappings."""
        mappings = {k: v for k, v in self.get_column_mappings().items() if k in df.columns}
        if mappings:
            df = df.rename(columns=mappings)
            self._transformations.append(f"renamed_columns: {list(mappings.keys())}")
        return df

    def _apply_dtype_conversions(self, df: pd.DataFrame) -> pd.DataFrame:
        """Apply data type conversions."""
        dtype_mappings = self.get_dtype_mappings()
        for col, dtype in dtype_mappings.items():
            if col not in df.columns:
                continue
            if dtype == "int":
                df[col] = pd.to_numeric(df[col], errors="coerce").astype("Int64")
            elif dtype == "float":
                df[col] = pd.to_numeric(df[col], errors="coerce").astype("float64")
            elif dtype == "string":
                df[col] = df[col].astype("string").str.strip()
            else:
                df[col] = df[col].astype(dtype)
            self._transformations.append(f"converted_{col}_to_{dtype}")
        return df

    def log_transformation(self, name: str) -> None:
        """Log a transformation that was applied."""
        self._transformations.append(name)

    def log_dropped_rows(self, reason: str, count: int) -> None:
        """Log rows that were dropped."""
        self._drop_reasons[reason] = self._drop_reasons.get(reason, 0) + count

    # ==========================================================================
    # Common Preprocessing Utilities
    # ==========================================================================

    def drop_where(self, df: pd.DataFrame, mask: pd.Series, reason: str) -> pd.DataFrame:
        """Drop the rows selected by ``mask`` and count them under ``reason``."""
        count = int(mask.sum())
        if count > 0:
            self.log_dropped_rows(reason, count)
            df = df[~mask]
        return df

    def drop_duplicates(
        self,
        df: pd.DataFrame,
        subset: list[str] | None = None,
        keep: str = "first",
    ) -> pd.DataFrame:
        """Drop duplicate rows."""
        before_count = len(df)
        df = df.drop_duplicates(subset=subset, keep=keep)
        dropped = before_count - len(df)

        if dropped > 0:
            self.log_dropped_rows("duplicates", dropped)
            self.log_transformation("drop_duplicates")

        return df
