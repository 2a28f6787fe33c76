"""
Crash Pulse - Schema Enforcer

Data contracts for every table that crosses a stage boundary:
1. Upstream contracts: required columns per source (incidents, survey,
   polygons, crosswalk). Missing columns are fatal.
2. Key contracts: tables expected to be unique on a key (area-year tables,
   polygon layers, crosswalk edges). Duplicates are fatal, since downstream
   aggregation would silently double-count.
3. Output contract: the persisted area-year table consumed downstream.

Usage:
    from crash_pulse.validation.schema_enforcer import require_columns, ensure_unique_keys

    require_columns(df, "incidents", ["timestamp", "longitude", "latitude"])
    ensure_unique_keys(df, "metrics", ["area_id", "year"])
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import numpy as np
import pandas as pd

from crash_pulse.shared.config import Settings, get_config

logger = logging.getLogger(__name__)

AREA_YEAR_KEY = ["area_id", "year"]

# Minimal upstream schemas (canonical names, after column mapping)
REQUIRED_COLUMNS: dict[str, list[str]] = {
    "incidents": ["timestamp", "longitude", "latitude"],
    "survey": ["area_id", "year", "variable_name", "estimate_value"],
    "polygons": ["area_id", "geometry"],
    "crosswalk": [
        "old_area_id",
        "new_area_id",
        "old_area_land_quantity",
        "overlap_land_quantity",
    ],
}


class ValidationLevel(StrEnum):
    """Validation severity level."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass
class ValidationIssue:
    """Individual validation or diagnostics issue."""

    level: ValidationLevel
    stage: str
    check: str  # Name of the check that raised it
    message: str
    column: str | None = None
    count: int | None = None
    magnitude: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert issue to dictionary for reporting."""
        return {
            "level": self.level.value,
            "stage": self.stage,
            "check": self.check,
            "message": self.message,
            "column": self.column,
            "count": self.count,
            "magnitude": self.magnitude,
        }


# =============================================================================
# Exception Classes
# =============================================================================


class ReconciliationError(Exception):
    """Base class for fatal data-contract errors."""


class SchemaViolationError(ReconciliationError):
    """Raised when a required column is absent. Non-retryable."""

    def __init__(self, dataset: str, missing: list[str], present: list[str] | None = None):
        self.dataset = dataset
        self.missing = sorted(missing)
        self.present = list(present) if present is not None else []
        super().__init__(
            f"Schema violation in '{dataset}': missing required columns {self.missing}. "
            f"Found: {self.present}"
        )


class DuplicateKeyError(ReconciliationError):
    """Raised when a table expected to be unique on a key is not."""

    def __init__(self, dataset: str, keys: list[str], duplicates: pd.DataFrame):
        self.dataset = dataset
        self.keys = keys
        self.duplicate_count = len(duplicates)
        self.sample = duplicates.head(5).to_dict(orient="records")
        super().__init__(
            f"Duplicate keys {keys} in '{dataset}': {self.duplicate_count} rows share a key, "
            f"e.g. {self.sample}"
        )


class VintageResolutionError(ReconciliationError):
    """Raised when a survey year cannot be placed in a boundary vintage."""

    def __init__(self, year: int, message: str):
        self.year = year
        super().__init__(f"Year {year}: {message}")


class MixedVintageError(ReconciliationError):
    """Raised when a polygon layer mixes boundary vintages."""

    def __init__(self, dataset: str, vintages: list[str]):
        self.dataset = dataset
        self.vintages = sorted(vintages)
        super().__init__(
            f"'{dataset}' must hold a single boundary vintage, got {self.vintages}"
        )


class OutputContractError(ReconciliationError):
    """Raised when the persisted table violates the downstream contract."""

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = issues
        error_msg = "\n".join(f"  - {issue.message}" for issue in issues)
        super().__init__(f"Output contract violated:\n{error_msg}")


class StageFailedError(ReconciliationError):
    """Raised when a pipeline stage reports an unsuccessful result."""

    def __init__(self, stage: str, message: str | None):
        self.stage = stage
        super().__init__(f"Stage '{stage}' failed: {message}")


# =============================================================================
# Contract Checks
# =============================================================================


def require_columns(df: pd.DataFrame, dataset: str, required: list[str] | None = None) -> None:
    """
    Fail fast if any required column is absent.

    Args:
        df: Table to check
        dataset: Dataset name (also selects the default contract)
        required: Required columns (defaults to REQUIRED_COLUMNS[dataset])

    Raises:
        SchemaViolationError: If any column is missing
    """
    required = required if required is not None else REQUIRED_COLUMNS[dataset]
    missing = [col for col in required if col not in df.columns]
    if missing:
        logger.error(
            f"Schema violation in {dataset}",
            extra={"dataset": dataset, "missing_columns": missing},
        )
        raise SchemaViolationError(dataset, missing, list(df.columns))


def find_duplicate_keys(df: pd.DataFrame, keys: list[str]) -> pd.DataFrame:
    """Return every row whose key occurs more than once."""
    mask = df.duplicated(subset=keys, keep=False)
    return df.loc[mask, keys].sort_values(keys)


def ensure_unique_keys(df: pd.DataFrame, dataset: str, keys: list[str] | None = None) -> None:
    """
    Fail if the table is not unique on its key.

    Raises:
        DuplicateKeyError: If any key occurs more than once
    """
    keys = keys or AREA_YEAR_KEY
    duplicates = find_duplicate_keys(df, keys)
    if len(duplicates) > 0:
        logger.error(
            f"Duplicate keys in {dataset}",
            extra={"dataset": dataset, "keys": keys, "duplicate_rows": len(duplicates)},
        )
        raise DuplicateKeyError(dataset, keys, duplicates)


def check_output_contract(
    df: pd.DataFrame,
    config: Settings | None = None,
) -> list[ValidationIssue]:
    """
    Check the persisted area-year table against the downstream contract.

    Checks:
    - (area_id, year) is unique
    - Rate and ratio columns contain no NaN or infinity masquerading as numbers
    - A rate is present only where population > 0

    Returns:
        List of issues (empty when the table satisfies the contract)
    """
    config = config or get_config()
    issues: list[ValidationIssue] = []
    population_col = config.metrics.population_column

    duplicates = find_duplicate_keys(df, AREA_YEAR_KEY)
    if len(duplicates) > 0:
        issues.append(
            ValidationIssue(
                level=ValidationLevel.CRITICAL,
                stage="output",
                check="unique_keys",
                message=f"{len(duplicates)} rows share an (area_id, year) key",
                count=len(duplicates),
            )
        )

    for col in config.metrics.derived_columns:
        if col not in df.columns:
            continue

        values = df[col]
        if not isinstance(values.dtype, pd.Float64Dtype):
            issues.append(
                ValidationIssue(
                    level=ValidationLevel.CRITICAL,
                    stage="output",
                    check="missing_marker",
                    message=f"Column '{col}' has dtype {values.dtype}, expected nullable Float64",
                    column=col,
                )
            )
            continue

        present = values.dropna().to_numpy(dtype="float64")
        non_finite = int((~np.isfinite(present)).sum())
        if non_finite > 0:
            issues.append(
                ValidationIssue(
                    level=ValidationLevel.CRITICAL,
                    stage="output",
                    check="finite_values",
                    message=f"Column '{col}' has {non_finite} non-finite values",
                    column=col,
                    count=non_finite,
                )
            )

    if population_col in df.columns:
        population = df[population_col]
        undefined = population.isna() | (population <= 0)
        for rate in config.metrics.rates:
            if rate.name not in df.columns:
                continue
            fabricated = int((undefined & df[rate.name].notna()).sum())
            if fabricated > 0:
                issues.append(
                    ValidationIssue(
                        level=ValidationLevel.CRITICAL,
                        stage="output",
                        check="rate_requires_population",
                        message=(
                            f"Column '{rate.name}' has {fabricated} values where "
                            f"population is missing or zero"
                        ),
                        column=rate.name,
                        count=fabricated,
                    )
                )

    return issues


def validate_output(df: pd.DataFrame, config: Settings | None = None) -> None:
    """
    Enforce the output contract.

    Raises:
        OutputContractError: If any contract check fails
    """
    issues = check_output_contract(df, config)
    if issues:
        raise OutputContractError(issues)
    logger.info("Output contract check passed", extra={"rows": len(df)})
