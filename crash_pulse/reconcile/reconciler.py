"""
Crash Pulse - Dataset Reconciler

Final merge of the wide socio-economic table with the incident-metric table.

Policy:
- Left join on (area_id, year): the socio-economic side decides which
  area-years exist. Area-years present only on the incident side are counted
  and left out (they stay in the incident-metric table). ``join_how: outer``
  keeps them instead.
- A column present on both sides (total_population) is coalesced to the
  non-missing value, socio-economic side first; disagreements are counted.
- Counts are filled with 0 only where population is known.
- Rates are recomputed after the fill.

Usage:
    from crash_pulse.reconcile.reconciler import DatasetReconciler

    reconciler = DatasetReconciler()
    result = reconciler.reconcile(socio_df, metrics_df)
    final_df = result.table
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

from crash_pulse.reconcile.metrics import align_keys, compute_rates, fill_known_zero_counts
from crash_pulse.shared.config import Settings, get_config
from crash_pulse.validation.schema_enforcer import (
    AREA_YEAR_KEY,
    ensure_unique_keys,
    require_columns,
)

logger = logging.getLogger(__name__)

METRICS_SUFFIX = "__metrics"


@dataclass
class ReconciliationResult:
    """Final table plus merge diagnostics."""

    table: pd.DataFrame
    rows_socioeconomic: int
    rows_metrics: int
    incident_only_keys: int = 0
    socioeconomic_only_keys: int = 0
    keys_zero_filled: int = 0
    coalesced_columns: list[str] = field(default_factory=list)
    coalesce_conflicts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert result to dictionary for diagnostics."""
        return {
            "rows_socioeconomic": self.rows_socioeconomic,
            "rows_metrics": self.rows_metrics,
            "rows_output": len(self.table),
            "incident_only_keys": self.incident_only_keys,
            "socioeconomic_only_keys": self.socioeconomic_only_keys,
            "keys_zero_filled": self.keys_zero_filled,
            "coalesced_columns": self.coalesced_columns,
            "coalesce_conflicts": self.coalesce_conflicts,
        }


def coalesce_columns(
    first: pd.Series,
    second: pd.Series,
    tolerance: float = 0.0,
) -> tuple[pd.Series, int]:
    """
    Take ``first`` where present, else ``second``.

    Returns:
        (coalesced series, rows where both are present and differ)
    """
    both = (first.notna() & second.notna()).to_numpy(dtype=bool)
    conflicts = 0
    if both.any():
        if pd.api.types.is_numeric_dtype(first) and pd.api.types.is_numeric_dtype(second):
            a = pd.to_numeric(first).to_numpy(dtype="float64", na_value=np.nan)[both]
            b = pd.to_numeric(second).to_numpy(dtype="float64", na_value=np.nan)[both]
            conflicts = int((~np.isclose(a, b, rtol=0.0, atol=tolerance)).sum())
        else:
            conflicts = int((first[both] != second[both]).sum())
    return first.combine_first(second), conflicts


class DatasetReconciler:
    """Merges socio-economic and incident-metric tables into the final table."""

    def __init__(self, config: Settings | None = None):
        """
        Initialize the reconciler.

        Args:
            config: Configuration object (uses default if not provided)
        """
        self.config = config or get_config()

    def reconcile(self, socioeconomic: pd.DataFrame, metrics: pd.DataFrame) -> ReconciliationResult:
        """
        Merge the two area-year tables.

        Args:
            socioeconomic: Wide table, one row per (area_id, year)
            metrics: Incident-metric table, one row per (area_id, year)

        Returns:
            ReconciliationResult; ``table`` is sorted by (area_id, year) and
            leads with area_id, year and population

        Raises:
            SchemaViolationError: If a key column is absent
            DuplicateKeyError: If either input repeats an (area_id, year)
        """
        population_col = self.config.metrics.population_column
        count_cols = self.config.collisions.count_columns
        derived_cols = self.config.metrics.derived_columns

        require_columns(socioeconomic, "socioeconomic", AREA_YEAR_KEY)
        require_columns(metrics, "incident_metrics", AREA_YEAR_KEY)
        ensure_unique_keys(socioeconomic, "socioeconomic")
        ensure_unique_keys(metrics, "incident_metrics")

        # Derived columns are rebuilt after the fill
        left = socioeconomic.drop(columns=[c for c in derived_cols if c in socioeconomic.columns])
        right = metrics.drop(columns=[c for c in derived_cols if c in metrics.columns])
        left, right = align_keys(left), align_keys(right)

        join_how = self.config.reconcile.join_how
        key_coverage = left[AREA_YEAR_KEY].merge(
            right[AREA_YEAR_KEY], on=AREA_YEAR_KEY, how="outer", indicator=True
        )["_merge"]
        incident_only = int((key_coverage == "right_only").sum())
        socio_only = int((key_coverage == "left_only").sum())

        merged = left.merge(
            right,
            on=AREA_YEAR_KEY,
            how=join_how,
            suffixes=("", METRICS_SUFFIX),
        )

        if incident_only > 0:
            action = "kept" if join_how == "outer" else "left out of the final table"
            logger.warning(
                f"{incident_only} area-years have incidents but no socio-economic row; {action}",
                extra={"count": incident_only, "join_how": join_how},
            )

        merged, coalesced, conflicts = self._coalesce_duplicates(merged)

        if population_col not in merged.columns:
            merged[population_col] = pd.array([pd.NA] * len(merged), dtype="Float64")
        merged[population_col] = pd.to_numeric(merged[population_col], errors="coerce").astype(
            "Float64"
        )

        merged, zero_filled = fill_known_zero_counts(merged, count_cols, population_col)
        merged = compute_rates(merged, self.config)

        merged["year"] = merged["year"].astype("int64")
        leading = [*AREA_YEAR_KEY, population_col]
        rest = [c for c in merged.columns if c not in leading]
        table = merged[leading + rest].sort_values(AREA_YEAR_KEY).reset_index(drop=True)
        ensure_unique_keys(table, "reconciled")

        result = ReconciliationResult(
            table=table,
            rows_socioeconomic=len(socioeconomic),
            rows_metrics=len(metrics),
            incident_only_keys=incident_only,
            socioeconomic_only_keys=socio_only,
            keys_zero_filled=zero_filled,
            coalesced_columns=coalesced,
            coalesce_conflicts=conflicts,
        )
        logger.info(
            f"Reconciled {len(table)} area-years with {len(table.columns)} columns",
            extra=result.to_dict(),
        )
        return result

    def _coalesce_duplicates(
        self,
        merged: pd.DataFrame,
    ) -> tuple[pd.DataFrame, list[str], dict[str, int]]:
        """Fold every ``<col>__metrics`` column into ``<col>``."""
        tolerance = self.config.reconcile.coalesce_tolerance
        coalesced: list[str] = []
        conflicts: dict[str, int] = {}

        for dup in [c for c in merged.columns if c.endswith(METRICS_SUFFIX)]:
            col = dup[: -len(METRICS_SUFFIX)]
            merged[col], n_conflicts = coalesce_columns(merged[col], merged[dup], tolerance)
            merged = merged.drop(columns=dup)
            coalesced.append(col)
            if n_conflicts > 0:
                conflicts[col] = n_conflicts
                logger.warning(
                    f"Column '{col}' disagrees between inputs in {n_conflicts} rows; "
                    "keeping the socio-economic value",
                    extra={"column": col, "count": n_conflicts},
                )

        return merged, coalesced, conflicts
