"""
Crash Pulse - Boundary Crosswalk Resolver

Moves survey estimates published on old-generation (2010) tracts onto
new-generation (2020) tracts, so every year of the survey shares the area
scheme used by the incident assignment.

Steps, per survey year:
1. Classify the year as old- or new-vintage. An explicit tag from
   ``crosswalk.vintages`` wins; untagged years are matched against the
   crosswalk's old identifiers when auto-detection is enabled: a year is old
   only if every identifier is an old area.
2. Old-vintage years only: join each estimate to every crosswalk edge of its
   old area, apportion by edge weight and sum per (new area, year, variable).
   Intensive variables (medians) are weight-averaged instead of summed.
3. Recombine with the untouched new-vintage years.
4. Compare the conserved variable's total before and after; a mismatch is
   logged and recorded, never fatal.

Old areas without any edge lose their value; the loss is counted per year.
Each year is resolved on its own, and a failing year is reported while the
others go through.

Usage:
    from crash_pulse.datasets.acs.crosswalk import CrosswalkResolver

    resolver = CrosswalkResolver(crosswalk_df, intensive_variables=["median_income"])
    resolution = resolver.resolve(survey_df)
    estimates_df = resolution.estimates
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

from crash_pulse.shared.config import Settings, Vintage, get_config
from crash_pulse.shared.geo import normalize_area_ids
from crash_pulse.validation.schema_enforcer import (
    REQUIRED_COLUMNS,
    VintageResolutionError,
    ensure_unique_keys,
    require_columns,
)

logger = logging.getLogger(__name__)

ESTIMATE_KEY = ["area_id", "year", "variable_name"]
EDGE_KEY = ["old_area_id", "new_area_id"]


# =============================================================================
# Result Types
# =============================================================================


@dataclass
class CrosswalkReport:
    """Quality of the crosswalk itself."""

    edges: int
    old_areas: int
    new_areas: int
    weights_clipped: int = 0
    weights_undefined: int = 0
    weight_sum_deviations: int = 0
    max_weight_sum_deviation: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert report to dictionary for diagnostics."""
        return {
            "edges": self.edges,
            "old_areas": self.old_areas,
            "new_areas": self.new_areas,
            "weights_clipped": self.weights_clipped,
            "weights_undefined": self.weights_undefined,
            "weight_sum_deviations": self.weight_sum_deviations,
            "max_weight_sum_deviation": self.max_weight_sum_deviation,
        }


@dataclass
class YearResolution:
    """How one survey year was resolved."""

    year: int
    vintage: Vintage
    vintage_source: str  # "tag" or "detected"
    rows_input: int
    rows_output: int
    redistributed: bool = False
    unmatched_old_areas: int = 0
    lost_mass: float = 0.0
    conserved_before: float | None = None
    conserved_after: float | None = None
    relative_difference: float | None = None
    conservation_ok: bool | None = None
    # Identifiers checked / found among old areas when the vintage was detected
    ids_checked: int | None = None
    ids_matched: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert resolution to dictionary for diagnostics."""
        return {
            "year": self.year,
            "vintage": self.vintage,
            "vintage_source": self.vintage_source,
            "rows_input": self.rows_input,
            "rows_output": self.rows_output,
            "redistributed": self.redistributed,
            "unmatched_old_areas": self.unmatched_old_areas,
            "lost_mass": self.lost_mass,
            "conserved_before": self.conserved_before,
            "conserved_after": self.conserved_after,
            "relative_difference": self.relative_difference,
            "conservation_ok": self.conservation_ok,
            "ids_checked": self.ids_checked,
            "ids_matched": self.ids_matched,
        }


@dataclass
class CrosswalkResolution:
    """Estimates on new-generation areas plus per-year diagnostics."""

    estimates: pd.DataFrame
    years: list[YearResolution] = field(default_factory=list)
    failed_years: dict[int, str] = field(default_factory=dict)
    crosswalk_report: CrosswalkReport | None = None

    @property
    def success(self) -> bool:
        """True when every year was resolved."""
        return not self.failed_years

    def to_dict(self) -> dict[str, Any]:
        """Convert resolution to dictionary for diagnostics."""
        return {
            "rows_output": len(self.estimates),
            "years": [y.to_dict() for y in self.years],
            "failed_years": {str(k): v for k, v in self.failed_years.items()},
            "crosswalk": self.crosswalk_report.to_dict() if self.crosswalk_report else None,
        }


# =============================================================================
# Crosswalk Loading
# =============================================================================


def prepare_crosswalk(
    raw: pd.DataFrame,
    config: Settings | None = None,
) -> tuple[pd.DataFrame, CrosswalkReport]:
    """
    Map a relationship file onto crosswalk edges with weights.

    weight = overlap_land_quantity / old_area_land_quantity when the old
    area's land quantity is positive, else 0. Weights outside [0, 1] are
    clipped. Per-old-area weight sums are compared with 1 and deviations are
    reported, not fixed.

    Args:
        raw: Relationship table (source or canonical column names)
        config: Configuration object (uses default if not provided)

    Returns:
        (edges, report); edges hold old_area_id, new_area_id, weight

    Raises:
        SchemaViolationError: If a required column is absent
        DuplicateKeyError: If an (old, new) pair appears twice
    """
    config = config or get_config()
    cw_config = config.crosswalk
    width = config.geometry.area_id_width

    mappings = {k: v for k, v in cw_config.column_mappings.items() if k in raw.columns}
    df = raw.rename(columns=mappings)
    require_columns(df, "crosswalk")

    edges = df[REQUIRED_COLUMNS["crosswalk"]].copy()
    edges["old_area_id"] = normalize_area_ids(edges["old_area_id"], width)
    edges["new_area_id"] = normalize_area_ids(edges["new_area_id"], width)
    edges = edges.dropna(subset=EDGE_KEY)
    ensure_unique_keys(edges, "crosswalk", EDGE_KEY)

    land = pd.to_numeric(edges["old_area_land_quantity"], errors="coerce")
    overlap = pd.to_numeric(edges["overlap_land_quantity"], errors="coerce")

    weight = pd.Series(0.0, index=edges.index)
    has_land = land > 0
    weight[has_land] = overlap[has_land] / land[has_land]

    undefined = weight.isna()
    weights_undefined = int(undefined.sum())
    weight = weight.fillna(0.0)

    out_of_range = (weight < 0) | (weight > 1)
    weights_clipped = int(out_of_range.sum())
    if weights_clipped > 0:
        logger.warning(
            f"Clipping {weights_clipped} crosswalk weights to [0, 1]",
            extra={"count": weights_clipped},
        )
    edges["weight"] = weight.clip(0.0, 1.0)

    sums = edges.groupby("old_area_id")["weight"].sum()
    deviation = (sums - 1.0).abs()
    deviating = int((deviation > cw_config.weight_sum_tolerance).sum())
    if deviating > 0:
        logger.warning(
            f"{deviating} old areas have crosswalk weights not summing to 1",
            extra={"count": deviating, "max_deviation": float(deviation.max())},
        )

    edges = edges[[*EDGE_KEY, "weight"]].sort_values(EDGE_KEY).reset_index(drop=True)
    report = CrosswalkReport(
        edges=len(edges),
        old_areas=int(edges["old_area_id"].nunique()),
        new_areas=int(edges["new_area_id"].nunique()),
        weights_clipped=weights_clipped,
        weights_undefined=weights_undefined,
        weight_sum_deviations=deviating,
        max_weight_sum_deviation=float(deviation.max()) if len(deviation) else 0.0,
    )

    logger.info(f"Loaded crosswalk with {len(edges)} edges", extra=report.to_dict())
    return edges, report


# =============================================================================
# Resolver
# =============================================================================


class CrosswalkResolver:
    """
    Resolves survey estimates onto new-generation areas.

    The edge table is prepared once and treated as read-only; each call to
    resolve() returns new tables.
    """

    def __init__(
        self,
        crosswalk: pd.DataFrame,
        config: Settings | None = None,
        intensive_variables: list[str] | None = None,
    ):
        """
        Initialize the resolver.

        Args:
            crosswalk: Raw relationship table
            config: Configuration object (uses default if not provided)
            intensive_variables: Variables redistributed as weighted means
        """
        self.config = config or get_config()
        self.edges, self.report = prepare_crosswalk(crosswalk, self.config)
        self.intensive_variables = set(intensive_variables or [])
        self._old_ids = set(self.edges["old_area_id"])

    def match_old_areas(self, area_ids: pd.Series) -> tuple[int, int]:
        """
        Count how many of a year's identifiers are old areas of the crosswalk.

        Returns:
            (identifiers checked, identifiers found among old areas)
        """
        ids = area_ids.dropna().unique()
        resolved = sum(1 for area_id in ids if area_id in self._old_ids)
        return len(ids), resolved

    def classify_year(
        self,
        year: int,
        area_ids: pd.Series,
        vintages: dict[int, Vintage] | None = None,
    ) -> tuple[Vintage, str]:
        """
        Decide which boundary generation a survey year uses.

        Unchanged tracts keep their identifier across generations, so a
        new-generation year normally has some identifiers that are also old
        areas. Any identifier unknown to the crosswalk therefore marks the
        year as new; only a year whose identifiers are all old areas is old.

        Args:
            year: Survey year
            area_ids: Area identifiers present in that year
            vintages: Explicit tags (default: crosswalk.vintages)

        Returns:
            (vintage, source) where source is "tag" or "detected"

        Raises:
            VintageResolutionError: If the year is untagged and cannot be
                detected (auto-detection disabled or no identifiers)
        """
        cw_config = self.config.crosswalk
        vintages = cw_config.vintages if vintages is None else vintages

        if year in vintages:
            return vintages[year], "tag"

        if not cw_config.auto_detect:
            raise VintageResolutionError(year, "no vintage tag and auto-detection is disabled")

        checked, resolved = self.match_old_areas(area_ids)
        if checked == 0:
            raise VintageResolutionError(year, "no area identifiers to check")

        vintage: Vintage = "old" if resolved == checked else "new"
        logger.info(
            f"Checked {checked} identifiers for {year}: {resolved} resolve to old areas, "
            f"classified as {vintage}",
            extra={"year": year, "checked": checked, "resolved": resolved, "vintage": vintage},
        )
        if 0 < resolved < checked:
            logger.warning(
                f"{year}: {checked - resolved} of {checked} identifiers are unknown to the "
                "crosswalk; treating the year as new-vintage",
                extra={"year": year, "checked": checked, "resolved": resolved},
            )
        return vintage, "detected"

    def redistribute(self, estimates: pd.DataFrame) -> tuple[pd.DataFrame, dict[str, Any]]:
        """
        Apportion old-vintage estimates onto new areas.

        Args:
            estimates: Long estimates keyed by old area identifiers

        Returns:
            (estimates keyed by new area, stats on unmatched old areas)
        """
        conserved = self.config.crosswalk.conserved_variable

        merged = estimates.merge(
            self.edges,
            left_on="area_id",
            right_on="old_area_id",
            how="left",
        )
        unmatched = merged["new_area_id"].isna()
        lost = merged[unmatched]
        lost_conserved = lost.loc[lost["variable_name"] == conserved, "estimate_value"]
        stats = {
            "unmatched_old_areas": int(lost["area_id"].nunique()),
            "lost_mass": float(lost_conserved.sum()),
        }
        if stats["unmatched_old_areas"] > 0:
            logger.warning(
                f"{stats['unmatched_old_areas']} old areas have no crosswalk edges; "
                f"their values are lost",
                extra=stats,
            )

        matched = merged[~unmatched].copy()
        value = matched["estimate_value"]
        matched["weighted"] = value * matched["weight"]
        matched["present_weight"] = matched["weight"].where(value.notna(), 0.0)

        grouped = matched.groupby(["new_area_id", "year", "variable_name"], sort=True)
        sums = pd.DataFrame(
            {
                "weighted": grouped["weighted"].sum(min_count=1),
                "present_weight": grouped["present_weight"].sum(),
            }
        ).reset_index()

        intensive = sums["variable_name"].isin(self.intensive_variables)
        mean = sums["weighted"] / sums["present_weight"].where(sums["present_weight"] > 0)
        sums["estimate_value"] = np.where(intensive, mean, sums["weighted"])

        result = sums.rename(columns={"new_area_id": "area_id"})
        result = result[[*ESTIMATE_KEY, "estimate_value"]]
        return result, stats

    def resolve(
        self,
        estimates: pd.DataFrame,
        vintages: dict[int, Vintage] | None = None,
    ) -> CrosswalkResolution:
        """
        Resolve every survey year onto new-generation areas.

        Args:
            estimates: Long survey table (area_id, year, variable_name, estimate_value)
            vintages: Explicit vintage tags, merged over crosswalk.vintages

        Returns:
            CrosswalkResolution; failing years are listed in failed_years
            and left out of the estimates
        """
        require_columns(estimates, "survey")
        ensure_unique_keys(estimates, "survey", ESTIMATE_KEY)

        tags = {**self.config.crosswalk.vintages, **(vintages or {})}
        parts: list[pd.DataFrame] = []
        years: list[YearResolution] = []
        failed: dict[int, str] = {}

        for year, year_df in estimates.groupby("year", sort=True):
            year = int(year)
            try:
                part, resolution = self._resolve_year(year, year_df, tags)
            except Exception as e:
                logger.error(
                    f"Crosswalk resolution failed for {year}: {e}",
                    extra={"year": year, "error": str(e)},
                    exc_info=not isinstance(e, VintageResolutionError),
                )
                failed[year] = str(e)
                continue
            parts.append(part)
            years.append(resolution)

        if parts:
            combined = pd.concat(parts, ignore_index=True)
        else:
            combined = estimates.iloc[0:0][[*ESTIMATE_KEY, "estimate_value"]]

        combined = combined.astype({"year": "int64", "estimate_value": "float64"})
        combined = combined.sort_values(ESTIMATE_KEY).reset_index(drop=True)
        ensure_unique_keys(combined, "survey_resolved", ESTIMATE_KEY)

        logger.info(
            f"Resolved {len(years)} survey years onto new areas, {len(failed)} failed",
            extra={
                "resolved_years": [y.year for y in years],
                "failed_years": sorted(failed),
                "rows_output": len(combined),
            },
        )

        return CrosswalkResolution(
            estimates=combined,
            years=years,
            failed_years=failed,
            crosswalk_report=self.report,
        )

    def _resolve_year(
        self,
        year: int,
        year_df: pd.DataFrame,
        tags: dict[int, Vintage],
    ) -> tuple[pd.DataFrame, YearResolution]:
        """Classify and, if needed, redistribute one year."""
        vintage, source = self.classify_year(year, year_df["area_id"], tags)
        detection: dict[str, Any] = {}
        if source == "detected":
            checked, resolved = self.match_old_areas(year_df["area_id"])
            detection = {"ids_checked": checked, "ids_matched": resolved}
        year_df = year_df[[*ESTIMATE_KEY, "estimate_value"]]

        if vintage == "new":
            return year_df, YearResolution(
                year=year,
                vintage=vintage,
                vintage_source=source,
                rows_input=len(year_df),
                rows_output=len(year_df),
                **detection,
            )

        redistributed, stats = self.redistribute(year_df)
        resolution = YearResolution(
            year=year,
            vintage=vintage,
            vintage_source=source,
            rows_input=len(year_df),
            rows_output=len(redistributed),
            redistributed=True,
            **stats,
            **detection,
        )
        self._check_conservation(year_df, redistributed, resolution)
        return redistributed, resolution

    def _check_conservation(
        self,
        before: pd.DataFrame,
        after: pd.DataFrame,
        resolution: YearResolution,
    ) -> None:
        """Record how well the conserved total survived redistribution."""
        cw_config = self.config.crosswalk
        conserved = cw_config.conserved_variable

        before_values = before.loc[before["variable_name"] == conserved, "estimate_value"]
        if before_values.notna().sum() == 0:
            return

        total_before = float(before_values.sum())
        total_after = float(after.loc[after["variable_name"] == conserved, "estimate_value"].sum())
        difference = abs(total_after - total_before)
        relative = difference / abs(total_before) if total_before != 0 else difference

        resolution.conserved_before = total_before
        resolution.conserved_after = total_after
        resolution.relative_difference = relative
        resolution.conservation_ok = relative <= cw_config.conservation_tolerance

        if not resolution.conservation_ok:
            logger.warning(
                f"Conservation check failed for {resolution.year}: {conserved} "
                f"{total_before:.1f} before, {total_after:.1f} after",
                extra={
                    "year": resolution.year,
                    "variable": conserved,
                    "before": total_before,
                    "after": total_after,
                    "relative_difference": relative,
                    "lost_mass": resolution.lost_mass,
                },
            )
