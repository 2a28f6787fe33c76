"""
Crash Pulse - Point-to-Area Assignment

Spatially joins incident points to a normalized polygon layer using a strict
point-within-polygon test.

- Points with null or degenerate (zero) coordinates are ineligible.
- A point inside no polygon is dropped and counted.
- A point inside more than one polygon means the layer's areas overlap; it is
  flagged, counted and excluded rather than assigned arbitrarily.

The point set is split into shards that are joined independently against the
same read-only polygon layer, optionally on a thread pool. Shards are
reassembled in order, so the output does not depend on the worker count.

Usage:
    from crash_pulse.shared.geo import PointAssigner

    assigner = PointAssigner()
    result = assigner.assign(incidents_df, normalized.layer)
    assigned_df = result.assigned
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

import geopandas as gpd
import numpy as np
import pandas as pd

from crash_pulse.shared.config import Settings, get_config
from crash_pulse.validation.schema_enforcer import MixedVintageError, require_columns

logger = logging.getLogger(__name__)


@dataclass
class AssignmentResult:
    """Assigned incidents plus diagnostics on the ones that were not assigned."""

    assigned: pd.DataFrame
    rows_input: int
    dropped_ineligible: int = 0
    dropped_unmatched: int = 0
    dropped_ambiguous: int = 0
    ambiguous_index: list[Any] = field(default_factory=list)
    shards: int = 0

    @property
    def rows_dropped(self) -> int:
        """Total incidents not assigned to an area."""
        return self.dropped_ineligible + self.dropped_unmatched + self.dropped_ambiguous

    def to_dict(self) -> dict[str, Any]:
        """Convert result to dictionary for diagnostics."""
        return {
            "rows_input": self.rows_input,
            "rows_assigned": len(self.assigned),
            "dropped_ineligible": self.dropped_ineligible,
            "dropped_unmatched": self.dropped_unmatched,
            "dropped_ambiguous": self.dropped_ambiguous,
            "ambiguous_index": [str(i) for i in self.ambiguous_index[:50]],
            "shards": self.shards,
        }


def eligible_coordinates(lon: pd.Series, lat: pd.Series) -> pd.Series:
    """Mask of coordinates that are present and not the zero sentinel."""
    lon = pd.to_numeric(lon, errors="coerce")
    lat = pd.to_numeric(lat, errors="coerce")
    return lon.notna() & lat.notna() & (lon != 0) & (lat != 0)


class PointAssigner:
    """Assigns incident points to the single area whose interior contains them."""

    def __init__(self, config: Settings | None = None):
        """
        Initialize the assigner.

        Args:
            config: Configuration object (uses default if not provided)
        """
        self.config = config or get_config()

    def assign(self, incidents: pd.DataFrame, polygons: gpd.GeoDataFrame) -> AssignmentResult:
        """
        Assign each incident to exactly one area.

        Args:
            incidents: Incidents with ``longitude`` and ``latitude``
            polygons: Normalized polygon layer with ``area_id`` (one vintage)

        Returns:
            AssignmentResult whose ``assigned`` frame holds the input columns
            plus ``area_id``, in input order

        Raises:
            SchemaViolationError: If a required column is absent
            MixedVintageError: If the polygon layer mixes vintages
        """
        require_columns(incidents, "incidents", ["longitude", "latitude"])
        require_columns(polygons, "polygons")

        if "vintage" in polygons.columns and polygons["vintage"].nunique() > 1:
            raise MixedVintageError("polygons", list(polygons["vintage"].unique()))

        assign_config = self.config.assignment
        rows_input = len(incidents)

        incidents = incidents.drop(columns=["area_id"], errors="ignore")
        eligible = eligible_coordinates(incidents["longitude"], incidents["latitude"])
        positions = np.flatnonzero(eligible.to_numpy())
        dropped_ineligible = rows_input - len(positions)

        points = gpd.GeoDataFrame(
            {"position": positions},
            geometry=gpd.points_from_xy(
                pd.to_numeric(incidents["longitude"], errors="coerce").to_numpy()[positions],
                pd.to_numeric(incidents["latitude"], errors="coerce").to_numpy()[positions],
            ),
            crs=assign_config.points_crs,
        )
        if polygons.crs is not None and not points.crs.equals(polygons.crs):
            points = points.to_crs(polygons.crs)

        areas = polygons[["area_id", "geometry"]]
        # Build the spatial index once, before shards share the layer
        _ = areas.sindex

        shard_size = assign_config.shard_size
        shards = [points.iloc[i : i + shard_size] for i in range(0, len(points), shard_size)]
        logger.info(
            f"Assigning {len(points)} points to {len(areas)} areas in {len(shards)} shards",
            extra={"points": len(points), "areas": len(areas), "shards": len(shards)},
        )

        if assign_config.max_workers > 1 and len(shards) > 1:
            with ThreadPoolExecutor(max_workers=assign_config.max_workers) as executor:
                matches = list(executor.map(lambda shard: self._join_shard(shard, areas), shards))
        else:
            matches = [self._join_shard(shard, areas) for shard in shards]

        if matches:
            matched = pd.concat(matches, ignore_index=True)
        else:
            matched = pd.DataFrame(
                {"position": pd.Series(dtype="int64"), "area_id": pd.Series(dtype="object")}
            )

        match_counts = matched.groupby("position")["area_id"].count()
        single = match_counts.index[match_counts == 1]
        multiple = match_counts.index[match_counts > 1]

        dropped_ambiguous = len(multiple)
        dropped_unmatched = len(positions) - len(match_counts)
        ambiguous_index = list(incidents.index[multiple.to_numpy(dtype="int64")])

        if dropped_ambiguous > 0:
            logger.warning(
                f"{dropped_ambiguous} points fall inside more than one area; excluded",
                extra={"count": dropped_ambiguous, "sample_index": ambiguous_index[:10]},
            )

        single_matches = matched[matched["position"].isin(single)]
        area_by_position = single_matches.set_index("position")["area_id"]
        keep = np.sort(single.to_numpy(dtype="int64"))
        assigned = incidents.iloc[keep].copy()
        assigned["area_id"] = area_by_position.loc[keep].to_numpy()

        result = AssignmentResult(
            assigned=assigned,
            rows_input=rows_input,
            dropped_ineligible=dropped_ineligible,
            dropped_unmatched=dropped_unmatched,
            dropped_ambiguous=dropped_ambiguous,
            ambiguous_index=ambiguous_index,
            shards=len(shards),
        )

        logger.info(
            f"Assigned {len(assigned)} of {rows_input} points",
            extra=result.to_dict(),
        )
        return result

    def _join_shard(self, shard: gpd.GeoDataFrame, areas: gpd.GeoDataFrame) -> pd.DataFrame:
        """Join one shard; returns one row per (point, containing area)."""
        joined = gpd.sjoin(shard, areas, how="inner", predicate=self.config.assignment.predicate)
        return pd.DataFrame(
            {
                "position": joined["position"].to_numpy(dtype="int64"),
                "area_id": joined["area_id"].to_numpy(),
            }
        )
