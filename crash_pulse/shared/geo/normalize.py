"""
Crash Pulse - Polygon Layer Normalization

Brings a raw polygon layer to the form every spatial stage relies on:
- identifier column renamed to ``area_id`` and zero-padded
- one vintage tag per area
- a single reference CRS
- topologically valid, polygonal geometries
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import geopandas as gpd
import pandas as pd
from shapely.geometry import GeometryCollection, MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.validation import make_valid

from crash_pulse.shared.config import Settings, Vintage, get_config
from crash_pulse.validation.schema_enforcer import (
    SchemaViolationError,
    ensure_unique_keys,
    require_columns,
)

logger = logging.getLogger(__name__)


@dataclass
class GeometryNormalizationResult:
    """Normalized polygon layer plus what was done to it."""

    layer: gpd.GeoDataFrame
    vintage: str
    crs: str
    rows_input: int
    geometries_repaired: int = 0
    geometries_dropped: int = 0
    reprojected: bool = False
    drop_reasons: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert result to dictionary for diagnostics."""
        return {
            "vintage": self.vintage,
            "crs": self.crs,
            "rows_input": self.rows_input,
            "rows_output": len(self.layer),
            "geometries_repaired": self.geometries_repaired,
            "geometries_dropped": self.geometries_dropped,
            "reprojected": self.reprojected,
            "drop_reasons": self.drop_reasons,
        }


def normalize_area_ids(values: pd.Series, width: int) -> pd.Series:
    """
    Canonical string form of area identifiers.

    Numeric-looking identifiers read as numbers ("36005000100.0") lose their
    float suffix and leading zeros are restored.
    """
    ids = values.astype("string").str.strip()
    ids = ids.str.replace(r"\.0+$", "", regex=True)
    return ids.str.zfill(width)


def polygonal_part(geom: BaseGeometry | None) -> BaseGeometry | None:
    """Repair a geometry and keep only its polygonal components."""
    if geom is None or geom.is_empty:
        return None

    if not geom.is_valid:
        geom = make_valid(geom)

    if isinstance(geom, Polygon | MultiPolygon):
        return geom

    if isinstance(geom, GeometryCollection):
        polygons: list[Polygon] = []
        for part in geom.geoms:
            if isinstance(part, Polygon):
                polygons.append(part)
            elif isinstance(part, MultiPolygon):
                polygons.extend(part.geoms)
        if polygons:
            return polygons[0] if len(polygons) == 1 else MultiPolygon(polygons)

    # Repair collapsed the shape to lines or points
    return None


def normalize_polygons(
    layer: gpd.GeoDataFrame,
    vintage: Vintage | None = None,
    config: Settings | None = None,
) -> GeometryNormalizationResult:
    """
    Normalize a raw polygon layer.

    Args:
        layer: Raw polygon layer (must carry the configured identifier column)
        vintage: Boundary generation of the layer (defaults to geometry.vintage)
        config: Configuration object (uses default if not provided)

    Returns:
        GeometryNormalizationResult with the normalized layer

    Raises:
        SchemaViolationError: If the identifier column is absent
        DuplicateKeyError: If an identifier appears twice after normalization
    """
    config = config or get_config()
    geo_config = config.geometry
    vintage = vintage or geo_config.vintage
    id_col = geo_config.area_id_column
    rows_input = len(layer)

    if id_col not in layer.columns:
        raise SchemaViolationError("polygons", [id_col], list(layer.columns))

    gdf = layer[[id_col, layer.geometry.name]].copy()
    gdf = gdf.rename(columns={id_col: "area_id"})
    if gdf.geometry.name != "geometry":
        gdf = gdf.rename_geometry("geometry")
    require_columns(gdf, "polygons")
    gdf["area_id"] = normalize_area_ids(gdf["area_id"], geo_config.area_id_width)
    gdf["vintage"] = vintage

    drop_reasons: dict[str, int] = {}

    missing_id = gdf["area_id"].isna()
    if missing_id.any():
        drop_reasons["missing_area_id"] = int(missing_id.sum())
        gdf = gdf[~missing_id]

    # CRS
    reprojected = False
    if gdf.crs is None:
        logger.warning(
            f"Polygon layer has no CRS, assuming {geo_config.assume_crs}",
            extra={"assume_crs": geo_config.assume_crs},
        )
        gdf = gdf.set_crs(geo_config.assume_crs)
    if not gdf.crs.equals(geo_config.target_crs):
        logger.info(
            f"Reprojecting polygon layer from {gdf.crs.to_string()} to {geo_config.target_crs}"
        )
        gdf = gdf.to_crs(geo_config.target_crs)
        reprojected = True

    # Validity
    null_geom = gdf.geometry.isna() | gdf.geometry.is_empty
    if null_geom.any():
        drop_reasons["empty_geometry"] = int(null_geom.sum())
        gdf = gdf[~null_geom]

    invalid = ~gdf.geometry.is_valid
    repaired = int(invalid.sum())
    if repaired > 0:
        logger.warning(f"Repairing {repaired} invalid geometries", extra={"count": repaired})
        gdf.loc[invalid, "geometry"] = gdf.loc[invalid, "geometry"].apply(polygonal_part)

    non_polygonal = gdf.geometry.isna()
    if non_polygonal.any():
        drop_reasons["unrepairable_geometry"] = int(non_polygonal.sum())
        gdf = gdf[~non_polygonal]

    ensure_unique_keys(gdf, "polygons", ["area_id"])

    gdf = gdf.sort_values("area_id").reset_index(drop=True)
    dropped = sum(drop_reasons.values())

    logger.info(
        f"Normalized {len(gdf)} {vintage}-vintage areas",
        extra={
            "rows_input": rows_input,
            "rows_output": len(gdf),
            "repaired": repaired,
            "dropped": dropped,
        },
    )

    return GeometryNormalizationResult(
        layer=gdf,
        vintage=vintage,
        crs=gdf.crs.to_string(),
        rows_input=rows_input,
        geometries_repaired=repaired,
        geometries_dropped=dropped,
        reprojected=reprojected,
        drop_reasons=drop_reasons,
    )
