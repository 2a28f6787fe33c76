"""
Unit tests for polygon layer normalization.
"""

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import Polygon, box

from crash_pulse.shared.geo import normalize_area_ids, normalize_polygons
from crash_pulse.shared.geo.normalize import polygonal_part
from crash_pulse.validation.schema_enforcer import DuplicateKeyError, SchemaViolationError


def test_normalize_area_ids_restores_leading_zeros():
    """Test identifiers read as numbers."""
    ids = pd.Series(["1001020100", "36061000100", "1001020100.0", None])

    result = normalize_area_ids(ids, 11)

    assert result.iloc[0] == "01001020100"
    assert result.iloc[1] == "36061000100"
    assert result.iloc[2] == "01001020100"
    assert pd.isna(result.iloc[3])


def test_polygonal_part_repairs_bowtie():
    """Test that a self-intersecting ring becomes a valid polygon."""
    bowtie = Polygon([(0, 0), (1, 1), (1, 0), (0, 1), (0, 0)])
    assert not bowtie.is_valid

    repaired = polygonal_part(bowtie)

    assert repaired is not None
    assert repaired.is_valid
    assert repaired.area > 0


def test_polygonal_part_empty():
    """Test that empty geometries are dropped."""
    assert polygonal_part(Polygon()) is None


class TestNormalizePolygons:
    """Test cases for normalize_polygons."""

    def test_basic_normalization(self, tract_polygons, test_config):
        """Test renaming, vintage tagging and ordering."""
        result = normalize_polygons(tract_polygons, config=test_config)
        layer = result.layer

        assert list(layer.columns) == ["area_id", "geometry", "vintage"]
        assert layer["area_id"].tolist() == ["36061000100", "36061000200", "36061000300"]
        assert (layer["vintage"] == "new").all()
        assert result.crs == "EPSG:4326"
        assert not result.reprojected
        assert result.geometries_dropped == 0

    def test_explicit_vintage(self, tract_polygons, test_config):
        """Test tagging an old-generation layer."""
        result = normalize_polygons(tract_polygons, vintage="old", config=test_config)
        assert result.vintage == "old"
        assert (result.layer["vintage"] == "old").all()

    def test_reprojects_to_target_crs(self, tract_polygons, test_config):
        """Test that a projected layer is brought to the reference CRS."""
        projected = tract_polygons.to_crs("EPSG:2263")

        result = normalize_polygons(projected, config=test_config)

        assert result.reprojected
        assert result.layer.crs.equals("EPSG:4326")
        bounds = result.layer.total_bounds
        assert bounds[0] == pytest.approx(-74.0, abs=1e-6)

    def test_missing_crs_is_assumed(self, tract_polygons, test_config):
        """Test that a layer without CRS gets the configured default."""
        naive = gpd.GeoDataFrame(
            {"GEOID": tract_polygons["GEOID"]}, geometry=list(tract_polygons.geometry)
        )
        assert naive.crs is None

        result = normalize_polygons(naive, config=test_config)

        assert result.layer.crs.equals("EPSG:4326")

    def test_repairs_and_drops_geometries(self, test_config):
        """Test invalid and empty geometry handling."""
        layer = gpd.GeoDataFrame(
            {"GEOID": ["1", "2", "3"]},
            geometry=[
                box(0, 0, 1, 1),
                Polygon([(0, 0), (1, 1), (1, 0), (0, 1), (0, 0)]),
                None,
            ],
            crs="EPSG:4326",
        )

        result = normalize_polygons(layer, config=test_config)

        assert result.geometries_repaired == 1
        assert result.drop_reasons == {"empty_geometry": 1}
        assert result.layer["area_id"].tolist() == ["00000000001", "00000000002"]
        assert result.layer.geometry.is_valid.all()

    def test_missing_id_column(self, tract_polygons, test_config):
        """Test that a layer without the identifier column is rejected."""
        with pytest.raises(SchemaViolationError):
            normalize_polygons(tract_polygons.drop(columns="GEOID"), config=test_config)

    def test_duplicate_ids(self, tract_polygons, test_config):
        """Test that duplicated identifiers are fatal."""
        duplicated = pd.concat([tract_polygons, tract_polygons.iloc[[0]]])

        with pytest.raises(DuplicateKeyError):
            normalize_polygons(duplicated, config=test_config)

    def test_input_not_modified(self, tract_polygons, test_config):
        """Test that the raw layer is left untouched."""
        before = tract_polygons.copy()
        normalize_polygons(tract_polygons, config=test_config)
        assert tract_polygons.equals(before)
