"""
Unit tests for PointAssigner.
"""

import geopandas as gpd
import pandas as pd
import pytest

from crash_pulse.shared.geo import PointAssigner, eligible_coordinates, normalize_polygons
from crash_pulse.validation.schema_enforcer import MixedVintageError, ReconciliationError


@pytest.fixture
def areas(tract_polygons, test_config):
    """Normalized tract layer."""
    return normalize_polygons(tract_polygons, config=test_config).layer


def make_points(coords):
    """Incident frame from (lon, lat) pairs."""
    return pd.DataFrame(
        {
            "collision_id": range(1, len(coords) + 1),
            "longitude": [c[0] for c in coords],
            "latitude": [c[1] for c in coords],
        }
    )


def test_eligible_coordinates():
    """Test null and zero sentinel coordinates."""
    lon = pd.Series([-73.9, None, 0.0, -73.9])
    lat = pd.Series([40.7, 40.7, 40.7, 0.0])

    assert eligible_coordinates(lon, lat).tolist() == [True, False, False, False]


class TestPointAssigner:
    """Test cases for PointAssigner."""

    @pytest.fixture
    def assigner(self, test_config):
        """Create a PointAssigner instance."""
        return PointAssigner(test_config)

    def test_assigns_interior_points(self, assigner, areas):
        """Test that each interior point gets its area."""
        points = make_points([(-73.95, 40.05), (-73.85, 40.05), (-73.75, 40.05)])

        result = assigner.assign(points, areas)

        assert result.assigned["area_id"].tolist() == [
            "36061000100",
            "36061000200",
            "36061000300",
        ]
        assert result.assigned["collision_id"].tolist() == [1, 2, 3]
        assert result.rows_dropped == 0

    def test_point_outside_every_area(self, assigner, areas):
        """Test that unmatched points are dropped and counted."""
        points = make_points([(-73.95, 40.05), (-75.0, 41.0)])

        result = assigner.assign(points, areas)

        assert len(result.assigned) == 1
        assert result.dropped_unmatched == 1

    def test_boundary_point_is_not_within(self, assigner, areas):
        """Test that a point on a shared edge is in neither interior."""
        points = make_points([(-73.9, 40.05)])

        result = assigner.assign(points, areas)

        assert result.assigned.empty
        assert result.dropped_unmatched == 1
        assert result.dropped_ambiguous == 0

    def test_ineligible_coordinates(self, assigner, areas):
        """Test null and zero coordinates."""
        points = make_points([(None, 40.05), (0.0, 40.05), (-73.95, 40.05)])

        result = assigner.assign(points, areas)

        assert result.dropped_ineligible == 2
        assert len(result.assigned) == 1

    def test_overlapping_areas_are_ambiguous(self, assigner, areas):
        """Test that a point inside two areas is excluded, not assigned arbitrarily."""
        extra = gpd.GeoDataFrame(
            {"area_id": ["36061000400"], "vintage": ["new"]},
            geometry=[areas.geometry.iloc[0].buffer(0.01)],
            crs=areas.crs,
        )
        overlapping = pd.concat([areas, extra], ignore_index=True)
        points = make_points([(-73.95, 40.05), (-73.85, 40.05)])
        points.index = [100, 101]

        result = assigner.assign(points, overlapping)

        assert result.dropped_ambiguous == 1
        assert result.ambiguous_index == [100]
        assert result.assigned["area_id"].tolist() == ["36061000200"]

    def test_mixed_vintages_rejected(self, assigner, areas):
        """Test that assignment requires a single-vintage layer."""
        mixed = areas.copy()
        mixed.loc[0, "vintage"] = "old"

        with pytest.raises(MixedVintageError, match="single boundary vintage") as exc_info:
            assigner.assign(make_points([(-73.95, 40.05)]), mixed)

        assert isinstance(exc_info.value, ReconciliationError)
        assert exc_info.value.vintages == ["new", "old"]

    def test_result_independent_of_sharding(self, test_config, areas):
        """Test that shard size and worker count do not change the output."""
        coords = [(-73.95, 40.05), (-73.85, 40.05), (-75.0, 41.0), (-73.75, 40.05)] * 3
        points = make_points(coords)

        sharded = PointAssigner(test_config).assign(points, areas)

        single_config = test_config.model_copy(
            update={
                "assignment": test_config.assignment.model_copy(
                    update={"shard_size": 1000, "max_workers": 1}
                )
            }
        )
        single = PointAssigner(single_config).assign(points, areas)

        assert sharded.shards > 1
        assert single.shards == 1
        pd.testing.assert_frame_equal(sharded.assigned, single.assigned)

    def test_empty_input(self, assigner, areas):
        """Test that no points yields an empty assignment."""
        result = assigner.assign(make_points([]), areas)

        assert result.assigned.empty
        assert "area_id" in result.assigned.columns
        assert result.shards == 0

    def test_input_not_modified(self, assigner, areas):
        """Test that the incident frame is left untouched."""
        points = make_points([(-73.95, 40.05)])
        before = points.copy()

        assigner.assign(points, areas)

        pd.testing.assert_frame_equal(points, before)
