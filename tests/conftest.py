"""
Crash Pulse - Pytest Configuration and Fixtures

Shared fixtures for all tests:
- Configuration fixtures
- A small synthetic tract layer, crosswalk, survey and collision set

Areas used throughout (2020 tracts):
    X  36061000100   box(-74.0, 40.0, -73.9, 40.1)
    Y  36061000200   box(-73.9, 40.0, -73.8, 40.1)
    T1 36061000300   box(-73.8, 40.0, -73.7, 40.1)

Crosswalk (2010 -> 2020):
    A  36061009900 -> X (600 / 1000), Y (400 / 1000)
    B  36061009800 -> T1 (2000 / 2000)
"""

import os
from collections.abc import Generator
from pathlib import Path
from typing import Any

import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import box

# Set test environment
os.environ["CP_ENVIRONMENT"] = "test"

AREA_X = "36061000100"
AREA_Y = "36061000200"
AREA_T1 = "36061000300"
OLD_A = "36061009900"
OLD_B = "36061009800"

# Interior points of each area
POINT_X = (-73.95, 40.05)
POINT_Y = (-73.85, 40.05)
POINT_T1 = (-73.75, 40.05)

CATEGORY_SOURCES = [
    "number_of_persons_injured",
    "number_of_persons_killed",
    "number_of_pedestrians_injured",
    "number_of_pedestrians_killed",
    "number_of_cyclist_injured",
    "number_of_cyclist_killed",
    "number_of_motorist_injured",
    "number_of_motorist_killed",
]


def make_collisions(rows: list[dict[str, Any]]) -> pd.DataFrame:
    """Raw collision records; category columns not given default to 0."""
    records = []
    for i, row in enumerate(rows):
        record = {"collision_id": i + 1, **{col: 0 for col in CATEGORY_SOURCES}}
        record.update(row)
        records.append(record)
    return pd.DataFrame(records)


# =============================================================================
# Path Fixtures
# =============================================================================


@pytest.fixture
def project_root() -> Path:
    """Get the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def configs_dir(project_root: Path) -> Path:
    """Get the configs directory."""
    return project_root / "configs"


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def test_config() -> Any:
    """Get test configuration."""
    from crash_pulse.shared.config import reload_config

    # Ensure fresh config for tests
    return reload_config("test")


@pytest.fixture
def variable_mapping() -> Any:
    """The shipped acs_v1 variable mapping."""
    from crash_pulse.datasets.acs.variables import load_variable_mapping

    return load_variable_mapping("acs_v1")


# =============================================================================
# Data Fixtures
# =============================================================================


@pytest.fixture
def collision_factory() -> Any:
    """Builder of raw collision frames (see make_collisions)."""
    return make_collisions


@pytest.fixture
def tract_polygons() -> gpd.GeoDataFrame:
    """Raw 2020 tract layer, shapefile style (numeric-looking GEOID)."""
    return gpd.GeoDataFrame(
        {
            "GEOID": [AREA_X, AREA_Y, AREA_T1],
            "NAMELSAD": ["Census Tract 1", "Census Tract 2", "Census Tract 3"],
        },
        geometry=[
            box(-74.0, 40.0, -73.9, 40.1),
            box(-73.9, 40.0, -73.8, 40.1),
            box(-73.8, 40.0, -73.7, 40.1),
        ],
        crs="EPSG:4326",
    )


@pytest.fixture
def raw_crosswalk() -> pd.DataFrame:
    """Raw tract relationship file, source column names."""
    return pd.DataFrame(
        {
            "GEOID_TRACT_10": [OLD_A, OLD_A, OLD_B],
            "GEOID_TRACT_20": [AREA_X, AREA_Y, AREA_T1],
            "AREALAND_TRACT_10": [1000, 1000, 2000],
            "AREALAND_PART": [600, 400, 2000],
        }
    )


@pytest.fixture
def raw_survey() -> pd.DataFrame:
    """
    Raw long survey table.

    2018 is on 2010 tracts (tagged old); 2020 and 2021 are on 2020 tracts
    (tagged new). T1 has zero population in 2020.
    """
    rows = [
        (OLD_A, 2018, "B01003_001", 1000.0),
        (OLD_A, 2018, "B19013_001", 50000.0),
        (OLD_B, 2018, "B01003_001", 500.0),
        (OLD_B, 2018, "B19013_001", 40000.0),
        (AREA_X, 2020, "B01003_001", 650.0),
        (AREA_Y, 2020, "B01003_001", 350.0),
        (AREA_T1, 2020, "B01003_001", 0.0),
        (AREA_X, 2021, "B01003_001", 700.0),
        (AREA_Y, 2021, "B01003_001", 300.0),
        (AREA_T1, 2021, "B01003_001", 200.0),
    ]
    return pd.DataFrame(rows, columns=["geoid", "year", "variable", "estimate"])


@pytest.fixture
def raw_collisions() -> pd.DataFrame:
    """
    Raw collision records.

    Assignable: X 2018 (1), X 2021 (2, one injury), T1 2020 (3).
    Not counted: zero coordinate, missing latitude, outside every area,
    unparseable timestamp.
    """
    return make_collisions(
        [
            {
                "crash_date": "2018-06-01T08:00:00",
                "longitude": POINT_X[0],
                "latitude": POINT_X[1],
            },
            {
                "crash_date": "2021-02-10T12:30:00",
                "longitude": POINT_X[0],
                "latitude": POINT_X[1],
                "number_of_persons_injured": 1,
                "number_of_motorist_injured": 1,
            },
            {"crash_date": "2021-11-03T17:45:00", "longitude": -73.91, "latitude": 40.09},
            {
                "crash_date": "2020-03-01T09:00:00",
                "longitude": POINT_T1[0],
                "latitude": POINT_T1[1],
            },
            {"crash_date": "2020-05-15T22:10:00", "longitude": -73.71, "latitude": 40.01},
            {"crash_date": "2020-12-31T23:59:00", "longitude": -73.79, "latitude": 40.09},
            {"crash_date": "2021-01-01T00:00:00", "longitude": 0.0, "latitude": 40.05},
            {"crash_date": "2021-01-02T00:00:00", "longitude": POINT_Y[0], "latitude": None},
            {"crash_date": "2021-01-03T00:00:00", "longitude": -75.0, "latitude": 41.0},
            {"crash_date": "not a date", "longitude": POINT_Y[0], "latitude": POINT_Y[1]},
        ]
    )


@pytest.fixture
def pipeline_inputs(
    raw_collisions: pd.DataFrame,
    raw_survey: pd.DataFrame,
    tract_polygons: gpd.GeoDataFrame,
    raw_crosswalk: pd.DataFrame,
) -> Any:
    """All four upstream tables."""
    from crash_pulse.reconcile.pipeline import PipelineInputs

    return PipelineInputs(
        incidents=raw_collisions,
        survey=raw_survey,
        polygons=tract_polygons,
        crosswalk=raw_crosswalk,
    )


# =============================================================================
# Cleanup Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def cleanup_env() -> Generator[None, None, None]:
    """Clean up environment variables after each test."""
    original_env = os.environ.copy()
    yield
    # Restore original environment
    os.environ.clear()
    os.environ.update(original_env)
