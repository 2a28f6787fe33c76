"""
Crash Pulse - Collisions Dataset

NYC motor vehicle collisions, aggregated to census tracts.

Components:
    - CollisionPreprocessor: Renames, coerces and drops unlocatable records
    - CollisionFeatureBuilder: Counts collisions per (area_id, year)

Data Source:
    NYC Open Data, Motor Vehicle Collisions - Crashes
    https://data.cityofnewyork.us/Public-Safety/Motor-Vehicle-Collisions-Crashes/h9gi-nx95

Usage:
    from crash_pulse.datasets.collisions import CollisionPreprocessor, CollisionFeatureBuilder

    preprocessor = CollisionPreprocessor()
    preprocessor.run(raw_df)
    incidents_df = preprocessor.get_data()

    # ... assign incidents to areas ...

    builder = CollisionFeatureBuilder()
    builder.run(assigned_df)
    counts_df = builder.get_data()
"""

from crash_pulse.datasets.collisions.features import (
    CollisionFeatureBuilder,
    build_collision_features,
    parse_timestamps,
)
from crash_pulse.datasets.collisions.preprocess import (
    CollisionPreprocessor,
    preprocess_collision_data,
)

__all__ = [
    "CollisionPreprocessor",
    "CollisionFeatureBuilder",
    "preprocess_collision_data",
    "build_collision_features",
    "parse_timestamps",
]
