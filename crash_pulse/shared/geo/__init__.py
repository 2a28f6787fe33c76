"""
Crash Pulse - Geographic Utilities

Geographic processing for area-level aggregation:
- Polygon layer validation, repair and reprojection
- Point-to-area assignment (point within polygon)
"""

from crash_pulse.shared.geo.assign import AssignmentResult, PointAssigner, eligible_coordinates
from crash_pulse.shared.geo.normalize import (
    GeometryNormalizationResult,
    normalize_area_ids,
    normalize_polygons,
)

__all__ = [
    "normalize_polygons",
    "normalize_area_ids",
    "GeometryNormalizationResult",
    "PointAssigner",
    "AssignmentResult",
    "eligible_coordinates",
]
