"""
Crash Pulse - Base Classes for Datasets

Abstract base classes that all source stages inherit from.
These provide a consistent interface for:
- Data preprocessing (BasePreprocessor)
- Feature building (BaseFeatureBuilder)

Usage:
    from crash_pulse.datasets.base import BasePreprocessor, BaseFeatureBuilder

    class CollisionPreprocessor(BasePreprocessor):
        def transform(self, df: pd.DataFrame) -> pd.DataFrame:
            ...
"""

from crash_pulse.datasets.base.feature_builder import (
    BaseFeatureBuilder,
    FeatureBuildResult,
    FeatureDefinition,
)
from crash_pulse.datasets.base.preprocessor import BasePreprocessor, PreprocessingResult

__all__ = [
    "BasePreprocessor",
    "PreprocessingResult",
    "BaseFeatureBuilder",
    "FeatureBuildResult",
    "FeatureDefinition",
]
