"""
Crash Pulse - Survey Estimate Preprocessor

Cleans the long-format ACS estimate table (one row per area, year and
source variable).

Transformations:
    - Column renaming to canonical names (geoid -> area_id, ...)
    - Zero-padded area identifiers, lower-case variable identifiers
    - Integer years and float estimates
    - Exact duplicate rows dropped; conflicting duplicates are fatal

Margins of error are not carried.

Usage:
    from crash_pulse.datasets.acs.preprocess import SurveyPreprocessor

    preprocessor = SurveyPreprocessor()
    result = preprocessor.run(raw_df)
    survey_df = preprocessor.get_data()
"""

from __future__ import annotations

import logging
from typing import Any

import pandas as pd

from crash_pulse.datasets.base import BasePreprocessor
from crash_pulse.shared.config import Settings
from crash_pulse.shared.geo import normalize_area_ids
from crash_pulse.validation.schema_enforcer import REQUIRED_COLUMNS, ensure_unique_keys

logger = logging.getLogger(__name__)

SURVEY_KEY = ["area_id", "year", "variable_name"]


class SurveyPreprocessor(BasePreprocessor):
    """Preprocessor for long-format survey estimates."""

    def get_dataset_name(self) -> str:
        """Return dataset name."""
        return "survey"

    def get_required_columns(self) -> list[str]:
        """Return required columns after renaming."""
        return REQUIRED_COLUMNS["survey"]

    def get_column_mappings(self) -> dict[str, str]:
        """Return column name mappings."""
        return self.config.survey.column_mappings

    def get_dtype_mappings(self) -> dict[str, str]:
        """Return data type mappings."""
        return {
            "year": "int",
            "estimate_value": "float",
            "variable_name": "string",
        }

    def transform(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Apply survey-specific transformations.

        Args:
            df: DataFrame with canonical column names

        Returns:
            Survey estimates unique on (area_id, year, variable_name)
        """
        df["area_id"] = normalize_area_ids(df["area_id"], self.config.geometry.area_id_width)
        df["variable_name"] = df["variable_name"].str.lower()
        self.log_transformation("normalize_identifiers")

        missing_key = df["area_id"].isna() | df["year"].isna() | df["variable_name"].isna()
        df = self.drop_where(df, missing_key, "missing_key")

        df = df[[*SURVEY_KEY, "estimate_value"]]
        df = self.drop_duplicates(df)

        # Same key with a different value would be summed twice downstream
        ensure_unique_keys(df, "survey", SURVEY_KEY)

        df = df.astype({"year": "int64"})
        df = df.sort_values(SURVEY_KEY).reset_index(drop=True)

        years = sorted(df["year"].unique().tolist())
        logger.info(
            f"Survey estimates cover years {years}",
            extra={"years": years, "variables": int(df["variable_name"].nunique())},
        )
        return df


# =============================================================================
# Convenience Functions
# =============================================================================


def preprocess_survey_data(
    df: pd.DataFrame,
    execution_date: str | None = None,
    config: Settings | None = None,
) -> dict[str, Any]:
    """
    Convenience function for preprocessing survey estimates.

    Returns result dictionary suitable for diagnostics.
    """
    preprocessor = SurveyPreprocessor(config)
    result = preprocessor.run(df, execution_date)
    return result.to_dict()
