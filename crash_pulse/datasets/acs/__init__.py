"""
Crash Pulse - ACS Dataset

American Community Survey 5-year estimates per census tract.

Components:
    - SurveyPreprocessor: Cleans the long estimate table
    - VariableMapping: Versioned source -> semantic variable mapping
    - CrosswalkResolver: Moves 2010-tract years onto 2020 tracts
    - build_socioeconomic_table: Long -> wide (area_id, year) table

Data Source:
    U.S. Census Bureau, ACS 5-year detailed tables
    2010 to 2020 census tract relationship file

Usage:
    from crash_pulse.datasets.acs import (
        CrosswalkResolver,
        SurveyPreprocessor,
        build_socioeconomic_table,
        load_variable_mapping,
        map_survey_variables,
    )

    preprocessor = SurveyPreprocessor()
    preprocessor.run(raw_df)
    mapping = load_variable_mapping()
    mapped = map_survey_variables(preprocessor.get_data(), mapping)

    resolver = CrosswalkResolver(crosswalk_df, intensive_variables=mapping.intensive_variables)
    resolution = resolver.resolve(mapped.estimates)
    socio_df = build_socioeconomic_table(resolution.estimates, mapping)
"""

from crash_pulse.datasets.acs.crosswalk import (
    CrosswalkReport,
    CrosswalkResolution,
    CrosswalkResolver,
    YearResolution,
    prepare_crosswalk,
)
from crash_pulse.datasets.acs.preprocess import SurveyPreprocessor, preprocess_survey_data
from crash_pulse.datasets.acs.variables import (
    VariableMapping,
    VariableMappingResult,
    build_socioeconomic_table,
    load_variable_mapping,
    load_variable_mapping_file,
    map_survey_variables,
)

__all__ = [
    "SurveyPreprocessor",
    "preprocess_survey_data",
    "VariableMapping",
    "VariableMappingResult",
    "load_variable_mapping",
    "load_variable_mapping_file",
    "map_survey_variables",
    "build_socioeconomic_table",
    "CrosswalkResolver",
    "CrosswalkResolution",
    "CrosswalkReport",
    "YearResolution",
    "prepare_crosswalk",
]
