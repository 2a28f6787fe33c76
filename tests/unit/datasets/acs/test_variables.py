"""
Unit tests for the survey variable mapping.
"""

import pandas as pd
import pytest
from pydantic import ValidationError

from crash_pulse.datasets.acs import (
    VariableMapping,
    build_socioeconomic_table,
    load_variable_mapping,
    load_variable_mapping_file,
    map_survey_variables,
)


@pytest.fixture
def small_mapping():
    """Mapping with a summed variable, an intensive one, a ratio and shares."""
    return VariableMapping(
        version="test_v1",
        variables={
            "total_population": {"sources": ["b01003_001"]},
            "age_under_18": {"sources": ["b01001_003", "B01001_027"]},
            "median_income": {"sources": ["b19013_001"], "kind": "intensive"},
            "below_poverty": {"sources": ["b17001_002"]},
            "above_poverty": {"sources": ["b17001_031"]},
        },
        ratios={
            "poverty_rate": {
                "numerator": ["below_poverty"],
                "denominator": ["below_poverty", "above_poverty"],
                "scale": 100,
            }
        },
        population_shares={
            "population": "total_population",
            "drop_sources": True,
            "columns": ["age_under_18"],
        },
    )


def long_survey(rows):
    """Preprocessed long survey table from (area_id, year, variable, value) tuples."""
    df = pd.DataFrame(rows, columns=["area_id", "year", "variable_name", "estimate_value"])
    df["area_id"] = df["area_id"].astype("string")
    df["variable_name"] = df["variable_name"].astype("string")
    df["estimate_value"] = df["estimate_value"].astype("float64")
    return df


class TestLoadVariableMapping:
    """Test cases for mapping loading and validation."""

    def test_shipped_mapping(self, variable_mapping):
        """Test that the shipped mapping loads."""
        assert variable_mapping.version == "acs_v1"
        assert variable_mapping.variables["total_population"].sources == ["b01003_001"]
        assert set(variable_mapping.intensive_variables) == {"median_income", "median_gross_rent"}

    @pytest.mark.parametrize(
        "group",
        [
            ["less_than_hs", "hs_diploma", "some_college", "associates_degree",
             "bachelors_degree", "graduate_degree"],
            ["income_under_25k", "income_25k_75k", "income_75k_plus"],
            ["commute_short", "commute_medium", "commute_long"],
            ["age_under_18", "age_18_34", "age_35_64", "age_65_plus"],
            ["drive_alone", "carpool", "public_transit", "walk", "bike", "work_from_home"],
            ["in_labor_force", "employed", "unemployed", "not_in_labor_force"],
        ],
    )
    def test_shipped_mapping_groups(self, variable_mapping, group):
        """Test that each variable group is mapped and expressed as a population share."""
        shares = variable_mapping.population_shares

        assert set(group) <= set(variable_mapping.variables)
        assert set(group) <= set(shares.columns)

    def test_shipped_mapping_sources(self, variable_mapping):
        """Test source identifiers of the fetched ACS tables."""
        variables = variable_mapping.variables

        assert variables["hispanic_population"].sources == ["b03002_012"]
        assert variables["foreign_born"].sources == ["b16005_024"]
        assert variables["hs_diploma"].sources == ["b15003_017"]
        assert len(variables["less_than_hs"].sources) == 15
        assert len(variables["income_25k_75k"].sources) == 7
        assert len(variables["commute_long"].sources) == 6
        assert variables["work_from_home"].sources == ["b08301_021"]

        all_sources = [s for var in variables.values() for s in var.sources]
        assert len(all_sources) == len(set(all_sources))

    def test_shipped_mapping_on_fetched_rows(self, variable_mapping):
        """Test the wide table built from a tract's source estimates."""
        rows = [
            ("36061000100", 2021, "b01003_001", 1000.0),
            ("36061000100", 2021, "b15003_017", 200.0),
            ("36061000100", 2021, "b15003_023", 50.0),
            ("36061000100", 2021, "b15003_025", 30.0),
            ("36061000100", 2021, "b19001_002", 40.0),
            ("36061000100", 2021, "b19001_017", 60.0),
            ("36061000100", 2021, "b08303_012", 120.0),
            ("36061000100", 2021, "b23025_002", 500.0),
            ("36061000100", 2021, "b23025_005", 25.0),
        ]

        mapped = map_survey_variables(long_survey(rows), variable_mapping)
        table = build_socioeconomic_table(mapped.estimates, variable_mapping)
        row = table.iloc[0]

        assert row["pct_hs_diploma"] == pytest.approx(20.0)
        assert row["pct_graduate_degree"] == pytest.approx(8.0)
        assert row["pct_income_under_25k"] == pytest.approx(4.0)
        assert row["pct_income_75k_plus"] == pytest.approx(6.0)
        assert row["pct_commute_long"] == pytest.approx(12.0)
        assert row["unemployment_rate"] == pytest.approx(5.0)
        assert "hs_diploma" not in table.columns

    def test_default_version_from_config(self, test_config):
        """Test that the configured version is loaded by default."""
        mapping = load_variable_mapping(config=test_config)
        assert mapping.version == test_config.survey.variable_mapping_version

    def test_unknown_version(self):
        """Test that a missing mapping file is reported."""
        with pytest.raises(FileNotFoundError):
            load_variable_mapping("acs_v999")

    def test_load_from_file(self, tmp_path):
        """Test loading an explicit file."""
        path = tmp_path / "custom.yaml"
        path.write_text(
            "version: custom\n"
            "variables:\n"
            "  total_population:\n"
            "    sources: [B01003_001]\n"
        )

        mapping = load_variable_mapping_file(path)

        assert mapping.version == "custom"
        assert mapping.variables["total_population"].sources == ["b01003_001"]

    def test_sources_lower_cased(self, small_mapping):
        """Test source normalization."""
        assert small_mapping.variables["age_under_18"].sources == ["b01001_003", "b01001_027"]

    def test_dangling_ratio_reference(self):
        """Test that ratios must refer to declared variables."""
        with pytest.raises(ValidationError, match="unknown variables"):
            VariableMapping(
                version="bad",
                variables={"a": {"sources": ["x"]}},
                ratios={"r": {"numerator": ["a"], "denominator": ["b"]}},
            )

    def test_empty_sources_rejected(self):
        """Test that a variable needs a source."""
        with pytest.raises(ValidationError):
            VariableMapping(version="bad", variables={"a": {"sources": []}})

    def test_invalid_kind_rejected(self):
        """Test that only extensive and intensive kinds exist."""
        with pytest.raises(ValidationError):
            VariableMapping(version="bad", variables={"a": {"sources": ["x"], "kind": "other"}})


class TestMapSurveyVariables:
    """Test cases for map_survey_variables."""

    def test_sources_summed(self, small_mapping):
        """Test that multi-source variables are summed."""
        survey = long_survey(
            [
                ("36061000100", 2021, "b01001_003", 40.0),
                ("36061000100", 2021, "b01001_027", 35.0),
                ("36061000100", 2021, "b01003_001", 500.0),
            ]
        )

        result = map_survey_variables(survey, small_mapping)
        values = result.estimates.set_index("variable_name")["estimate_value"]

        assert values["age_under_18"] == 75.0
        assert values["total_population"] == 500.0

    def test_coverage_reported(self, small_mapping):
        """Test missing, partial and unmapped sources."""
        survey = long_survey(
            [
                ("36061000100", 2021, "b01001_003", 40.0),
                ("36061000100", 2021, "b01003_001", 500.0),
                ("36061000100", 2021, "b99999_001", 1.0),
            ]
        )

        result = map_survey_variables(survey, small_mapping)

        assert result.partial_variables == {"age_under_18": ["b01001_027"]}
        assert set(result.missing_variables) == {"median_income", "below_poverty", "above_poverty"}
        assert result.unmapped_sources == 1
        assert "b99999_001" not in result.estimates["variable_name"].tolist()

    def test_all_missing_stays_missing(self, small_mapping):
        """Test that a variable whose only values are missing is not zeroed."""
        survey = long_survey([("36061000100", 2021, "b19013_001", None)])

        result = map_survey_variables(survey, small_mapping)

        assert pd.isna(result.estimates["estimate_value"].iloc[0])


class TestBuildSocioeconomicTable:
    """Test cases for build_socioeconomic_table."""

    @pytest.fixture
    def estimates(self):
        """Semantic long estimates for two area-years."""
        return long_survey(
            [
                ("36061000100", 2021, "total_population", 1000.0),
                ("36061000100", 2021, "age_under_18", 250.0),
                ("36061000100", 2021, "median_income", 70000.0),
                ("36061000100", 2021, "below_poverty", 100.0),
                ("36061000100", 2021, "above_poverty", 900.0),
                ("36061000200", 2021, "total_population", 0.0),
                ("36061000200", 2021, "age_under_18", 0.0),
                ("36061000200", 2021, "below_poverty", 0.0),
                ("36061000200", 2021, "above_poverty", 0.0),
            ]
        )

    def test_layout(self, estimates, small_mapping):
        """Test column order and dtypes."""
        table = build_socioeconomic_table(estimates, small_mapping)

        assert list(table.columns) == [
            "area_id",
            "year",
            "total_population",
            "median_income",
            "below_poverty",
            "above_poverty",
            "poverty_rate",
            "pct_age_under_18",
        ]
        assert str(table["total_population"].dtype) == "Float64"
        assert table["year"].dtype == "int64"

    def test_derived_values(self, estimates, small_mapping):
        """Test ratio and share computation."""
        table = build_socioeconomic_table(estimates, small_mapping).set_index("area_id")

        assert table.loc["36061000100", "poverty_rate"] == pytest.approx(10.0)
        assert table.loc["36061000100", "pct_age_under_18"] == pytest.approx(25.0)

    def test_zero_denominators_undefined(self, estimates, small_mapping):
        """Test that zero population gives a missing share, not 0."""
        table = build_socioeconomic_table(estimates, small_mapping).set_index("area_id")

        assert pd.isna(table.loc["36061000200", "poverty_rate"])
        assert pd.isna(table.loc["36061000200", "pct_age_under_18"])
        assert pd.isna(table.loc["36061000200", "median_income"])
