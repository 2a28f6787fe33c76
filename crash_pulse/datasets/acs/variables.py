"""
Crash Pulse - Survey Variable Mapping

Versioned mapping from semantic variable names (total_population,
median_income, ...) to the ACS source variables they are built from.
Mappings live in ``configs/variables/<version>.yaml`` and are validated when
loaded, so a typo or a dangling reference fails before any data is touched.

Three steps use a mapping:
1. map_survey_variables: long table of source variables -> long table of
   semantic variables (multiple sources summed).
2. Crosswalk redistribution, which needs each variable's kind.
3. build_socioeconomic_table: long -> wide per (area_id, year), plus derived
   ratios and population shares.

Usage:
    from crash_pulse.datasets.acs.variables import load_variable_mapping

    mapping = load_variable_mapping("acs_v1")
    mapped = map_survey_variables(survey_df, mapping)
    wide = build_socioeconomic_table(mapped.estimates, mapping)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import pandas as pd
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from crash_pulse.shared.config import Settings, get_config, get_config_dir
from crash_pulse.shared.rates import safe_ratio
from crash_pulse.validation.schema_enforcer import (
    AREA_YEAR_KEY,
    ensure_unique_keys,
    require_columns,
)

logger = logging.getLogger(__name__)

VariableKind = Literal["extensive", "intensive"]


# =============================================================================
# Mapping Models
# =============================================================================


class SemanticVariable(BaseModel):
    """A semantic variable built from one or more source variables."""

    sources: list[str]
    kind: VariableKind = "extensive"

    @field_validator("sources")
    @classmethod
    def validate_sources(cls, v: list[str]) -> list[str]:
        """Sources are non-empty, lower-case identifiers."""
        if not v:
            raise ValueError("A variable needs at least one source")
        return [s.strip().lower() for s in v]


class DerivedRatio(BaseModel):
    """Ratio of two sums of semantic variables."""

    numerator: list[str]
    denominator: list[str]
    scale: float = 1.0


class PopulationShares(BaseModel):
    """Count variables re-expressed as a percentage of population."""

    population: str = "total_population"
    drop_sources: bool = False
    columns: list[str] = Field(default_factory=list)


class VariableMapping(BaseModel):
    """A complete, versioned variable mapping."""

    version: str
    variables: dict[str, SemanticVariable]
    ratios: dict[str, DerivedRatio] = Field(default_factory=dict)
    population_shares: PopulationShares | None = None

    @model_validator(mode="after")
    def validate_references(self) -> VariableMapping:
        """Every ratio and share must refer to a declared variable."""
        known = set(self.variables)
        for name, ratio in self.ratios.items():
            unknown = set(ratio.numerator + ratio.denominator) - known
            if unknown:
                raise ValueError(f"Ratio '{name}' refers to unknown variables {sorted(unknown)}")
            if name in known:
                raise ValueError(f"Ratio '{name}' shadows a variable of the same name")

        if self.population_shares is not None:
            shares = self.population_shares
            unknown = set(shares.columns + [shares.population]) - known
            if unknown:
                raise ValueError(f"Population shares refer to unknown variables {sorted(unknown)}")
        return self

    @property
    def intensive_variables(self) -> list[str]:
        """Semantic variables redistributed as weighted means."""
        return [name for name, var in self.variables.items() if var.kind == "intensive"]

    def source_lookup(self) -> pd.DataFrame:
        """(source_variable, variable_name) pairs, one row per source."""
        rows = [
            {"source_variable": source, "variable_name": name}
            for name, var in self.variables.items()
            for source in var.sources
        ]
        return pd.DataFrame(rows, columns=["source_variable", "variable_name"])


def load_variable_mapping(
    version: str | None = None,
    config: Settings | None = None,
) -> VariableMapping:
    """
    Load and validate a variable mapping.

    Args:
        version: Mapping version (defaults to survey.variable_mapping_version)
        config: Configuration object (uses default if not provided)

    Returns:
        Validated VariableMapping

    Raises:
        FileNotFoundError: If the mapping file does not exist
        pydantic.ValidationError: If the mapping is malformed
    """
    config = config or get_config()
    version = version or config.survey.variable_mapping_version
    path = get_config_dir() / "variables" / f"{version}.yaml"
    return load_variable_mapping_file(path)


def load_variable_mapping_file(path: str | Path) -> VariableMapping:
    """Load and validate a variable mapping from an explicit path."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Variable mapping not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    mapping = VariableMapping(**raw)
    logger.info(
        f"Loaded variable mapping {mapping.version}",
        extra={
            "version": mapping.version,
            "variables": len(mapping.variables),
            "ratios": len(mapping.ratios),
        },
    )
    return mapping


# =============================================================================
# Long Table Mapping
# =============================================================================


@dataclass
class VariableMappingResult:
    """Semantic long table plus coverage of the mapping against the data."""

    estimates: pd.DataFrame
    version: str
    missing_variables: list[str] = field(default_factory=list)
    partial_variables: dict[str, list[str]] = field(default_factory=dict)
    unmapped_sources: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert result to dictionary for diagnostics."""
        return {
            "version": self.version,
            "rows_output": len(self.estimates),
            "missing_variables": self.missing_variables,
            "partial_variables": self.partial_variables,
            "unmapped_sources": self.unmapped_sources,
        }


def map_survey_variables(survey: pd.DataFrame, mapping: VariableMapping) -> VariableMappingResult:
    """
    Translate source variables into semantic variables.

    Sources of the same semantic variable are summed per (area_id, year); a
    source absent for an area-year counts as 0 as long as another source of
    the variable is present. A semantic variable none of whose sources occur
    in the data is reported and left out.

    Args:
        survey: Preprocessed long table (area_id, year, variable_name, estimate_value)
        mapping: Variable mapping

    Returns:
        VariableMappingResult with a long table keyed by semantic variable_name
    """
    require_columns(survey, "survey")

    lookup = mapping.source_lookup()
    present_sources = set(survey["variable_name"].unique())

    missing_variables: list[str] = []
    partial_variables: dict[str, list[str]] = {}
    for name, var in mapping.variables.items():
        absent = [s for s in var.sources if s not in present_sources]
        if len(absent) == len(var.sources):
            missing_variables.append(name)
        elif absent:
            partial_variables[name] = absent

    if missing_variables:
        logger.warning(
            f"{len(missing_variables)} mapped variables have no source in the survey data",
            extra={"missing_variables": missing_variables, "version": mapping.version},
        )
    if partial_variables:
        logger.warning(
            f"{len(partial_variables)} mapped variables are missing some sources",
            extra={"partial_variables": partial_variables},
        )

    unmapped_sources = len(present_sources - set(lookup["source_variable"]))

    joined = survey.rename(columns={"variable_name": "source_variable"}).merge(
        lookup, on="source_variable", how="inner"
    )
    estimates = (
        joined.groupby([*AREA_YEAR_KEY, "variable_name"], sort=True)["estimate_value"]
        .sum(min_count=1)
        .reset_index()
    )

    logger.info(
        f"Mapped {len(survey)} source estimates onto "
        f"{estimates['variable_name'].nunique()} variables",
        extra={"rows_input": len(survey), "rows_output": len(estimates)},
    )

    return VariableMappingResult(
        estimates=estimates,
        version=mapping.version,
        missing_variables=missing_variables,
        partial_variables=partial_variables,
        unmapped_sources=unmapped_sources,
    )


# =============================================================================
# Wide Table
# =============================================================================


def build_socioeconomic_table(
    estimates: pd.DataFrame,
    mapping: VariableMapping,
) -> pd.DataFrame:
    """
    Pivot semantic estimates into the wide socio-economic table.

    Columns, in order: area_id, year, population, the remaining variables in
    mapping order, derived ratios, then ``pct_`` population shares. Share
    sources are dropped when the mapping says so. All value columns are
    nullable Float64.

    Args:
        estimates: Long semantic table (area_id, year, variable_name, estimate_value)
        mapping: Variable mapping

    Returns:
        One row per (area_id, year), sorted by key
    """
    require_columns(estimates, "survey")
    ensure_unique_keys(estimates, "survey", [*AREA_YEAR_KEY, "variable_name"])

    wide = estimates.pivot(index=AREA_YEAR_KEY, columns="variable_name", values="estimate_value")
    wide.columns.name = None
    wide = wide.reset_index().sort_values(AREA_YEAR_KEY).reset_index(drop=True)

    population = mapping.population_shares.population if mapping.population_shares else None
    variables = [name for name in mapping.variables if name in wide.columns]
    if population in variables:
        variables.remove(population)
        variables.insert(0, population)

    table = wide[AREA_YEAR_KEY].copy()
    table["year"] = table["year"].astype("int64")
    for name in variables:
        table[name] = wide[name].astype("Float64")

    derived: list[str] = []
    for name, ratio in mapping.ratios.items():
        parts = ratio.numerator + ratio.denominator
        if not all(p in table.columns for p in parts):
            logger.warning(f"Skipping ratio '{name}': inputs not in survey data")
            continue
        num = table[ratio.numerator].sum(axis=1, min_count=len(ratio.numerator))
        den = table[ratio.denominator].sum(axis=1, min_count=len(ratio.denominator))
        table[name] = safe_ratio(num, den, ratio.scale)
        derived.append(name)

    shares = mapping.population_shares
    if shares is not None and shares.population in table.columns:
        share_sources = [c for c in shares.columns if c in table.columns]
        for col in share_sources:
            table[f"pct_{col}"] = safe_ratio(table[col], table[shares.population], 100.0)
        if shares.drop_sources:
            table = table.drop(columns=share_sources)

    logger.info(
        f"Built socio-economic table: {len(table)} area-years, {len(table.columns)} columns",
        extra={"rows": len(table), "columns": len(table.columns), "ratios": derived},
    )
    return table
