"""
Crash Pulse - Configuration Loader

Pydantic-based configuration management with:
- Environment-based configuration (dev/test/prod)
- YAML file loading with inheritance
- Environment variables for values the YAML files leave unset
- Type validation via Pydantic

Usage:
    from crash_pulse.shared.config import get_config

    config = get_config()  # Uses CP_ENVIRONMENT env var
    config = get_config("test")  # Explicit environment

    # Access config values
    target_crs = config.geometry.target_crs
    tolerance = config.crosswalk.conservation_tolerance
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

Vintage = Literal["old", "new"]

# =============================================================================
# Configuration Models
# =============================================================================


class ProjectConfig(BaseModel):
    """Project metadata configuration."""

    name: str = "crash-pulse"
    version: str = "0.1.0"
    description: str = "Collision and census reconciliation for NYC census tracts"


class StoragePathsConfig(BaseModel):
    """Local storage layout, relative to ``StorageConfig.root``."""

    raw: str = "data/raw"
    processed: str = "data/processed"
    shapefiles: str = "data/shapefiles"


class StorageFilesConfig(BaseModel):
    """Input and output file names."""

    incidents: str = "mvc.csv"
    survey: str = "acs_long.csv"
    polygons: str = "tl_2020_36_tract.shp"
    crosswalk: str = "census_tract_relationships.csv"
    incident_metrics: str = "mvc_tract_agg.csv"
    combined: str = "acs_mvc_combined.csv"
    diagnostics: str = "diagnostics.json"


class StorageConfig(BaseModel):
    """Storage configuration."""

    root: str = "."
    paths: StoragePathsConfig = Field(default_factory=StoragePathsConfig)
    files: StorageFilesConfig = Field(default_factory=StorageFilesConfig)
    delimiter: str = ","
    crosswalk_delimiter: str = "|"


class GeometryConfig(BaseModel):
    """Polygon layer normalization."""

    area_id_column: str = "GEOID"
    area_id_width: int = 11
    target_crs: str = "EPSG:4326"
    assume_crs: str = "EPSG:4326"
    vintage: Vintage = "new"


class AssignmentConfig(BaseModel):
    """Point-in-polygon assignment."""

    points_crs: str = "EPSG:4326"
    predicate: Literal["within"] = "within"
    shard_size: int = 250_000
    max_workers: int = 1

    @field_validator("shard_size", "max_workers")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Shard size and worker count must be positive."""
        if v < 1:
            raise ValueError(f"Must be >= 1, got {v}")
        return v


class CollisionsConfig(BaseModel):
    """Collision (incident) source layout."""

    timestamp_column: str = "crash_date"
    longitude_column: str = "longitude"
    latitude_column: str = "latitude"
    total_count_column: str = "total_crashes"
    category_columns: dict[str, str] = Field(
        default_factory=lambda: {
            "number_of_persons_injured": "persons_injured",
            "number_of_persons_killed": "persons_killed",
            "number_of_pedestrians_injured": "pedestrians_injured",
            "number_of_pedestrians_killed": "pedestrians_killed",
            "number_of_cyclist_injured": "cyclists_injured",
            "number_of_cyclist_killed": "cyclists_killed",
            "number_of_motorist_injured": "motorists_injured",
            "number_of_motorist_killed": "motorists_killed",
        }
    )

    @property
    def count_columns(self) -> list[str]:
        """Canonical count columns, total first."""
        return [self.total_count_column, *self.category_columns.values()]


class SurveyConfig(BaseModel):
    """Survey estimate source layout."""

    column_mappings: dict[str, str] = Field(
        default_factory=lambda: {
            "geoid": "area_id",
            "GEOID": "area_id",
            "variable": "variable_name",
            "estimate": "estimate_value",
            "YEAR": "year",
        }
    )
    variable_mapping_version: str = "acs_v1"


class CrosswalkConfig(BaseModel):
    """Boundary crosswalk configuration."""

    column_mappings: dict[str, str] = Field(
        default_factory=lambda: {
            "GEOID_TRACT_10": "old_area_id",
            "GEOID_TRACT_20": "new_area_id",
            "AREALAND_TRACT_10": "old_area_land_quantity",
            "AREALAND_PART": "overlap_land_quantity",
        }
    )
    # Explicit vintage tag per survey year; untagged years fall back to probing
    vintages: dict[int, Vintage] = Field(default_factory=dict)
    auto_detect: bool = True
    conserved_variable: str = "total_population"
    conservation_tolerance: float = 1e-6
    weight_sum_tolerance: float = 0.01


class RateDefinition(BaseModel):
    """Count normalized by population."""

    name: str
    numerator: str
    per: float = 1000.0


class RatioDefinition(BaseModel):
    """Count divided by another count."""

    name: str
    numerator: str
    denominator: str


class MetricsConfig(BaseModel):
    """Derived metric definitions."""

    population_column: str = "total_population"
    rates: list[RateDefinition] = Field(
        default_factory=lambda: [
            RateDefinition(name="crash_rate_per_1000", numerator="total_crashes"),
            RateDefinition(name="injury_rate_per_1000", numerator="persons_injured"),
            RateDefinition(name="fatality_rate_per_1000", numerator="persons_killed"),
            RateDefinition(name="pedestrian_rate_per_1000", numerator="pedestrians_injured"),
            RateDefinition(name="cyclist_rate_per_1000", numerator="cyclists_injured"),
            RateDefinition(name="motorist_rate_per_1000", numerator="motorists_injured"),
        ]
    )
    ratios: list[RatioDefinition] = Field(
        default_factory=lambda: [
            RatioDefinition(
                name="injury_fatality_ratio",
                numerator="persons_injured",
                denominator="persons_killed",
            ),
        ]
    )

    @property
    def derived_columns(self) -> list[str]:
        """Names of every rate and ratio column."""
        return [r.name for r in self.rates] + [r.name for r in self.ratios]


class ReconcileConfig(BaseModel):
    """Final merge configuration."""

    join_how: Literal["left", "outer"] = "left"
    coalesce_tolerance: float = 1e-9


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: Literal["json", "text"] = "text"
    include_timestamp: bool = True


# =============================================================================
# Main Settings Class
# =============================================================================


class Settings(BaseSettings):
    """
    Main configuration class for Crash Pulse.

    Loads configuration from:
    1. YAML files in configs/environments/
    2. Environment variables

    Values set in YAML win; environment variables fill nested fields the
    YAML files leave unset (e.g. CP_RECONCILE__COALESCE_TOLERANCE).
    """

    model_config = SettingsConfigDict(
        env_prefix="CP_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    # Environment
    environment: Literal["dev", "test", "prod"] = "dev"

    # Configuration sections
    project: ProjectConfig = Field(default_factory=ProjectConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    geometry: GeometryConfig = Field(default_factory=GeometryConfig)
    assignment: AssignmentConfig = Field(default_factory=AssignmentConfig)
    collisions: CollisionsConfig = Field(default_factory=CollisionsConfig)
    survey: SurveyConfig = Field(default_factory=SurveyConfig)
    crosswalk: CrosswalkConfig = Field(default_factory=CrosswalkConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        valid_envs = {"dev", "test", "prod"}
        if v not in valid_envs:
            raise ValueError(f"Invalid environment: {v}. Must be one of: {valid_envs}")
        return v


# =============================================================================
# Configuration Loading Functions
# =============================================================================


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    # Try relative path from the repository root
    config_dir = Path(__file__).parent.parent.parent / "configs"
    if config_dir.exists():
        return config_dir

    # Try from current working directory
    config_dir = Path.cwd() / "configs"
    if config_dir.exists():
        return config_dir

    raise FileNotFoundError(
        "Could not find configs directory. Ensure you're running from the project root."
    )


def _load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents."""
    if not path.exists():
        return {}
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_config_for_environment(environment: str) -> dict[str, Any]:
    """Load and merge configuration for a specific environment."""
    env_dir = get_config_dir() / "environments"

    base_config = _load_yaml_file(env_dir / "base.yaml")
    env_config = _load_yaml_file(env_dir / f"{environment}.yaml")

    # Remove inheritance marker if present
    env_config.pop("_inherit", None)

    merged = _deep_merge(base_config, env_config)
    merged["environment"] = environment

    return merged


@lru_cache(maxsize=4)
def get_config(environment: str | None = None) -> Settings:
    """
    Get configuration for the specified environment.

    Args:
        environment: Environment name (dev, test, prod).
                    If None, uses CP_ENVIRONMENT env var, defaulting to "dev".

    Returns:
        Settings: Validated configuration object.
    """
    if environment is None:
        environment = os.getenv("CP_ENVIRONMENT", "dev")

    yaml_config = _load_config_for_environment(environment)

    return Settings(**yaml_config)


def reload_config(environment: str | None = None) -> Settings:
    """
    Reload configuration, clearing the cache.

    Useful for testing or when config files have changed.
    """
    get_config.cache_clear()
    return get_config(environment)


# =============================================================================
# Convenience Functions
# =============================================================================


def get_data_path(layer: str, filename: str, config: Settings | None = None) -> Path:
    """
    Get the local path of a file in a storage layer.

    Args:
        layer: Storage layer (raw, processed, shapefiles)
        filename: File name inside the layer
        config: Optional config object (uses default if not provided)

    Returns:
        Path like "./data/processed/acs_mvc_combined.csv"
    """
    if config is None:
        config = get_config()

    layer_path = getattr(config.storage.paths, layer, layer)
    return Path(config.storage.root) / layer_path / filename
