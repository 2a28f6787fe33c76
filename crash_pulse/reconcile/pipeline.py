"""
Crash Pulse - Reconciliation Pipeline

End-to-end orchestration, leaf stages first:

    collisions -> preprocess -> assign to tracts -> aggregate per (tract, year)
    polygons   -> normalize  -^
    survey     -> preprocess -> map variables -> crosswalk -> wide table
    counts + population -> metrics -> reconcile with wide table -> contract

Each stage takes the previous stage's tables and returns new ones plus a
diagnostics record; nothing is cached or mutated between stages. Fatal
contract violations raise; recoverable problems go to the DiagnosticsReport.

Usage:
    from crash_pulse.reconcile.pipeline import ReconciliationPipeline

    pipeline = ReconciliationPipeline()
    result = pipeline.run_from_files()
    final_df = result.table
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import geopandas as gpd
import pandas as pd

from crash_pulse.datasets.acs import (
    CrosswalkResolver,
    SurveyPreprocessor,
    VariableMapping,
    build_socioeconomic_table,
    load_variable_mapping,
    map_survey_variables,
)
from crash_pulse.datasets.collisions import CollisionFeatureBuilder, CollisionPreprocessor
from crash_pulse.reconcile.diagnostics import DiagnosticsReport
from crash_pulse.reconcile.metrics import MetricSynthesizer
from crash_pulse.reconcile.reconciler import DatasetReconciler
from crash_pulse.shared.config import Settings, Vintage, get_config
from crash_pulse.shared.geo import PointAssigner, normalize_polygons
from crash_pulse.shared.io import LocalDataIO
from crash_pulse.validation.schema_enforcer import (
    AREA_YEAR_KEY,
    StageFailedError,
    require_columns,
    validate_output,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineInputs:
    """The four upstream tables, as delivered."""

    incidents: pd.DataFrame
    survey: pd.DataFrame
    polygons: gpd.GeoDataFrame
    crosswalk: pd.DataFrame
    vintages: dict[int, Vintage] = field(default_factory=dict)


@dataclass
class PipelineResult:
    """Final table, incident-metric table and the run's diagnostics."""

    table: pd.DataFrame
    incident_metrics: pd.DataFrame
    diagnostics: DiagnosticsReport


class ReconciliationPipeline:
    """Runs every reconciliation stage in order."""

    def __init__(
        self,
        config: Settings | None = None,
        mapping: VariableMapping | None = None,
    ):
        """
        Initialize the pipeline.

        Args:
            config: Configuration object (uses default if not provided)
            mapping: Variable mapping (loads the configured version if not provided)
        """
        self.config = config or get_config()
        self.mapping = mapping or load_variable_mapping(config=self.config)

    def run(self, inputs: PipelineInputs, execution_date: str | None = None) -> PipelineResult:
        """
        Reconcile in-memory inputs.

        Args:
            inputs: Upstream tables
            execution_date: Run date recorded in stage results

        Returns:
            PipelineResult

        Raises:
            ReconciliationError: On any fatal contract violation or failed stage
        """
        diagnostics = DiagnosticsReport(environment=self.config.environment)
        logger.info(
            "Starting reconciliation",
            extra={
                "environment": self.config.environment,
                "mapping_version": self.mapping.version,
            },
        )

        counts = self._incident_counts(inputs, diagnostics, execution_date)
        socioeconomic = self._socioeconomic_table(inputs, diagnostics, execution_date)

        population_col = self.config.metrics.population_column
        require_columns(socioeconomic, "socioeconomic", [*AREA_YEAR_KEY, population_col])
        population = socioeconomic[[*AREA_YEAR_KEY, population_col]]
        synthesis = MetricSynthesizer(self.config).synthesize(counts, population)
        diagnostics.record_synthesis(synthesis)
        validate_output(synthesis.metrics, self.config)

        reconciliation = DatasetReconciler(self.config).reconcile(socioeconomic, synthesis.metrics)
        diagnostics.record_reconciliation(reconciliation)
        validate_output(reconciliation.table, self.config)

        diagnostics.log_summary()
        logger.info(
            f"Reconciliation complete: {len(reconciliation.table)} area-years",
            extra={"rows": len(reconciliation.table), "issues": diagnostics.summary()},
        )

        return PipelineResult(
            table=reconciliation.table,
            incident_metrics=synthesis.metrics,
            diagnostics=diagnostics,
        )

    def run_from_files(
        self,
        incidents_path: str | Path | None = None,
        survey_path: str | Path | None = None,
        polygons_path: str | Path | None = None,
        crosswalk_path: str | Path | None = None,
        output_dir: str | Path | None = None,
        execution_date: str | None = None,
    ) -> PipelineResult:
        """
        Read the upstream files, run, and write the outputs.

        Paths default to the configured storage layout. Writes the combined
        table, the incident-metric table and diagnostics.json, recording an
        MD5 fingerprint of each table in the diagnostics.

        Returns:
            PipelineResult
        """
        io = LocalDataIO(self.config)
        files = self.config.storage.files

        incidents_path = incidents_path or io.get_path("raw", files.incidents)
        survey_path = survey_path or io.get_path("raw", files.survey)
        polygons_path = polygons_path or io.get_path("shapefiles", files.polygons)
        crosswalk_path = crosswalk_path or io.get_path("raw", files.crosswalk)

        id_columns = [
            source
            for source, target in self.config.crosswalk.column_mappings.items()
            if target in ("old_area_id", "new_area_id")
        ]
        survey_id_columns = [
            source
            for source, target in self.config.survey.column_mappings.items()
            if target == "area_id"
        ]

        inputs = PipelineInputs(
            incidents=io.read_table(incidents_path),
            survey=io.read_table(survey_path, string_columns=survey_id_columns),
            polygons=io.read_polygons(polygons_path),
            crosswalk=io.read_table(
                crosswalk_path,
                string_columns=id_columns,
                delimiter=self.config.storage.crosswalk_delimiter,
            ),
        )
        result = self.run(inputs, execution_date)

        out_dir = Path(output_dir) if output_dir else io.get_path("processed", "")
        for name, df, filename in [
            ("combined", result.table, files.combined),
            ("incident_metrics", result.incident_metrics, files.incident_metrics),
        ]:
            path = out_dir / filename
            md5 = io.write_table(df, path)
            result.diagnostics.add_output(name, str(path), md5, len(df))

        io.write_json(result.diagnostics.to_dict(), out_dir / files.diagnostics)
        return result

    # ==========================================================================
    # Stages
    # ==========================================================================

    def _incident_counts(
        self,
        inputs: PipelineInputs,
        diagnostics: DiagnosticsReport,
        execution_date: str | None,
    ) -> pd.DataFrame:
        """Collisions -> (area_id, year) counts on new-generation areas."""
        preprocessor = CollisionPreprocessor(self.config)
        result = preprocessor.run(inputs.incidents, execution_date)
        diagnostics.record_preprocessing("incidents", result)
        if not result.success:
            raise StageFailedError("incidents", result.error_message)

        normalized = normalize_polygons(inputs.polygons, config=self.config)
        diagnostics.record_geometry(normalized)

        assignment = PointAssigner(self.config).assign(preprocessor.get_data(), normalized.layer)
        diagnostics.record_assignment(assignment)

        builder = CollisionFeatureBuilder(self.config)
        result = builder.run(assignment.assigned, execution_date)
        diagnostics.record_aggregation(result)
        if not result.success:
            raise StageFailedError("aggregation", result.error_message)

        return builder.get_data()

    def _socioeconomic_table(
        self,
        inputs: PipelineInputs,
        diagnostics: DiagnosticsReport,
        execution_date: str | None,
    ) -> pd.DataFrame:
        """Survey -> wide (area_id, year) table on new-generation areas."""
        preprocessor = SurveyPreprocessor(self.config)
        result = preprocessor.run(inputs.survey, execution_date)
        diagnostics.record_preprocessing("survey", result)
        if not result.success:
            raise StageFailedError("survey", result.error_message)

        mapped = map_survey_variables(preprocessor.get_data(), self.mapping)
        diagnostics.record_variable_mapping(mapped)

        resolver = CrosswalkResolver(
            inputs.crosswalk,
            self.config,
            intensive_variables=self.mapping.intensive_variables,
        )
        resolution = resolver.resolve(mapped.estimates, inputs.vintages)
        diagnostics.record_crosswalk(resolution)

        return build_socioeconomic_table(resolution.estimates, self.mapping)
