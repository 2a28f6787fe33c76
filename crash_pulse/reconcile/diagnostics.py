"""
Crash Pulse - Diagnostics Report

Collects what each stage recovered from: dropped and ambiguous points,
lost crosswalk mass, conservation mismatches, failed years, join gaps.
Fatal problems raise instead; everything recoverable ends up here and is
returned alongside the output tables.

Usage:
    report = DiagnosticsReport(environment="prod")
    report.record_assignment(assignment_result)
    report.record_crosswalk(resolution)

    if report.has_errors:
        for issue in report.errors:
            print(issue.message)
    io.write_json(report.to_dict(), path)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from crash_pulse.datasets.acs.crosswalk import CrosswalkResolution
from crash_pulse.datasets.acs.variables import VariableMappingResult
from crash_pulse.datasets.base import FeatureBuildResult, PreprocessingResult
from crash_pulse.reconcile.metrics import SynthesisResult
from crash_pulse.reconcile.reconciler import ReconciliationResult
from crash_pulse.shared.geo import AssignmentResult, GeometryNormalizationResult
from crash_pulse.validation.schema_enforcer import ValidationIssue, ValidationLevel

logger = logging.getLogger(__name__)


@dataclass
class DiagnosticsReport:
    """Per-stage records and recoverable issues of one pipeline run."""

    environment: str = "dev"
    created_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    stages: dict[str, dict[str, Any]] = field(default_factory=dict)
    issues: list[ValidationIssue] = field(default_factory=list)
    outputs: dict[str, dict[str, Any]] = field(default_factory=dict)

    # ==========================================================================
    # Accessors
    # ==========================================================================

    @property
    def has_errors(self) -> bool:
        """Check if any error-level issue was recorded."""
        return len(self.errors) > 0

    @property
    def errors(self) -> list[ValidationIssue]:
        """Get error and critical issues."""
        return [
            i for i in self.issues if i.level in (ValidationLevel.ERROR, ValidationLevel.CRITICAL)
        ]

    @property
    def warnings(self) -> list[ValidationIssue]:
        """Get warning issues."""
        return [i for i in self.issues if i.level == ValidationLevel.WARNING]

    def issues_for(self, stage: str) -> list[ValidationIssue]:
        """Get issues raised by one stage."""
        return [i for i in self.issues if i.stage == stage]

    # ==========================================================================
    # Recording
    # ==========================================================================

    def add_stage(self, stage: str, record: dict[str, Any]) -> None:
        """Store a stage's diagnostics record."""
        self.stages[stage] = record

    def add_issue(
        self,
        level: ValidationLevel,
        stage: str,
        check: str,
        message: str,
        column: str | None = None,
        count: int | None = None,
        magnitude: float | None = None,
    ) -> None:
        """Record one recoverable issue."""
        self.issues.append(
            ValidationIssue(
                level=level,
                stage=stage,
                check=check,
                message=message,
                column=column,
                count=count,
                magnitude=magnitude,
            )
        )

    def add_output(self, name: str, path: str, md5: str, rows: int) -> None:
        """Record a written table and its fingerprint."""
        self.outputs[name] = {"path": path, "md5": md5, "rows": rows}

    def record_preprocessing(self, stage: str, result: PreprocessingResult) -> None:
        self.add_stage(stage, result.to_dict())
        for reason, count in result.drop_reasons.items():
            self.add_issue(
                ValidationLevel.INFO,
                stage,
                reason,
                f"{count} rows dropped: {reason}",
                count=count,
            )

    def record_geometry(self, result: GeometryNormalizationResult) -> None:
        self.add_stage("geometry", result.to_dict())
        if result.geometries_repaired:
            self.add_issue(
                ValidationLevel.INFO,
                "geometry",
                "repaired_geometries",
                f"{result.geometries_repaired} invalid polygons repaired",
                count=result.geometries_repaired,
            )
        for reason, count in result.drop_reasons.items():
            self.add_issue(
                ValidationLevel.WARNING,
                "geometry",
                reason,
                f"{count} polygons dropped: {reason}",
                count=count,
            )

    def record_assignment(self, result: AssignmentResult) -> None:
        """Record unassigned points; ambiguous points mean overlapping areas."""
        self.add_stage("assignment", result.to_dict())
        if result.dropped_unmatched:
            self.add_issue(
                ValidationLevel.WARNING,
                "assignment",
                "unmatched_points",
                f"{result.dropped_unmatched} points fall inside no area",
                count=result.dropped_unmatched,
            )
        if result.dropped_ambiguous:
            self.add_issue(
                ValidationLevel.WARNING,
                "assignment",
                "ambiguous_points",
                f"{result.dropped_ambiguous} points fall inside more than one area",
                count=result.dropped_ambiguous,
            )

    def record_aggregation(self, result: FeatureBuildResult) -> None:
        self.add_stage("aggregation", result.to_dict())
        for reason, count in result.rows_excluded.items():
            self.add_issue(
                ValidationLevel.INFO,
                "aggregation",
                reason,
                f"{count} incidents excluded: {reason}",
                count=count,
            )

    def record_variable_mapping(self, result: VariableMappingResult) -> None:
        self.add_stage("variable_mapping", result.to_dict())
        for name in result.missing_variables:
            self.add_issue(
                ValidationLevel.WARNING,
                "variable_mapping",
                "missing_variable",
                f"No source of '{name}' is present in the survey data",
                column=name,
            )

    def record_crosswalk(self, resolution: CrosswalkResolution) -> None:
        """Record crosswalk quality, lost mass, conservation and failed years."""
        self.add_stage("crosswalk", resolution.to_dict())

        report = resolution.crosswalk_report
        if report is not None and report.weight_sum_deviations:
            self.add_issue(
                ValidationLevel.WARNING,
                "crosswalk",
                "weight_sum",
                f"{report.weight_sum_deviations} old areas have weights not summing to 1",
                count=report.weight_sum_deviations,
                magnitude=report.max_weight_sum_deviation,
            )

        for year in resolution.years:
            if year.ids_checked and 0 < (year.ids_matched or 0) < year.ids_checked:
                self.add_issue(
                    ValidationLevel.INFO,
                    "crosswalk",
                    "vintage_detection",
                    f"{year.year}: {year.ids_matched} of {year.ids_checked} identifiers "
                    f"are old areas; classified as {year.vintage}",
                    count=year.ids_checked - year.ids_matched,
                )
            if year.unmatched_old_areas:
                self.add_issue(
                    ValidationLevel.WARNING,
                    "crosswalk",
                    "lost_mass",
                    f"{year.year}: {year.unmatched_old_areas} old areas have no crosswalk edges",
                    count=year.unmatched_old_areas,
                    magnitude=year.lost_mass,
                )
            if year.conservation_ok is False:
                self.add_issue(
                    ValidationLevel.WARNING,
                    "crosswalk",
                    "conservation",
                    f"{year.year}: conserved total changed from {year.conserved_before} "
                    f"to {year.conserved_after}",
                    magnitude=year.relative_difference,
                )

        for year, message in sorted(resolution.failed_years.items()):
            self.add_issue(
                ValidationLevel.ERROR,
                "crosswalk",
                "year_failed",
                f"{year}: {message}",
            )

    def record_synthesis(self, result: SynthesisResult) -> None:
        self.add_stage("metrics", result.to_dict())
        if result.keys_without_population:
            self.add_issue(
                ValidationLevel.WARNING,
                "metrics",
                "missing_population",
                f"{result.keys_without_population} area-years have incidents but no population",
                count=result.keys_without_population,
            )
        if result.years_missing_population:
            self.add_issue(
                ValidationLevel.WARNING,
                "metrics",
                "missing_population_years",
                f"Population is missing for years {result.years_missing_population}",
                count=len(result.years_missing_population),
            )

    def record_reconciliation(self, result: ReconciliationResult) -> None:
        self.add_stage("reconcile", result.to_dict())
        if result.incident_only_keys:
            self.add_issue(
                ValidationLevel.WARNING,
                "reconcile",
                "incident_only_keys",
                f"{result.incident_only_keys} area-years have incidents but no socio-economic row",
                count=result.incident_only_keys,
            )
        for col, count in result.coalesce_conflicts.items():
            self.add_issue(
                ValidationLevel.WARNING,
                "reconcile",
                "coalesce_conflict",
                f"'{col}' disagrees between inputs in {count} rows",
                column=col,
                count=count,
            )

    # ==========================================================================
    # Serialization
    # ==========================================================================

    def summary(self) -> dict[str, int]:
        """Issue counts by level."""
        counts = {level.value: 0 for level in ValidationLevel}
        for issue in self.issues:
            counts[issue.level.value] += 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        """Convert report to dictionary."""
        return {
            "environment": self.environment,
            "created_at": self.created_at,
            "summary": self.summary(),
            "stages": self.stages,
            "issues": [issue.to_dict() for issue in self.issues],
            "outputs": self.outputs,
        }

    def to_json(self) -> str:
        """Serialize report to JSON."""
        return json.dumps(self.to_dict(), indent=2, sort_keys=True, default=str)

    def log_summary(self) -> None:
        """Log issue counts, one warning per error-level issue."""
        for issue in self.errors:
            logger.warning(issue.message, extra={"stage": issue.stage, "check": issue.check})
        logger.info("Diagnostics summary", extra={"issues": self.summary()})
