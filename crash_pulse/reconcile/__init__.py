"""
Crash Pulse - Reconciliation

Joins incident counts and survey estimates into the tract-year table.

Components:
    - MetricSynthesizer: counts + population -> rates
    - DatasetReconciler: socio-economic table + incident metrics -> final table
    - DiagnosticsReport: recoverable issues of a run
    - ReconciliationPipeline: end-to-end orchestration
"""

from crash_pulse.reconcile.diagnostics import DiagnosticsReport
from crash_pulse.reconcile.metrics import MetricSynthesizer, SynthesisResult, compute_rates
from crash_pulse.reconcile.pipeline import PipelineInputs, PipelineResult, ReconciliationPipeline
from crash_pulse.reconcile.reconciler import DatasetReconciler, ReconciliationResult

__all__ = [
    "MetricSynthesizer",
    "SynthesisResult",
    "compute_rates",
    "DatasetReconciler",
    "ReconciliationResult",
    "DiagnosticsReport",
    "ReconciliationPipeline",
    "PipelineInputs",
    "PipelineResult",
]
