"""
Collision / Census Reconciliation Script
Builds the tract-year analytical table from the raw collision, ACS,
tract shapefile and crosswalk files.

Environment is taken from CP_ENVIRONMENT (dev, test, prod).
"""

import logging

from crash_pulse.reconcile.pipeline import PipelineResult, ReconciliationPipeline
from crash_pulse.shared.config import get_config
from crash_pulse.shared.logging import setup_logging

logger = logging.getLogger(__name__)


def run_reconciliation() -> PipelineResult:
    """
    Run the full reconciliation with the configured storage layout.

    Returns:
        PipelineResult with the final table and diagnostics
    """
    config = get_config()
    setup_logging(config)

    try:
        logger.info(f"Starting reconciliation ({config.environment})")
        pipeline = ReconciliationPipeline(config)
        result = pipeline.run_from_files()
        logger.info("Reconciliation finished")
        return result

    except Exception as e:
        logger.error(f"Reconciliation failed: {e}", exc_info=True)
        raise


if __name__ == "__main__":
    result = run_reconciliation()
    report = result.diagnostics

    print("\n=== Reconciliation Summary ===")
    print(f"Area-years: {len(result.table)}")
    print(f"Area-years with incidents: {len(result.incident_metrics)}")
    print(f"Issues: {report.summary()}")

    print("\nOutputs:")
    for name, output in report.outputs.items():
        print(f"  {name}: {output['path']} ({output['rows']} rows, md5 {output['md5']})")

    if report.errors:
        print("\nErrors:")
        for issue in report.errors:
            print(f"  [{issue.stage}] {issue.message}")
