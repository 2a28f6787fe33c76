"""
Crash Pulse - Validation

Data contracts and the error taxonomy shared by every stage.
"""

from crash_pulse.validation.schema_enforcer import (
    AREA_YEAR_KEY,
    REQUIRED_COLUMNS,
    DuplicateKeyError,
    MixedVintageError,
    OutputContractError,
    ReconciliationError,
    SchemaViolationError,
    StageFailedError,
    ValidationIssue,
    ValidationLevel,
    VintageResolutionError,
    check_output_contract,
    ensure_unique_keys,
    require_columns,
    validate_output,
)

__all__ = [
    "AREA_YEAR_KEY",
    "REQUIRED_COLUMNS",
    "ReconciliationError",
    "SchemaViolationError",
    "DuplicateKeyError",
    "VintageResolutionError",
    "MixedVintageError",
    "OutputContractError",
    "StageFailedError",
    "ValidationIssue",
    "ValidationLevel",
    "require_columns",
    "ensure_unique_keys",
    "check_output_contract",
    "validate_output",
]
