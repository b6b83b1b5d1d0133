"""Error handling and recovery for the HCC pipeline.

This module provides:
- Custom exception types for unit, stage and job errors
- RetryPolicy configurations for generator calls and extraction
- Error handlers that record failures as UnitError entries
- Recovery decisions, including the explicit length-failure policy
"""

from hcc.errors.exceptions import (
    HCCError,
    ConfigurationError,
    DataValidationError,
    JobNotFoundError,
    GeneratorError,
    GeneratorTimeout,
    RateLimitError,
    GenerationFailed,
    ExtractionFailed,
    LengthViolation,
    StructuralConflict,
    HorizontalViolation,
    WorkflowError,
    StageError,
    JobCancelled,
)
from hcc.errors.policies import (
    RetryPolicy,
    create_generation_retry_policy,
    create_extraction_retry_policy,
)
from hcc.errors.handlers import (
    create_unit_error,
    detect_error_category,
    log_error_with_context,
)
from hcc.errors.recovery import (
    RecoveryAction,
    RecoveryStrategy,
    decide_length_failure,
    final_job_status,
)

__all__ = [
    # Exceptions
    "HCCError",
    "ConfigurationError",
    "DataValidationError",
    "JobNotFoundError",
    "GeneratorError",
    "GeneratorTimeout",
    "RateLimitError",
    "GenerationFailed",
    "ExtractionFailed",
    "LengthViolation",
    "StructuralConflict",
    "HorizontalViolation",
    "WorkflowError",
    "StageError",
    "JobCancelled",
    # Policies
    "RetryPolicy",
    "create_generation_retry_policy",
    "create_extraction_retry_policy",
    # Handlers
    "create_unit_error",
    "detect_error_category",
    "log_error_with_context",
    # Recovery
    "RecoveryAction",
    "RecoveryStrategy",
    "decide_length_failure",
    "final_job_status",
]
