"""Error handlers for recording and reporting pipeline errors.

Every failure that reaches a unit, stage, or job is converted into a
``UnitError`` record so callers can inspect exactly which unit failed
and why.
"""

import logging
from typing import Any

from hcc.errors.exceptions import (
    ConfigurationError,
    DataValidationError,
    ExtractionFailed,
    GenerationFailed,
    GeneratorError,
    GeneratorTimeout,
    HCCError,
    HorizontalViolation,
    JobCancelled,
    LengthViolation,
    RateLimitError,
    StageError,
    StructuralConflict,
    WorkflowError,
)
from hcc.state.models import UnitError

logger = logging.getLogger(__name__)


# =============================================================================
# Unit Error Records
# =============================================================================


def create_unit_error(
    error: Exception,
    node: str,
    category: str | None = None,
) -> UnitError:
    """Create a UnitError record from an exception.

    Args:
        error: The exception that occurred
        node: Unit or node where the error occurred
        category: Error category (auto-detected if not provided)

    Returns:
        UnitError for state tracking
    """
    if category is None:
        category = detect_error_category(error)

    if isinstance(error, HCCError):
        message = error.message
        recoverable = error.recoverable
        details = dict(error.details)
    else:
        message = str(error)
        recoverable = True
        details = {"original_type": error.__class__.__name__}

    return UnitError(
        node=node,
        category=category,
        message=message,
        recoverable=recoverable,
        details=details,
    )


def detect_error_category(error: Exception) -> str:
    """Detect error category from exception type.

    Args:
        error: The exception

    Returns:
        Category string
    """
    if isinstance(error, RateLimitError):
        return "rate_limit"
    elif isinstance(error, (GeneratorTimeout, TimeoutError)):
        return "timeout"
    elif isinstance(error, GeneratorError):
        return "generator_error"
    elif isinstance(error, GenerationFailed):
        return "generation_failed"
    elif isinstance(error, ExtractionFailed):
        return "extraction_failed"
    elif isinstance(error, LengthViolation):
        return "length_violation"
    elif isinstance(error, StructuralConflict):
        return "structural_conflict"
    elif isinstance(error, HorizontalViolation):
        return "horizontal_violation"
    elif isinstance(error, JobCancelled):
        return "cancelled"
    elif isinstance(error, StageError):
        return "stage_error"
    elif isinstance(error, WorkflowError):
        return "workflow_error"
    elif isinstance(error, DataValidationError):
        return "validation_error"
    elif isinstance(error, ConfigurationError):
        return "configuration_error"
    else:
        return "unknown"


# =============================================================================
# Logging
# =============================================================================


def log_error_with_context(
    error: Exception,
    unit: str,
    context: dict[str, Any] | None = None,
    level: int = logging.ERROR,
) -> None:
    """Log an error with unit context attached.

    Args:
        error: The exception
        unit: Unit or node where the error occurred
        context: Extra key/value pairs to include
        level: Logging level
    """
    category = detect_error_category(error)
    message = error.message if isinstance(error, HCCError) else str(error)
    extra = ""
    if context:
        extra = " " + " ".join(f"{k}={v}" for k, v in context.items())
    logger.log(level, f"{unit}: [{category}] {message}{extra}")
