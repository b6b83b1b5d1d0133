"""Custom exception types for the HCC pipeline.

This module defines a hierarchy of exceptions for categorizing errors
throughout the pipeline, enabling targeted retry and recovery at the
unit, stitch, and job level.
"""

from typing import Any


class HCCError(Exception):
    """Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description
        details: Additional error context
        recoverable: Whether the pipeline can recover from this error
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = True,
    ):
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# Configuration and Input Errors
# =============================================================================


class ConfigurationError(HCCError):
    """Policy or settings are inconsistent."""

    def __init__(
        self,
        message: str,
        setting: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if setting:
            details["setting"] = setting
        super().__init__(message, details, recoverable=False)
        self.setting = setting


class DataValidationError(HCCError):
    """Input data failed validation (empty document, bad target, ...)."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if field:
            details["field"] = field
        super().__init__(message, details, recoverable=False)
        self.field = field


class JobNotFoundError(HCCError):
    """No job with the given id exists in the store."""

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}", {"job_id": job_id}, recoverable=False)
        self.job_id = job_id


# =============================================================================
# Generator Errors
# =============================================================================


class GeneratorError(HCCError):
    """Transport-level failure of a single generator call.

    Counted against the calling unit's retry budget.
    """

    def __init__(
        self,
        message: str,
        model: str | None = None,
        details: dict[str, Any] | None = None,
        recoverable: bool = True,
    ):
        details = details or {}
        if model:
            details["model"] = model
        super().__init__(message, details, recoverable)
        self.model = model


class GeneratorTimeout(GeneratorError):
    """A generator call exceeded its deadline."""

    def __init__(
        self,
        message: str = "Generator call timed out",
        timeout_seconds: float | None = None,
        model: str | None = None,
    ):
        details = {}
        if timeout_seconds is not None:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(message, model=model, details=details)
        self.timeout_seconds = timeout_seconds


class RateLimitError(GeneratorError):
    """The generator backend rejected the call for rate limiting."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: float | None = None,
        model: str | None = None,
    ):
        details = {}
        if retry_after is not None:
            details["retry_after"] = retry_after
        super().__init__(message, model=model, details=details)
        self.retry_after = retry_after


# =============================================================================
# Unit-Level Errors (bounded retry)
# =============================================================================


class GenerationFailed(HCCError):
    """Generator errors or timeouts persisted past the retry budget."""

    def __init__(
        self,
        message: str,
        unit: str,
        attempts: int,
        last_error: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        details["unit"] = unit
        details["attempts"] = attempts
        if last_error:
            details["last_error"] = last_error
        super().__init__(message, details, recoverable=False)
        self.unit = unit
        self.attempts = attempts


class ExtractionFailed(HCCError):
    """Skeleton extraction produced nothing usable."""

    def __init__(
        self,
        message: str,
        level: str | None = None,
        attempts: int = 1,
        raw_output: str | None = None,
        recoverable: bool = True,
    ):
        details: dict[str, Any] = {"attempts": attempts}
        if level:
            details["level"] = level
        if raw_output:
            details["raw_output"] = raw_output[:500]  # Truncate
        super().__init__(message, details, recoverable)
        self.level = level
        self.attempts = attempts


class LengthViolation(HCCError):
    """A chunk output stayed outside its band after all retries.

    Not necessarily fatal: the nearest attempt may be accepted with the
    deviation recorded, depending on the configured failure policy.
    """

    def __init__(
        self,
        message: str,
        chunk_index: int,
        output_words: int,
        min_words: int,
        max_words: int,
        recoverable: bool = True,
    ):
        details = {
            "chunk_index": chunk_index,
            "output_words": output_words,
            "min_words": min_words,
            "max_words": max_words,
        }
        super().__init__(message, details, recoverable)
        self.chunk_index = chunk_index
        self.output_words = output_words
        self.min_words = min_words
        self.max_words = max_words

    @property
    def deviation(self) -> int:
        if self.output_words < self.min_words:
            return self.output_words - self.min_words
        if self.output_words > self.max_words:
            return self.output_words - self.max_words
        return 0


# =============================================================================
# Coherence Errors (bounded repair)
# =============================================================================


class StructuralConflict(HCCError):
    """Stitching found contradictions, drift, gaps or redundancy."""

    def __init__(
        self,
        message: str,
        stage: str | None = None,
        findings: int = 0,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        details["findings"] = findings
        if stage:
            details["stage"] = stage
        super().__init__(message, details, recoverable=True)
        self.stage = stage
        self.findings = findings


class HorizontalViolation(HCCError):
    """Cross-stage inconsistency left after the repair budget."""

    def __init__(
        self,
        message: str,
        errors: int = 0,
        warnings: int = 0,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        details["errors"] = errors
        details["warnings"] = warnings
        super().__init__(message, details, recoverable=True)
        self.errors = errors
        self.warnings = warnings


# =============================================================================
# Workflow-Level Errors
# =============================================================================


class WorkflowError(HCCError):
    """Illegal job state transition or orchestration fault."""

    def __init__(
        self,
        message: str,
        node: str | None = None,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ):
        details = details or {}
        if node:
            details["node"] = node
        super().__init__(message, details, recoverable)
        self.node = node


class StageError(HCCError):
    """A stage could not produce output."""

    def __init__(
        self,
        message: str,
        stage: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ):
        details = details or {}
        details["stage"] = stage
        super().__init__(message, details, recoverable)
        self.stage = stage


class JobCancelled(HCCError):
    """Raised at a safe checkpoint after the user cancelled the job."""

    def __init__(self, job_id: str, stage: str | None = None, chunk_index: int | None = None):
        details: dict[str, Any] = {"job_id": job_id}
        if stage:
            details["stage"] = stage
        if chunk_index is not None:
            details["next_chunk"] = chunk_index
        super().__init__(f"Job {job_id} cancelled", details, recoverable=True)
        self.job_id = job_id
