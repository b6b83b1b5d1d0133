"""RetryPolicy configurations for different error scenarios.

This module provides pre-configured RetryPolicy instances for generator
calls and skeleton extraction, with backoff strategies and retry
conditions.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Callable, Type

from hcc.errors.exceptions import (
    ExtractionFailed,
    GeneratorError,
    GeneratorTimeout,
    RateLimitError,
)

logger = logging.getLogger(__name__)


# =============================================================================
# RetryPolicy Configuration
# =============================================================================


@dataclass
class RetryPolicy:
    """Configuration for retry behavior on errors.

    Attributes:
        max_attempts: Maximum number of attempts (including initial)
        initial_interval: Initial delay between retries in seconds
        backoff_factor: Multiplier for exponential backoff
        max_interval: Maximum delay between retries in seconds
        jitter: Whether to add random jitter to delays
        retry_on: Tuple of exception types to retry on
        should_retry: Optional custom function to determine if should retry
    """

    max_attempts: int = 3
    initial_interval: float = 1.0
    backoff_factor: float = 2.0
    max_interval: float = 60.0
    jitter: bool = True
    retry_on: tuple[Type[Exception], ...] = field(
        default_factory=lambda: (Exception,)
    )
    should_retry: Callable[[Exception, int], bool] | None = None

    def get_delay(self, attempt: int, error: Exception | None = None) -> float:
        """Calculate delay before next retry.

        Uses exponential backoff with optional jitter. A rate-limit error
        carrying ``retry_after`` overrides the computed delay.

        Args:
            attempt: The current attempt number (0-indexed)
            error: The error that triggered the retry, if any

        Returns:
            Delay in seconds before next retry
        """
        if isinstance(error, RateLimitError) and error.retry_after:
            return min(error.retry_after, self.max_interval)

        delay = min(
            self.initial_interval * (self.backoff_factor ** attempt),
            self.max_interval
        )

        if self.jitter:
            # Add 0-50% random jitter
            delay = delay * (1 + random.random() * 0.5)

        return delay

    def should_attempt_retry(self, error: Exception, attempt: int) -> bool:
        """Determine if a retry should be attempted.

        Args:
            error: The exception that occurred
            attempt: The current attempt number (0-indexed)

        Returns:
            True if retry should be attempted
        """
        if attempt >= self.max_attempts - 1:
            return False

        if self.should_retry is not None:
            return self.should_retry(error, attempt)

        return isinstance(error, self.retry_on)


# =============================================================================
# Pre-configured Policies
# =============================================================================


def create_generation_retry_policy(
    max_retries: int = 3,
    initial_interval: float = 1.0,
) -> RetryPolicy:
    """Create a retry policy for chunk generation calls.

    Timeouts and transport errors share the chunk's retry budget with
    length violations, so ``max_retries`` is the number of retries after
    the first attempt.

    Args:
        max_retries: Retries after the initial attempt
        initial_interval: Initial delay in seconds

    Returns:
        Configured RetryPolicy
    """
    return RetryPolicy(
        max_attempts=max_retries + 1,
        initial_interval=initial_interval,
        backoff_factor=2.0,
        max_interval=30.0,
        jitter=True,
        retry_on=(
            GeneratorError,
            TimeoutError,
            ConnectionError,
        ),
        should_retry=_should_retry_generator_error,
    )


def create_extraction_retry_policy(
    max_retries: int = 2,
    initial_interval: float = 0.5,
) -> RetryPolicy:
    """Create a retry policy for skeleton extraction.

    Args:
        max_retries: Retries after the initial attempt
        initial_interval: Initial delay in seconds

    Returns:
        Configured RetryPolicy
    """
    return RetryPolicy(
        max_attempts=max_retries + 1,
        initial_interval=initial_interval,
        backoff_factor=1.5,
        max_interval=10.0,
        jitter=False,
        retry_on=(
            ExtractionFailed,
            GeneratorError,
            TimeoutError,
        ),
    )


# =============================================================================
# Retry Decision Functions
# =============================================================================


def _should_retry_generator_error(error: Exception, attempt: int) -> bool:
    """Determine if a generator failure should be retried.

    Args:
        error: The exception that occurred
        attempt: Current attempt number

    Returns:
        True if should retry
    """
    if isinstance(error, RateLimitError):
        logger.info(
            f"Rate limit hit, will retry (attempt {attempt + 1}). "
            f"Retry after: {error.retry_after or 'unknown'}"
        )
        return True

    if isinstance(error, (GeneratorTimeout, TimeoutError, ConnectionError)):
        logger.info(f"Generator timeout or connection issue, will retry (attempt {attempt + 1})")
        return True

    if isinstance(error, GeneratorError):
        if not error.recoverable:
            logger.warning(f"Unrecoverable generator error, not retrying: {error.message}")
            return False
        return True

    return False
