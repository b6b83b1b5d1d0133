"""Review module for the HCC pipeline.

This module provides the horizontal (cross-stage) coherence check that runs
after all four stages have produced output.
"""

from hcc.review.horizontal import (
    AUTHOR_STAGES,
    HorizontalCoherenceChecker,
    best_chunk,
    stage_documents,
)

__all__ = [
    "AUTHOR_STAGES",
    "HorizontalCoherenceChecker",
    "best_chunk",
    "stage_documents",
]
