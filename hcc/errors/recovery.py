"""Recovery decisions for unit and job failures.

The pipeline never chooses implicitly between keeping a deviating output
and failing: the configured ``LengthFailurePolicy`` is turned into an
explicit ``RecoveryStrategy`` here.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from hcc.errors.exceptions import LengthViolation
from hcc.state.enums import JobStatus, LengthFailurePolicy

logger = logging.getLogger(__name__)


# =============================================================================
# Recovery Types
# =============================================================================


class RecoveryAction(str, Enum):
    """Outcomes of an exhausted length retry budget."""

    ACCEPT_NEAREST = "accept_nearest"  # Keep the closest attempt, record deviation
    ABORT = "abort"                    # Fail the chunk


@dataclass
class RecoveryStrategy:
    """Strategy for recovering from an error.

    Attributes:
        action: The recovery action to take
        reason: Why this strategy was chosen
        params: Additional parameters for the action
    """

    action: RecoveryAction
    reason: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "action": self.action.value,
            "reason": self.reason,
            "params": self.params,
        }


# =============================================================================
# Strategy Determination
# =============================================================================


def decide_length_failure(
    error: LengthViolation,
    policy: LengthFailurePolicy,
) -> RecoveryStrategy:
    """Turn the configured failure policy into a decision for one chunk.

    Args:
        error: The exhausted length violation
        policy: Caller's configured policy

    Returns:
        ACCEPT_NEAREST or ABORT strategy
    """
    if policy == LengthFailurePolicy.ACCEPT_NEAREST:
        return RecoveryStrategy(
            action=RecoveryAction.ACCEPT_NEAREST,
            reason=(
                f"Chunk {error.chunk_index} outside band by {error.deviation} words; "
                f"keeping nearest attempt"
            ),
            params={"deviation": error.deviation},
        )
    return RecoveryStrategy(
        action=RecoveryAction.ABORT,
        reason=f"Chunk {error.chunk_index} outside band and policy is abort",
        params={"deviation": error.deviation},
    )


def final_job_status(
    stage_failed: bool,
    hc_errors: int,
    hc_warnings: int,
    unresolved_findings: int = 0,
    deviation_chunks: int = 0,
) -> JobStatus:
    """Pick the terminal status for a job.

    A job is only ``complete`` when nothing is left unresolved.

    Args:
        stage_failed: A stage produced no output
        hc_errors: Errors in the last cross-stage check
        hc_warnings: Warnings in the last cross-stage check
        unresolved_findings: Stitch findings left after stitch repair
        deviation_chunks: Chunks accepted outside their length band

    Returns:
        Terminal JobStatus
    """
    if stage_failed:
        return JobStatus.FAILED
    if hc_errors or hc_warnings or unresolved_findings or deviation_chunks:
        return JobStatus.COMPLETED_WITH_WARNINGS
    return JobStatus.COMPLETE
