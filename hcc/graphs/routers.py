"""Routing functions for the pipeline graph.

This module contains all routing logic for conditional edges in the
pipeline, extracted from the graph definition for modularity and
testability.
"""

import logging
from typing import Literal

from hcc.config.policy import PipelinePolicy
from hcc.state.enums import JobStatus
from hcc.state.schema import PipelineGraphState

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

STAGE_NODES = ("reconstruction", "objections", "responses", "bulletproof")

DEFAULT_HC_MAX_REPAIR_ATTEMPTS = PipelinePolicy().hc_max_repair_attempts


# =============================================================================
# Fallback Check Helper
# =============================================================================


def _should_fallback(state: PipelineGraphState) -> bool:
    """Check if the pipeline should route to the fallback node.

    Args:
        state: Current graph state

    Returns:
        True if should route to fallback
    """
    if state.get("_should_fallback"):
        return True

    if state.get("status") == JobStatus.FAILED:
        return True

    return False


# =============================================================================
# Dispatch and Stage Routing
# =============================================================================


def route_after_dispatch(
    state: PipelineGraphState,
) -> Literal["reconstruction", "objections", "responses", "bulletproof", "hc_check", "__end__"]:
    """
    Route from dispatch to the next pending stage or the cross-stage check.

    Args:
        state: Current graph state

    Returns:
        Stage node name, "hc_check", or "__end__" when the job is cancelled
    """
    if state.get("_cancelled"):
        return "__end__"

    next_node = state.get("next_node")
    if next_node in STAGE_NODES or next_node == "hc_check":
        return next_node

    logger.warning(f"Dispatch produced no route ({next_node!r}), ending")
    return "__end__"


def route_after_stage(state: PipelineGraphState) -> Literal["dispatch", "fallback", "__end__"]:
    """
    Route after any stage node.

    A cancelled job ends here and resumes later; a failed stage goes to
    fallback; otherwise dispatch picks what comes next.

    Args:
        state: Current graph state

    Returns:
        "dispatch", "fallback", or "__end__"
    """
    if state.get("_cancelled"):
        logger.info("Routing to end: job cancelled")
        return "__end__"

    if _should_fallback(state):
        logger.warning("Routing to fallback after stage failure")
        return "fallback"

    return "dispatch"


# =============================================================================
# Horizontal Coherence Routing
# =============================================================================


def route_after_hc_check(state: PipelineGraphState) -> Literal["hc_repair", "finalize"]:
    """
    Route after the cross-stage check.

    Repairs while errors remain and the repair budget is not spent.
    Warnings alone never trigger a repair.

    Args:
        state: Current graph state

    Returns:
        "hc_repair" or "finalize"
    """
    errors = state.get("hc_errors", 0)
    attempts = state.get("hc_repair_attempts", 0)
    limit = state.get("hc_max_repair_attempts", DEFAULT_HC_MAX_REPAIR_ATTEMPTS)

    if errors and attempts < limit:
        logger.info(f"Routing to hc_repair: {errors} errors, attempt {attempts + 1} of {limit}")
        return "hc_repair"

    if errors:
        logger.warning(f"Routing to finalize with {errors} errors after {attempts} repair attempts")
    return "finalize"
