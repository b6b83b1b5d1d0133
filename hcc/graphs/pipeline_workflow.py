"""Pipeline graph assembly.

This module provides the factory function for the four-stage HCC graph:

    START -> DISPATCH -> [first incomplete stage] STAGE -> DISPATCH
             DISPATCH -> [all complete] HC_CHECK
             HC_CHECK -> [errors, budget left] HC_REPAIR -> DISPATCH
             HC_CHECK -> FINALIZE -> END

A failed stage routes to FALLBACK; a cancelled job routes to END.
"""

import logging
from dataclasses import dataclass

from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.graph import END, START, StateGraph

from hcc.graphs.routers import route_after_dispatch, route_after_hc_check, route_after_stage
from hcc.nodes import (
    PipelineRuntime,
    create_dispatch_node,
    create_fallback_node,
    create_finalize_node,
    create_hc_check_node,
    create_hc_repair_node,
    create_stage_node,
)
from hcc.state.enums import STAGE_ORDER
from hcc.state.schema import PipelineGraphState

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# All nodes in pipeline order
PIPELINE_NODES = [
    "dispatch",
    *[stage.value for stage in STAGE_ORDER],
    "hc_check",
    "hc_repair",
    "finalize",
    "fallback",
]

# Graph steps per invoke; dispatch is revisited after every stage
DEFAULT_RECURSION_LIMIT = 200


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class WorkflowConfig:
    """Configuration for pipeline graph compilation.

    Attributes:
        checkpointer: Checkpoint saver for graph-state persistence (optional)
        debug: Enable debug logging
    """
    checkpointer: BaseCheckpointSaver | None = None
    debug: bool = False


# =============================================================================
# Workflow Factory
# =============================================================================


def create_pipeline_workflow(
    runtime: PipelineRuntime,
    config: WorkflowConfig | None = None,
    checkpointer: BaseCheckpointSaver | None = None,
):
    """
    Create the compiled pipeline graph.

    Args:
        runtime: Generator, store, policy and audit sink shared by all nodes
        config: Workflow configuration (optional, uses defaults if not provided)
        checkpointer: Override checkpointer from config

    Returns:
        Compiled graph ready for ``invoke`` with a ``job_id`` in the input

    Example:
        runtime = PipelineRuntime(generator=AnthropicGenerator(), store=get_job_store())
        graph = create_pipeline_workflow(runtime, checkpointer=get_memory_saver())
        graph.invoke({"job_id": job.job_id}, {"configurable": {"thread_id": job.job_id}})
    """
    if config is None:
        config = WorkflowConfig()

    if checkpointer is not None:
        config.checkpointer = checkpointer

    if config.debug:
        logger.setLevel(logging.DEBUG)
        logger.debug("Creating pipeline workflow with debug enabled")

    workflow = StateGraph(PipelineGraphState)

    # ==========================================================================
    # Add nodes
    # ==========================================================================

    workflow.add_node("dispatch", create_dispatch_node(runtime))
    for stage in STAGE_ORDER:
        workflow.add_node(stage.value, create_stage_node(runtime, stage))
    workflow.add_node("hc_check", create_hc_check_node(runtime))
    workflow.add_node("hc_repair", create_hc_repair_node(runtime))
    workflow.add_node("finalize", create_finalize_node(runtime))
    workflow.add_node("fallback", create_fallback_node(runtime))

    # ==========================================================================
    # Add edges
    # ==========================================================================

    workflow.add_edge(START, "dispatch")

    # Dispatch -> first incomplete stage, or the cross-stage check
    workflow.add_conditional_edges(
        "dispatch",
        route_after_dispatch,
        [*[stage.value for stage in STAGE_ORDER], "hc_check", END],
    )

    # Stage -> Dispatch, Fallback, or END when cancelled
    for stage in STAGE_ORDER:
        workflow.add_conditional_edges(
            stage.value,
            route_after_stage,
            ["dispatch", "fallback", END],
        )

    # HC check -> repair loop or finalize
    workflow.add_conditional_edges(
        "hc_check",
        route_after_hc_check,
        ["hc_repair", "finalize"],
    )

    workflow.add_edge("hc_repair", "dispatch")
    workflow.add_edge("finalize", END)
    workflow.add_edge("fallback", END)

    # ==========================================================================
    # Compile with configuration
    # ==========================================================================

    compile_kwargs = {}
    if config.checkpointer:
        compile_kwargs["checkpointer"] = config.checkpointer

    logger.info(f"Compiling pipeline workflow with config: {list(compile_kwargs.keys())}")

    return workflow.compile(**compile_kwargs)
