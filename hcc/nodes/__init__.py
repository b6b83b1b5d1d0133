"""LangGraph nodes for the HCC pipeline."""

from hcc.nodes.runtime import PipelineRuntime
from hcc.nodes.stages import HC_CHECK_NODE, create_dispatch_node, create_stage_node
from hcc.nodes.horizontal import (
    apply_repair,
    create_hc_check_node,
    create_hc_repair_node,
    error_targets,
)
from hcc.nodes.finalize import (
    create_fallback_node,
    create_finalize_node,
    finalize_job,
    summarize_errors,
)

__all__ = [
    "PipelineRuntime",
    "HC_CHECK_NODE",
    "create_dispatch_node",
    "create_stage_node",
    "apply_repair",
    "create_hc_check_node",
    "create_hc_repair_node",
    "error_targets",
    "create_fallback_node",
    "create_finalize_node",
    "finalize_job",
    "summarize_errors",
]
