"""Graph definitions and orchestration for the HCC pipeline.

This module provides:
- The pipeline graph factory
- Routing functions for its conditional edges
- PipelineOrchestrator, the caller-facing job API
"""

from hcc.graphs.pipeline_workflow import (
    DEFAULT_RECURSION_LIMIT,
    PIPELINE_NODES,
    WorkflowConfig,
    create_pipeline_workflow,
)
from hcc.graphs.routers import (
    route_after_dispatch,
    route_after_hc_check,
    route_after_stage,
)
from hcc.graphs.orchestrator import PipelineOrchestrator

__all__ = [
    # Workflow
    "create_pipeline_workflow",
    "WorkflowConfig",
    "PIPELINE_NODES",
    "DEFAULT_RECURSION_LIMIT",
    # Routers
    "route_after_dispatch",
    "route_after_hc_check",
    "route_after_stage",
    # Orchestrator
    "PipelineOrchestrator",
]
