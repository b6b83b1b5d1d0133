"""Graph state schema for the HCC pipeline.

The LangGraph state carries only identifiers and routing flags. The job
and its documents live in the persistence store so that resumption means
reloading from the store and re-entering the graph, not restoring a
suspended call stack.
"""

import operator
from typing import Annotated

from typing_extensions import TypedDict

from hcc.state.enums import JobStatus
from hcc.state.models import UnitError


class PipelineGraphState(TypedDict, total=False):
    """
    State flowing between pipeline graph nodes.

    Usage with LangGraph:
        ```python
        from langgraph.graph import StateGraph
        from hcc.state import PipelineGraphState

        graph = StateGraph(PipelineGraphState)
        graph.add_node("reconstruction", reconstruction_node)
        ```
    """

    job_id: str
    status: JobStatus
    current_stage: int

    # Cross-stage coherence loop
    hc_errors: int
    hc_warnings: int
    hc_repair_attempts: int
    hc_max_repair_attempts: int

    # Accumulated across nodes
    errors: Annotated[list[UnitError], operator.add]

    # Routing flags
    next_node: str
    _cancelled: bool
    _should_fallback: bool
