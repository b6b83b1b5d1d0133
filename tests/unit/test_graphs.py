"""Tests for pipeline graph assembly and routing.

This module tests:
- Routing functions for every conditional edge
- Pipeline workflow factory and configuration
"""

import pytest
from langgraph.checkpoint.memory import MemorySaver

from hcc.graphs.pipeline_workflow import (
    DEFAULT_RECURSION_LIMIT,
    PIPELINE_NODES,
    WorkflowConfig,
    create_pipeline_workflow,
)
from hcc.graphs.routers import (
    DEFAULT_HC_MAX_REPAIR_ATTEMPTS,
    STAGE_NODES,
    route_after_dispatch,
    route_after_hc_check,
    route_after_stage,
)
from hcc.nodes import PipelineRuntime
from hcc.state.enums import STAGE_ORDER, JobStatus


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def runtime(scripted_generator, store, no_sleep):
    return PipelineRuntime(generator=scripted_generator(), store=store, sleep=no_sleep)


# =============================================================================
# Routing Tests
# =============================================================================


class TestRouteAfterDispatch:
    """Tests for route_after_dispatch."""

    @pytest.mark.parametrize("node", [*STAGE_NODES, "hc_check"])
    def test_follows_next_node(self, node):
        assert route_after_dispatch({"next_node": node}) == node

    def test_cancelled_ends(self):
        assert route_after_dispatch({"next_node": "objections", "_cancelled": True}) == "__end__"

    def test_unknown_node_ends(self):
        assert route_after_dispatch({"next_node": "intake"}) == "__end__"
        assert route_after_dispatch({}) == "__end__"

    def test_stage_nodes_match_stage_order(self):
        assert STAGE_NODES == tuple(stage.value for stage in STAGE_ORDER)


class TestRouteAfterStage:
    """Tests for route_after_stage."""

    def test_success_returns_to_dispatch(self):
        assert route_after_stage({"status": JobStatus.RUNNING}) == "dispatch"

    def test_failure_goes_to_fallback(self):
        assert route_after_stage({"_should_fallback": True}) == "fallback"
        assert route_after_stage({"status": JobStatus.FAILED}) == "fallback"

    def test_cancel_wins_over_failure(self):
        assert route_after_stage({"_cancelled": True, "_should_fallback": True}) == "__end__"


class TestRouteAfterHCCheck:
    """Tests for route_after_hc_check."""

    def test_clean_check_finalizes(self):
        assert route_after_hc_check({"hc_errors": 0, "hc_repair_attempts": 0}) == "finalize"

    def test_errors_repair_within_budget(self):
        state = {"hc_errors": 2, "hc_repair_attempts": 0, "hc_max_repair_attempts": 2}
        assert route_after_hc_check(state) == "hc_repair"

    def test_budget_spent_finalizes(self):
        state = {"hc_errors": 2, "hc_repair_attempts": 2, "hc_max_repair_attempts": 2}
        assert route_after_hc_check(state) == "finalize"

    def test_warnings_never_repair(self):
        state = {"hc_errors": 0, "hc_warnings": 5, "hc_repair_attempts": 0}
        assert route_after_hc_check(state) == "finalize"

    def test_default_budget(self):
        state = {"hc_errors": 1, "hc_repair_attempts": DEFAULT_HC_MAX_REPAIR_ATTEMPTS}
        assert route_after_hc_check(state) == "finalize"


# =============================================================================
# Workflow Factory Tests
# =============================================================================


class TestWorkflowFactory:
    """Tests for create_pipeline_workflow."""

    def test_nodes(self):
        assert PIPELINE_NODES == [
            "dispatch", "reconstruction", "objections", "responses", "bulletproof",
            "hc_check", "hc_repair", "finalize", "fallback",
        ]

    def test_compiles_with_all_nodes(self, runtime):
        graph = create_pipeline_workflow(runtime)
        assert set(PIPELINE_NODES) <= set(graph.get_graph().nodes)

    def test_checkpointer_override(self, runtime):
        saver = MemorySaver()
        config = WorkflowConfig()
        graph = create_pipeline_workflow(runtime, config=config, checkpointer=saver)
        assert config.checkpointer is saver
        assert graph.checkpointer is saver

    def test_recursion_limit_covers_repair_loops(self):
        # dispatch + stage per stage, plus check and repair passes
        assert DEFAULT_RECURSION_LIMIT >= 2 * len(STAGE_NODES) * 4
