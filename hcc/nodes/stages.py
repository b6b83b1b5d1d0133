"""Dispatch and stage nodes.

The dispatch node reads the job from the store and picks the first stage
that is not complete, or the cross-stage check once all four are. Every
stage node returns to dispatch, so a resumed job and a repaired job walk
the same path as a fresh one.
"""

import logging
from typing import Any, Callable

from hcc.errors.exceptions import JobCancelled, StageError
from hcc.errors.handlers import create_unit_error
from hcc.nodes.runtime import PipelineRuntime
from hcc.stages import get_writer
from hcc.state.enums import STAGE_ORDER, JobStatus, PipelineStage, StageStatus
from hcc.state.schema import PipelineGraphState

logger = logging.getLogger(__name__)

HC_CHECK_NODE = "hc_check"


# =============================================================================
# Dispatch
# =============================================================================


def create_dispatch_node(runtime: PipelineRuntime) -> Callable[[PipelineGraphState], dict[str, Any]]:
    def dispatch_node(state: PipelineGraphState) -> dict[str, Any]:
        job = runtime.store.load_job(state["job_id"])

        requested_at = runtime.store.cancel_requested(job.job_id)
        if requested_at is not None:
            job.aborted_at = requested_at
            job.status = JobStatus.PAUSED
            runtime.store.save_job(job)
            logger.info(f"DISPATCH: job {job.job_id} is cancelled, pausing")
            return {"status": JobStatus.PAUSED, "_cancelled": True, "next_node": "__end__"}

        for stage in STAGE_ORDER:
            if job.stage_record(stage).status != StageStatus.COMPLETE:
                logger.info(f"DISPATCH: job {job.job_id} -> {stage.value}")
                return {"next_node": stage.value, "current_stage": job.current_stage}

        logger.info(f"DISPATCH: job {job.job_id} -> {HC_CHECK_NODE}")
        return {"next_node": HC_CHECK_NODE, "current_stage": job.current_stage}

    return dispatch_node


# =============================================================================
# Stage Nodes
# =============================================================================


def create_stage_node(
    runtime: PipelineRuntime,
    stage: PipelineStage,
) -> Callable[[PipelineGraphState], dict[str, Any]]:
    """
    Build the node that runs one stage for the job in state.

    Args:
        runtime: Shared node dependencies.
        stage: Stage the node runs.

    Returns:
        Node function for ``StateGraph.add_node``.
    """
    writer = get_writer(stage, runtime.policy)
    label = stage.value.upper()

    def stage_node(state: PipelineGraphState) -> dict[str, Any]:
        job = runtime.store.load_job(state["job_id"])
        logger.info(f"{label}: starting stage {stage.number} for job {job.job_id}")

        try:
            runtime.runner_for(job.job_id).run_stage(job, writer)
        except JobCancelled as e:
            job.status = JobStatus.PAUSED
            runtime.store.save_job(job)
            logger.info(f"{label}: {e.message}; resumable from the next pending chunk")
            return {"status": JobStatus.PAUSED, "_cancelled": True, "current_stage": job.current_stage}
        except StageError as e:
            error = create_unit_error(e, node=stage.value)
            job.errors.append(error)
            runtime.store.save_job(job)
            logger.error(f"{label}: stage failed: {e.message}")
            return {
                "status": JobStatus.FAILED,
                "errors": [error],
                "_should_fallback": True,
                "current_stage": job.current_stage,
            }

        if job.current_stage == stage.number and stage.number < len(STAGE_ORDER):
            job.advance_stage()
        runtime.store.save_job(job)
        logger.info(f"{label}: stage {stage.number} complete")
        return {"status": job.status, "current_stage": job.current_stage}

    stage_node.__name__ = f"{stage.value}_node"
    return stage_node
