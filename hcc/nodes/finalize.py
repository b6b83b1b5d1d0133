"""Terminal nodes: finalize and fallback.

finalize picks the job's terminal status from the latest cross-stage check
and what the stages left unresolved. fallback is reached when a stage could
not produce output; it marks the job failed and summarizes what completed.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from hcc.errors.exceptions import HorizontalViolation
from hcc.errors.handlers import create_unit_error
from hcc.errors.recovery import final_job_status
from hcc.nodes.runtime import PipelineRuntime
from hcc.state.enums import JobStatus, StageStatus
from hcc.state.models import PipelineJob, UnitError
from hcc.state.schema import PipelineGraphState

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Finalize
# =============================================================================


def finalize_job(job: PipelineJob) -> JobStatus:
    """Set the terminal status of a job whose stages all completed."""
    latest = job.latest_hc_result
    errors = latest.errors if latest else 0
    warnings = latest.warnings if latest else 0
    unresolved = sum(r.unresolved_findings for r in job.stages.values())
    deviations = sum(len(r.deviation_chunks) for r in job.stages.values())

    if errors:
        violation = HorizontalViolation(
            f"{errors} cross-stage errors remain after {job.hc_repair_attempts} repair attempts",
            errors=errors,
            warnings=warnings,
        )
        job.errors.append(create_unit_error(violation, node="hc_check"))

    job.status = final_job_status(
        stage_failed=False,
        hc_errors=errors,
        hc_warnings=warnings,
        unresolved_findings=unresolved,
        deviation_chunks=deviations,
    )
    job.completed_at = _now()
    job.touch()
    return job.status


def create_finalize_node(runtime: PipelineRuntime) -> Callable[[PipelineGraphState], dict[str, Any]]:
    def finalize_node(state: PipelineGraphState) -> dict[str, Any]:
        job = runtime.store.load_job(state["job_id"])
        status = finalize_job(job)
        runtime.store.save_job(job)
        logger.info(f"FINALIZE: job {job.job_id} finished as {status.value}")
        return {"status": status}

    return finalize_node


# =============================================================================
# Fallback
# =============================================================================


def summarize_errors(errors: list[UnitError]) -> dict[str, Any]:
    """Count errors by category and node."""
    if not errors:
        return {"count": 0, "categories": {}}

    categories: dict[str, int] = {}
    nodes: set[str] = set()
    for error in errors:
        categories[error.category] = categories.get(error.category, 0) + 1
        nodes.add(error.node)

    recoverable = sum(1 for e in errors if e.recoverable)
    return {
        "count": len(errors),
        "categories": categories,
        "nodes_affected": sorted(nodes),
        "recoverable_count": recoverable,
        "unrecoverable_count": len(errors) - recoverable,
    }


def create_fallback_node(runtime: PipelineRuntime) -> Callable[[PipelineGraphState], dict[str, Any]]:
    def fallback_node(state: PipelineGraphState) -> dict[str, Any]:
        """Mark the job failed; completed stage outputs stay in the store."""
        job = runtime.store.load_job(state["job_id"])
        summary = summarize_errors(job.errors)
        completed = [r.stage.value for r in job.stages.values() if r.status == StageStatus.COMPLETE]
        logger.warning(
            f"FALLBACK: job {job.job_id} failed with {summary['count']} errors; "
            f"completed stages: {completed or 'none'}"
        )

        job.status = JobStatus.FAILED
        job.completed_at = _now()
        job.touch()
        runtime.store.save_job(job)
        return {"status": JobStatus.FAILED}

    return fallback_node
