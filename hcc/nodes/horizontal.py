"""Cross-stage coherence nodes: check and bounded repair.

hc_check runs the horizontal checker over the four stage outputs and stores
the result on the job. hc_repair turns the error targets of the latest
result into chunk re-runs: targeted chunks are reset with the repair
instruction as a constraint and their stages are reopened, so the next
dispatch re-runs only those chunks and re-stitches.
"""

import logging
import time
from collections import defaultdict
from typing import Any, Callable

from hcc.generation.audit import RunRecord
from hcc.nodes.runtime import PipelineRuntime
from hcc.review.horizontal import best_chunk, stage_documents
from hcc.state.enums import RunType, StageStatus, UnitStatus, ViolationSeverity
from hcc.state.models import PipelineJob, RepairTarget
from hcc.state.schema import PipelineGraphState

logger = logging.getLogger(__name__)


# =============================================================================
# HC Check
# =============================================================================


def create_hc_check_node(runtime: PipelineRuntime) -> Callable[[PipelineGraphState], dict[str, Any]]:
    def hc_check_node(state: PipelineGraphState) -> dict[str, Any]:
        start = time.perf_counter()
        job = runtime.store.load_job(state["job_id"])
        documents = stage_documents(runtime.store, job.job_id)

        result = runtime.checker.check(job, documents, attempt=job.hc_repair_attempts)
        job.hc_results.append(result)
        runtime.store.save_job(job)

        if runtime.audit is not None:
            runtime.audit.record_run(RunRecord(
                job_id=job.job_id,
                stage="horizontal",
                run_type=RunType.HC_CHECK,
                unit="job",
                input_summary=f"{len(job.objections)} objections, attempt {job.hc_repair_attempts}",
                output_summary=f"{result.errors} errors, {result.warnings} warnings",
                duration_ms=int((time.perf_counter() - start) * 1000),
                details={"counts": result.counts},
            ))

        return {
            "hc_errors": result.errors,
            "hc_warnings": result.warnings,
            "hc_repair_attempts": job.hc_repair_attempts,
        }

    return hc_check_node


# =============================================================================
# HC Repair
# =============================================================================


def error_targets(job: PipelineJob) -> list[RepairTarget]:
    """Repair targets of the error-severity violations in the latest check."""
    result = job.latest_hc_result
    if result is None or result.repair_plan is None:
        return []
    # The checker emits exactly one target per violation, in order
    return [
        target
        for violation, target in zip(result.violations, result.repair_plan.targets)
        if violation.severity == ViolationSeverity.ERROR
    ]


def apply_repair(job: PipelineJob, runtime: PipelineRuntime) -> list[int]:
    """
    Reset the chunks named by the latest check's error targets.

    A target without a chunk index is sent to the chunk whose output best
    covers its instruction, or to the stage's last chunk when none does.
    The job's current stage moves back to the lowest reopened stage.

    Args:
        job: Job with a failed horizontal check; mutated and saved.
        runtime: Node dependencies.

    Returns:
        Stage numbers that were reopened.
    """
    targets = error_targets(job)
    stages = {target.stage for target in targets}
    # New or changed responses must be re-integrated
    if 3 in stages:
        stages.add(4)

    reopened = []
    per_chunk: dict[tuple[int, int], list[str]] = defaultdict(list)
    for number in sorted(stages):
        document = runtime.store.load_document(job.job_id, number)
        if document is None:
            continue
        for target in targets:
            if target.stage != number:
                continue
            index = target.chunk_index
            if index is None:
                index = best_chunk(document, target.instruction)
                if index is None and document.chunks:
                    index = document.chunks[-1].index
                logger.debug(f"HC_REPAIR: stage {number} target without a chunk sent to chunk {index}")
            if index is not None:
                per_chunk[(number, index)].append(target.instruction)
        for (stage, index), instructions in per_chunk.items():
            if stage == number:
                document.chunk(index).reset_for_rerun(instructions)
        document.status = UnitStatus.PENDING
        document.stitch_repairs_done = 0
        runtime.store.save_document(document)

        record = job.stage_record(number)
        record.status = StageStatus.CHUNK_PROCESSING
        record.completed_at = None
        reopened.append(number)

    if reopened:
        job.current_stage = reopened[0]
    job.hc_repair_attempts += 1
    runtime.store.save_job(job)
    logger.info(
        f"HC_REPAIR: job {job.job_id} attempt {job.hc_repair_attempts}: "
        f"{len(per_chunk)} chunks reset in stages {reopened}"
    )
    return reopened


def create_hc_repair_node(runtime: PipelineRuntime) -> Callable[[PipelineGraphState], dict[str, Any]]:
    def hc_repair_node(state: PipelineGraphState) -> dict[str, Any]:
        job = runtime.store.load_job(state["job_id"])
        apply_repair(job, runtime)
        return {"hc_repair_attempts": job.hc_repair_attempts, "current_stage": job.current_stage}

    return hc_repair_node
