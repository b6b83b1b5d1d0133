"""Tests for pipeline graph nodes.

This module tests:
- Dispatch to the first incomplete stage and cooperative cancel
- Error targets and chunk resets for cross-stage repair
- Terminal status and error summaries
"""

import pytest

from hcc.nodes import (
    HC_CHECK_NODE,
    PipelineRuntime,
    apply_repair,
    create_dispatch_node,
    create_fallback_node,
    error_targets,
    finalize_job,
    summarize_errors,
)
from hcc.state.enums import (
    JobStatus,
    PipelineStage,
    StageStatus,
    UnitStatus,
    ViolationSeverity,
    ViolationType,
)
from hcc.state.models import (
    Chapter,
    Chunk,
    Document,
    HCCheckResult,
    HCRepairPlan,
    HCViolation,
    Part,
    PipelineJob,
    RepairTarget,
    UnitError,
)


@pytest.fixture
def runtime(scripted_generator, store, no_sleep):
    return PipelineRuntime(generator=scripted_generator(), store=store, sleep=no_sleep)


def finished_job(**fields) -> PipelineJob:
    job = PipelineJob(job_id="job-1", original_text="text", current_stage=4, **fields)
    for record in job.stages.values():
        record.status = StageStatus.COMPLETE
    return job


def completed_document(stage: PipelineStage, n: int = 2) -> Document:
    chunks = [
        Chunk(index=i, input_text=f"in {i} ", input_words=2, output_text=f"out {i}",
              output_words=2, status=UnitStatus.COMPLETED)
        for i in range(n)
    ]
    return Document(
        job_id="job-1",
        stage=stage,
        original_text="".join(c.input_text for c in chunks),
        input_words=2 * n,
        parts=[Part(index=0, chapters=[Chapter(index=0, chunks=chunks)])],
        output_text="out 0 out 1",
        status=UnitStatus.COMPLETED,
        stitch_repairs_done=1,
    )


def violation(severity: ViolationSeverity, kind=ViolationType.CONTRADICTION) -> HCViolation:
    return HCViolation(type=kind, severity=severity, description="x")


def target(stage: int, chunk_index: int | None, instruction: str,
           kind=ViolationType.CONTRADICTION) -> RepairTarget:
    return RepairTarget(stage=stage, chunk_index=chunk_index, violation_type=kind, instruction=instruction)


# =============================================================================
# Dispatch
# =============================================================================


class TestDispatchNode:
    """Tests for the dispatch node."""

    def test_first_incomplete_stage(self, runtime, store):
        job = PipelineJob(job_id="job-1", original_text="text")
        job.stage_record(1).status = StageStatus.COMPLETE
        store.save_job(job)

        update = create_dispatch_node(runtime)({"job_id": "job-1"})
        assert update["next_node"] == "objections"

    def test_all_complete_goes_to_check(self, runtime, store):
        store.save_job(finished_job())
        assert create_dispatch_node(runtime)({"job_id": "job-1"})["next_node"] == HC_CHECK_NODE

    def test_cancel_pauses(self, runtime, store):
        store.save_job(PipelineJob(job_id="job-1", original_text="text"))
        requested_at = store.request_cancel("job-1")

        update = create_dispatch_node(runtime)({"job_id": "job-1"})
        assert update["_cancelled"] is True
        assert update["status"] == JobStatus.PAUSED

        job = store.load_job("job-1")
        assert job.status == JobStatus.PAUSED
        assert job.aborted_at == requested_at


# =============================================================================
# Repair
# =============================================================================


class TestErrorTargets:
    """Tests for error_targets."""

    def test_only_error_violations(self):
        job = finished_job()
        job.hc_results.append(HCCheckResult(
            violations=[
                violation(ViolationSeverity.ERROR),
                violation(ViolationSeverity.WARNING, ViolationType.TERMINOLOGY_DRIFT),
                violation(ViolationSeverity.ERROR, ViolationType.COMMITMENT_MISSING),
            ],
            repair_plan=HCRepairPlan(targets=[
                target(3, 0, "first"),
                target(1, None, "second", ViolationType.TERMINOLOGY_DRIFT),
                target(4, 1, "third", ViolationType.COMMITMENT_MISSING),
            ]),
        ))
        assert [t.instruction for t in error_targets(job)] == ["first", "third"]

    def test_no_result(self):
        assert error_targets(finished_job()) == []


class TestApplyRepair:
    """Tests for apply_repair."""

    def test_response_repair_reopens_rewrite(self, runtime, store):
        job = finished_job()
        job.hc_results.append(HCCheckResult(
            violations=[violation(ViolationSeverity.ERROR, ViolationType.OBJECTION_NOT_ADDRESSED)],
            repair_plan=HCRepairPlan(targets=[
                target(3, 1, "Answer objection #7", ViolationType.OBJECTION_NOT_ADDRESSED),
            ]),
        ))
        store.save_document(completed_document(PipelineStage.RESPONSES))
        store.save_document(completed_document(PipelineStage.BULLETPROOF))

        assert apply_repair(job, runtime) == [3, 4]

        responses = store.load_document("job-1", 3)
        assert responses.status == UnitStatus.PENDING
        assert responses.stitch_repairs_done == 0
        assert responses.chunk(0).status == UnitStatus.COMPLETED
        repaired = responses.chunk(1)
        assert repaired.status == UnitStatus.PENDING
        assert repaired.output_text is None
        assert repaired.extra_constraints == ["Answer objection #7"]

        bulletproof = store.load_document("job-1", 4)
        assert bulletproof.status == UnitStatus.PENDING
        assert all(c.status == UnitStatus.COMPLETED for c in bulletproof.chunks)

        saved = store.load_job("job-1")
        assert saved.hc_repair_attempts == 1
        assert saved.stage_record(3).status == StageStatus.CHUNK_PROCESSING
        assert saved.stage_record(4).status == StageStatus.CHUNK_PROCESSING
        assert saved.stage_record(1).status == StageStatus.COMPLETE

    def test_instructions_grouped_per_chunk(self, runtime, store):
        job = finished_job()
        job.hc_results.append(HCCheckResult(
            violations=[violation(ViolationSeverity.ERROR), violation(ViolationSeverity.ERROR)],
            repair_plan=HCRepairPlan(targets=[target(1, 0, "keep A"), target(1, 0, "keep B")]),
        ))
        store.save_document(completed_document(PipelineStage.RECONSTRUCTION))

        assert apply_repair(job, runtime) == [1]
        assert store.load_document("job-1", 1).chunk(0).extra_constraints == ["keep A", "keep B"]

    def test_current_stage_moves_to_lowest_reopened(self, runtime, store):
        job = finished_job()
        job.hc_results.append(HCCheckResult(
            violations=[violation(ViolationSeverity.ERROR, ViolationType.OBJECTION_NOT_ADDRESSED)],
            repair_plan=HCRepairPlan(targets=[
                target(3, 0, "Answer objection #2", ViolationType.OBJECTION_NOT_ADDRESSED),
            ]),
        ))
        store.save_document(completed_document(PipelineStage.RESPONSES))
        store.save_document(completed_document(PipelineStage.BULLETPROOF))

        apply_repair(job, runtime)

        saved = store.load_job("job-1")
        assert saved.current_stage == 3
        saved.stage_record(3).status = StageStatus.COMPLETE
        assert saved.advance_stage() == 4

    def test_target_without_chunk_goes_to_covering_chunk(self, runtime, store):
        document = completed_document(PipelineStage.RECONSTRUCTION, n=3)
        document.chunk(0).output_text = "Wages rose sharply during the spring hiring season."
        document.chunk(1).output_text = "Central banks control short term interest rates."
        document.chunk(2).output_text = "Harvests failed across northern provinces."
        store.save_document(document)
        job = finished_job()
        job.hc_results.append(HCCheckResult(
            violations=[violation(ViolationSeverity.ERROR)],
            repair_plan=HCRepairPlan(targets=[
                target(1, None, "Do not contradict the commitment that central banks control interest rates"),
            ]),
        ))

        apply_repair(job, runtime)

        saved = store.load_document("job-1", 1)
        assert saved.chunk(1).status == UnitStatus.PENDING
        assert saved.chunk(1).extra_constraints == [
            "Do not contradict the commitment that central banks control interest rates",
        ]
        assert saved.chunk(0).status == saved.chunk(2).status == UnitStatus.COMPLETED
        assert store.load_job("job-1").current_stage == 1

    def test_unmatched_target_goes_to_last_chunk(self, runtime, store):
        store.save_document(completed_document(PipelineStage.BULLETPROOF))
        job = finished_job()
        job.hc_results.append(HCCheckResult(
            violations=[violation(ViolationSeverity.ERROR, ViolationType.COMMITMENT_MISSING)],
            repair_plan=HCRepairPlan(targets=[
                target(4, None, "Keep the glacier retreat finding", ViolationType.COMMITMENT_MISSING),
            ]),
        ))

        assert apply_repair(job, runtime) == [4]

        saved = store.load_document("job-1", 4)
        assert saved.chunk(0).status == UnitStatus.COMPLETED
        assert saved.chunk(1).extra_constraints == ["Keep the glacier retreat finding"]


# =============================================================================
# Finalize and Fallback
# =============================================================================


class TestFinalizeJob:
    """Tests for finalize_job."""

    def test_clean(self):
        job = finished_job()
        job.hc_results.append(HCCheckResult())
        assert finalize_job(job) == JobStatus.COMPLETE
        assert job.completed_at is not None
        assert job.errors == []

    def test_remaining_errors_recorded(self):
        job = finished_job(hc_repair_attempts=2)
        job.hc_results.append(HCCheckResult(violations=[violation(ViolationSeverity.ERROR)]))

        assert finalize_job(job) == JobStatus.COMPLETED_WITH_WARNINGS
        assert job.errors[0].category == "horizontal_violation"
        assert job.errors[0].node == "hc_check"
        assert "after 2 repair attempts" in job.errors[0].message

    def test_accepted_deviation_downgrades(self):
        job = finished_job()
        job.stage_record(1).deviation_chunks = [3]
        assert finalize_job(job) == JobStatus.COMPLETED_WITH_WARNINGS


class TestFallback:
    """Tests for the fallback node and error summaries."""

    def test_summarize_errors(self):
        errors = [
            UnitError(node="objections", category="stage_error", message="a", recoverable=False),
            UnitError(node="reconstruction:chunk-1", category="length_violation", message="b"),
            UnitError(node="objections", category="stage_error", message="c", recoverable=False),
        ]
        summary = summarize_errors(errors)
        assert summary["count"] == 3
        assert summary["categories"] == {"stage_error": 2, "length_violation": 1}
        assert summary["nodes_affected"] == ["objections", "reconstruction:chunk-1"]
        assert summary["recoverable_count"] == 1

    def test_summarize_nothing(self):
        assert summarize_errors([]) == {"count": 0, "categories": {}}

    def test_marks_job_failed(self, runtime, store):
        store.save_job(PipelineJob(job_id="job-1", original_text="text"))
        update = create_fallback_node(runtime)({"job_id": "job-1"})
        assert update["status"] == JobStatus.FAILED
        assert store.load_job("job-1").status == JobStatus.FAILED
