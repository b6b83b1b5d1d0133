"""Unit tests for state management module."""

import pytest
from pydantic import ValidationError

from hcc.errors.exceptions import WorkflowError
from hcc.state.coherence_modes import LogicalConsistencyState, MathematicalState
from hcc.state.enums import (
    HierarchyLevel,
    JobStatus,
    LengthMode,
    ObjectionSeverity,
    ObjectionType,
    PipelineStage,
    STAGE_ORDER,
    StageStatus,
    UnitStatus,
)
from hcc.state.models import (
    Chapter,
    Chunk,
    Document,
    LengthEnforcementConfig,
    Objection,
    Part,
    PipelineJob,
    Skeleton,
    UserInstructions,
)


# =============================================================================
# Enums
# =============================================================================


class TestPipelineStage:
    """Tests for stage numbering."""

    def test_numbers_follow_order(self):
        assert [s.number for s in STAGE_ORDER] == [1, 2, 3, 4]

    def test_from_number(self):
        assert PipelineStage.from_number(3) == PipelineStage.RESPONSES


# =============================================================================
# Job
# =============================================================================


class TestPipelineJob:
    """Tests for PipelineJob."""

    def test_defaults(self):
        job = PipelineJob(original_text="text")
        assert job.status == JobStatus.PENDING
        assert job.current_stage == 1
        assert sorted(job.stages) == [1, 2, 3, 4]
        assert job.stage_record(PipelineStage.OBJECTIONS).stage == PipelineStage.OBJECTIONS
        assert job.job_id

    def test_advance_requires_complete_stage(self):
        job = PipelineJob(original_text="text")
        with pytest.raises(WorkflowError):
            job.advance_stage()
        assert job.current_stage == 1

    def test_advance(self):
        job = PipelineJob(original_text="text")
        job.stage_record(1).status = StageStatus.COMPLETE
        assert job.advance_stage() == 2

    def test_advance_skips_complete_stages(self):
        job = PipelineJob(original_text="text")
        for number in (1, 2, 3):
            job.stage_record(number).status = StageStatus.COMPLETE
        assert job.advance_stage() == 4

    def test_cannot_advance_past_last_stage(self):
        job = PipelineJob(original_text="text", current_stage=4)
        job.stage_record(4).status = StageStatus.COMPLETE
        with pytest.raises(WorkflowError):
            job.advance_stage()

    def test_all_stages_complete(self):
        job = PipelineJob(original_text="text")
        for record in job.stages.values():
            record.status = StageStatus.COMPLETE
        assert job.all_stages_complete

    def test_objection_lookup(self):
        job = PipelineJob(original_text="text", objections=[Objection(index=4)])
        assert job.objection(4).index == 4
        with pytest.raises(KeyError):
            job.objection(5)

    def test_json_round_trip_keeps_stage_keys(self):
        """Stage records survive JSON with integer keys."""
        job = PipelineJob(original_text="text", coherence_state=MathematicalState(goal="prove it"))
        restored = PipelineJob.model_validate(job.model_dump(mode="json"))
        assert sorted(restored.stages) == [1, 2, 3, 4]
        assert isinstance(restored.coherence_state, MathematicalState)
        assert restored.coherence_state.goal == "prove it"


# =============================================================================
# Hierarchy
# =============================================================================


class TestChunk:
    """Tests for Chunk."""

    def test_reset_for_rerun(self):
        chunk = Chunk(
            index=1,
            input_text="x",
            input_words=1,
            status=UnitStatus.FAILED,
            output_text="out",
            output_words=1,
            retry_count=3,
            deviation=-4,
            deviation_accepted=True,
            extra_constraints=["keep it"],
        )
        chunk.reset_for_rerun(["keep it", "fix drift"])

        assert chunk.status == UnitStatus.PENDING
        assert chunk.output_text is None
        assert chunk.retry_count == 0
        assert chunk.deviation == 0
        assert not chunk.deviation_accepted
        assert chunk.extra_constraints == ["keep it", "fix drift"]

    def test_usable(self):
        chunk = Chunk(index=0, input_text="x", input_words=1, output_text="y", status=UnitStatus.FAILED)
        assert not chunk.usable
        chunk.deviation_accepted = True
        assert chunk.usable

    def test_index_not_negative(self):
        with pytest.raises(ValidationError):
            Chunk(index=-1, input_text="x", input_words=1)


class TestDocument:
    """Tests for Document traversal."""

    def test_chunks_in_order_across_chapters(self):
        chunks = [Chunk(index=i, input_text=f"c{i} ", input_words=1) for i in range(4)]
        document = Document(
            job_id="j",
            stage=PipelineStage.RECONSTRUCTION,
            original_text="c0 c1 c2 c3",
            input_words=4,
            parts=[Part(index=0, chapters=[
                Chapter(index=0, chunks=chunks[:2]),
                Chapter(index=1, chunks=chunks[2:]),
            ])],
        )
        assert [c.index for c in document.chunks] == [0, 1, 2, 3]
        assert document.chunk(2).input_text == "c2 "
        assert document.parts[0].input_words == 4
        with pytest.raises(KeyError):
            document.chunk(9)


# =============================================================================
# Length and Skeleton
# =============================================================================


class TestLengthEnforcementConfig:
    """Tests for the band validator."""

    def test_valid(self):
        config = LengthEnforcementConfig(
            input_words=1000, target_min=850, target_mid=1000, target_max=1150,
            ratio=1.0, mode=LengthMode.MAINTAIN,
        )
        assert config.target_mid == 1000

    @pytest.mark.parametrize("bounds", [(1000, 1000, 1150), (850, 1000, 1000), (900, 800, 1000)])
    def test_band_must_bracket_midpoint(self, bounds):
        low, mid, high = bounds
        with pytest.raises(ValidationError):
            LengthEnforcementConfig(
                input_words=1000, target_min=low, target_mid=mid, target_max=high,
                ratio=1.0, mode=LengthMode.MAINTAIN,
            )


class TestSkeleton:
    """Tests for Skeleton helpers."""

    def test_word_size_and_render(self):
        skeleton = Skeleton(
            level=HierarchyLevel.CHAPTER,
            budget_words=100,
            thesis="Two words",
            outline=["three words here"],
            user_instructions=UserInstructions(must_preserve=["the method section"]),
        )
        assert skeleton.word_size == 5
        rendered = skeleton.render()
        assert rendered.startswith("[CHAPTER SKELETON]")
        assert "Must preserve: the method section" in rendered

    def test_budget_must_be_positive(self):
        with pytest.raises(ValidationError):
            Skeleton(level=HierarchyLevel.CHUNK, budget_words=0)


# =============================================================================
# Objections and Coherence State
# =============================================================================


class TestObjection:
    """Tests for Objection."""

    def test_render_block(self):
        objection = Objection(
            index=3,
            claim_targeted="Prices are efficient",
            claim_location="paragraph 2",
            type=ObjectionType.EMPIRICAL,
            severity=ObjectionSeverity.SERIOUS,
            objection_text="Bubbles happen.",
        )
        rendered = objection.render()
        assert rendered.startswith("OBJECTION #3\n")
        assert "Severity: serious" in rendered
        assert "Type: empirical" in rendered

    def test_has_response(self):
        objection = Objection(index=1)
        assert not objection.has_response
        objection.enhanced_response = "An answer."
        assert objection.has_response

    def test_index_is_one_based(self):
        with pytest.raises(ValidationError):
            Objection(index=0)


class TestCoherenceState:
    """Tests for the tagged coherence state union."""

    def test_discriminated_by_mode(self):
        job = PipelineJob.model_validate({
            "original_text": "x",
            "coherence_state": {"mode": "logical-consistency", "assertions": ["a"]},
        })
        assert isinstance(job.coherence_state, LogicalConsistencyState)
        assert job.coherence_state.assertions == ["a"]
