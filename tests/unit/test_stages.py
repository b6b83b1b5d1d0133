"""Tests for the four stage writers.

This module tests:
- OBJECTION and RESPONSE block parsing
- Objection quota apportionment
- What each writer prepares for its chunks
- What each writer records on the job afterwards
"""

import pytest

from hcc.errors.exceptions import StageError
from hcc.hierarchy.text_utils import split_sentences
from hcc.stages.bulletproof import BulletproofWriter
from hcc.stages.objections import ObjectionsWriter, apportion_quota, parse_objection_blocks
from hcc.stages.reconstruction import ReconstructionWriter
from hcc.stages.responses import ResponsesWriter, parse_response_blocks
from hcc.state.enums import (
    ContentAddition,
    HierarchyLevel,
    IntegrationStrategy,
    LedgerEntryType,
    ObjectionSeverity,
    ObjectionType,
    PipelineStage,
    StageStatus,
    UnitStatus,
)
from hcc.state.models import (
    Chapter,
    Chunk,
    Document,
    LedgerEntry,
    Objection,
    Part,
    PipelineJob,
    Skeleton,
    UserInstructions,
)


def reconstructed_job(text: str, **fields) -> PipelineJob:
    """Job whose reconstruction stage is complete with ``text`` as output."""
    job = PipelineJob(original_text=text, **fields)
    record = job.stage_record(1)
    record.status = StageStatus.COMPLETE
    record.output_text = text
    record.output_words = len(text.split())
    return job


def output_document(stage: PipelineStage, outputs: list[str]) -> Document:
    chunks = [
        Chunk(index=i, input_text="x ", input_words=1, output_text=out, status=UnitStatus.COMPLETED)
        for i, out in enumerate(outputs)
    ]
    return Document(
        job_id="job-1",
        stage=stage,
        original_text="x " * len(chunks),
        input_words=len(chunks),
        parts=[Part(index=0, chapters=[Chapter(index=0, chunks=chunks)])],
    )


def answered(index: int, claim: str, response: str, severity=ObjectionSeverity.SERIOUS) -> Objection:
    return Objection(
        index=index,
        claim_targeted=claim,
        severity=severity,
        objection_text=f"Doubt number {index}.",
        initial_response=response,
        enhanced_response=response,
    )


OBJECTION_OUTPUT = """Some preamble the parser skips.

OBJECTION #1
Claim: Prices carry information
Location: paragraph 1
Type: Empirical
Severity: serious
Objection: Prices move on noise.
Traders herd.

OBJECTION #2
Claim: Arbitrage corrects errors
Location: paragraph 3
Type: speculative
Severity: minor.
Objection: Arbitrage is limited by capital.
"""


# =============================================================================
# Block Parsing
# =============================================================================


class TestParseObjectionBlocks:
    """Tests for parse_objection_blocks."""

    def test_fields(self):
        blocks = parse_objection_blocks(OBJECTION_OUTPUT)
        assert [b["number"] for b in blocks] == ["1", "2"]
        assert blocks[0]["claim"] == "Prices carry information"
        assert blocks[0]["type"] == "Empirical"

    def test_objection_spans_lines(self):
        """Continuation lines join the current field."""
        blocks = parse_objection_blocks(OBJECTION_OUTPUT)
        assert blocks[0]["objection"] == "Prices move on noise. Traders herd."

    def test_no_blocks(self):
        assert parse_objection_blocks("Nothing structured here.") == []
        assert parse_objection_blocks("") == []


class TestParseResponseBlocks:
    """Tests for parse_response_blocks."""

    def test_fields_keyed_by_number(self):
        text = (
            "RESPONSE #3\n"
            "Response: Noise averages out.\n"
            "Enhanced Response: Noise averages out over many trades.\n"
            "Notes: adds scale\n"
            "Concessions: none\n\n"
            "RESPONSE #4\n"
            "Response: Capital flows in.\n"
        )
        blocks = parse_response_blocks(text)
        assert sorted(blocks) == [3, 4]
        assert blocks[3]["enhanced"] == "Noise averages out over many trades."
        assert blocks[3]["concessions"] == "none"
        assert blocks[4] == {"response": "Capital flows in."}


# =============================================================================
# Quotas
# =============================================================================


class TestApportionQuota:
    """Tests for apportion_quota."""

    def test_equal_weights(self):
        assert apportion_quota([500, 500, 500], 25) == [9, 8, 8]

    def test_proportional(self):
        quotas = apportion_quota([900, 100], 12)
        assert sum(quotas) == 12
        assert quotas[0] > quotas[1] >= 1

    def test_every_chunk_gets_one(self):
        assert apportion_quota([10, 10, 10, 10], 3) == [1, 1, 1, 1]

    def test_single_chunk_takes_all(self):
        assert apportion_quota([700], 25) == [25]

    def test_empty(self):
        assert apportion_quota([], 25) == []


# =============================================================================
# Stage 1: Reconstruction
# =============================================================================


class TestReconstructionWriter:
    """Tests for ReconstructionWriter.prepare."""

    def test_bands_share_document_target(self, short_document):
        job = PipelineJob(original_text=short_document)
        document = ReconstructionWriter().prepare(job)

        config = document.length_config
        assert config.target_mid == document.input_words
        chunks = document.chunks
        assert len(chunks) > 1
        assert abs(sum(c.target_words for c in chunks) - config.target_mid) <= len(chunks)
        for chunk in chunks:
            assert chunk.min_words < chunk.target_words < chunk.max_words

    def test_additions_become_constraints(self, short_document):
        job = PipelineJob(
            original_text=short_document,
            user_instructions=UserInstructions(
                content_additions=[ContentAddition.INTRODUCTION, ContentAddition.CONCLUDING_CHAPTER],
                must_add=["a glossary"],
            ),
        )
        chunks = ReconstructionWriter().prepare(job).chunks

        assert chunks[0].extra_constraints == ["Open with a short introduction to the whole document."]
        assert chunks[-1].extra_constraints == [
            "Close with a concluding section that draws the argument together.",
            "Make sure the document includes: a glossary",
        ]
        assert all(c.extra_constraints == [] for c in chunks[1:-1])

    def test_instruction_carries_job_context(self):
        job = PipelineJob(original_text="x", target_audience="students")
        assert "Target audience: students" in ReconstructionWriter().get_instruction(job)


# =============================================================================
# Stage 2: Objections
# =============================================================================


class TestObjectionsWriterPrepare:
    """Tests for ObjectionsWriter.prepare."""

    def test_requires_complete_reconstruction(self):
        job = PipelineJob(original_text="text")
        with pytest.raises(StageError):
            ObjectionsWriter().prepare(job)

    def test_quota_numbering(self, short_document):
        job = reconstructed_job(short_document)
        document = ObjectionsWriter().prepare(job)
        chunks = document.chunks

        numbers = [n for c in chunks for n in c.objection_indices]
        assert numbers == list(range(1, 26))
        for chunk in chunks:
            first, last = chunk.objection_indices[0], chunk.objection_indices[-1]
            assert chunk.target_words == len(chunk.objection_indices) * 120
            assert chunk.extra_constraints == [
                f"Write exactly {len(chunk.objection_indices)} objections, numbered #{first} to #{last}."
            ]
        assert document.length_config.target_mid == 25 * 120


class TestObjectionsWriterAbsorb:
    """Tests for ObjectionsWriter.absorb."""

    def test_sequential_indices_across_chunks(self):
        job = PipelineJob(original_text="text")
        job.stage_record(1).skeleton = Skeleton(
            level=HierarchyLevel.DOCUMENT,
            budget_words=2000,
            thesis="Markets work",
            commitment_ledger=[
                LedgerEntry(type=LedgerEntryType.ASSERTS, claim="Savings rise with rates"),
                LedgerEntry(type=LedgerEntryType.ASSERTS, claim="Arbitrage corrects errors"),
            ],
        )
        second = OBJECTION_OUTPUT.replace("#1", "#7").replace("#2", "#8")
        ObjectionsWriter().absorb(job, output_document(PipelineStage.OBJECTIONS, [OBJECTION_OUTPUT, second]))

        assert [o.index for o in job.objections] == [1, 2, 3, 4]
        assert [o.source_chunk for o in job.objections] == [0, 0, 1, 1]
        first, second_obj = job.objections[:2]
        assert first.type == ObjectionType.EMPIRICAL
        assert first.severity == ObjectionSeverity.SERIOUS
        # Unknown type falls back; trailing punctuation is ignored
        assert second_obj.type == ObjectionType.CONCEPTUAL
        assert second_obj.severity == ObjectionSeverity.MINOR
        assert second_obj.target_claim_index == 1

    def test_capped(self):
        job = PipelineJob(original_text="text")
        writer = ObjectionsWriter()
        writer.policy.max_objections = 3
        writer.absorb(job, output_document(PipelineStage.OBJECTIONS, [OBJECTION_OUTPUT, OBJECTION_OUTPUT]))
        assert [o.index for o in job.objections] == [1, 2, 3]

    def test_nothing_parsed(self):
        job = PipelineJob(original_text="text")
        with pytest.raises(StageError):
            ObjectionsWriter().absorb(job, output_document(PipelineStage.OBJECTIONS, ["No blocks at all."]))


# =============================================================================
# Stage 3: Responses
# =============================================================================


class TestResponsesWriterPrepare:
    """Tests for ResponsesWriter.prepare."""

    def test_requires_objections(self):
        with pytest.raises(StageError):
            ResponsesWriter().prepare(PipelineJob(original_text="text"))

    def test_groups_of_five(self):
        job = PipelineJob(
            original_text="text",
            objections=[Objection(index=i, objection_text=f"Doubt {i}.") for i in range(1, 13)],
        )
        document = ResponsesWriter().prepare(job)
        chunks = document.chunks

        assert [c.objection_indices for c in chunks] == [
            [1, 2, 3, 4, 5], [6, 7, 8, 9, 10], [11, 12],
        ]
        assert [c.target_words for c in chunks] == [900, 900, 360]
        assert chunks[2].extra_constraints == ["Answer objections #11, #12, one RESPONSE block each."]
        assert chunks[0].input_text.startswith("OBJECTION #1\n")
        assert "Objection: Doubt 5." in chunks[0].input_text
        assert document.length_config.target_mid == 2160


class TestResponsesWriterAbsorb:
    """Tests for ResponsesWriter.absorb."""

    def test_fills_responses(self):
        job = PipelineJob(original_text="text", objections=[Objection(index=1), Objection(index=2)])
        output = (
            "RESPONSE #1\n"
            "Response: Short answer.\n"
            "Enhanced: Longer answer.\n"
            "Notes: more depth\n"
            "Concessions: data is thin; samples are small\n\n"
            "RESPONSE #2\n"
            "Response: Only an initial answer.\n"
            "Concessions: None\n\n"
            "RESPONSE #9\n"
            "Response: Nobody asked.\n"
        )
        ResponsesWriter().absorb(job, output_document(PipelineStage.RESPONSES, [output]))

        first, second = job.objections
        assert first.enhanced_response == "Longer answer."
        assert first.enhancement_notes == "more depth"
        assert first.concessions == ["data is thin", "samples are small"]
        assert first.response_chunk == 0
        assert second.enhanced_response == "Only an initial answer."
        assert second.concessions == []


# =============================================================================
# Stage 4: Bulletproof
# =============================================================================


@pytest.fixture
def bulletproof_job(short_document):
    sentences = split_sentences(short_document)
    job = reconstructed_job(short_document)
    job.objections = [
        answered(1, sentences[40], "Factor f40 holds in region r40 per evidence e40."),
        answered(2, sentences[3], "Evidence e3 is robust.", severity=ObjectionSeverity.MINOR),
        Objection(index=3, claim_targeted=sentences[5], objection_text="Unanswered."),
    ]
    return job, sentences


class TestBulletproofWriter:
    """Tests for mapping, prompting and verifying integrations."""

    def test_requires_complete_reconstruction(self):
        with pytest.raises(StageError):
            BulletproofWriter().prepare(PipelineJob(original_text="text"))

    def test_maps_to_chunk_holding_claim(self, bulletproof_job):
        job, sentences = bulletproof_job
        document = BulletproofWriter().prepare(job)

        first = job.objection(1)
        chunk = document.chunk(first.integration_chunk)
        assert sentences[40] in chunk.input_text
        assert first.integration_strategy == IntegrationStrategy.PREEMPTIVE
        assert job.objection(2).integration_strategy == IntegrationStrategy.FOOTNOTE
        assert job.objection(3).integration_chunk is None
        assert 1 in chunk.objection_indices
        assert chunk.target_words == chunk.input_words + 60 * len(chunk.objection_indices)

    def test_chunk_content(self, bulletproof_job):
        job, _ = bulletproof_job
        writer = BulletproofWriter()
        document = writer.prepare(job)
        chunk = document.chunk(job.objection(1).integration_chunk)

        content = writer.chunk_content(job, document, chunk)
        assert content.startswith(chunk.input_text.rstrip())
        assert "RESPONSES TO INTEGRATE:" in content
        assert "- Objection #1 (preemptive): Doubt number 1." in content
        assert "  Response: Factor f40 holds in region r40 per evidence e40." in content

        untouched = [c for c in document.chunks if not c.objection_indices]
        if untouched:
            assert writer.chunk_content(job, document, untouched[0]) is None

    def test_integration_verified_by_overlap(self, bulletproof_job):
        job, _ = bulletproof_job
        writer = BulletproofWriter()
        document = writer.prepare(job)
        chunk = document.chunk(job.objection(1).integration_chunk)
        chunk.objection_indices = [1]
        chunk.status = UnitStatus.COMPLETED
        chunk.output_text = "Factor f40 holds in region r40 per evidence e40, as argued before."

        checks = writer.integrations(job, [chunk])
        assert len(checks) == 1
        assert checks[0].verified
        assert job.objection(1).integration_verified
        assert job.objection(1).integrated_in_section == f"chunk-{chunk.index}"

    def test_integration_missing_from_output(self, bulletproof_job):
        job, _ = bulletproof_job
        writer = BulletproofWriter()
        document = writer.prepare(job)
        chunk = document.chunk(job.objection(1).integration_chunk)
        chunk.objection_indices = [1]
        chunk.status = UnitStatus.COMPLETED
        chunk.output_text = "Completely unrelated prose about gardens."

        checks = writer.integrations(job, [chunk])
        assert not checks[0].verified
        assert job.objection(1).integrated_in_section is None

    def test_refresh_maps_new_response(self, bulletproof_job):
        job, sentences = bulletproof_job
        writer = BulletproofWriter()
        document = writer.prepare(job)
        for chunk in document.chunks:
            chunk.status = UnitStatus.COMPLETED
            chunk.output_text = chunk.input_text

        pending = job.objection(3)
        pending.enhanced_response = "Sentence five stands."
        writer.refresh(job, document)

        chunk = document.chunk(pending.integration_chunk)
        assert sentences[5] in chunk.input_text
        assert 3 in chunk.objection_indices
        assert chunk.status == UnitStatus.PENDING
        assert chunk.output_text is None
