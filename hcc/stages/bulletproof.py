"""Stage 4: objection-proof rewrite of the reconstruction.

Every answered objection is mapped to the chunk whose input best matches
the claim it targets. That chunk's prompt carries the response and the
integration strategy chosen from the objection's severity; once the chunk
is done the integration is verified by content overlap.
"""

import logging

from hcc.errors.exceptions import StageError
from hcc.hierarchy.text_utils import coverage
from hcc.stages.base import BaseStageWriter
from hcc.state.enums import SEVERITY_STRATEGY, PipelineStage, StageStatus, UnitStatus
from hcc.state.models import Chunk, Document, IntegrationCheck, Objection, PipelineJob

logger = logging.getLogger(__name__)

BULLETPROOF_INSTRUCTION = """You are producing the final, objection-proof version of one section.

Rewrite the TEXT so that it keeps every commitment in the skeleton and works
in the responses listed under RESPONSES TO INTEGRATE, each with its stated
strategy:
- structural: reorganize the section's argument around the objection
- preemptive: address the objection before the claim is made
- inline: address it where the claim is made
- footnote: add a brief note attached to the claim
Do not list the objections; absorb the answers into the prose."""


def _response_text(objection: Objection) -> str:
    return objection.enhanced_response or objection.initial_response


class BulletproofWriter(BaseStageWriter):
    """Rewrites the reconstruction with the stage-3 responses integrated."""

    stage = PipelineStage.BULLETPROOF
    stage_title = "Bulletproof"
    tracks_coherence = True

    def get_instruction(self, job: PipelineJob) -> str:
        context = self.job_context(job)
        return f"{BULLETPROOF_INSTRUCTION}\n\n{context}" if context else BULLETPROOF_INSTRUCTION

    def prepare(self, job: PipelineJob) -> Document:
        source = job.stage_record(1)
        if source.status != StageStatus.COMPLETE or not source.output_text:
            raise StageError("Bulletproof rewrite needs a completed reconstruction", stage=self.stage.value)

        document = self.detector.detect(source.output_text, self.stage, job.job_id)
        chunks = document.chunks
        for objection in job.objections:
            objection.integration_chunk = None
            objection.integration_verified = False
        self._map(job, chunks)

        extra = sum(len(c.objection_indices) for c in chunks) * self.policy.words_per_integration
        config = self.planner.plan_target(document.input_words, document.input_words + extra)
        document.length_config = config
        for chunk in chunks:
            self._size(chunk)

        logger.info(
            f"BULLETPROOF: {len(chunks)} chunks, "
            f"{sum(len(c.objection_indices) for c in chunks)} responses mapped, target {config.target_mid} words"
        )
        return document

    def refresh(self, job: PipelineJob, document: Document) -> None:
        """Map objections answered since the document was prepared and re-run their chunks."""
        chunks = document.chunks
        for chunk in self._map(job, chunks):
            self._size(chunk)
            if chunk.status != UnitStatus.PENDING:
                chunk.reset_for_rerun([])

    def _size(self, chunk: Chunk) -> None:
        # Maintain the reconstruction's length plus room for each response
        self.set_band(chunk, chunk.input_words + len(chunk.objection_indices) * self.policy.words_per_integration)

    def _map(self, job: PipelineJob, chunks: list[Chunk]) -> list[Chunk]:
        """Assign unmapped answered objections to their best chunk."""
        touched: list[Chunk] = []
        for objection in job.objections:
            if objection.integration_chunk is not None or not objection.has_response:
                continue
            target = objection.claim_targeted or objection.objection_text
            best = max(chunks, key=lambda c: (coverage(target, c.input_text), -c.index))
            objection.integration_chunk = best.index
            objection.integration_strategy = SEVERITY_STRATEGY[objection.severity]
            if objection.index not in best.objection_indices:
                best.objection_indices.append(objection.index)
            if best not in touched:
                touched.append(best)
        return touched

    def chunk_content(self, job: PipelineJob, document: Document, chunk: Chunk) -> str | None:
        if not chunk.objection_indices:
            return None
        lines = [chunk.input_text.rstrip(), "", "RESPONSES TO INTEGRATE:"]
        for number in chunk.objection_indices:
            objection = job.objection(number)
            strategy = objection.integration_strategy or SEVERITY_STRATEGY[objection.severity]
            lines.append(f"- Objection #{number} ({strategy.value}): {objection.objection_text}")
            lines.append(f"  Response: {_response_text(objection)}")
        return "\n".join(lines)

    def integrations(self, job: PipelineJob, chunks: list[Chunk]) -> list[IntegrationCheck]:
        """Verify each mapped response shows up in its chunk's output."""
        checks = []
        for chunk in chunks:
            for number in chunk.objection_indices:
                objection = job.objection(number)
                overlap = coverage(_response_text(objection), chunk.output_text or "")
                verified = chunk.usable and overlap >= self.policy.integration_threshold
                strategy = objection.integration_strategy or SEVERITY_STRATEGY[objection.severity]
                objection.integration_strategy = strategy
                objection.integration_verified = verified
                objection.integrated_in_section = f"chunk-{chunk.index}" if verified else None
                checks.append(IntegrationCheck(
                    objection_index=number,
                    chunk_index=chunk.index,
                    strategy=strategy,
                    verified=verified,
                    overlap=round(overlap, 3),
                ))
        return checks
