"""Stage 1: reconstruction of the original document."""

import logging

from hcc.stages.base import BaseStageWriter
from hcc.state.enums import ContentAddition, PipelineStage
from hcc.state.models import Document, PipelineJob

logger = logging.getLogger(__name__)

RECONSTRUCTION_INSTRUCTION = """You are reconstructing one section of a longer document.

Rewrite the TEXT as a clear, rigorous version of the same argument. Keep
every commitment in the skeleton: do not drop, soften or reverse any claim
the document asserts or rejects, and use key terms only in the meanings the
skeleton gives them. Write continuous prose for this section only; do not
summarize the rest of the document."""

_ADDITION_CONSTRAINTS = {
    ContentAddition.INTRODUCTION: (0, "Open with a short introduction to the whole document."),
    ContentAddition.SUMMARY: (0, "Open with a brief summary of the document's argument."),
    ContentAddition.CONCLUDING_CHAPTER: (-1, "Close with a concluding section that draws the argument together."),
}


class ReconstructionWriter(BaseStageWriter):
    """Rewrites the original text at the planned length."""

    stage = PipelineStage.RECONSTRUCTION
    stage_title = "Reconstruction"
    tracks_coherence = True

    def get_instruction(self, job: PipelineJob) -> str:
        context = self.job_context(job)
        return f"{RECONSTRUCTION_INSTRUCTION}\n\n{context}" if context else RECONSTRUCTION_INSTRUCTION

    def prepare(self, job: PipelineJob) -> Document:
        document = self.detector.detect(job.original_text, self.stage, job.job_id)
        config = self.planner.plan(document.input_words, job.user_instructions)
        self.apportion(document, config)

        chunks = document.chunks
        ui = job.user_instructions
        for addition in ui.content_additions:
            if addition in _ADDITION_CONSTRAINTS:
                position, constraint = _ADDITION_CONSTRAINTS[addition]
                chunks[position].extra_constraints.append(constraint)
        for item in ui.must_add:
            chunks[-1].extra_constraints.append(f"Make sure the document includes: {item}")

        logger.info(
            f"RECONSTRUCTION: {document.input_words} words -> target {config.target_mid} "
            f"[{config.target_min},{config.target_max}] ({config.mode.value})"
        )
        return document
