"""Stage 3: responses to the stage-2 objections."""

import logging
import re

from hcc.errors.exceptions import StageError
from hcc.hierarchy.text_utils import count_words
from hcc.stages.base import BaseStageWriter
from hcc.state.enums import PipelineStage
from hcc.state.models import Chunk, Document, PipelineJob

logger = logging.getLogger(__name__)

RESPONSES_INSTRUCTION = """You are the author of the argument, answering objections to it.

For every OBJECTION in the TEXT write one block in exactly this format:

RESPONSE #<n>
Response: <a direct answer to the objection>
Enhanced: <a stronger, fuller answer that also repairs the argument where needed>
Notes: <what the enhanced answer adds>
Concessions: <points you concede, separated by semicolons, or "none">

Use the objection's own number. Stay consistent with the commitments in the
skeleton unless you explicitly concede a point."""

_BLOCK = re.compile(r"^\s*RESPONSE\s*#\s*(\d+)\s*$", re.IGNORECASE | re.MULTILINE)
_FIELD = re.compile(r"^\s*(Response|Enhanced|Enhanced Response|Notes|Concessions)\s*:\s*(.*)$", re.IGNORECASE)

_FIELD_KEYS = {
    "response": "response",
    "enhanced": "enhanced",
    "enhanced response": "enhanced",
    "notes": "notes",
    "concessions": "concessions",
}


def parse_response_blocks(text: str) -> dict[int, dict[str, str]]:
    """Objection number to the fields of its RESPONSE block."""
    matches = list(_BLOCK.finditer(text or ""))
    blocks: dict[int, dict[str, str]] = {}
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        fields: dict[str, str] = {}
        current = None
        for line in text[match.end():end].splitlines():
            field_match = _FIELD.match(line)
            if field_match:
                current = _FIELD_KEYS[field_match.group(1).lower()]
                fields[current] = field_match.group(2).strip()
            elif current and line.strip():
                fields[current] = f"{fields[current]} {line.strip()}".strip()
        blocks[int(match.group(1))] = fields
    return blocks


class ResponsesWriter(BaseStageWriter):
    """Answers objections in fixed-size groups."""

    stage = PipelineStage.RESPONSES
    stage_title = "Responses"

    def get_instruction(self, job: PipelineJob) -> str:
        context = self.job_context(job)
        return f"{RESPONSES_INSTRUCTION}\n\n{context}" if context else RESPONSES_INSTRUCTION

    def prepare(self, job: PipelineJob) -> Document:
        if not job.objections:
            raise StageError("Responses need the stage-2 objections", stage=self.stage.value)

        group_size = max(1, self.policy.objections_per_response_chunk)
        chunks = []
        for i in range(0, len(job.objections), group_size):
            group = job.objections[i:i + group_size]
            text = "".join(o.render() for o in group)
            chunk = Chunk(
                index=len(chunks),
                input_text=text,
                input_words=count_words(text),
                objection_indices=[o.index for o in group],
            )
            self.set_band(chunk, len(group) * self.policy.words_per_response)
            chunk.extra_constraints.append(
                "Answer objections " + ", ".join(f"#{o.index}" for o in group) + ", one RESPONSE block each."
            )
            chunks.append(chunk)

        text = "".join(c.input_text for c in chunks)
        document = self.detector.build(text, self.stage, job.job_id, chunks)
        total = sum(c.target_words for c in chunks)
        document.length_config = self.planner.plan_target(document.input_words, total)
        logger.info(f"RESPONSES: {len(job.objections)} objections in {len(chunks)} chunks, target {total} words")
        return document

    def absorb(self, job: PipelineJob, document: Document) -> None:
        """Fill initial/enhanced responses from each chunk's RESPONSE blocks."""
        answered = 0
        for chunk in document.iter_chunks():
            blocks = parse_response_blocks(chunk.output_text or "")
            for number, fields in blocks.items():
                try:
                    objection = job.objection(number)
                except KeyError:
                    logger.warning(f"RESPONSES: chunk {chunk.index} answered unknown objection #{number}")
                    continue
                objection.initial_response = fields.get("response", "")
                objection.enhanced_response = fields.get("enhanced", "") or objection.initial_response
                objection.enhancement_notes = fields.get("notes", "")
                concessions = fields.get("concessions", "")
                objection.concessions = [
                    c.strip() for c in concessions.split(";")
                    if c.strip() and c.strip().lower() not in ("none", "n/a")
                ]
                objection.response_chunk = chunk.index
                answered += 1
        logger.info(f"RESPONSES: {answered} of {len(job.objections)} objections answered")
