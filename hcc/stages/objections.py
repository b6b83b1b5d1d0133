"""Stage 2: objection generation against the reconstructed text."""

import logging
import math
import re

from hcc.errors.exceptions import StageError
from hcc.hierarchy.text_utils import coverage
from hcc.stages.base import BaseStageWriter
from hcc.state.enums import ObjectionSeverity, ObjectionType, PipelineStage, StageStatus
from hcc.state.models import Chunk, Document, Objection, PipelineJob

logger = logging.getLogger(__name__)

OBJECTIONS_INSTRUCTION = """You are a demanding critic of the argument in the TEXT.

Raise the strongest objections to the claims made in this section. For each
objection write one block in exactly this format:

OBJECTION #<n>
Claim: <the claim being attacked, quoted or closely paraphrased>
Location: <where in the text the claim is made>
Type: <logical | empirical | conceptual | methodological | practical>
Severity: <fatal | serious | moderate | minor>
Objection: <the objection itself>

Do not answer the objections."""

_BLOCK = re.compile(r"^\s*OBJECTION\s*#\s*(\d+)\s*$", re.IGNORECASE | re.MULTILINE)
_FIELD = re.compile(r"^\s*(Claim|Location|Type|Severity|Objection)\s*:\s*(.*)$", re.IGNORECASE)


def parse_objection_blocks(text: str) -> list[dict[str, str]]:
    """Split output into OBJECTION blocks and read their fields.

    A field value runs until the next field label; ``Objection`` may span
    several lines.
    """
    matches = list(_BLOCK.finditer(text or ""))
    blocks = []
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        body = text[match.end():end]
        fields: dict[str, str] = {"number": match.group(1)}
        current = None
        for line in body.splitlines():
            field_match = _FIELD.match(line)
            if field_match:
                current = field_match.group(1).lower()
                fields[current] = field_match.group(2).strip()
            elif current and line.strip():
                fields[current] = f"{fields[current]} {line.strip()}".strip()
        blocks.append(fields)
    return blocks


def _enum_value(enum_cls, raw: str | None, default):
    if not raw:
        return default
    word = raw.strip().lower().split()[0].strip(".,;:") if raw.strip() else ""
    try:
        return enum_cls(word)
    except ValueError:
        return default


def apportion_quota(weights: list[int], total: int) -> list[int]:
    """
    Split ``total`` across weights by largest remainder, at least 1 each.

    Args:
        weights: Word counts per chunk.
        total: Quota to distribute.

    Returns:
        Per-chunk quotas; they sum to max(total, len(weights)).
    """
    n = len(weights)
    if n == 0:
        return []
    if total <= n:
        return [1] * n
    spare = total - n
    weight_sum = sum(weights) or n
    shares = [spare * (w or 1) / weight_sum for w in weights]
    quotas = [1 + math.floor(s) for s in shares]
    leftover = total - sum(quotas)
    order = sorted(range(n), key=lambda i: (-(shares[i] - math.floor(shares[i])), i))
    for i in order[:leftover]:
        quotas[i] += 1
    return quotas


class ObjectionsWriter(BaseStageWriter):
    """Generates a bounded, apportioned set of objections."""

    stage = PipelineStage.OBJECTIONS
    stage_title = "Objections"

    def get_instruction(self, job: PipelineJob) -> str:
        context = self.job_context(job)
        return f"{OBJECTIONS_INSTRUCTION}\n\n{context}" if context else OBJECTIONS_INSTRUCTION

    def prepare(self, job: PipelineJob) -> Document:
        source = job.stage_record(1)
        if source.status != StageStatus.COMPLETE or not source.output_text:
            raise StageError("Objections need a completed reconstruction", stage=self.stage.value)

        words = source.output_words or len(source.output_text.split())
        size = max(self.policy.chunk_target_words, math.ceil(words / max(1, self.policy.max_objections // 2)))
        document = self.detector.detect(source.output_text, self.stage, job.job_id, target_words=size)

        chunks = document.chunks
        quotas = apportion_quota([c.input_words for c in chunks], self.policy.max_objections)
        number = 1
        for chunk, quota in zip(chunks, quotas):
            chunk.objection_indices = list(range(number, number + quota))
            self.set_band(chunk, quota * self.policy.words_per_objection)
            chunk.extra_constraints.append(
                f"Write exactly {quota} objections, numbered #{number} to #{number + quota - 1}."
            )
            number += quota

        total = sum(c.target_words for c in chunks)
        document.length_config = self.planner.plan_target(document.input_words, total)
        logger.info(f"OBJECTIONS: {len(chunks)} chunks, quota {sum(quotas)}, target {total} words")
        return document

    def absorb(self, job: PipelineJob, document: Document) -> None:
        """Parse OBJECTION blocks into numbered Objection records."""
        ledger = []
        skeleton = job.stage_record(1).skeleton
        if skeleton is not None:
            ledger = [e.claim for e in skeleton.commitment_ledger]

        objections: list[Objection] = []
        for chunk in document.iter_chunks():
            objections.extend(self._parse_chunk(chunk, ledger, start=len(objections) + 1))
            if len(objections) >= self.policy.max_objections:
                break
        objections = objections[: self.policy.max_objections]
        if not objections:
            raise StageError("No objections could be parsed from the stage output", stage=self.stage.value)

        job.objections = objections
        logger.info(f"OBJECTIONS: parsed {len(objections)} objections")

    def _parse_chunk(self, chunk: Chunk, ledger: list[str], start: int) -> list[Objection]:
        parsed = []
        for offset, block in enumerate(parse_objection_blocks(chunk.output_text or "")):
            text = block.get("objection", "")
            if not text:
                continue
            claim = block.get("claim", "")
            parsed.append(Objection(
                index=start + len(parsed),
                claim_targeted=claim,
                claim_location=block.get("location", ""),
                target_claim_index=self._target_claim(claim or text, ledger),
                type=_enum_value(ObjectionType, block.get("type"), ObjectionType.CONCEPTUAL),
                severity=_enum_value(ObjectionSeverity, block.get("severity"), ObjectionSeverity.MODERATE),
                objection_text=text,
                source_chunk=chunk.index,
            ))
        return parsed

    @staticmethod
    def _target_claim(claim: str, ledger: list[str]) -> int | None:
        best, best_score = None, 0.0
        for i, entry in enumerate(ledger):
            score = coverage(entry, claim)
            if score > best_score:
                best, best_score = i, score
        return best
