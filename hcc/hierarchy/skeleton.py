"""Skeleton extraction and compression.

A skeleton is the size-budgeted summary each hierarchy node hands down to
its descendants. Budgets shrink with depth; inherited copies are always
compressed below the budget of the skeleton they were copied from.
"""

import logging
import time
from typing import Any, Callable

from hcc.config.policy import PipelinePolicy
from hcc.errors.exceptions import ExtractionFailed, GeneratorError
from hcc.errors.policies import RetryPolicy, create_extraction_retry_policy
from hcc.generation.audit import AuditSink, RunRecord
from hcc.generation.base import BaseGenerator, PromptContext
from hcc.generation.parsing import as_str_list, extract_json_object
from hcc.hierarchy.text_utils import similarity, truncate_words
from hcc.state.enums import GenerationKind, HierarchyLevel, LedgerEntryType, RunType
from hcc.state.models import (
    Concession,
    Entity,
    KeyTerm,
    LedgerEntry,
    Redefinition,
    Skeleton,
    UserInstructions,
)

logger = logging.getLogger(__name__)


SKELETON_INSTRUCTION = """You extract the structural skeleton of a text.

Return ONLY a JSON object with these fields:
{
  "thesis": "the single central claim, one sentence",
  "outline": ["ordered main points or sections"],
  "key_terms": [{"term": "...", "meaning": "meaning as used in this text"}],
  "commitment_ledger": [{"type": "asserts|rejects|assumes", "claim": "..."}],
  "entities": [{"name": "...", "type": "...", "role": "..."}],
  "concessions": [{"claim": "...", "note": "..."}],
  "redefinitions": [{"term": "...", "meaning": "...", "reason": "..."}]
}

The whole skeleton must stay under {budget} words. Prefer commitments and
key terms over outline detail. Do not invent content that is not in the text."""

INHERITED_NOTE = """
This text is part of a larger work whose skeleton is supplied above. Stay
consistent with it: never give a term a meaning different from the one
already defined upstream unless the text explicitly redefines it (record
that under "redefinitions")."""


# =============================================================================
# Compression
# =============================================================================


def compress_skeleton(
    skeleton: Skeleton,
    budget: int,
    level: HierarchyLevel | None = None,
) -> Skeleton:
    """
    Copy a skeleton and trim it to ``budget`` words.

    Trim order: entities, outline tail, oldest chunk-derived ledger entries,
    then extracted ledger entries, concessions, key terms, and finally the
    thesis itself.

    Args:
        skeleton: Source skeleton (not modified).
        budget: Word budget of the copy.
        level: Level label for the copy; defaults to the source level.

    Returns:
        Compressed copy.
    """
    s = skeleton.model_copy(deep=True)
    s.budget_words = budget
    if level is not None:
        s.level = level

    while s.word_size > budget:
        if s.entities:
            s.entities.pop()
        elif len(s.outline) > 1:
            s.outline.pop()
        elif len(s.commitment_ledger) > 1:
            derived = [i for i, e in enumerate(s.commitment_ledger) if e.source_chunk is not None]
            del s.commitment_ledger[derived[0] if derived else -1]
        elif s.concessions:
            s.concessions.pop()
        elif len(s.key_terms) > 1:
            s.key_terms.pop()
        elif s.outline:
            s.outline.pop()
        elif s.commitment_ledger:
            s.commitment_ledger.pop()
        elif s.key_terms:
            s.key_terms.pop()
        elif s.redefinitions:
            s.redefinitions.pop()
        else:
            s.thesis = truncate_words(s.thesis, budget)
            break
    return s


# =============================================================================
# Parsing
# =============================================================================


def _parse_ledger(raw: Any) -> list[LedgerEntry]:
    entries = []
    for item in raw or []:
        if isinstance(item, str):
            entries.append(LedgerEntry(type=LedgerEntryType.ASSERTS, claim=item.strip()))
            continue
        if not isinstance(item, dict):
            continue
        claim = str(item.get("claim", "")).strip()
        if not claim:
            continue
        try:
            entry_type = LedgerEntryType(str(item.get("type", "asserts")).lower().strip())
        except ValueError:
            entry_type = LedgerEntryType.ASSERTS
        entries.append(LedgerEntry(type=entry_type, claim=claim))
    return entries


def _parse_terms(raw: Any) -> list[KeyTerm]:
    if isinstance(raw, dict):
        return [KeyTerm(term=str(k).strip(), meaning=str(v).strip()) for k, v in raw.items() if str(k).strip()]
    terms = []
    for item in raw or []:
        if isinstance(item, dict) and item.get("term"):
            terms.append(KeyTerm(term=str(item["term"]).strip(), meaning=str(item.get("meaning", "")).strip()))
    return terms


def _parse_entities(raw: Any) -> list[Entity]:
    entities = []
    for item in raw or []:
        if isinstance(item, str) and item.strip():
            entities.append(Entity(name=item.strip()))
        elif isinstance(item, dict) and item.get("name"):
            entities.append(Entity(
                name=str(item["name"]).strip(),
                type=str(item.get("type", "")).strip(),
                role=str(item.get("role", "")).strip(),
            ))
    return entities


def parse_skeleton(raw_output: str, level: HierarchyLevel, budget: int) -> Skeleton:
    """
    Parse generator output into a Skeleton.

    Raises:
        ExtractionFailed: If the output is not JSON or carries no content.
    """
    try:
        data = extract_json_object(raw_output)
    except ValueError as e:
        raise ExtractionFailed(
            f"Unparseable skeleton output: {e}",
            level=level.value,
            raw_output=raw_output,
        ) from e

    skeleton = Skeleton(
        level=level,
        budget_words=budget,
        thesis=str(data.get("thesis") or data.get("master_thesis") or "").strip(),
        outline=as_str_list(data.get("outline")),
        key_terms=_parse_terms(data.get("key_terms") or data.get("keyTerms")),
        commitment_ledger=_parse_ledger(data.get("commitment_ledger") or data.get("commitmentLedger")),
        entities=_parse_entities(data.get("entities")),
        concessions=[
            Concession(claim=c) for c in as_str_list(data.get("concessions"))
        ],
        redefinitions=[
            Redefinition(
                term=str(r.get("term", "")).strip(),
                meaning=str(r.get("meaning", "")).strip(),
                reason=str(r.get("reason", "")).strip(),
            )
            for r in data.get("redefinitions") or []
            if isinstance(r, dict) and r.get("term")
        ],
    )
    if skeleton.is_empty:
        raise ExtractionFailed(
            "Skeleton output had no thesis, outline, terms or commitments",
            level=level.value,
            raw_output=raw_output,
        )
    return skeleton


# =============================================================================
# Extractor
# =============================================================================


class SkeletonExtractor:
    """Extracts budgeted skeletons through the generator, with bounded retry."""

    def __init__(
        self,
        generator: BaseGenerator,
        policy: PipelinePolicy | None = None,
        retry_policy: RetryPolicy | None = None,
        audit: AuditSink | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.generator = generator
        self.policy = policy or PipelinePolicy()
        self.retry_policy = retry_policy or create_extraction_retry_policy(
            max_retries=self.policy.max_extraction_retries
        )
        self.audit = audit
        self.sleep = sleep

    def extract(
        self,
        text: str,
        level: HierarchyLevel,
        budget: int | None = None,
        inherited: Skeleton | None = None,
        user_instructions: UserInstructions | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Skeleton:
        """
        Extract the skeleton of one unit.

        Args:
            text: Unit text.
            level: Hierarchy level of the unit.
            budget: Word budget; defaults to the policy budget for ``level``.
            inherited: Compressed ancestor skeleton to stay consistent with.
            user_instructions: Attached to the result for descendants.
            metadata: Routing info passed through to the generator.

        Returns:
            Skeleton within budget.

        Raises:
            ExtractionFailed: When every attempt failed (not recoverable).
        """
        budget = budget or self.policy.budget_for(level)
        instruction = SKELETON_INSTRUCTION.replace("{budget}", str(budget))
        if inherited is not None:
            instruction += INHERITED_NOTE
        context = PromptContext(
            kind=GenerationKind.SKELETON,
            instruction=instruction,
            content=text,
            skeletons=[inherited] if inherited is not None else [],
            metadata={**(metadata or {}), "level": level.value},
        )

        start = time.perf_counter()
        attempt = 0
        while True:
            try:
                raw = self.generator.generate(context)
                skeleton = parse_skeleton(raw, level, budget)
                break
            except (ExtractionFailed, GeneratorError, TimeoutError) as e:
                if not self.retry_policy.should_attempt_retry(e, attempt):
                    self._record(context, start, "failed", str(e))
                    raise ExtractionFailed(
                        f"Skeleton extraction failed for {context.unit} after {attempt + 1} attempts: {e}",
                        level=level.value,
                        attempts=attempt + 1,
                        recoverable=False,
                    ) from e
                logger.warning(f"SKELETON: attempt {attempt + 1} failed for {context.unit}: {e}")
                self.sleep(self.retry_policy.get_delay(attempt, e))
                attempt += 1

        if inherited is not None:
            skeleton = self._align_terms(skeleton, inherited)
        if user_instructions is not None:
            skeleton.user_instructions = user_instructions
        elif inherited is not None:
            skeleton.user_instructions = inherited.user_instructions

        skeleton = compress_skeleton(skeleton, budget)
        self._record(context, start, "success", f"{skeleton.word_size} words")
        return skeleton

    def _align_terms(self, skeleton: Skeleton, inherited: Skeleton) -> Skeleton:
        """Restore upstream meanings for terms the unit did not explicitly redefine."""
        upstream = inherited.term_map()
        redefined = {r.term.lower() for r in skeleton.redefinitions}
        for kt in skeleton.key_terms:
            key = kt.term.lower()
            if key in upstream and key not in redefined:
                if similarity(kt.meaning, upstream[key]) < self.policy.drift_threshold:
                    logger.info(f"SKELETON: keeping upstream meaning for '{kt.term}'")
                    kt.meaning = upstream[key]
        return skeleton

    def _record(self, context: PromptContext, start: float, status: str, output: str) -> None:
        if self.audit is None:
            return
        try:
            self.audit.record_run(RunRecord(
                job_id=str(context.metadata.get("job_id", "")),
                stage=str(context.metadata.get("stage", "")),
                run_type=RunType.SKELETON,
                unit=context.unit,
                input_summary=" ".join(context.content.split()[:30]),
                output_summary=output,
                duration_ms=int((time.perf_counter() - start) * 1000),
                status=status,
            ))
        except Exception as e:
            logger.warning(f"AUDIT: run record failed: {e}")
