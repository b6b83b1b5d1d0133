"""Delta tracking: what a processed chunk adds to its inherited skeleton.

Local mode is a deterministic lexical pass, so computing the delta twice
for the same output and skeleton gives the same result. Generator mode asks
the model for the same fields and memoizes the answer by input hash.
"""

import hashlib
import logging
import re

from hcc.config.policy import PipelinePolicy
from hcc.errors.exceptions import GeneratorError
from hcc.generation.base import BaseGenerator, PromptContext
from hcc.generation.parsing import as_str_list, extract_json_object
from hcc.hierarchy.skeleton import compress_skeleton
from hcc.hierarchy.text_utils import (
    content_tokens,
    coverage,
    same_polarity,
    similarity,
    split_sentences,
)
from hcc.state.enums import DeltaMode, GenerationKind, LedgerEntryType
from hcc.state.models import Conflict, Delta, KeyTerm, LedgerEntry, Skeleton

logger = logging.getLogger(__name__)

_DEFINITION = re.compile(
    r"(?P<term>[A-Za-z][\w\-]*(?:\s+[A-Za-z][\w\-]*){0,2})\s+"
    r"(?:means|is defined as|refers to|denotes)\s+(?P<meaning>[^.;:]+)",
    re.IGNORECASE,
)
_PREMISE = re.compile(
    r"\b(?:assume that|assuming that|assuming|given that|suppose that|presupposes? that)\s+"
    r"(?P<premise>[^.;:]+)",
    re.IGNORECASE,
)
_LEADING_ARTICLE = re.compile(r"^(?:the|a|an|by|term)\s+", re.IGNORECASE)

DELTA_INSTRUCTION = """Compare the TEXT with the skeleton above. Return ONLY JSON:
{
  "new_claims": ["claims in the text that the skeleton does not contain"],
  "terms_used": ["skeleton key terms the text uses"],
  "term_definitions": {"term": "meaning the text gives it"},
  "premises": ["things the text assumes without establishing"],
  "conflicts": [{"skeleton_item": "...", "chunk_content": "...", "description": "..."}]
}"""


# =============================================================================
# Skeleton accumulation
# =============================================================================


def merge_delta(
    skeleton: Skeleton,
    delta: Delta,
    redundancy_threshold: float = 0.8,
) -> Skeleton:
    """
    Fold one delta into a working copy of a skeleton.

    Ledger additions that near-duplicate an existing entry are skipped;
    term definitions never overwrite an established meaning.
    """
    merged = skeleton.model_copy(deep=True)
    for entry in delta.ledger_additions:
        if any(similarity(entry.claim, e.claim) >= redundancy_threshold for e in merged.commitment_ledger):
            continue
        merged.commitment_ledger.append(entry.model_copy())
    known = merged.term_map()
    for term, meaning in delta.term_definitions.items():
        if term.lower() not in known:
            merged.key_terms.append(KeyTerm(term=term, meaning=meaning))
            known[term.lower()] = meaning
    return merged


def skeleton_delta(skeleton: Skeleton) -> Delta:
    """What ``skeleton`` establishes, as a delta that can be folded elsewhere."""
    return Delta(
        ledger_additions=[e.model_copy() for e in skeleton.commitment_ledger],
        term_definitions=skeleton.term_map(),
    )


def fold_deltas(
    base: Skeleton,
    deltas: list[Delta],
    budget: int,
    redundancy_threshold: float = 0.8,
) -> Skeleton:
    """Accumulate deltas left to right, then compress to ``budget``."""
    working = base
    for delta in deltas:
        working = merge_delta(working, delta, redundancy_threshold)
    return compress_skeleton(working, budget)


# =============================================================================
# Tracker
# =============================================================================


class DeltaTracker:
    """Computes the Delta of a chunk output against its inherited skeleton."""

    def __init__(
        self,
        generator: BaseGenerator | None = None,
        mode: DeltaMode | None = None,
        policy: PipelinePolicy | None = None,
    ):
        self.policy = policy or PipelinePolicy()
        self.mode = mode or self.policy.delta_mode
        self.generator = generator
        if self.mode == DeltaMode.GENERATOR and generator is None:
            raise ValueError("generator delta mode needs a generator")
        self._cache: dict[str, Delta] = {}

    def compute(
        self,
        output: str,
        inherited: Skeleton | None,
        chunk_index: int | None = None,
    ) -> Delta:
        """
        Compute the delta of ``output`` relative to ``inherited``.

        Args:
            output: Chunk output text.
            inherited: Skeleton the chunk was generated against.
            chunk_index: Recorded as ``source_chunk`` on ledger additions.

        Returns:
            Delta; identical for identical inputs.
        """
        if self.mode == DeltaMode.GENERATOR:
            return self._compute_generator(output, inherited, chunk_index)
        return self._compute_local(output, inherited, chunk_index)

    # =========================================================================
    # Local
    # =========================================================================

    def _compute_local(
        self,
        output: str,
        inherited: Skeleton | None,
        chunk_index: int | None,
    ) -> Delta:
        sentences = split_sentences(output)
        known_claims = inherited.claims() if inherited else []
        lowered = output.lower()

        definitions: dict[str, str] = {}
        for sentence in sentences:
            match = _DEFINITION.search(sentence)
            if match:
                term = _LEADING_ARTICLE.sub("", match.group("term").strip()).lower()
                if term and term not in definitions:
                    definitions[term] = match.group("meaning").strip()

        premises = []
        for sentence in sentences:
            for match in _PREMISE.finditer(sentence):
                premise = match.group("premise").strip()
                if premise and premise not in premises:
                    premises.append(premise)

        terms_used = []
        if inherited:
            for kt in inherited.key_terms:
                if re.search(rf"\b{re.escape(kt.term.lower())}\b", lowered):
                    terms_used.append(kt.term.lower())
        for term in definitions:
            if term not in terms_used:
                terms_used.append(term)

        conflicts = self._conflicts(sentences, inherited)

        new_claims = []
        for sentence in sentences:
            if sentence.endswith("?") or len(content_tokens(sentence)) < 4:
                continue
            if known_claims and max(coverage(sentence, c) for c in known_claims) >= self.policy.similarity_threshold:
                continue
            new_claims.append(sentence)
            if len(new_claims) >= self.policy.max_new_claims_per_chunk:
                break

        additions = [
            LedgerEntry(type=LedgerEntryType.ASSERTS, claim=c, source_chunk=chunk_index)
            for c in new_claims
        ]
        additions.extend(
            LedgerEntry(type=LedgerEntryType.ASSUMES, claim=p, source_chunk=chunk_index)
            for p in premises
        )

        return Delta(
            new_claims=new_claims,
            terms_used=terms_used,
            term_definitions=definitions,
            premises=premises,
            conflicts=conflicts,
            ledger_additions=additions,
        )

    def _conflicts(self, sentences: list[str], inherited: Skeleton | None) -> list[Conflict]:
        if inherited is None:
            return []
        threshold = self.policy.similarity_threshold
        conflicts = []
        for entry in inherited.commitment_ledger:
            if entry.type == LedgerEntryType.ASSUMES:
                continue
            for sentence in sentences:
                if coverage(entry.claim, sentence) < threshold:
                    continue
                agrees = same_polarity(entry.claim, sentence)
                if entry.type == LedgerEntryType.REJECTS and agrees:
                    conflicts.append(Conflict(
                        skeleton_item=entry.claim,
                        chunk_content=sentence,
                        description="Output asserts a claim the document rejects",
                    ))
                    break
                if entry.type == LedgerEntryType.ASSERTS and not agrees:
                    conflicts.append(Conflict(
                        skeleton_item=entry.claim,
                        chunk_content=sentence,
                        description="Output negates a claim the document asserts",
                    ))
                    break
        return conflicts

    # =========================================================================
    # Generator
    # =========================================================================

    def _cache_key(self, output: str, inherited: Skeleton | None, chunk_index: int | None) -> str:
        digest = hashlib.sha256()
        digest.update(output.encode("utf-8"))
        digest.update(inherited.model_dump_json().encode("utf-8") if inherited else b"-")
        digest.update(str(chunk_index).encode("utf-8"))
        return digest.hexdigest()

    def _compute_generator(
        self,
        output: str,
        inherited: Skeleton | None,
        chunk_index: int | None,
    ) -> Delta:
        key = self._cache_key(output, inherited, chunk_index)
        if key in self._cache:
            return self._cache[key].model_copy(deep=True)

        context = PromptContext(
            kind=GenerationKind.DELTA,
            instruction=DELTA_INSTRUCTION,
            content=output,
            skeletons=[inherited] if inherited else [],
            metadata={"chunk_index": chunk_index} if chunk_index is not None else {},
        )
        try:
            reply = self.generator.generate(context)
        except GeneratorError as e:
            # Not memoized: a later call may reach the generator
            logger.warning(f"DELTA: generator failed for chunk {chunk_index}, using local pass: {e}")
            return self._compute_local(output, inherited, chunk_index)

        try:
            delta = self._parse_delta(extract_json_object(reply), chunk_index)
        except ValueError as e:
            logger.warning(f"DELTA: malformed generator delta for chunk {chunk_index}, using local pass: {e}")
            delta = self._compute_local(output, inherited, chunk_index)
        self._cache[key] = delta
        return delta.model_copy(deep=True)

    def _parse_delta(self, data: dict, chunk_index: int | None) -> Delta:
        """
        Build a Delta from the generator's JSON reply.

        Raises:
            ValueError: A field has the wrong shape.
        """
        for field in ("new_claims", "terms_used", "premises"):
            if not isinstance(data.get(field) or [], (list, str)):
                raise ValueError(f"{field} must be a list of strings")
        if not isinstance(data.get("conflicts") or [], list):
            raise ValueError("conflicts must be a list of objects")
        raw_definitions = data.get("term_definitions") or {}
        if not isinstance(raw_definitions, dict):
            raise ValueError("term_definitions must be an object")

        new_claims = as_str_list(data.get("new_claims"))[: self.policy.max_new_claims_per_chunk]
        premises = as_str_list(data.get("premises"))
        definitions = {
            str(k).lower().strip(): str(v).strip()
            for k, v in raw_definitions.items()
            if str(k).strip()
        }
        conflicts = [
            Conflict(
                skeleton_item=str(c.get("skeleton_item", "")),
                chunk_content=str(c.get("chunk_content", "")),
                description=str(c.get("description", "")),
            )
            for c in data.get("conflicts") or []
            if isinstance(c, dict)
        ]
        return Delta(
            new_claims=new_claims,
            terms_used=[t.lower() for t in as_str_list(data.get("terms_used"))],
            term_definitions=definitions,
            premises=premises,
            conflicts=conflicts,
            ledger_additions=[
                LedgerEntry(type=LedgerEntryType.ASSERTS, claim=c, source_chunk=chunk_index)
                for c in new_claims
            ] + [
                LedgerEntry(type=LedgerEntryType.ASSUMES, claim=p, source_chunk=chunk_index)
                for p in premises
            ],
        )
