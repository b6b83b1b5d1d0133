"""Stitching: assemble sibling outputs and surface cross-unit findings.

The stitcher never edits text. Every contradiction, drift, missing premise,
redundancy or unverified integration it finds becomes a ``RepairAction``
naming the chunk to re-run and the constraint to add.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable

from hcc.config.policy import PipelinePolicy
from hcc.hierarchy.text_utils import coverage, has_negation, similarity
from hcc.state.enums import FindingType
from hcc.state.models import (
    Contradiction,
    Delta,
    IntegrationCheck,
    MissingPremise,
    Redundancy,
    RepairAction,
    Skeleton,
    StitchResult,
    TerminologyDrift,
)

logger = logging.getLogger(__name__)


@dataclass
class StitchUnit:
    """One child of the node being stitched.

    Attributes:
        index: Child position (chunk index at leaf level)
        output: Child output text
        contributions: (chunk index, delta) for every chunk under the child
    """

    index: int
    output: str
    contributions: list[tuple[int, Delta]] = field(default_factory=list)


@dataclass
class _Claim:
    chunk: int
    child: int
    text: str
    negated: bool


class Stitcher:
    """Concatenates child outputs and scans their deltas for findings."""

    def __init__(self, policy: PipelinePolicy | None = None):
        self.policy = policy or PipelinePolicy()

    def stitch(
        self,
        children: list[StitchUnit],
        parent_skeleton: Skeleton | None = None,
        prior_established: Iterable[str] = (),
        integrations: list[IntegrationCheck] | None = None,
        leaf_level: bool = True,
    ) -> StitchResult:
        """
        Stitch children in order.

        At leaf level each child is a chunk, so chunk-against-skeleton checks
        (skeleton conflicts, drift from the skeleton, missing premises) run
        here. Higher levels only compare contributions of different children.

        Args:
            children: Children in document order.
            parent_skeleton: Skeleton of the node being assembled.
            prior_established: Claims established before the first child.
            integrations: Stage-4 integration checks for these chunks.
            leaf_level: Whether the children are chunks.

        Returns:
            StitchResult with output, findings and repair plan.
        """
        result = StitchResult(
            output="\n\n".join(c.output.strip() for c in children if c.output and c.output.strip())
        )

        claims: list[_Claim] = []
        for child in children:
            for chunk_index, delta in child.contributions:
                for text in delta.new_claims:
                    claims.append(_Claim(
                        chunk=chunk_index,
                        child=child.index,
                        text=text,
                        negated=has_negation(text),
                    ))

        self._compare_claims(claims, result)
        self._compare_terms(children, parent_skeleton, result, leaf_level)
        if leaf_level:
            self._skeleton_conflicts(children, result)
            self._missing_premises(children, parent_skeleton, prior_established, result)
        for check in integrations or []:
            result.integrations.append(check)
            if not check.verified:
                self._plan(result, check.chunk_index, FindingType.UNINTEGRATED_RESPONSE,
                           f"Integrate the response to objection #{check.objection_index} "
                           f"using a {check.strategy.value} treatment")

        if result.repair_plan:
            logger.info(
                f"STITCH: {len(children)} children, {result.finding_count} findings, "
                f"{len(result.flagged_chunks())} chunks flagged"
            )
        return result

    # =========================================================================
    # Checks
    # =========================================================================

    def _compare_claims(self, claims: list[_Claim], result: StitchResult) -> None:
        similar = self.policy.similarity_threshold
        redundant = self.policy.redundancy_threshold
        flagged_pairs: set[tuple[int, int]] = set()
        for i, first in enumerate(claims):
            for second in claims[i + 1:]:
                if first.child == second.child or (first.chunk, second.chunk) in flagged_pairs:
                    continue
                score = similarity(first.text, second.text)
                if score >= similar and first.negated != second.negated:
                    flagged_pairs.add((first.chunk, second.chunk))
                    result.contradictions.append(Contradiction(
                        chunk1=first.chunk,
                        chunk2=second.chunk,
                        claim1=first.text,
                        claim2=second.text,
                        description=f"Chunk {second.chunk} contradicts chunk {first.chunk}",
                    ))
                    self._plan(result, second.chunk, FindingType.CONTRADICTION,
                               f"Do not contradict the earlier claim '{first.text}'; "
                               f"reconcile or qualify '{second.text}'")
                elif score >= redundant and first.negated == second.negated:
                    flagged_pairs.add((first.chunk, second.chunk))
                    result.redundancies.append(Redundancy(
                        chunks=[first.chunk, second.chunk],
                        description=f"Chunk {second.chunk} repeats a point from chunk {first.chunk}",
                    ))
                    self._plan(result, second.chunk, FindingType.REDUNDANCY,
                               f"Do not repeat the point already made: '{first.text}'")

    def _compare_terms(
        self,
        children: list[StitchUnit],
        parent_skeleton: Skeleton | None,
        result: StitchResult,
        leaf_level: bool,
    ) -> None:
        threshold = self.policy.drift_threshold
        redefined = {r.term.lower() for r in parent_skeleton.redefinitions} if parent_skeleton else set()
        skeleton_terms = parent_skeleton.term_map() if parent_skeleton else {}

        # term -> (chunk, child, meaning) of first definition
        first_seen: dict[str, tuple[int, int, str]] = {}
        for child in children:
            for chunk_index, delta in child.contributions:
                for term, meaning in delta.term_definitions.items():
                    if term in redefined:
                        continue
                    if leaf_level and term in skeleton_terms:
                        if self._drifted(skeleton_terms[term], meaning, threshold):
                            self._drift(result, term, chunk_index, skeleton_terms[term], meaning, None)
                        continue
                    earlier = first_seen.get(term)
                    if earlier is None:
                        first_seen[term] = (chunk_index, child.index, meaning)
                    elif earlier[1] != child.index and self._drifted(earlier[2], meaning, threshold):
                        self._drift(result, term, chunk_index, earlier[2], meaning, earlier[0])

    @staticmethod
    def _drifted(original: str, meaning: str, threshold: float) -> bool:
        return similarity(original, meaning) < threshold

    def _drift(
        self,
        result: StitchResult,
        term: str,
        chunk: int,
        original: str,
        drifted: str,
        earlier: int | None,
    ) -> None:
        result.terminology_drift.append(TerminologyDrift(
            term=term,
            chunk=chunk,
            original_meaning=original,
            drifted_meaning=drifted,
            earlier_chunk=earlier,
        ))
        self._plan(result, chunk, FindingType.TERMINOLOGY_DRIFT,
                   f"Use '{term}' in its established sense: {original}")

    def _skeleton_conflicts(self, children: list[StitchUnit], result: StitchResult) -> None:
        for child in children:
            for chunk_index, delta in child.contributions:
                for conflict in delta.conflicts:
                    result.contradictions.append(Contradiction(
                        chunk1=chunk_index,
                        chunk2=chunk_index,
                        claim1=conflict.skeleton_item,
                        claim2=conflict.chunk_content,
                        description=conflict.description,
                    ))
                    self._plan(result, chunk_index, FindingType.CONTRADICTION,
                               f"Stay consistent with the commitment '{conflict.skeleton_item}'")

    def _missing_premises(
        self,
        children: list[StitchUnit],
        parent_skeleton: Skeleton | None,
        prior_established: Iterable[str],
        result: StitchResult,
    ) -> None:
        established = list(prior_established)
        if parent_skeleton is not None:
            established.extend(parent_skeleton.claims())
        threshold = self.policy.similarity_threshold
        for child in children:
            for chunk_index, delta in child.contributions:
                for premise in delta.premises:
                    if any(coverage(premise, e) >= threshold for e in established):
                        continue
                    result.missing_premises.append(MissingPremise(
                        chunk=chunk_index,
                        premise=premise,
                        description=f"Chunk {chunk_index} assumes something nothing earlier establishes",
                    ))
                    self._plan(result, chunk_index, FindingType.MISSING_PREMISE,
                               f"Establish or justify the premise that {premise}")
                established.extend(delta.new_claims)

    @staticmethod
    def _plan(result: StitchResult, chunk: int, finding: FindingType, instruction: str) -> None:
        action = RepairAction(chunk_index=chunk, finding=finding, instruction=instruction)
        if action not in result.repair_plan:
            result.repair_plan.append(action)
