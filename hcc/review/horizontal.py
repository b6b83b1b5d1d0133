"""Horizontal coherence: consistency across the four stages of one job.

Checks:
- commitment_missing: stage-1 ledger entries must survive into stage 4 (error)
- objection_not_addressed: every objection needs a stage-3 response (error)
- response_not_integrated: every response must be verified in stage 4
  (warning; error for fatal objections)
- terminology_drift: a term may not change meaning between author stages
  without a redefinition (warning)
- contradiction: a claim asserted in one author stage may not be negated
  later without a concession (error)

Stage 2 is the critic's voice, so only stages 1, 3 and 4 are compared for
drift and contradiction.
"""

import logging

from hcc.config.policy import PipelinePolicy
from hcc.hierarchy.text_utils import (
    best_matching_sentence,
    coverage,
    same_polarity,
    similarity,
    split_sentences,
)
from hcc.state.enums import (
    LedgerEntryType,
    ObjectionSeverity,
    PipelineStage,
    ViolationSeverity,
    ViolationType,
)
from hcc.state.models import (
    Document,
    HCCheckResult,
    HCRepairPlan,
    HCViolation,
    PipelineJob,
    RepairTarget,
)

logger = logging.getLogger(__name__)

AUTHOR_STAGES = (1, 3, 4)


def best_chunk(document: Document | None, text: str, use_output: bool = True) -> int | None:
    """Index of the chunk whose output (or input) best covers ``text``, if any does."""
    if document is None:
        return None
    best, best_score = None, 0.0
    for chunk in document.iter_chunks():
        source = chunk.output_text if use_output else chunk.input_text
        score = coverage(text, source or "")
        if score > best_score:
            best, best_score = chunk.index, score
    return best


class HorizontalCoherenceChecker:
    """Runs the cross-stage checks and builds a repair plan."""

    def __init__(self, policy: PipelinePolicy | None = None):
        self.policy = policy or PipelinePolicy()

    def check(
        self,
        job: PipelineJob,
        documents: dict[int, Document] | None = None,
        attempt: int = 0,
    ) -> HCCheckResult:
        """
        Check a job whose four stages have output.

        Args:
            job: Job with stage records, skeletons and objections.
            documents: Stage number to stage document, used to locate the
                chunks a repair should re-run.
            attempt: Repair attempt this check follows (0 for the first).

        Returns:
            HCCheckResult with per-type counts and, when anything was
            found, a repair plan.
        """
        documents = documents or {}
        violations: list[HCViolation] = []
        targets: list[RepairTarget] = []

        self._commitments(job, documents, violations, targets)
        self._objections(job, documents, violations, targets)
        self._integrations(job, violations, targets)
        self._terminology(job, documents, violations, targets)
        self._contradictions(job, documents, violations, targets)

        counts = {t.value: 0 for t in ViolationType}
        for violation in violations:
            counts[violation.type.value] += 1

        result = HCCheckResult(attempt=attempt, violations=violations, counts=counts)
        if violations:
            result.repair_plan = HCRepairPlan(
                targets=targets,
                sections_to_revise=sorted({
                    f"stage-{t.stage}:chunk-{t.chunk_index}" for t in targets if t.chunk_index is not None
                }),
                violations_to_fix=[v.description for v in violations if v.severity == ViolationSeverity.ERROR],
                instructions=[t.instruction for t in targets],
            )
        logger.info(f"HC: job {job.job_id} attempt {attempt}: {result.errors} errors, {result.warnings} warnings")
        return result

    # =========================================================================
    # Checks
    # =========================================================================

    def _commitments(self, job, documents, violations, targets) -> None:
        skeleton = job.stage_record(1).skeleton
        final = job.stage_record(4).output_text or ""
        if skeleton is None:
            return
        sentences = split_sentences(final)
        for i, entry in enumerate(skeleton.commitment_ledger):
            _, score = best_matching_sentence(entry.claim, sentences)
            if score >= self.policy.similarity_threshold:
                continue
            violations.append(HCViolation(
                type=ViolationType.COMMITMENT_MISSING,
                severity=ViolationSeverity.ERROR,
                description=f"Stage-1 commitment missing from the final text: [{entry.type.value}] {entry.claim}",
                details={"ledger_index": i, "claim": entry.claim},
            ))
            targets.append(RepairTarget(
                stage=4,
                chunk_index=best_chunk(documents.get(4), entry.claim, use_output=False),
                violation_type=ViolationType.COMMITMENT_MISSING,
                instruction=f"Keep the commitment that the document {entry.type.value}: {entry.claim}",
            ))

    def _objections(self, job, documents, violations, targets) -> None:
        responses = documents.get(3)
        for objection in job.objections:
            if objection.has_response:
                continue
            violations.append(HCViolation(
                type=ViolationType.OBJECTION_NOT_ADDRESSED,
                severity=ViolationSeverity.ERROR,
                description=f"Objection #{objection.index} has no response",
                details={"objection_index": objection.index},
            ))
            chunk_index = None
            if responses is not None:
                chunk_index = next(
                    (c.index for c in responses.iter_chunks() if objection.index in c.objection_indices),
                    None,
                )
            targets.append(RepairTarget(
                stage=3,
                chunk_index=chunk_index,
                objection_index=objection.index,
                violation_type=ViolationType.OBJECTION_NOT_ADDRESSED,
                instruction=f"Write a RESPONSE #{objection.index} block answering objection #{objection.index}",
            ))

    def _integrations(self, job, violations, targets) -> None:
        for objection in job.objections:
            if not objection.has_response:
                continue
            if objection.integrated_in_section and objection.integration_strategy and objection.integration_verified:
                continue
            fatal = objection.severity == ObjectionSeverity.FATAL
            violations.append(HCViolation(
                type=ViolationType.RESPONSE_NOT_INTEGRATED,
                severity=ViolationSeverity.ERROR if fatal else ViolationSeverity.WARNING,
                description=f"Response to objection #{objection.index} is not integrated in the final text",
                details={"objection_index": objection.index, "severity": objection.severity.value},
            ))
            strategy = objection.integration_strategy.value if objection.integration_strategy else "inline"
            targets.append(RepairTarget(
                stage=4,
                chunk_index=objection.integration_chunk,
                objection_index=objection.index,
                violation_type=ViolationType.RESPONSE_NOT_INTEGRATED,
                instruction=(
                    f"Integrate the response to objection #{objection.index} ({strategy}): "
                    f"{objection.enhanced_response or objection.initial_response}"
                ),
            ))

    def _terminology(self, job, documents, violations, targets) -> None:
        skeletons = [
            (n, job.stage_record(n).skeleton) for n in AUTHOR_STAGES
            if job.stage_record(n).skeleton is not None
        ]
        flagged: set[tuple[str, int]] = set()
        for i, (earlier_stage, earlier) in enumerate(skeletons):
            earlier_terms = earlier.term_map()
            for later_stage, later in skeletons[i + 1:]:
                redefined = {r.term.lower() for r in later.redefinitions}
                for term, meaning in later.term_map().items():
                    if term not in earlier_terms or term in redefined or (term, later_stage) in flagged:
                        continue
                    if similarity(earlier_terms[term], meaning) >= self.policy.drift_threshold:
                        continue
                    flagged.add((term, later_stage))
                    violations.append(HCViolation(
                        type=ViolationType.TERMINOLOGY_DRIFT,
                        severity=ViolationSeverity.WARNING,
                        description=(
                            f"'{term}' means '{earlier_terms[term]}' in stage {earlier_stage} "
                            f"but '{meaning}' in stage {later_stage}"
                        ),
                        details={"term": term, "from_stage": earlier_stage, "to_stage": later_stage},
                    ))
                    targets.append(RepairTarget(
                        stage=later_stage,
                        chunk_index=best_chunk(documents.get(later_stage), term),
                        violation_type=ViolationType.TERMINOLOGY_DRIFT,
                        instruction=f"Use '{term}' in the sense: {earlier_terms[term]}",
                    ))

    def _contradictions(self, job, documents, violations, targets) -> None:
        conceded = [c for o in job.objections for c in o.concessions]
        for n in AUTHOR_STAGES:
            skeleton = job.stage_record(n).skeleton
            if skeleton is not None:
                conceded.extend(c.claim for c in skeleton.concessions)

        threshold = self.policy.similarity_threshold
        for i, source_stage in enumerate(AUTHOR_STAGES):
            skeleton = job.stage_record(source_stage).skeleton
            if skeleton is None:
                continue
            for entry in skeleton.commitment_ledger:
                if entry.type == LedgerEntryType.ASSUMES:
                    continue
                if any(coverage(entry.claim, c) >= 0.5 or coverage(c, entry.claim) >= 0.5 for c in conceded):
                    continue
                for later_stage in AUTHOR_STAGES[i + 1:]:
                    sentence = self._contradicting_sentence(job, later_stage, entry.claim, entry.type, threshold)
                    if sentence is None:
                        continue
                    verb = "asserts" if entry.type == LedgerEntryType.ASSERTS else "rejects"
                    violations.append(HCViolation(
                        type=ViolationType.CONTRADICTION,
                        severity=ViolationSeverity.ERROR,
                        description=(
                            f"Stage {source_stage} {verb} '{entry.claim}' but stage {later_stage} "
                            f"says '{sentence}'"
                        ),
                        details={"claim": entry.claim, "sentence": sentence,
                                 "from_stage": source_stage, "to_stage": later_stage},
                    ))
                    targets.append(RepairTarget(
                        stage=later_stage,
                        chunk_index=best_chunk(documents.get(later_stage), sentence),
                        violation_type=ViolationType.CONTRADICTION,
                        instruction=f"Do not contradict the commitment that the document {verb}: {entry.claim}",
                    ))
                    break

    @staticmethod
    def _contradicting_sentence(
        job: PipelineJob,
        stage: int,
        claim: str,
        entry_type: LedgerEntryType,
        threshold: float,
    ) -> str | None:
        text = job.stage_record(stage).output_text or ""
        for sentence in split_sentences(text):
            if coverage(claim, sentence) < threshold:
                continue
            agrees = same_polarity(claim, sentence)
            if entry_type == LedgerEntryType.ASSERTS and not agrees:
                return sentence
            if entry_type == LedgerEntryType.REJECTS and agrees:
                return sentence
        return None


def stage_documents(store, job_id: str) -> dict[int, Document]:
    """Load every stage document of a job that exists in ``store``."""
    documents = {}
    for stage in PipelineStage:
        document = store.load_document(job_id, stage)
        if document is not None:
            documents[stage.number] = document
    return documents
