"""Chunk processing state machine.

pending -> processing -> completed | retrying | failed, and
retrying -> processing, bounded by ``max_chunk_retries``.

Every transition is persisted before the next step so a crashed job can
resume at the first chunk that is not completed or failed.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable

from hcc.config.policy import PipelinePolicy
from hcc.errors.exceptions import GenerationFailed, GeneratorError, LengthViolation
from hcc.errors.handlers import create_unit_error
from hcc.errors.policies import RetryPolicy, create_generation_retry_policy
from hcc.errors.recovery import RecoveryAction, decide_length_failure
from hcc.generation.audit import AuditSink, LengthCheckRecord, RunRecord
from hcc.generation.base import BaseGenerator, PromptContext
from hcc.hierarchy.delta import DeltaTracker
from hcc.hierarchy.text_utils import count_words
from hcc.state.coherence_modes import ChunkEvaluation
from hcc.state.enums import EvaluationStatus, GenerationKind, LengthMode, RunType, UnitStatus
from hcc.state.models import Chunk, Delta, Skeleton

logger = logging.getLogger(__name__)


@dataclass
class ChunkTask:
    """Stage-specific inputs for processing one chunk.

    Attributes:
        instruction: Stage instruction for the generator
        skeletons: Inherited skeletons, root first; the last one is the
            chunk's own compressed working copy
        mode: Advisory length mode
        metadata: Routing info (job_id, stage)
        content: Overrides the chunk's input text in the prompt
        evaluate: Optional coherence-mode evaluator for completed outputs
    """

    instruction: str
    skeletons: list[Skeleton] = field(default_factory=list)
    mode: LengthMode | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    content: str | None = None
    evaluate: Callable[[str, Delta], ChunkEvaluation] | None = None

    @property
    def inherited(self) -> Skeleton | None:
        return self.skeletons[-1] if self.skeletons else None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def corrective_instruction(output_words: int, target: int, minimum: int, maximum: int) -> str:
    """Follow-up instruction after an out-of-band attempt."""
    if output_words < minimum:
        return (
            f"The previous draft was {output_words} words, too short by {target - output_words} words. "
            f"Expand it to about {target} words (at least {minimum})."
        )
    return (
        f"The previous draft was {output_words} words, too long by {output_words - target} words. "
        f"Condense it to about {target} words (at most {maximum})."
    )


class ChunkProcessor:
    """Generates one chunk's output within its length band."""

    def __init__(
        self,
        generator: BaseGenerator,
        delta_tracker: DeltaTracker | None = None,
        policy: PipelinePolicy | None = None,
        persist: Callable[[Chunk], None] | None = None,
        audit: AuditSink | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.generator = generator
        self.policy = policy or PipelinePolicy()
        self.delta_tracker = delta_tracker or DeltaTracker(policy=self.policy)
        self.persist = persist
        self.audit = audit
        self.retry_policy = retry_policy or create_generation_retry_policy(
            max_retries=self.policy.max_chunk_retries
        )
        self.sleep = sleep

    def process(self, chunk: Chunk, task: ChunkTask) -> Chunk:
        """
        Run the chunk state machine to a terminal state.

        Completed and failed chunks are returned untouched. A chunk left in
        ``processing`` or ``retrying`` by a crash continues with its persisted
        retry count.

        Args:
            chunk: Chunk with its target band already set.
            task: Stage-specific prompt inputs.

        Returns:
            The chunk, now completed or failed. A failed chunk keeps its
            nearest output and deviation; under ``accept_nearest`` it is
            marked ``deviation_accepted``.

        Raises:
            GenerationFailed: Generator errors exhausted the budget and no
                output was ever produced.
            LengthViolation: The band was missed on every attempt and the
                failure policy is ``abort``.
        """
        if chunk.is_terminal:
            return chunk

        unit = f"{task.metadata.get('stage', '')}:chunk-{chunk.index}"
        context = PromptContext(
            kind=GenerationKind.CHUNK,
            instruction=task.instruction,
            content=task.content if task.content is not None else chunk.input_text,
            skeletons=list(task.skeletons),
            target_words=chunk.target_words,
            min_words=chunk.min_words,
            max_words=chunk.max_words,
            mode=task.mode,
            constraints=list(chunk.extra_constraints),
            metadata={**task.metadata, "chunk_index": chunk.index},
        )

        corrective = None
        if chunk.status == UnitStatus.RETRYING and chunk.output_text is not None:
            corrective = corrective_instruction(
                chunk.output_words, chunk.target_words, chunk.min_words, chunk.max_words
            )
        start = time.perf_counter()
        logger.info(
            f"CHUNK: {unit} {chunk.input_words}w -> target {chunk.target_words} "
            f"[{chunk.min_words},{chunk.max_words}] retry={chunk.retry_count}"
        )

        while True:
            chunk.status = UnitStatus.PROCESSING
            chunk.started_at = chunk.started_at or _now()
            self._persist(chunk)

            # Retries revise the nearest draft
            attempt_context = context.with_corrective(corrective, chunk.output_text) if corrective else context
            try:
                output = self.generator.generate(attempt_context)
            except (GeneratorError, TimeoutError) as e:
                chunk.errors.append(create_unit_error(e, node=unit))
                recoverable = getattr(e, "recoverable", True)
                if recoverable and chunk.retry_count < self.policy.max_chunk_retries:
                    logger.warning(f"CHUNK: {unit} generator error, retrying: {e}")
                    chunk.retry_count += 1
                    chunk.status = UnitStatus.RETRYING
                    self._persist(chunk)
                    self.sleep(self.retry_policy.get_delay(chunk.retry_count - 1, e))
                    continue
                if chunk.output_text is not None:
                    return self._exhausted(chunk, task, unit, start)
                chunk.status = UnitStatus.FAILED
                chunk.completed_at = _now()
                failure = GenerationFailed(
                    f"Generation failed for {unit} after {chunk.retry_count + 1} attempts",
                    unit=unit,
                    attempts=chunk.retry_count + 1,
                    last_error=str(e),
                )
                chunk.errors.append(create_unit_error(failure, node=unit))
                self._persist(chunk)
                self._record_run(chunk, task, unit, start, "failed")
                raise failure from e

            words = count_words(output)
            passed = chunk.min_words <= words <= chunk.max_words
            self._record_length(chunk, task, words, passed)

            if chunk.output_text is None or passed or self._gap(words, chunk) < self._gap(chunk.output_words, chunk):
                chunk.output_text = output
                chunk.output_words = words

            if passed:
                delta = self.delta_tracker.compute(output, task.inherited, chunk.index)
                evaluation = task.evaluate(output, delta) if task.evaluate else None
                chunk.evaluation = evaluation
                if (
                    evaluation is not None
                    and evaluation.status == EvaluationStatus.BROKEN
                    and chunk.retry_count < self.policy.max_chunk_retries
                ):
                    logger.warning(f"CHUNK: {unit} coherence broken: {'; '.join(evaluation.violations)}")
                    context = replace(context, constraints=context.constraints + [
                        r for r in evaluation.repairs if r not in context.constraints
                    ])
                    corrective = "Revise the draft to fix: " + "; ".join(evaluation.violations)
                    chunk.retry_count += 1
                    chunk.status = UnitStatus.RETRYING
                    self._persist(chunk)
                    continue
                return self._complete(chunk, delta, task, unit, start)

            if chunk.retry_count < self.policy.max_chunk_retries:
                corrective = corrective_instruction(
                    chunk.output_words, chunk.target_words, chunk.min_words, chunk.max_words
                )
                logger.info(f"CHUNK: {unit} {words}w outside band, retry {chunk.retry_count + 1}")
                chunk.retry_count += 1
                chunk.status = UnitStatus.RETRYING
                self._persist(chunk)
                continue

            return self._exhausted(chunk, task, unit, start)

    # =========================================================================
    # Terminal transitions
    # =========================================================================

    def _complete(
        self, chunk: Chunk, delta: Delta, task: ChunkTask, unit: str, start: float, status: str = "success"
    ) -> Chunk:
        chunk.delta = delta
        chunk.status = UnitStatus.COMPLETED
        chunk.deviation = 0
        chunk.completed_at = _now()
        self._persist(chunk)
        self._record_run(chunk, task, unit, start, status)
        logger.info(f"CHUNK: {unit} completed {chunk.output_words}w after {chunk.retry_count} retries")
        return chunk

    def _exhausted(self, chunk: Chunk, task: ChunkTask, unit: str, start: float) -> Chunk:
        """Retry budget spent with an output on hand."""
        if chunk.in_band:
            # Only a coherence repair failed; the output itself is in band
            delta = self.delta_tracker.compute(chunk.output_text, task.inherited, chunk.index)
            status = "success"
            if chunk.evaluation is not None and chunk.evaluation.status == EvaluationStatus.BROKEN:
                status = "accepted_broken_coherence"
                logger.warning(
                    f"CHUNK: {unit} kept in-band draft with unresolved coherence violations: "
                    f"{'; '.join(chunk.evaluation.violations)}"
                )
            return self._complete(chunk, delta, task, unit, start, status)

        violation = LengthViolation(
            f"{unit} output {chunk.output_words}w outside [{chunk.min_words},{chunk.max_words}] "
            f"after {chunk.retry_count + 1} attempts",
            chunk_index=chunk.index,
            output_words=chunk.output_words,
            min_words=chunk.min_words,
            max_words=chunk.max_words,
        )
        chunk.status = UnitStatus.FAILED
        chunk.deviation = violation.deviation
        chunk.completed_at = _now()
        chunk.errors.append(create_unit_error(violation, node=unit))

        strategy = decide_length_failure(violation, self.policy.length_failure_policy)
        if strategy.action == RecoveryAction.ACCEPT_NEAREST:
            chunk.deviation_accepted = True
            chunk.delta = self.delta_tracker.compute(chunk.output_text, task.inherited, chunk.index)
            self._persist(chunk)
            self._record_run(chunk, task, unit, start, "accepted_nearest")
            logger.warning(f"CHUNK: {strategy.reason}")
            return chunk

        self._persist(chunk)
        self._record_run(chunk, task, unit, start, "failed")
        logger.error(f"CHUNK: {strategy.reason}")
        violation.recoverable = False
        raise violation

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _gap(words: int, chunk: Chunk) -> int:
        if words < chunk.min_words:
            return chunk.min_words - words
        if words > chunk.max_words:
            return words - chunk.max_words
        return 0

    def _persist(self, chunk: Chunk) -> None:
        if self.persist is not None:
            self.persist(chunk)

    def _record_length(self, chunk: Chunk, task: ChunkTask, words: int, passed: bool) -> None:
        if self.audit is None:
            return
        reason = None
        if words < chunk.min_words:
            reason = f"too short by {chunk.min_words - words} words"
        elif words > chunk.max_words:
            reason = f"too long by {words - chunk.max_words} words"
        try:
            self.audit.record_length_check(LengthCheckRecord(
                job_id=str(task.metadata.get("job_id", "")),
                stage=str(task.metadata.get("stage", "")),
                chunk_index=chunk.index,
                input_words=chunk.input_words,
                output_words=words,
                target_words=chunk.target_words,
                min_words=chunk.min_words,
                max_words=chunk.max_words,
                passed=passed,
                retry_number=chunk.retry_count,
                failure_reason=reason,
            ))
        except Exception as e:
            logger.warning(f"AUDIT: length record failed: {e}")

    def _record_run(self, chunk: Chunk, task: ChunkTask, unit: str, start: float, status: str) -> None:
        if self.audit is None:
            return
        details: dict[str, Any] = {"retries": chunk.retry_count, "deviation": chunk.deviation}
        if chunk.evaluation is not None:
            details["evaluation"] = chunk.evaluation.status.value
            if chunk.evaluation.violations:
                details["violations"] = list(chunk.evaluation.violations)
        try:
            self.audit.record_run(RunRecord(
                job_id=str(task.metadata.get("job_id", "")),
                stage=str(task.metadata.get("stage", "")),
                run_type=RunType.CHUNK_PASS,
                unit=unit,
                input_summary=f"{chunk.input_words} words, target {chunk.target_words}",
                output_summary=f"{chunk.output_words} words",
                duration_ms=int((time.perf_counter() - start) * 1000),
                status=status,
                details=details,
            ))
        except Exception as e:
            logger.warning(f"AUDIT: run record failed: {e}")
