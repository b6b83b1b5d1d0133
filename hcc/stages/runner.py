"""Stage runner: the vertical pipeline shared by all four stages.

structure -> skeletons per node -> chunks left to right -> stitch bottom-up
-> bounded stitch repair -> stage record.

All unit state lives in the stage document, which is saved to the job
store after every chunk transition. Re-running a stage reloads that
document and picks up at the first chunk that is not completed or failed;
each chunk's inherited skeleton is rebuilt by folding the persisted deltas
of the chunks before it.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Iterable

from hcc.config.policy import PipelinePolicy
from hcc.errors.exceptions import HCCError, JobCancelled, StageError, StructuralConflict
from hcc.errors.handlers import create_unit_error, log_error_with_context
from hcc.generation.audit import AuditSink, RunRecord
from hcc.generation.base import BaseGenerator
from hcc.hierarchy.chunk_processor import ChunkProcessor, ChunkTask
from hcc.hierarchy.coherence import evaluate_chunk, initial_state
from hcc.hierarchy.delta import DeltaTracker, fold_deltas, skeleton_delta
from hcc.hierarchy.skeleton import SkeletonExtractor, compress_skeleton
from hcc.hierarchy.stitcher import Stitcher, StitchUnit
from hcc.hierarchy.text_utils import count_words
from hcc.memory.store import JobStore
from hcc.stages.base import BaseStageWriter
from hcc.state.coherence_modes import CoherenceState
from hcc.state.enums import HierarchyLevel, PipelineStage, RunType, StageStatus, UnitStatus
from hcc.state.models import (
    Chapter,
    Chunk,
    Delta,
    Document,
    Part,
    PipelineJob,
    Skeleton,
    StageRecord,
    StitchResult,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StageRunner:
    """Runs one stage of one job to completion against the job store."""

    def __init__(
        self,
        generator: BaseGenerator,
        store: JobStore,
        policy: PipelinePolicy | None = None,
        audit: AuditSink | None = None,
        delta_tracker: DeltaTracker | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.generator = generator
        self.store = store
        self.policy = policy or PipelinePolicy()
        self.audit = audit
        self.delta_tracker = delta_tracker or DeltaTracker(generator=generator, policy=self.policy)
        self.extractor = SkeletonExtractor(generator, self.policy, audit=audit, sleep=sleep)
        self.stitcher = Stitcher(self.policy)
        self.sleep = sleep

    def run_stage(self, job: PipelineJob, writer: BaseStageWriter) -> StageRecord:
        """
        Run ``writer``'s stage for ``job``.

        Args:
            job: Job; mutated and saved as the stage progresses.
            writer: Stage writer.

        Returns:
            The completed stage record.

        Raises:
            JobCancelled: Cancellation was requested; the stage is resumable.
            StageError: The stage could not produce output.
        """
        stage = writer.stage
        record = job.stage_record(stage)
        if record.status == StageStatus.COMPLETE:
            return record

        record.started_at = record.started_at or _now()
        try:
            document = self.store.load_document(job.job_id, stage)
            if document is None:
                document = writer.prepare(job)
                self.store.save_document(document)
                self.store.save_job(job)
            else:
                if record.status == StageStatus.FAILED:
                    # Retry chunks that never produced usable output
                    for chunk in document.iter_chunks():
                        if chunk.status == UnitStatus.FAILED and not chunk.deviation_accepted:
                            chunk.reset_for_rerun([])
                writer.refresh(job, document)
                self.store.save_document(document)

            record.status = StageStatus.SKELETON_EXTRACTION
            self.store.save_job(job)
            self._extract_skeletons(job, document)

            record.status = StageStatus.CHUNK_PROCESSING
            self.store.save_job(job)
            self._process_chunks(job, document, writer)

            record.status = StageStatus.STITCHING
            self.store.save_job(job)
            result = self._stitch_with_repair(job, document, writer)
        except JobCancelled:
            self.store.save_job(job)
            raise
        except (HCCError, ValueError, KeyError) as e:
            self._fail(job, record, e)

        self._finish(job, document, writer, record, result)
        return record

    # =========================================================================
    # Skeletons
    # =========================================================================

    def _metadata(self, job: PipelineJob, stage: PipelineStage) -> dict:
        return {"job_id": job.job_id, "stage": stage.value}

    def _extract_skeletons(self, job: PipelineJob, document: Document) -> None:
        meta = self._metadata(job, document.stage)
        if document.skeleton is None:
            ui = job.user_instructions if document.stage == PipelineStage.RECONSTRUCTION else None
            document.skeleton = self.extractor.extract(
                document.original_text,
                HierarchyLevel.DOCUMENT,
                user_instructions=ui,
                metadata={**meta, "unit_index": 0},
            )
            self.store.save_document(document)

        if not document.is_hierarchical:
            return

        for part in document.parts:
            if part.inherited_skeleton is None:
                part.inherited_skeleton = compress_skeleton(
                    document.skeleton, self.policy.inherited_budget_for(HierarchyLevel.PART)
                )
            if part.skeleton is None:
                part.skeleton = self.extractor.extract(
                    part.input_text,
                    HierarchyLevel.PART,
                    inherited=part.inherited_skeleton,
                    metadata={**meta, "unit_index": part.index},
                )
                self.store.save_document(document)
            for chapter in part.chapters:
                if chapter.inherited_skeleton is None:
                    chapter.inherited_skeleton = compress_skeleton(
                        part.skeleton, self.policy.inherited_budget_for(HierarchyLevel.CHAPTER)
                    )
                if chapter.skeleton is None:
                    chapter.skeleton = self.extractor.extract(
                        chapter.input_text,
                        HierarchyLevel.CHAPTER,
                        inherited=chapter.inherited_skeleton,
                        metadata={**meta, "unit_index": chapter.index},
                    )
                    self.store.save_document(document)

    # =========================================================================
    # Chunks
    # =========================================================================

    def _chunk_skeleton(self, document: Document, chapter: Chapter, chunk: Chunk) -> Skeleton:
        """Base skeleton folded with earlier chapters' context and earlier siblings' deltas."""
        base = chapter.skeleton if document.is_hierarchical else document.skeleton
        deltas = [skeleton_delta(chapter.context_skeleton)] if chapter.context_skeleton else []
        deltas.extend(usable_deltas(c for c in chapter.chunks if c.index < chunk.index))
        return fold_deltas(
            base,
            deltas,
            self.policy.inherited_budget_for(HierarchyLevel.CHUNK),
            self.policy.redundancy_threshold,
        )

    def _fold_chapter(self, document: Document, part: Part, chapter: Chapter) -> None:
        """Fold a processed chapter's deltas into the part and document working skeletons."""
        deltas = usable_deltas(chapter.chunks)
        if document.is_hierarchical:
            part.working_skeleton = fold_deltas(
                part.working_skeleton or part.skeleton or document.skeleton,
                deltas,
                self.policy.budget_for(HierarchyLevel.PART),
                self.policy.redundancy_threshold,
            )
        document.working_skeleton = fold_deltas(
            document.working_skeleton or document.skeleton,
            deltas,
            self.policy.budget_for(HierarchyLevel.DOCUMENT),
            self.policy.redundancy_threshold,
        )
        chapter.deltas_folded = True
        self.store.save_document(document)

    def _coherence_state(self, job: PipelineJob, document: Document, chunk: Chunk) -> CoherenceState:
        """Mode state as of just before ``chunk``, rebuilt from persisted evaluations."""
        state = initial_state(job.coherence_mode, document.skeleton)
        for earlier in document.iter_chunks():
            if earlier.index >= chunk.index:
                break
            if earlier.usable and earlier.evaluation and earlier.evaluation.state_update is not None:
                state = earlier.evaluation.state_update
        return state

    def _process_chunks(self, job: PipelineJob, document: Document, writer: BaseStageWriter) -> None:
        processor = ChunkProcessor(
            self.generator,
            self.delta_tracker,
            self.policy,
            persist=lambda _chunk: self.store.save_document(document),
            audit=self.audit,
            sleep=self.sleep,
        )
        instruction = writer.get_instruction(job)
        meta = self._metadata(job, document.stage)
        mode = document.length_config.mode if document.length_config else None
        track = writer.tracks_coherence and job.coherence_mode is not None

        for part in document.parts:
            for chapter in part.chapters:
                if document.is_hierarchical and chapter.context_skeleton is None:
                    chapter.context_skeleton = document.working_skeleton or document.skeleton
                    self.store.save_document(document)

                for chunk in chapter.chunks:
                    if chunk.is_terminal:
                        continue
                    self._check_cancelled(job, document.stage, chunk.index)

                    chunk.inherited_skeleton = self._chunk_skeleton(document, chapter, chunk)
                    skeletons = [chunk.inherited_skeleton]
                    if document.is_hierarchical and chapter.inherited_skeleton is not None:
                        skeletons.insert(0, chapter.inherited_skeleton)

                    evaluate = None
                    if track:
                        state = self._coherence_state(job, document, chunk)
                        evaluate = lambda output, delta, state=state: evaluate_chunk(state, output, delta)

                    task = ChunkTask(
                        instruction=instruction,
                        skeletons=skeletons,
                        mode=mode,
                        metadata=meta,
                        content=writer.chunk_content(job, document, chunk),
                        evaluate=evaluate,
                    )
                    processor.process(chunk, task)
                if not chapter.deltas_folded:
                    self._fold_chapter(document, part, chapter)

        if track:
            last = [c for c in document.iter_chunks() if c.evaluation and c.evaluation.state_update is not None]
            if last:
                job.coherence_state = last[-1].evaluation.state_update

    def _check_cancelled(self, job: PipelineJob, stage: PipelineStage, chunk_index: int) -> None:
        requested_at = self.store.cancel_requested(job.job_id)
        if requested_at is not None:
            job.aborted_at = requested_at
            logger.info(f"PIPELINE: job {job.job_id} cancelled before {stage.value} chunk {chunk_index}")
            raise JobCancelled(job.job_id, stage=stage.value, chunk_index=chunk_index)

    # =========================================================================
    # Stitching
    # =========================================================================

    def _stitch_with_repair(self, job: PipelineJob, document: Document, writer: BaseStageWriter) -> StitchResult:
        result = self._stitch(job, document, writer)
        while result.repair_plan and document.stitch_repairs_done < self.policy.max_stitch_repairs:
            flagged = result.flagged_chunks()
            start = time.perf_counter()
            for index, instructions in flagged.items():
                document.chunk(index).reset_for_rerun(instructions)
            document.stitch_repairs_done += 1
            self.store.save_document(document)
            logger.info(
                f"STITCH: {document.stage.value} repair round {document.stitch_repairs_done}: "
                f"re-running chunks {sorted(flagged)}"
            )
            self._process_chunks(job, document, writer)
            result = self._stitch(job, document, writer)
            self._record(job, document.stage, "repair", start, f"{len(flagged)} chunks re-run",
                         f"{result.finding_count} findings remain")

        if result.repair_plan:
            conflict = StructuralConflict(
                f"{result.finding_count} stitch findings unresolved after "
                f"{document.stitch_repairs_done} repair rounds",
                stage=document.stage.value,
                findings=result.finding_count,
            )
            log_error_with_context(conflict, f"{document.stage.value}:stitch", level=logging.WARNING)
            job.stage_record(document.stage).errors.append(create_unit_error(conflict, node=f"{document.stage.value}:stitch"))
        return result

    def _stitch(self, job: PipelineJob, document: Document, writer: BaseStageWriter) -> StitchResult:
        start = time.perf_counter()
        total = StitchResult()
        part_units = []
        for part in document.parts:
            chapter_units = []
            for chapter in part.chapters:
                usable = [c for c in chapter.chunks if c.usable]
                children = [
                    StitchUnit(c.index, c.output_text or "", [(c.index, c.delta)] if c.delta else [])
                    for c in usable
                ]
                chapter_result = self.stitcher.stitch(
                    children,
                    chapter.skeleton or document.skeleton,
                    integrations=writer.integrations(job, usable),
                    leaf_level=True,
                )
                chapter.output_text = chapter_result.output
                chapter.status = UnitStatus.COMPLETED
                total.merge(chapter_result)
                chapter_units.append(StitchUnit(chapter.index, chapter_result.output, children_contributions(children)))

            part_result = self.stitcher.stitch(chapter_units, part.skeleton or document.skeleton, leaf_level=False)
            part.output_text = part_result.output
            part.status = UnitStatus.COMPLETED
            total.merge(part_result)
            part_units.append(StitchUnit(part.index, part_result.output, children_contributions(chapter_units)))

        doc_result = self.stitcher.stitch(part_units, document.skeleton, leaf_level=False)
        total.merge(doc_result)
        total.output = doc_result.output
        document.stitch_result = total
        self.store.save_document(document)
        self._record(job, document.stage, "stitch", start, f"{len(document.chunks)} chunks",
                     f"{total.finding_count} findings, {total.coherence_score.value}")
        return total

    # =========================================================================
    # Completion
    # =========================================================================

    def _finish(
        self,
        job: PipelineJob,
        document: Document,
        writer: BaseStageWriter,
        record: StageRecord,
        result: StitchResult,
    ) -> None:
        chunks = document.chunks
        document.output_text = result.output
        document.output_words = count_words(result.output)
        document.status = UnitStatus.COMPLETED
        self.store.save_document(document)

        try:
            writer.absorb(job, document)
        except HCCError as e:
            self._fail(job, record, e)

        record.output_text = document.output_text
        record.output_words = document.output_words
        # Rebuilt from scratch: stitch repairs may have replaced folded deltas
        if document.is_hierarchical:
            for part in document.parts:
                part.working_skeleton = fold_deltas(
                    part.skeleton or document.skeleton,
                    usable_deltas(c for chapter in part.chapters for c in chapter.chunks),
                    self.policy.budget_for(HierarchyLevel.PART),
                    self.policy.redundancy_threshold,
                )
        document.working_skeleton = fold_deltas(
            document.skeleton,
            usable_deltas(chunks),
            self.policy.budget_for(HierarchyLevel.DOCUMENT),
            self.policy.redundancy_threshold,
        )
        self.store.save_document(document)
        record.skeleton = document.working_skeleton
        record.unresolved_findings = result.finding_count
        record.deviation_chunks = [c.index for c in chunks if c.deviation_accepted]
        record.status = StageStatus.COMPLETE
        record.completed_at = _now()
        self.store.save_job(job)
        logger.info(
            f"PIPELINE: {document.stage.value} complete, {record.output_words} words, "
            f"{record.unresolved_findings} unresolved findings, "
            f"{len(record.deviation_chunks)} chunks off-band"
        )

    def _fail(self, job: PipelineJob, record: StageRecord, error: Exception) -> None:
        """Mark the stage failed and raise StageError."""
        unit = record.stage.value
        log_error_with_context(error, unit)
        record.status = StageStatus.FAILED
        record.errors.append(create_unit_error(error, node=unit))
        record.completed_at = _now()
        self.store.save_job(job)
        raise StageError(
            f"Stage {record.stage.value} failed: {error}",
            stage=record.stage.value,
            details={"cause": type(error).__name__},
        ) from error

    def _record(self, job: PipelineJob, stage: PipelineStage, kind: str, start: float, summary_in: str, summary_out: str) -> None:
        if self.audit is None:
            return
        try:
            self.audit.record_run(RunRecord(
                job_id=job.job_id,
                stage=stage.value,
                run_type=RunType(kind),
                unit=f"{stage.value}:document",
                input_summary=summary_in,
                output_summary=summary_out,
                duration_ms=int((time.perf_counter() - start) * 1000),
            ))
        except Exception as e:
            logger.warning(f"AUDIT: run record failed: {e}")


def children_contributions(children: list[StitchUnit]) -> list:
    """Flatten the chunk contributions of a list of stitched children."""
    return [contribution for child in children for contribution in child.contributions]


def usable_deltas(chunks: Iterable[Chunk]) -> list[Delta]:
    """Deltas of the usable chunks among ``chunks``, in the given order."""
    return [c.delta for c in chunks if c.usable and c.delta]
