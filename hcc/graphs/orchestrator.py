"""Pipeline orchestrator: the caller-facing surface of the HCC pipeline.

The orchestrator owns one compiled graph and one job store. Jobs are
created in the store, run by invoking the graph with the job id, and can be
cancelled, resumed and inspected at any time. Every run re-enters the graph
from the top; the dispatch node reads the persisted job to decide where to
continue, so resuming after a crash or a cancel needs nothing but the store.
"""

import asyncio
import logging
from typing import Any

from langgraph.checkpoint.base import BaseCheckpointSaver

from hcc.config.policy import PipelinePolicy
from hcc.errors.exceptions import DataValidationError, WorkflowError
from hcc.generation.audit import AuditSink
from hcc.generation.base import BaseGenerator
from hcc.graphs.pipeline_workflow import DEFAULT_RECURSION_LIMIT, WorkflowConfig, create_pipeline_workflow
from hcc.hierarchy.length_planner import parse_user_instructions
from hcc.hierarchy.text_utils import count_words
from hcc.memory.checkpointer import get_memory_saver
from hcc.memory.store import JobStore
from hcc.nodes.runtime import PipelineRuntime
from hcc.state.enums import STAGE_ORDER, TERMINAL_JOB_STATUSES, CoherenceMode, JobStatus
from hcc.state.models import (
    ChunkSnapshot,
    JobSnapshot,
    ObjectionSnapshot,
    PipelineJob,
    StageSnapshot,
)

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """Creates, runs, cancels, resumes and inspects pipeline jobs."""

    def __init__(
        self,
        generator: BaseGenerator,
        store: JobStore | None = None,
        policy: PipelinePolicy | None = None,
        audit: AuditSink | None = None,
        checkpointer: BaseCheckpointSaver | None = None,
        **runtime_kwargs: Any,
    ):
        self.store = store or JobStore()
        self.policy = policy or PipelinePolicy()
        self.runtime = PipelineRuntime(
            generator=generator,
            store=self.store,
            policy=self.policy,
            audit=audit,
            **runtime_kwargs,
        )
        self.graph = create_pipeline_workflow(
            self.runtime,
            WorkflowConfig(checkpointer=checkpointer or get_memory_saver()),
        )

    # =========================================================================
    # Job Lifecycle
    # =========================================================================

    def create_job(
        self,
        text: str,
        custom_instructions: str = "",
        target_audience: str = "",
        objective: str = "",
        coherence_mode: CoherenceMode | str | None = None,
    ) -> PipelineJob:
        """
        Create and persist a pending job.

        Args:
            text: Document to transform.
            custom_instructions: Free-form instructions; length targets,
                must-add and must-preserve items are parsed out of them.
            target_audience: Audience the output is written for.
            objective: What the output should achieve.
            coherence_mode: Optional coherence discipline tracked per chunk.

        Returns:
            The new job.

        Raises:
            DataValidationError: If the document is empty.
        """
        if count_words(text) == 0:
            raise DataValidationError("Document is empty", field="text")

        mode = CoherenceMode(coherence_mode) if coherence_mode else None
        job = PipelineJob(
            original_text=text,
            custom_instructions=custom_instructions,
            target_audience=target_audience,
            objective=objective,
            user_instructions=parse_user_instructions(custom_instructions),
            coherence_mode=mode,
        )
        self.store.save_job(job)
        logger.info(f"PIPELINE: created job {job.job_id} ({count_words(text)} words)")
        return job

    def run(self, job_id: str) -> PipelineJob:
        """
        Run a job until it finishes, pauses or fails.

        Returns:
            The job as persisted after the run.
        """
        job = self.store.load_job(job_id)
        if job.status in TERMINAL_JOB_STATUSES:
            logger.info(f"PIPELINE: job {job_id} already {job.status.value}")
            return job

        job.status = JobStatus.RUNNING
        self.store.save_job(job)
        logger.info(f"PIPELINE: running job {job_id} from stage {job.current_stage}")

        self.graph.invoke(
            {
                "job_id": job_id,
                "status": JobStatus.RUNNING,
                "current_stage": job.current_stage,
                "hc_repair_attempts": job.hc_repair_attempts,
                "hc_max_repair_attempts": self.policy.hc_max_repair_attempts,
                "next_node": "",
                "_cancelled": False,
                "_should_fallback": False,
            },
            {"configurable": {"thread_id": job_id}, "recursion_limit": DEFAULT_RECURSION_LIMIT},
        )
        return self.store.load_job(job_id)

    def resume(self, job_id: str) -> PipelineJob:
        """
        Clear a cancel request and continue from the first unfinished chunk.

        Raises:
            WorkflowError: If the job already reached a terminal status.
        """
        job = self.store.load_job(job_id)
        if job.status in TERMINAL_JOB_STATUSES:
            raise WorkflowError(f"Job {job_id} is {job.status.value} and cannot resume", node="resume")
        self.store.clear_cancel(job_id)
        job.aborted_at = None
        self.store.save_job(job)
        logger.info(f"PIPELINE: resuming job {job_id}")
        return self.run(job_id)

    def cancel(self, job_id: str) -> PipelineJob:
        """
        Request cancellation; honored before the job's next chunk.

        A running job is paused by its own run at the next chunk boundary.
        A job that is not running is paused here.
        """
        job = self.store.load_job(job_id)
        if job.status in TERMINAL_JOB_STATUSES:
            return job
        job.aborted_at = self.store.request_cancel(job_id)
        if job.status != JobStatus.RUNNING:
            job.status = JobStatus.PAUSED
            self.store.save_job(job)
        logger.info(f"PIPELINE: cancel requested for job {job_id}")
        return job

    # =========================================================================
    # Async
    # =========================================================================

    async def arun(self, job_id: str) -> PipelineJob:
        """Run one job in a worker thread."""
        return await asyncio.to_thread(self.run, job_id)

    async def run_many(self, job_ids: list[str]) -> list[PipelineJob]:
        """Run independent jobs concurrently; results follow ``job_ids`` order."""
        return list(await asyncio.gather(*(self.arun(job_id) for job_id in job_ids)))

    # =========================================================================
    # Inspection
    # =========================================================================

    def snapshot(self, job_id: str) -> JobSnapshot:
        """Per-stage, per-chunk and per-objection status of a job."""
        job = self.store.load_job(job_id)
        stages = []
        for stage in STAGE_ORDER:
            record = job.stage_record(stage)
            chunks = [
                ChunkSnapshot(
                    index=c.index,
                    status=c.status,
                    retry_count=c.retry_count,
                    input_words=c.input_words,
                    target_words=c.target_words,
                    output_words=c.output_words,
                    deviation=c.deviation,
                    deviation_accepted=c.deviation_accepted,
                    errors=[e.message for e in c.errors],
                )
                for c in self.store.iter_chunks(job_id, stage)
            ]
            stages.append(StageSnapshot(
                stage=stage,
                status=record.status,
                output_words=record.output_words,
                unresolved_findings=record.unresolved_findings,
                chunks=chunks,
                errors=[e.message for e in record.errors],
            ))

        latest = job.latest_hc_result
        return JobSnapshot(
            job_id=job.job_id,
            status=job.status,
            current_stage=job.current_stage,
            stages=stages,
            objections=[
                ObjectionSnapshot(
                    index=o.index,
                    severity=o.severity,
                    addressed=o.has_response,
                    integrated_in_section=o.integrated_in_section,
                    integration_verified=o.integration_verified,
                )
                for o in job.objections
            ],
            hc_errors=latest.errors if latest else 0,
            hc_warnings=latest.warnings if latest else 0,
            hc_repair_attempts=job.hc_repair_attempts,
            errors=[e.message for e in job.errors],
        )
