"""Shared dependencies for pipeline graph nodes.

Nodes are built by factories that close over a ``PipelineRuntime``, so one
compiled graph can serve many jobs against the same store and generator.
"""

import time
from dataclasses import dataclass, field
from typing import Callable

from hcc.config.policy import PipelinePolicy
from hcc.generation.audit import AuditedGenerator, AuditSink
from hcc.generation.base import BaseGenerator
from hcc.memory.store import JobStore
from hcc.review.horizontal import HorizontalCoherenceChecker
from hcc.stages.runner import StageRunner


@dataclass
class PipelineRuntime:
    """Dependencies every node needs.

    Attributes:
        generator: Text generator for skeletons, chunks and deltas
        store: Job store; the source of truth for jobs and documents
        policy: Pipeline policy
        audit: Optional sink for generation, length-check and run records
        sleep: Backoff sleep; tests pass a no-op
    """

    generator: BaseGenerator
    store: JobStore
    policy: PipelinePolicy = field(default_factory=PipelinePolicy)
    audit: AuditSink | None = None
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self):
        self.policy.validate()
        self.checker = HorizontalCoherenceChecker(self.policy)

    def generator_for(self, job_id: str) -> BaseGenerator:
        if self.audit is None:
            return self.generator
        return AuditedGenerator(self.generator, self.audit, job_id=job_id)

    def runner_for(self, job_id: str) -> StageRunner:
        """Stage runner whose generator calls are audited under ``job_id``."""
        return StageRunner(
            self.generator_for(job_id),
            self.store,
            self.policy,
            audit=self.audit,
            sleep=self.sleep,
        )
