"""Base stage writer class.

A stage writer knows what one pipeline stage reads, how its input is
chunked and sized, what each chunk is told to do, and what structured
records it leaves on the job afterwards. The StageRunner owns everything
the stages share: skeletons, chunk processing, stitching and persistence.
"""

from abc import ABC, abstractmethod

from hcc.config.policy import PipelinePolicy
from hcc.hierarchy.length_planner import LengthPlanner
from hcc.hierarchy.structure import StructureDetector
from hcc.state.enums import PipelineStage
from hcc.state.models import (
    Chunk,
    Document,
    IntegrationCheck,
    LengthEnforcementConfig,
    PipelineJob,
)


class BaseStageWriter(ABC):
    """
    Base class for the four stage writers.

    Provides common functionality:
    - Job context rendered into the stage instruction
    - Per-chunk band apportionment from a document plan
    - No-op hooks for stages without integration or post-processing
    """

    stage: PipelineStage
    stage_title: str = "Stage"

    # Whether the job's coherence mode is tracked while this stage runs
    tracks_coherence: bool = False

    def __init__(self, policy: PipelinePolicy | None = None):
        self.policy = policy or PipelinePolicy()
        self.planner = LengthPlanner(self.policy)
        self.detector = StructureDetector(self.policy)

    @abstractmethod
    def get_instruction(self, job: PipelineJob) -> str:
        """
        Get the generator instruction for this stage's chunks.

        Args:
            job: Owning job.

        Returns:
            Instruction string.
        """
        pass

    @abstractmethod
    def prepare(self, job: PipelineJob) -> Document:
        """
        Build this stage's document with chunk targets set.

        Args:
            job: Owning job; earlier stages are complete.

        Returns:
            Document ready for skeleton extraction.

        Raises:
            StageError: If the stage has no usable input.
        """
        pass

    def refresh(self, job: PipelineJob, document: Document) -> None:
        """Update an already prepared document before a re-run."""

    def chunk_content(self, job: PipelineJob, document: Document, chunk: Chunk) -> str | None:
        """Prompt content for a chunk; None means the chunk's input text."""
        return None

    def integrations(self, job: PipelineJob, chunks: list[Chunk]) -> list[IntegrationCheck]:
        """Integration checks the stitcher should consult for these chunks."""
        return []

    def absorb(self, job: PipelineJob, document: Document) -> None:
        """Record structured results on the job after the stage is stitched."""

    # =========================================================================
    # Shared helpers
    # =========================================================================

    def job_context(self, job: PipelineJob) -> str:
        lines = []
        if job.target_audience:
            lines.append(f"Target audience: {job.target_audience}")
        if job.objective:
            lines.append(f"Objective: {job.objective}")
        if job.custom_instructions:
            lines.append(f"User instructions: {job.custom_instructions}")
        return "\n".join(lines)

    def apportion(self, document: Document, config: LengthEnforcementConfig) -> None:
        """Give every chunk its share of the document target."""
        document.length_config = config
        for chunk in document.iter_chunks():
            chunk.target_words, chunk.min_words, chunk.max_words = self.planner.apportion(
                config, chunk.input_words
            )

    def set_band(self, chunk: Chunk, target: int) -> None:
        chunk.target_words = max(1, target)
        chunk.min_words, chunk.max_words = self.planner.band(chunk.target_words)
