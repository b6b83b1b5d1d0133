"""Generator abstraction.

The pipeline never writes prose itself. It hands a ``PromptContext`` to a
generator and validates what comes back. Concrete generators wrap a chat
model; tests use scripted ones.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any

from hcc.state.enums import GenerationKind, LengthMode
from hcc.state.models import Skeleton


# =============================================================================
# Prompt Context
# =============================================================================


@dataclass
class PromptContext:
    """Everything a generator needs for one call.

    Attributes:
        kind: What the call is for (skeleton, chunk, delta)
        instruction: Stage- or task-specific instruction
        content: The text to transform or summarize
        skeletons: Inherited skeletons, root first
        target_words: Requested output length
        min_words: Lower bound of the accepted band
        max_words: Upper bound of the accepted band
        mode: Advisory length mode for verbosity calibration
        corrective: Follow-up instruction after a rejected attempt
        previous_output: The draft the corrective refers to
        constraints: Extra constraints from stitch or coherence repair
        metadata: Routing info (job_id, stage, chunk_index, ...)
    """

    kind: GenerationKind
    instruction: str
    content: str = ""
    skeletons: list[Skeleton] = field(default_factory=list)
    target_words: int | None = None
    min_words: int | None = None
    max_words: int | None = None
    mode: LengthMode | None = None
    corrective: str | None = None
    previous_output: str | None = None
    constraints: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def with_corrective(self, corrective: str, previous_output: str | None = None) -> "PromptContext":
        return replace(self, corrective=corrective, previous_output=previous_output)

    @property
    def unit(self) -> str:
        """Human-readable unit label for logs and audit records."""
        stage = self.metadata.get("stage", "")
        if "chunk_index" in self.metadata:
            return f"{stage}:chunk-{self.metadata['chunk_index']}"
        if "level" in self.metadata:
            return f"{stage}:{self.metadata['level']}-{self.metadata.get('unit_index', 0)}"
        return stage or self.kind.value

    def system_prompt(self) -> str:
        lines = [self.instruction.strip()]
        if self.mode is not None:
            lines.append(f"\nLength mode: {self.mode.value.replace('_', ' ')}.")
        if self.target_words is not None:
            lines.append(
                f"Write approximately {self.target_words} words "
                f"(acceptable range {self.min_words}-{self.max_words}). "
                f"Stay inside this range."
            )
        return "\n".join(lines)

    def user_prompt(self) -> str:
        sections = []
        for skeleton in self.skeletons:
            sections.append(skeleton.render())
        if self.constraints:
            sections.append(
                "Additional constraints:\n" + "\n".join(f"- {c}" for c in self.constraints)
            )
        if self.content:
            sections.append(f"TEXT:\n{self.content}")
        if self.previous_output:
            sections.append(f"PREVIOUS DRAFT:\n{self.previous_output}")
        if self.corrective:
            sections.append(f"CORRECTION REQUIRED: {self.corrective}")
        return "\n\n".join(sections)

    def summary(self, limit: int = 200) -> str:
        text = " ".join(self.content.split())
        head = f"[{self.kind.value}] {self.unit}"
        if self.corrective:
            head += " (corrective)"
        return f"{head}: {text[:limit]}"


# =============================================================================
# Generator
# =============================================================================


class BaseGenerator(ABC):
    """
    Base class for text generators.

    ``generate`` is blocking from the pipeline's point of view.
    ``agenerate`` lets many jobs interleave their calls on one event loop.
    """

    model_name: str = "unknown"

    @abstractmethod
    def generate(self, context: PromptContext) -> str:
        """
        Produce text for the given context.

        Args:
            context: Prompt context.

        Returns:
            Generated text.

        Raises:
            GeneratorError: On transport failure (retryable).
            GeneratorTimeout: When the call exceeds its deadline (retryable).
        """
        pass

    async def agenerate(self, context: PromptContext) -> str:
        return await asyncio.to_thread(self.generate, context)
