"""Fixtures for integration tests.

Provides orchestrators wired to the stage-aware fake generator and hooks
that crash or cancel a run at a chosen chunk.
"""

from typing import Callable

import pytest

from hcc.graphs.orchestrator import PipelineOrchestrator
from hcc.memory.store import JobStore


class ChunkHook:
    """``on_chunk`` callback that fires once at (stage, chunk_index)."""

    def __init__(self, stage: str, index: int, action: Callable[[], None]):
        self.stage = stage
        self.index = index
        self.action = action
        self.fired = False

    def __call__(self, stage: str, index: int) -> None:
        if self.fired or (stage, index) != (self.stage, self.index):
            return
        self.fired = True
        self.action()


@pytest.fixture
def orchestrator_factory(no_sleep):
    """Factory for orchestrators that never sleep between retries."""
    def _create(generator, store: JobStore | None = None, **kwargs) -> PipelineOrchestrator:
        return PipelineOrchestrator(generator, store=store or JobStore(), sleep=no_sleep, **kwargs)
    return _create


@pytest.fixture
def crash_at():
    """Hook that raises RuntimeError once, simulating a process crash."""
    def _create(stage: str, index: int) -> ChunkHook:
        def crash():
            raise RuntimeError(f"simulated crash at {stage} chunk {index}")
        return ChunkHook(stage, index, crash)
    return _create


@pytest.fixture
def cancel_at():
    """Hook that requests cancellation once, while the chunk is being generated."""
    def _create(stage: str, index: int, cancel: Callable[[], None]) -> ChunkHook:
        return ChunkHook(stage, index, cancel)
    return _create
