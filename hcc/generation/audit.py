"""Audit records for generator calls, length checks, and runs.

The audit sink is for observability only. A failing sink is logged and
never interrupts processing.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Protocol

from pydantic import BaseModel, Field

from hcc.generation.base import BaseGenerator, PromptContext
from hcc.state.enums import RunType

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Records
# =============================================================================


class GenerationRecord(BaseModel):
    """One generator call."""

    job_id: str = ""
    stage: str = ""
    unit: str = ""
    kind: str = ""
    model: str = ""
    prompt_summary: str = ""
    response_summary: str = ""
    latency_ms: int = 0
    status: str = "success"
    error: str | None = None
    recorded_at: datetime = Field(default_factory=_now)


class LengthCheckRecord(BaseModel):
    """One chunk length-check outcome."""

    job_id: str = ""
    stage: str = ""
    chunk_index: int
    input_words: int
    output_words: int
    target_words: int
    min_words: int
    max_words: int
    passed: bool
    retry_number: int
    failure_reason: str | None = None
    recorded_at: datetime = Field(default_factory=_now)


class RunRecord(BaseModel):
    """One skeleton, chunk-pass, stitch, repair, or coherence-check run."""

    job_id: str = ""
    stage: str = ""
    run_type: RunType
    unit: str = ""
    input_summary: str = ""
    output_summary: str = ""
    duration_ms: int = 0
    status: str = "success"
    details: dict[str, Any] = Field(default_factory=dict)
    recorded_at: datetime = Field(default_factory=_now)


# =============================================================================
# Sinks
# =============================================================================


class AuditSink(Protocol):
    def record_generation(self, record: GenerationRecord) -> None: ...

    def record_length_check(self, record: LengthCheckRecord) -> None: ...

    def record_run(self, record: RunRecord) -> None: ...


class LoggingAuditSink:
    """Writes one log line per record."""

    def __init__(self, level: int = logging.DEBUG):
        self.level = level

    def record_generation(self, record: GenerationRecord) -> None:
        logger.log(
            self.level,
            f"AUDIT: generate {record.unit} kind={record.kind} status={record.status} "
            f"latency={record.latency_ms}ms",
        )

    def record_length_check(self, record: LengthCheckRecord) -> None:
        outcome = "pass" if record.passed else "fail"
        logger.log(
            self.level,
            f"AUDIT: length chunk-{record.chunk_index} {outcome} "
            f"{record.output_words}w in [{record.min_words},{record.max_words}] "
            f"retry={record.retry_number}",
        )

    def record_run(self, record: RunRecord) -> None:
        logger.log(
            self.level,
            f"AUDIT: run {record.run_type.value} {record.unit} "
            f"status={record.status} duration={record.duration_ms}ms",
        )


class InMemoryAuditSink:
    """Keeps records in lists."""

    def __init__(self):
        self.generations: list[GenerationRecord] = []
        self.length_checks: list[LengthCheckRecord] = []
        self.runs: list[RunRecord] = []

    def record_generation(self, record: GenerationRecord) -> None:
        self.generations.append(record)

    def record_length_check(self, record: LengthCheckRecord) -> None:
        self.length_checks.append(record)

    def record_run(self, record: RunRecord) -> None:
        self.runs.append(record)


class CompositeAuditSink:
    """Fans records out to several sinks, isolating failures."""

    def __init__(self, *sinks: AuditSink):
        self.sinks = list(sinks)

    def _each(self, method: str, record: BaseModel) -> None:
        for sink in self.sinks:
            try:
                getattr(sink, method)(record)
            except Exception as e:
                logger.warning(f"AUDIT: sink {type(sink).__name__} failed on {method}: {e}")

    def record_generation(self, record: GenerationRecord) -> None:
        self._each("record_generation", record)

    def record_length_check(self, record: LengthCheckRecord) -> None:
        self._each("record_length_check", record)

    def record_run(self, record: RunRecord) -> None:
        self._each("record_run", record)


# =============================================================================
# Audited Generator
# =============================================================================


def _clip(text: str, limit: int = 200) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= limit else flat[:limit] + "..."


class AuditedGenerator(BaseGenerator):
    """Wraps a generator and records every call to an audit sink."""

    def __init__(self, inner: BaseGenerator, sink: AuditSink, job_id: str = ""):
        self.inner = inner
        self.sink = CompositeAuditSink(sink) if not isinstance(sink, CompositeAuditSink) else sink
        self.job_id = job_id
        self.model_name = inner.model_name

    def generate(self, context: PromptContext) -> str:
        start = time.perf_counter()
        record = GenerationRecord(
            job_id=self.job_id,
            stage=str(context.metadata.get("stage", "")),
            unit=context.unit,
            kind=context.kind.value,
            model=self.model_name,
            prompt_summary=context.summary(),
        )
        try:
            text = self.inner.generate(context)
        except Exception as e:
            record.latency_ms = int((time.perf_counter() - start) * 1000)
            record.status = "error"
            record.error = f"{type(e).__name__}: {e}"
            self.sink.record_generation(record)
            raise
        record.latency_ms = int((time.perf_counter() - start) * 1000)
        record.response_summary = _clip(text)
        self.sink.record_generation(record)
        return text
