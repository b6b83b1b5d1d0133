"""Tests for the generator layer.

This module tests:
- Prompt rendering and unit labels
- JSON extraction from model output
- Audit records written around generator calls
- Mapping of Anthropic client errors to pipeline errors
"""

import logging

import anthropic
import httpx
import pytest

from hcc.errors.exceptions import GeneratorError, GeneratorTimeout, RateLimitError
from hcc.generation.audit import (
    AuditedGenerator,
    CompositeAuditSink,
    GenerationRecord,
    InMemoryAuditSink,
    LoggingAuditSink,
    RunRecord,
)
from hcc.generation.base import PromptContext
from hcc.generation.claude import AnthropicGenerator, GeneratorConfig
from hcc.generation.parsing import as_str_list, extract_json_object
from hcc.state.enums import GenerationKind, HierarchyLevel, LengthMode, RunType
from hcc.state.models import Skeleton


# =============================================================================
# Prompt Context
# =============================================================================


class TestPromptContext:
    """Tests for PromptContext rendering."""

    def test_unit_labels(self):
        chunk = PromptContext(kind=GenerationKind.CHUNK, instruction="x",
                              metadata={"stage": "reconstruction", "chunk_index": 3})
        assert chunk.unit == "reconstruction:chunk-3"

        skeleton = PromptContext(kind=GenerationKind.SKELETON, instruction="x",
                                 metadata={"stage": "objections", "level": "chapter", "unit_index": 2})
        assert skeleton.unit == "objections:chapter-2"

        bare = PromptContext(kind=GenerationKind.DELTA, instruction="x")
        assert bare.unit == "delta"

    def test_system_prompt_carries_band(self):
        context = PromptContext(
            kind=GenerationKind.CHUNK,
            instruction="Rewrite the text.",
            mode=LengthMode.MODERATE_EXPANSION,
            target_words=500,
            min_words=425,
            max_words=575,
        )
        prompt = context.system_prompt()
        assert prompt.startswith("Rewrite the text.")
        assert "Length mode: moderate expansion." in prompt
        assert "Write approximately 500 words (acceptable range 425-575)." in prompt

    def test_user_prompt_sections_in_order(self):
        skeleton = Skeleton(level=HierarchyLevel.DOCUMENT, budget_words=2000, thesis="Markets work")
        context = PromptContext(
            kind=GenerationKind.CHUNK,
            instruction="x",
            content="Body text.",
            skeletons=[skeleton],
            constraints=["Keep the thesis"],
        ).with_corrective("Too short by 40 words.", "Short draft.")
        prompt = context.user_prompt()

        positions = [prompt.index(marker) for marker in (
            "[DOCUMENT SKELETON]", "Additional constraints:\n- Keep the thesis",
            "TEXT:\nBody text.", "PREVIOUS DRAFT:\nShort draft.",
            "CORRECTION REQUIRED: Too short by 40 words.",
        )]
        assert positions == sorted(positions)

    def test_with_corrective_copies(self):
        context = PromptContext(kind=GenerationKind.CHUNK, instruction="x")
        corrected = context.with_corrective("again")
        assert context.corrective is None
        assert corrected.summary().startswith("[chunk] chunk (corrective)")


# =============================================================================
# Parsing
# =============================================================================


class TestExtractJsonObject:
    """Tests for extract_json_object."""

    def test_bare(self):
        assert extract_json_object('{"thesis": "x"}') == {"thesis": "x"}

    def test_fenced(self):
        text = 'Here you go:\n```json\n{"thesis": "x", "outline": []}\n```\nDone.'
        assert extract_json_object(text) == {"thesis": "x", "outline": []}

    def test_embedded_in_prose(self):
        assert extract_json_object('Sure. {"a": 1} Hope that helps {') == {"a": 1}

    def test_skips_non_objects(self):
        assert extract_json_object('[1, 2] then {broken then {"b": 2}') == {"b": 2}

    @pytest.mark.parametrize("text", ["", "   ", "no json here", "[1, 2, 3]"])
    def test_nothing_decodable(self, text):
        with pytest.raises(ValueError):
            extract_json_object(text)


class TestAsStrList:
    """Tests for as_str_list."""

    def test_mixed_items(self):
        value = ["  a ", "", {"claim": "b"}, {"name": "c"}, {"other": "d"}, 4]
        assert as_str_list(value) == ["a", "b", "c", "4"]

    def test_scalars(self):
        assert as_str_list(None) == []
        assert as_str_list("  one ") == ["one"]
        assert as_str_list("   ") == []


# =============================================================================
# Audit
# =============================================================================


class TestAuditedGenerator:
    """Tests for AuditedGenerator."""

    def test_records_success(self, scripted_generator):
        sink = InMemoryAuditSink()
        generator = AuditedGenerator(scripted_generator(["  reply text "]), sink, job_id="job-1")
        context = PromptContext(kind=GenerationKind.CHUNK, instruction="x", content="input",
                                metadata={"stage": "reconstruction", "chunk_index": 0})

        assert generator.generate(context) == "  reply text "
        record = sink.generations[0]
        assert record.job_id == "job-1"
        assert record.stage == "reconstruction"
        assert record.unit == "reconstruction:chunk-0"
        assert record.kind == "chunk"
        assert record.model == "scripted"
        assert record.status == "success"
        assert record.response_summary == "reply text"

    def test_records_failure_and_reraises(self, scripted_generator):
        sink = InMemoryAuditSink()
        generator = AuditedGenerator(scripted_generator([GeneratorTimeout()]), sink)
        with pytest.raises(GeneratorTimeout):
            generator.generate(PromptContext(kind=GenerationKind.CHUNK, instruction="x"))
        assert sink.generations[0].status == "error"
        assert sink.generations[0].error.startswith("GeneratorTimeout")


class _BrokenSink:
    def record_generation(self, record):
        raise RuntimeError("disk full")

    def record_length_check(self, record):
        raise RuntimeError("disk full")

    def record_run(self, record):
        raise RuntimeError("disk full")


class TestCompositeAuditSink:
    """Tests for failure isolation between sinks."""

    def test_failing_sink_does_not_block_others(self, caplog):
        memory = InMemoryAuditSink()
        sink = CompositeAuditSink(_BrokenSink(), memory)
        with caplog.at_level(logging.WARNING):
            sink.record_run(RunRecord(run_type=RunType.STITCH, unit="reconstruction"))
        assert len(memory.runs) == 1
        assert "AUDIT: sink _BrokenSink failed on record_run" in caplog.text

    def test_logging_sink(self, caplog):
        with caplog.at_level(logging.INFO):
            LoggingAuditSink(level=logging.INFO).record_generation(
                GenerationRecord(unit="objections:chunk-1", kind="chunk", latency_ms=12)
            )
        assert "AUDIT: generate objections:chunk-1 kind=chunk status=success latency=12ms" in caplog.text


# =============================================================================
# Anthropic Error Mapping
# =============================================================================


_REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


class _FakeResponse:
    def __init__(self, content):
        self.content = content


class _FakeLLM:
    def __init__(self, outcome):
        self.outcome = outcome

    def invoke(self, messages):
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return _FakeResponse(self.outcome)


def anthropic_generator(outcome) -> AnthropicGenerator:
    """AnthropicGenerator with its chat models replaced; no client is built."""
    generator = AnthropicGenerator.__new__(AnthropicGenerator)
    generator.config = GeneratorConfig(model_name="claude-test", timeout_seconds=30)
    generator.model_name = "claude-test"
    generator._llm = generator._structured_llm = _FakeLLM(outcome)
    return generator


def status_error(cls, status: int, headers: dict | None = None):
    response = httpx.Response(status, headers=headers or {}, request=_REQUEST)
    return cls("api error", response=response, body=None)


class TestAnthropicGenerator:
    """Tests for AnthropicGenerator output handling and error mapping."""

    @pytest.fixture
    def context(self):
        return PromptContext(kind=GenerationKind.CHUNK, instruction="x", content="y")

    def test_string_content_stripped(self, context):
        assert anthropic_generator("  text \n").generate(context) == "text"

    def test_list_content_joined(self, context):
        content = [{"type": "text", "text": "first"}, "second"]
        assert anthropic_generator(content).generate(context) == "first second"

    def test_timeout(self, context):
        with pytest.raises(GeneratorTimeout) as exc_info:
            anthropic_generator(anthropic.APITimeoutError(request=_REQUEST)).generate(context)
        assert exc_info.value.details["timeout_seconds"] == 30

    def test_rate_limit_reads_retry_after(self, context):
        error = status_error(anthropic.RateLimitError, 429, {"retry-after": "7"})
        with pytest.raises(RateLimitError) as exc_info:
            anthropic_generator(error).generate(context)
        assert exc_info.value.retry_after == 7.0

    @pytest.mark.parametrize("cls, status, recoverable", [
        (anthropic.BadRequestError, 400, False),
        (anthropic.InternalServerError, 500, True),
    ])
    def test_status_errors(self, context, cls, status, recoverable):
        with pytest.raises(GeneratorError) as exc_info:
            anthropic_generator(status_error(cls, status)).generate(context)
        assert exc_info.value.recoverable is recoverable
        assert exc_info.value.details["status_code"] == status
