"""Test configuration and fixtures.

Provides scripted and stage-aware fake generators, synthetic documents, and
store/policy fixtures shared by unit and integration tests.
"""

import json
import re
import threading
from collections import Counter
from typing import Callable

import pytest

from hcc.config.policy import PipelinePolicy
from hcc.generation.base import BaseGenerator, PromptContext
from hcc.hierarchy.text_utils import split_sentences
from hcc.memory.store import JobStore
from hcc.stages.objections import parse_objection_blocks
from hcc.state.enums import GenerationKind


# Configure pytest-asyncio
pytest_plugins = ['pytest_asyncio']


@pytest.fixture(scope="session")
def anyio_backend():
    """Use asyncio as the async backend."""
    return "asyncio"


# =============================================================================
# Synthetic Documents
# =============================================================================


def topic_sentence(i: int) -> str:
    """One claim with its own vocabulary so sentences never look alike."""
    return f"The topic t{i} relies on factor f{i} and evidence e{i} gathered in region r{i}."


def build_document(paragraphs: int, per_paragraph: int = 5) -> str:
    """Paragraphs of distinct topic sentences (14 words each)."""
    blocks = []
    n = 0
    for _ in range(paragraphs):
        blocks.append(" ".join(topic_sentence(n + k) for k in range(per_paragraph)))
        n += per_paragraph
    return "\n\n".join(blocks)


@pytest.fixture
def document_factory():
    """Factory for synthetic documents of ``paragraphs`` x 70 words."""
    return build_document


@pytest.fixture
def short_document():
    """About 1,800 words: four chunks at the default chunk size."""
    return build_document(26)


# =============================================================================
# Generators
# =============================================================================


class ScriptedGenerator(BaseGenerator):
    """Returns scripted outputs in order; exceptions in the script are raised."""

    model_name = "scripted"

    def __init__(self, outputs: list | None = None, default: str | Callable[[PromptContext], str] = ""):
        self.outputs = list(outputs or [])
        self.default = default
        self.contexts: list[PromptContext] = []

    def generate(self, context: PromptContext) -> str:
        self.contexts.append(context)
        if self.outputs:
            item = self.outputs.pop(0)
        else:
            item = self.default
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return item(context)
        return item


def words_of_length(n: int, stem: str = "word") -> str:
    return " ".join(f"{stem}{i}" for i in range(n))


def fill_to(sentences: list[str], target: int) -> str:
    """Cycle ``sentences`` until exactly ``target`` words are produced."""
    words: list[str] = []
    pool = [w for s in sentences for w in s.split()] or ["filler"]
    i = 0
    while len(words) < target:
        words.append(pool[i % len(pool)])
        i += 1
    return " ".join(words)


def padding(words: int, stem: str) -> str:
    return " ".join(f"{stem}x{k}" for k in range(max(0, words)))


_NUMBERED = re.compile(r"numbered #(\d+) to #(\d+)")


class PipelineFakeGenerator(BaseGenerator):
    """
    Deterministic generator that speaks every stage's output format.

    - skeleton: JSON whose thesis and commitments are the first sentences
    - stage 1 and 4 chunks: the prompt text cycled to exactly the target
    - stage 2 chunks: the requested OBJECTION blocks, padded to the target
    - stage 3 chunks: one RESPONSE block per objection, padded to the target

    ``on_chunk`` is called with (stage, chunk_index) before each chunk call;
    raising from it simulates a crash mid-stage.
    """

    model_name = "fake"

    def __init__(self, on_chunk: Callable[[str, int], None] | None = None):
        self.on_chunk = on_chunk
        self.calls: Counter = Counter()
        self._lock = threading.Lock()

    def generate(self, context: PromptContext) -> str:
        stage = str(context.metadata.get("stage", ""))
        if context.kind == GenerationKind.SKELETON:
            self._count(("skeleton", stage, context.metadata.get("level"), context.metadata.get("job_id")))
            return self._skeleton(context)
        if context.kind == GenerationKind.DELTA:
            return "{}"

        index = int(context.metadata.get("chunk_index", 0))
        self._count(("chunk", stage, index, context.metadata.get("job_id")))
        if self.on_chunk is not None:
            self.on_chunk(stage, index)

        target = context.target_words or 100
        if stage == "objections":
            return self._objections(context, target)
        if stage == "responses":
            return self._responses(context, target)
        return fill_to(split_sentences(context.content), target)

    def chunk_calls(self, stage: str, index: int) -> int:
        return sum(n for key, n in self.calls.items() if key[:3] == ("chunk", stage, index))

    def skeleton_calls(self, stage: str) -> int:
        return sum(n for key, n in self.calls.items() if key[:2] == ("skeleton", stage))

    def _count(self, key: tuple) -> None:
        with self._lock:
            self.calls[key] += 1

    @staticmethod
    def _skeleton(context: PromptContext) -> str:
        sentences = [s for s in split_sentences(context.content) if len(s.split()) >= 4]
        return json.dumps({
            "thesis": sentences[0] if sentences else context.content[:80],
            "outline": sentences[1:3],
            "key_terms": [],
            "commitment_ledger": [{"type": "asserts", "claim": s} for s in sentences[:2]],
        })

    @staticmethod
    def _objections(context: PromptContext, target: int) -> str:
        first, last = 1, 1
        for constraint in context.constraints:
            match = _NUMBERED.search(constraint)
            if match:
                first, last = int(match.group(1)), int(match.group(2))
        sentences = split_sentences(context.content) or [context.content]
        blocks = []
        for offset, n in enumerate(range(first, last + 1)):
            claim = sentences[offset % len(sentences)]
            focus = " ".join(w for w in claim.split() if re.fullmatch(r"[tfer]\d+\.?", w)).replace(".", "")
            blocks.append(
                f"OBJECTION #{n}\n"
                f"Claim: {claim}\n"
                f"Location: paragraph {offset + 1}\n"
                f"Type: empirical\n"
                f"Severity: {'serious' if n == 1 else 'moderate'}\n"
                f"Objection: Critic{n} questions {focus}."
            )
        body = "\n\n".join(blocks)
        preamble = padding(target - len(body.split()), f"crit{first}")
        return f"{preamble}\n\n{body}" if preamble else body

    @staticmethod
    def _responses(context: PromptContext, target: int) -> str:
        blocks = []
        for block in parse_objection_blocks(context.content):
            n = block["number"]
            focus = block.get("objection", "").replace(f"Critic{n} questions", "").strip(" .")
            blocks.append(
                f"RESPONSE #{n}\n"
                f"Response: Author{n} defends {focus}.\n"
                f"Enhanced: Author{n} grounds {focus} with survey data.\n"
                f"Notes: adds data"
            )
        body = "\n\n".join(blocks)
        first = parse_objection_blocks(context.content)[0]["number"] if blocks else "0"
        preamble = padding(target - len(body.split()), f"resp{first}")
        return f"{preamble}\n\n{body}" if preamble else body


@pytest.fixture
def scripted_generator():
    """Factory for ScriptedGenerator."""
    return ScriptedGenerator


@pytest.fixture
def fake_generator():
    """Stage-aware fake generator."""
    return PipelineFakeGenerator()


@pytest.fixture
def fake_generator_factory():
    return PipelineFakeGenerator


# =============================================================================
# Policy and Store
# =============================================================================


@pytest.fixture
def policy():
    """Default policy."""
    return PipelinePolicy()


@pytest.fixture
def store():
    """In-memory job store."""
    return JobStore()


@pytest.fixture
def no_sleep():
    """Backoff sleep that returns immediately."""
    return lambda _seconds: None
