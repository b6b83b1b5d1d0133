"""Structure detection: split a stage input into a chunk hierarchy.

Boundaries are only ever placed at the start of a word, so concatenating
the chunk slices reproduces the input exactly and every word belongs to
exactly one chunk.
"""

import logging
import re

from hcc.config.policy import PipelinePolicy
from hcc.errors.exceptions import DataValidationError
from hcc.state.enums import PipelineStage, StructureDepth
from hcc.state.models import Chapter, Chunk, Document, Part

logger = logging.getLogger(__name__)

_WORD = re.compile(r"\S+")
_PARAGRAPH_GAP = re.compile(r"\n\s*\n")
_SENTENCE_FINAL = re.compile(r"[.!?][\"')\]]*$")

# Headings that open a new chapter or part
HEADING_PATTERN = re.compile(
    r"^\s*(?:#{1,3}\s+\S.*|(?:chapter|section)\s+[\divxlc]+\b.*|"
    r"(?-i:[0-9IVXLC]+\.\s+[A-Z][A-Z \-']{3,})$)",
    re.IGNORECASE | re.MULTILINE,
)
PART_HEADING_PATTERN = re.compile(r"^\s*(?:#\s+)?part\s+[\divxlc]+\b.*", re.IGNORECASE)


class StructureDetector:
    """Decides hierarchy depth and splits text into chunks."""

    def __init__(self, policy: PipelinePolicy | None = None):
        self.policy = policy or PipelinePolicy()

    # =========================================================================
    # Chunk splitting
    # =========================================================================

    def split(self, text: str, target_words: int | None = None) -> list[str]:
        """
        Split text into slices of roughly ``target_words`` words.

        Prefers paragraph boundaries, then sentence ends, then any word
        boundary, within [min_fraction, max_fraction] of the target.

        Args:
            text: Text to split.
            target_words: Desired chunk size; defaults to the policy size.

        Returns:
            Slices whose concatenation equals ``text``.
        """
        target = target_words or self.policy.chunk_target_words
        words = list(_WORD.finditer(text))
        n = len(words)
        if n <= self.policy.single_chunk_threshold_words:
            return [text]

        min_w = max(1, int(target * self.policy.chunk_min_fraction))
        max_w = max(min_w + 1, int(target * self.policy.chunk_max_fraction))

        cuts: list[int] = []
        start = 0
        while n - start > max_w:
            lo = start + min_w
            # Leave at least min_w words for the remainder
            hi = max(lo, min(start + max_w, n - min_w))
            cut = self._best_boundary(text, words, start + target, lo, hi)
            cuts.append(cut)
            start = cut

        offsets = [0] + [words[i].start() for i in cuts] + [len(text)]
        return [text[a:b] for a, b in zip(offsets, offsets[1:])]

    def _best_boundary(self, text: str, words: list[re.Match], ideal: int, lo: int, hi: int) -> int:
        """Word index to cut before, preferring paragraphs then sentences."""
        paragraph: list[int] = []
        sentence: list[int] = []
        for j in range(lo, hi + 1):
            gap = text[words[j - 1].end():words[j].start()]
            if _PARAGRAPH_GAP.search(gap) or (
                "\n" in gap and HEADING_PATTERN.match(self._line_at(text, words[j].start()))
            ):
                paragraph.append(j)
            elif _SENTENCE_FINAL.search(words[j - 1].group()):
                sentence.append(j)

        for candidates in (paragraph, sentence):
            if candidates:
                return min(candidates, key=lambda j: (abs(j - ideal), j))
        return max(lo, min(ideal, hi))

    @staticmethod
    def _line_at(text: str, offset: int) -> str:
        end = text.find("\n", offset)
        return text[offset:] if end == -1 else text[offset:end]

    # =========================================================================
    # Hierarchy
    # =========================================================================

    def detect(
        self,
        text: str,
        stage: PipelineStage,
        job_id: str,
        target_words: int | None = None,
    ) -> Document:
        """
        Build the document tree for one stage input.

        Args:
            text: Stage input text.
            stage: Stage the document belongs to.
            job_id: Owning job.
            target_words: Chunk size override.

        Returns:
            Document with parts, chapters and chunks; no targets yet.

        Raises:
            DataValidationError: If the text contains no words.
        """
        slices = self.split(text, target_words)
        chunks = [
            Chunk(index=i, input_text=s, input_words=len(s.split()))
            for i, s in enumerate(slices)
        ]
        return self.build(text, stage, job_id, chunks)

    def build(
        self,
        text: str,
        stage: PipelineStage,
        job_id: str,
        chunks: list[Chunk],
    ) -> Document:
        """Group pre-split chunks into a document tree."""
        total = sum(c.input_words for c in chunks)
        if total == 0:
            raise DataValidationError(f"{stage.value} input has no words", field="text")

        if len(chunks) == 1:
            depth = StructureDepth.SINGLE
        elif total > self.policy.hierarchy_threshold_words:
            depth = StructureDepth.HIERARCHICAL
        else:
            depth = StructureDepth.FLAT

        if depth == StructureDepth.HIERARCHICAL:
            parts = self._group(chunks)
        else:
            parts = [Part(index=0, chapters=[Chapter(index=0, chunks=chunks)])]

        logger.info(
            f"STRUCTURE: {stage.value} {total} words -> {len(chunks)} chunks, "
            f"{sum(len(p.chapters) for p in parts)} chapters, {len(parts)} parts ({depth.value})"
        )
        return Document(
            job_id=job_id,
            stage=stage,
            original_text=text,
            input_words=total,
            depth=depth,
            parts=parts,
        )

    def _group(self, chunks: list[Chunk]) -> list[Part]:
        chapter_target = self.policy.chapter_target_words
        part_target = self.policy.part_target_words

        chapters: list[Chapter] = []
        current: list[Chunk] = []
        words = 0
        for chunk in chunks:
            heading = self._heading(chunk.input_text)
            if current and (
                words >= chapter_target
                or (heading and words >= chapter_target // 2)
            ):
                chapters.append(self._chapter(len(chapters), current))
                current, words = [], 0
            current.append(chunk)
            words += chunk.input_words
        if current:
            chapters.append(self._chapter(len(chapters), current))

        parts: list[Part] = []
        grouped: list[Chapter] = []
        words = 0
        for chapter in chapters:
            part_heading = PART_HEADING_PATTERN.match(chapter.chunks[0].input_text.strip())
            if grouped and (words >= part_target or (part_heading and words >= part_target // 2)):
                parts.append(self._part(len(parts), grouped))
                grouped, words = [], 0
            grouped.append(chapter)
            words += chapter.input_words
        if grouped:
            parts.append(self._part(len(parts), grouped))

        # Re-index chapters globally in document order
        for i, chapter in enumerate(c for p in parts for c in p.chapters):
            chapter.index = i
        return parts

    def _chapter(self, index: int, chunks: list[Chunk]) -> Chapter:
        title = self._heading(chunks[0].input_text) or f"Chapter {index + 1}"
        return Chapter(index=index, title=title, chunks=chunks)

    def _part(self, index: int, chapters: list[Chapter]) -> Part:
        first = chapters[0].chunks[0].input_text.strip()
        match = PART_HEADING_PATTERN.match(first)
        title = match.group(0).strip() if match else f"Part {index + 1}"
        return Part(index=index, title=title, chapters=chapters)

    @staticmethod
    def _heading(text: str) -> str | None:
        first_line = text.strip().split("\n", 1)[0]
        if HEADING_PATTERN.match(first_line):
            return first_line.strip().lstrip("#").strip()
        return None
