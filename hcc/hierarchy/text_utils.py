"""Word counting, sentence splitting, and lexical similarity.

All coherence heuristics in the pipeline are lexical and deterministic so
that re-running them on the same text gives the same answer. Similarity is
key-term overlap where two terms match when rapidfuzz scores them at or
above ``TERM_MATCH_CUTOFF``, so inflections such as "revenue" and
"revenues" count as the same term.
"""

import math
import re

from rapidfuzz import fuzz, process

WORD_PATTERN = re.compile(r"\S+")
TOKEN_PATTERN = re.compile(r"[a-z0-9]+(?:'[a-z]+)?")
SENTENCE_END = re.compile(r"(?<=[.!?])[\"')\]]*\s+")

# fuzz.ratio score at which two content tokens count as the same term
TERM_MATCH_CUTOFF = 90
_HAS_DIGIT = re.compile(r"\d")

# Negation markers that flip the polarity of a statement
NEGATION_PATTERN = re.compile(
    r"\b(not|no|never|none|cannot|can't|isn't|aren't|wasn't|weren't|doesn't|"
    r"don't|didn't|won't|shouldn't|neither|nor|false that|reject|rejects|deny|denies)\b",
    re.IGNORECASE,
)

STOPWORDS: frozenset[str] = frozenset({
    "a", "an", "the", "and", "or", "but", "if", "then", "of", "to", "in", "on",
    "at", "by", "for", "with", "as", "is", "are", "was", "were", "be", "been",
    "being", "it", "its", "this", "that", "these", "those", "there", "their",
    "they", "we", "our", "you", "your", "he", "she", "his", "her", "i", "me",
    "my", "so", "such", "than", "too", "very", "can", "will", "would", "should",
    "could", "may", "might", "must", "do", "does", "did", "has", "have", "had",
    "from", "into", "about", "also", "which", "who", "whom", "what", "when",
    "where", "why", "how", "all", "any", "each", "more", "most", "some", "only",
    "own", "same", "just", "because", "while", "both", "over", "under", "again",
    "further", "once", "here", "not", "no", "never", "nor", "none", "cannot",
})


def count_words(text: str | None) -> int:
    """Whitespace-delimited word count."""
    if not text:
        return 0
    return len(text.split())


def round_half_up(value: float) -> int:
    # Guard against 212.49999999999997 style float error
    return int(math.floor(value + 0.5 + 1e-9))


def split_sentences(text: str) -> list[str]:
    """Split text into sentences, keeping paragraph breaks as boundaries."""
    sentences: list[str] = []
    for paragraph in re.split(r"\n\s*\n", text):
        flat = " ".join(paragraph.split())
        if not flat:
            continue
        sentences.extend(s.strip() for s in SENTENCE_END.split(flat) if s.strip())
    return sentences


def tokens(text: str) -> list[str]:
    return TOKEN_PATTERN.findall(text.lower())


def content_tokens(text: str) -> set[str]:
    """Lower-cased tokens with stopwords removed."""
    return {t for t in tokens(text) if t not in STOPWORDS and len(t) > 1}


def _matched(terms: set[str], pool: set[str]) -> int:
    """Number of ``terms`` with a match in ``pool``.

    Tokens carrying digits (figures, years, identifiers) only match exactly.
    """
    words = [t for t in pool if not _HAS_DIGIT.search(t)]
    count = 0
    for term in terms:
        if term in pool:
            count += 1
        elif words and not _HAS_DIGIT.search(term) and process.extractOne(
            term, words, scorer=fuzz.ratio, score_cutoff=TERM_MATCH_CUTOFF
        ) is not None:
            count += 1
    return count


def similarity(a: str, b: str) -> float:
    """
    Symmetric key-term overlap of two statements, in [0, 1].

    Jaccard over content tokens, with rapidfuzz deciding which tokens match.
    """
    ta, tb = content_tokens(a), content_tokens(b)
    if not ta and not tb:
        return 1.0
    if not ta or not tb:
        return 0.0
    shared = (_matched(ta, tb) + _matched(tb, ta)) / 2
    return shared / (len(ta) + len(tb) - shared)


def coverage(claim: str, text: str) -> float:
    """Fraction of the claim's content tokens that have a match in ``text``."""
    tc = content_tokens(claim)
    if not tc:
        return 0.0
    return _matched(tc, content_tokens(text)) / len(tc)


def has_negation(text: str) -> bool:
    return bool(NEGATION_PATTERN.search(text))


def same_polarity(a: str, b: str) -> bool:
    return has_negation(a) == has_negation(b)


def best_matching_sentence(claim: str, sentences: list[str]) -> tuple[str | None, float]:
    """Sentence with the highest coverage of ``claim``."""
    best, best_score = None, 0.0
    for sentence in sentences:
        score = coverage(claim, sentence)
        if score > best_score:
            best, best_score = sentence, score
    return best, best_score


def truncate_words(text: str, limit: int) -> str:
    words = text.split()
    if len(words) <= limit:
        return text
    return " ".join(words[:limit])
