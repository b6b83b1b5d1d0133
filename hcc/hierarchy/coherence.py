"""Per-mode coherence evaluators.

Each coherence mode has one state variant (see ``hcc.state.coherence_modes``)
and one evaluator here. An evaluator only ever sees its own variant: the
registry dispatches on ``state.mode`` so no evaluator needs to know about
the others.
"""

import logging
import re
from typing import Callable

from hcc.hierarchy.text_utils import (
    content_tokens,
    coverage,
    has_negation,
    same_polarity,
    similarity,
    split_sentences,
)
from hcc.state.coherence_modes import (
    ChunkEvaluation,
    CoherenceState,
    InstructionalState,
    LogicalCohesivenessState,
    LogicalConsistencyState,
    MathematicalState,
    MotivationalState,
    PhilosophicalState,
    ScientificExplanatoryState,
    ThematicPsychologicalState,
)
from hcc.state.enums import CoherenceMode, EvaluationStatus, LedgerEntryType
from hcc.state.models import Delta, Skeleton

logger = logging.getLogger(__name__)

Evaluator = Callable[[CoherenceState, str, Delta], ChunkEvaluation]

_SIMILAR = 0.6


def _evaluation(violations: list[str], repairs: list[str], state: CoherenceState, broken: bool = False) -> ChunkEvaluation:
    if not violations:
        status = EvaluationStatus.PRESERVED
    elif broken:
        status = EvaluationStatus.BROKEN
    else:
        status = EvaluationStatus.WEAKENED
    return ChunkEvaluation(status=status, violations=violations, repairs=repairs, state_update=state)


# =============================================================================
# Initial state
# =============================================================================


def initial_state(mode: CoherenceMode, skeleton: Skeleton) -> CoherenceState:
    """Seed the mode's state from the stage's document skeleton."""
    asserts = [e.claim for e in skeleton.commitment_ledger if e.type == LedgerEntryType.ASSERTS]
    rejects = [e.claim for e in skeleton.commitment_ledger if e.type == LedgerEntryType.REJECTS]
    assumes = [e.claim for e in skeleton.commitment_ledger if e.type == LedgerEntryType.ASSUMES]

    if mode == CoherenceMode.LOGICAL_CONSISTENCY:
        return LogicalConsistencyState(assertions=asserts, negations=rejects)
    if mode == CoherenceMode.LOGICAL_COHESIVENESS:
        return LogicalCohesivenessState(thesis=skeleton.thesis, support_queue=list(skeleton.outline))
    if mode == CoherenceMode.SCIENTIFIC_EXPLANATORY:
        return ScientificExplanatoryState(causal_nodes=[t.term.lower() for t in skeleton.key_terms])
    if mode == CoherenceMode.THEMATIC_PSYCHOLOGICAL:
        return ThematicPsychologicalState(stance=skeleton.thesis)
    if mode == CoherenceMode.INSTRUCTIONAL:
        return InstructionalState(goal=skeleton.thesis, prereqs=assumes)
    if mode == CoherenceMode.MOTIVATIONAL:
        target = skeleton.entities[0].name if skeleton.entities else ""
        return MotivationalState(direction=skeleton.thesis, target=target)
    if mode == CoherenceMode.MATHEMATICAL:
        return MathematicalState(givens=assumes, goal=skeleton.thesis)
    return PhilosophicalState(core_concepts=skeleton.term_map())


# =============================================================================
# Evaluators
# =============================================================================


def evaluate_logical_consistency(state: LogicalConsistencyState, output: str, delta: Delta) -> ChunkEvaluation:
    new = state.model_copy(deep=True)
    violations, repairs = [], []
    for claim in delta.new_claims:
        for rejected in state.negations:
            if coverage(rejected, claim) >= _SIMILAR and same_polarity(rejected, claim):
                violations.append(f"asserts rejected proposition: {rejected}")
                repairs.append(f"Do not assert that {rejected}")
        for asserted in state.assertions:
            if coverage(asserted, claim) >= _SIMILAR and not same_polarity(asserted, claim):
                violations.append(f"negates earlier assertion: {asserted}")
                repairs.append(f"Stay consistent with the claim that {asserted}")
        for a, b in state.disjoint_pairs:
            if coverage(a, output) >= _SIMILAR and coverage(b, output) >= _SIMILAR:
                violations.append(f"asserts both of a disjoint pair: {a} / {b}")
                repairs.append(f"Assert at most one of: {a}; {b}")
    for claim in delta.new_claims:
        (new.negations if has_negation(claim) else new.assertions).append(claim)
    return _evaluation(violations, repairs, new, broken=bool(violations))


def evaluate_logical_cohesiveness(state: LogicalCohesivenessState, output: str, delta: Delta) -> ChunkEvaluation:
    new = state.model_copy(deep=True)
    violations, repairs = [], []
    if new.support_queue:
        point = new.support_queue[0]
        if coverage(point, output) >= 0.3:
            new.support_queue.pop(0)
            new.current_stage += 1
            new.bridge_required = False
        elif new.bridge_required:
            violations.append(f"second chunk in a row without advancing: {point}")
            repairs.append(f"Connect this section to the point: {point}")
        else:
            new.bridge_required = True
    if new.thesis and not content_tokens(new.thesis) & content_tokens(output):
        violations.append("section has no visible link to the thesis")
        repairs.append(f"Tie this section back to the thesis: {new.thesis}")
    return _evaluation(violations, repairs, new)


_CAUSAL = re.compile(
    r"(?P<cause>[\w\- ]{2,40}?)\s+(?:causes|leads to|results in|produces|drives)\s+(?P<effect>[\w\- ]{2,40})",
    re.IGNORECASE,
)


def evaluate_scientific_explanatory(state: ScientificExplanatoryState, output: str, delta: Delta) -> ChunkEvaluation:
    new = state.model_copy(deep=True)
    violations, repairs = [], []
    for sentence in split_sentences(output):
        match = _CAUSAL.search(sentence)
        if not match:
            continue
        cause = match.group("cause").strip().lower()
        effect = match.group("effect").strip().lower()
        for node in (cause, effect):
            if node not in new.causal_nodes:
                new.causal_nodes.append(node)
        edge = (cause, effect)
        if edge in new.causal_edges:
            continue
        if (effect, cause) in new.causal_edges:
            if "feedback" in sentence.lower() or "loop" in sentence.lower():
                new.feedback_loops.append([cause, effect])
            else:
                violations.append(f"reverses an earlier causal link: {effect} -> {cause}")
                repairs.append(f"Either keep {effect} as the cause of {cause} or state the feedback loop explicitly")
        new.causal_edges.append(edge)
    return _evaluation(violations, repairs, new)


_POSITIVE = frozenset({"hope", "joy", "confident", "optimistic", "calm", "trust", "growth", "possible", "strength"})
_NEGATIVE = frozenset({"fear", "despair", "anxious", "pessimistic", "anger", "doubt", "loss", "hopeless", "dread"})


def _affect(text: str) -> str:
    words = content_tokens(text)
    pos, neg = len(words & _POSITIVE), len(words & _NEGATIVE)
    if pos > neg:
        return "positive"
    if neg > pos:
        return "negative"
    return ""


def evaluate_thematic_psychological(state: ThematicPsychologicalState, output: str, delta: Delta) -> ChunkEvaluation:
    new = state.model_copy(deep=True)
    violations, repairs = [], []
    affect = _affect(output)
    if affect and new.dominant_affect and affect != new.dominant_affect:
        violations.append(f"affect shifts from {new.dominant_affect} to {affect}")
        repairs.append(f"Keep the {new.dominant_affect} tone or mark the shift explicitly")
    elif affect and not new.dominant_affect:
        new.dominant_affect = affect
    sentences = split_sentences(output)
    if sentences:
        avg = sum(len(s.split()) for s in sentences) / len(sentences)
        new.tempo = "fast" if avg < 12 else "slow" if avg > 28 else "steady"
    return _evaluation(violations, repairs, new)


_STEP = re.compile(r"\bstep\s+(\d+)\b", re.IGNORECASE)


def evaluate_instructional(state: InstructionalState, output: str, delta: Delta) -> ChunkEvaluation:
    new = state.model_copy(deep=True)
    violations, repairs = [], []
    for match in _STEP.finditer(output):
        number = int(match.group(1))
        if number > len(new.steps_done) + 1:
            violations.append(f"jumps to step {number} after {len(new.steps_done)} steps")
            repairs.append(f"Cover step {len(new.steps_done) + 1} before step {number}")
            break
        if number == len(new.steps_done) + 1:
            new.steps_done.append(f"step {number}")
    for loop in list(new.open_loops):
        if coverage(loop, output) >= _SIMILAR:
            new.open_loops.remove(loop)
    new.open_loops.extend(p for p in delta.premises if p not in new.open_loops)
    return _evaluation(violations, repairs, new)


def evaluate_motivational(state: MotivationalState, output: str, delta: Delta) -> ChunkEvaluation:
    new = state.model_copy(deep=True)
    violations, repairs = [], []
    sentences = split_sentences(output)
    if sentences:
        urgent = sum(1 for s in sentences if s.endswith("!") or s.split()[0].lower() in {"start", "act", "do", "begin", "commit"})
        new.intensity = round(0.5 * new.intensity + 0.5 * min(1.0, urgent / len(sentences) * 4), 3)
    if new.direction and coverage(new.direction, output) < 0.1:
        violations.append("section drifts from the motivating direction")
        repairs.append(f"Keep pointing toward: {new.direction}")
    return _evaluation(violations, repairs, new)


_REFERENCE = re.compile(r"\b(?:by|from|using)\s+(lemma|theorem|proposition|corollary)\s+(\d+)\b", re.IGNORECASE)
_CONCLUSION = re.compile(r"^(?:therefore|hence|thus|it follows that)\b", re.IGNORECASE)
_STATEMENT = re.compile(r"\b(lemma|theorem|proposition|corollary)\s+(\d+)\b", re.IGNORECASE)


def evaluate_mathematical(state: MathematicalState, output: str, delta: Delta) -> ChunkEvaluation:
    new = state.model_copy(deep=True)
    violations, repairs = [], []
    for sentence in split_sentences(output):
        for match in _REFERENCE.finditer(sentence):
            ref = f"{match.group(1).lower()} {match.group(2)}"
            if ref not in new.proved and ref not in new.givens:
                violations.append(f"uses {ref} before it is established")
                repairs.append(f"State and prove {ref} before relying on it")
        if _CONCLUSION.match(sentence):
            new.proved.append(sentence)
        stated = _STATEMENT.match(sentence.strip())
        if stated and not _REFERENCE.search(sentence):
            ref = f"{stated.group(1).lower()} {stated.group(2)}"
            if ref not in new.proved:
                new.proved.append(ref)
    return _evaluation(violations, repairs, new, broken=bool(violations))


def evaluate_philosophical(state: PhilosophicalState, output: str, delta: Delta) -> ChunkEvaluation:
    new = state.model_copy(deep=True)
    violations, repairs = [], []
    for term, meaning in delta.term_definitions.items():
        established = new.core_concepts.get(term)
        if established is None:
            new.core_concepts[term] = meaning
        elif new.no_equivocation and similarity(established, meaning) < 0.5:
            violations.append(f"equivocates on '{term}'")
            repairs.append(f"Use '{term}' only in the sense: {established}")
    return _evaluation(violations, repairs, new, broken=bool(violations))


# =============================================================================
# Registry
# =============================================================================


EVALUATORS: dict[str, Evaluator] = {
    CoherenceMode.LOGICAL_CONSISTENCY.value: evaluate_logical_consistency,
    CoherenceMode.LOGICAL_COHESIVENESS.value: evaluate_logical_cohesiveness,
    CoherenceMode.SCIENTIFIC_EXPLANATORY.value: evaluate_scientific_explanatory,
    CoherenceMode.THEMATIC_PSYCHOLOGICAL.value: evaluate_thematic_psychological,
    CoherenceMode.INSTRUCTIONAL.value: evaluate_instructional,
    CoherenceMode.MOTIVATIONAL.value: evaluate_motivational,
    CoherenceMode.MATHEMATICAL.value: evaluate_mathematical,
    CoherenceMode.PHILOSOPHICAL.value: evaluate_philosophical,
}


def evaluate_chunk(state: CoherenceState, output: str, delta: Delta) -> ChunkEvaluation:
    """Dispatch to the evaluator for ``state``'s own mode."""
    evaluation = EVALUATORS[state.mode](state, output, delta)
    if evaluation.status != EvaluationStatus.PRESERVED:
        logger.debug(f"COHERENCE: {state.mode} {evaluation.status.value}: {evaluation.violations}")
    return evaluation
