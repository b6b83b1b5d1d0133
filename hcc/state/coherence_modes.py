"""Per-mode coherence state.

Each coherence mode tracks its own state record while chunks are processed.
The records form a tagged union keyed by ``mode``; evaluators in
``hcc.hierarchy.coherence`` each handle exactly one variant.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from hcc.state.enums import EvaluationStatus


class LogicalConsistencyState(BaseModel):
    mode: Literal["logical-consistency"] = "logical-consistency"
    assertions: list[str] = Field(default_factory=list)
    negations: list[str] = Field(default_factory=list)
    disjoint_pairs: list[tuple[str, str]] = Field(
        default_factory=list,
        description="Pairs of propositions that may not both be asserted"
    )


class LogicalCohesivenessState(BaseModel):
    mode: Literal["logical-cohesiveness"] = "logical-cohesiveness"
    thesis: str = ""
    support_queue: list[str] = Field(
        default_factory=list,
        description="Supporting points still owed to the thesis, in order"
    )
    current_stage: int = 0
    bridge_required: bool = False


class ScientificExplanatoryState(BaseModel):
    mode: Literal["scientific-explanatory"] = "scientific-explanatory"
    causal_nodes: list[str] = Field(default_factory=list)
    causal_edges: list[tuple[str, str]] = Field(default_factory=list)
    level: str = "mechanism"
    feedback_loops: list[list[str]] = Field(default_factory=list)
    mechanism_requirements: list[str] = Field(default_factory=list)


class ThematicPsychologicalState(BaseModel):
    mode: Literal["thematic-psychological"] = "thematic-psychological"
    dominant_affect: str = ""
    tempo: str = "steady"
    stance: str = ""


class InstructionalState(BaseModel):
    mode: Literal["instructional"] = "instructional"
    goal: str = ""
    steps_done: list[str] = Field(default_factory=list)
    prereqs: list[str] = Field(default_factory=list)
    open_loops: list[str] = Field(default_factory=list)


class MotivationalState(BaseModel):
    mode: Literal["motivational"] = "motivational"
    direction: str = ""
    intensity: float = Field(default=0.5, ge=0.0, le=1.0)
    target: str = ""


class MathematicalState(BaseModel):
    mode: Literal["mathematical"] = "mathematical"
    givens: list[str] = Field(default_factory=list)
    proved: list[str] = Field(default_factory=list)
    goal: str = ""
    proof_method: str = ""
    dependencies: dict[str, list[str]] = Field(default_factory=dict)


class PhilosophicalState(BaseModel):
    mode: Literal["philosophical"] = "philosophical"
    core_concepts: dict[str, str] = Field(default_factory=dict)
    distinctions: list[tuple[str, str]] = Field(default_factory=list)
    dialectic: list[str] = Field(default_factory=list)
    no_equivocation: bool = True


CoherenceState = Annotated[
    Union[
        LogicalConsistencyState,
        LogicalCohesivenessState,
        ScientificExplanatoryState,
        ThematicPsychologicalState,
        InstructionalState,
        MotivationalState,
        MathematicalState,
        PhilosophicalState,
    ],
    Field(discriminator="mode"),
]


class ChunkEvaluation(BaseModel):
    """Result of checking one chunk output against the mode state."""

    status: EvaluationStatus = EvaluationStatus.PRESERVED
    violations: list[str] = Field(default_factory=list)
    repairs: list[str] = Field(default_factory=list)
    state_update: CoherenceState | None = None
