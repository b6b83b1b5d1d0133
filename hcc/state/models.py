"""Pydantic models for HCC pipeline state.

These models define the structure of the document hierarchy, skeletons,
deltas, stitch findings, per-job stage records, objections, and the
cross-stage coherence results. Everything here round-trips through the
persistence store as plain JSON.
"""

from datetime import datetime, timezone
from typing import Any, Iterator
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from hcc.state.coherence_modes import ChunkEvaluation, CoherenceState
from hcc.state.enums import (
    CoherenceMode,
    CoherenceScore,
    ContentAddition,
    FindingType,
    HierarchyLevel,
    IntegrationStrategy,
    JobStatus,
    LedgerEntryType,
    LengthConstraint,
    LengthMode,
    ObjectionSeverity,
    ObjectionType,
    PipelineStage,
    StageStatus,
    StructureDepth,
    UnitStatus,
    ViolationSeverity,
    ViolationType,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Errors
# =============================================================================


class UnitError(BaseModel):
    """An error recorded against a unit, stage, or job."""

    error_id: str = Field(
        default_factory=lambda: str(uuid4())[:8],
        description="Unique error identifier"
    )
    occurred_at: datetime = Field(
        default_factory=_now,
        description="When the error occurred"
    )
    node: str = Field(..., description="Unit or node where error occurred")
    category: str = Field(..., description="Error category")
    message: str = Field(..., description="Error message")
    recoverable: bool = Field(
        default=True,
        description="Whether error is recoverable"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional error details"
    )


# =============================================================================
# Skeleton
# =============================================================================


class KeyTerm(BaseModel):
    """A term and the meaning the document commits to."""

    term: str
    meaning: str


class LedgerEntry(BaseModel):
    """A claim the document asserts, rejects, or assumes."""

    type: LedgerEntryType
    claim: str
    source_chunk: int | None = Field(
        default=None,
        description="Chunk whose delta added this entry; None if extracted from the skeleton"
    )


class Entity(BaseModel):
    name: str
    type: str = ""
    role: str = ""


class Concession(BaseModel):
    """A claim the author explicitly gives up or qualifies."""

    claim: str
    note: str = ""


class Redefinition(BaseModel):
    """An explicit, sanctioned change to a key term's meaning."""

    term: str
    meaning: str
    reason: str = ""


class UserInstructions(BaseModel):
    """Instructions parsed from the user's free-text request."""

    raw: str = ""
    length_target: int | None = Field(default=None, description="Requested word count")
    length_constraint: LengthConstraint | None = None
    length_range: tuple[int, int] | None = Field(
        default=None,
        description="Explicit (min, max) word range"
    )
    content_additions: list[ContentAddition] = Field(default_factory=list)
    must_add: list[str] = Field(default_factory=list)
    must_preserve: list[str] = Field(default_factory=list)

    @property
    def has_length_request(self) -> bool:
        return self.length_target is not None or self.length_range is not None

    @property
    def is_empty(self) -> bool:
        return not (
            self.has_length_request
            or self.content_additions
            or self.must_add
            or self.must_preserve
        )


class Skeleton(BaseModel):
    """Size-budgeted structural summary of one hierarchy unit."""

    level: HierarchyLevel
    budget_words: int = Field(..., gt=0)
    thesis: str = ""
    outline: list[str] = Field(default_factory=list)
    key_terms: list[KeyTerm] = Field(default_factory=list)
    commitment_ledger: list[LedgerEntry] = Field(default_factory=list)
    entities: list[Entity] = Field(default_factory=list)
    concessions: list[Concession] = Field(default_factory=list)
    redefinitions: list[Redefinition] = Field(default_factory=list)
    user_instructions: UserInstructions | None = None

    @property
    def word_size(self) -> int:
        """Words across every budgeted field."""
        parts: list[str] = [self.thesis, *self.outline]
        parts.extend(f"{t.term} {t.meaning}" for t in self.key_terms)
        parts.extend(e.claim for e in self.commitment_ledger)
        parts.extend(f"{e.name} {e.type} {e.role}" for e in self.entities)
        parts.extend(c.claim for c in self.concessions)
        parts.extend(f"{r.term} {r.meaning}" for r in self.redefinitions)
        return sum(len(p.split()) for p in parts)

    @property
    def is_empty(self) -> bool:
        return not (self.thesis or self.outline or self.commitment_ledger or self.key_terms)

    def term_map(self) -> dict[str, str]:
        """Lower-cased term to meaning; first definition wins."""
        terms: dict[str, str] = {}
        for kt in self.key_terms:
            terms.setdefault(kt.term.lower(), kt.meaning)
        return terms

    def claims(self) -> list[str]:
        """Every claim-like string the skeleton establishes."""
        items = [self.thesis] if self.thesis else []
        items.extend(self.outline)
        items.extend(e.claim for e in self.commitment_ledger)
        return items

    def render(self) -> str:
        """Plain-text rendering for prompts."""
        lines = [f"[{self.level.value.upper()} SKELETON]"]
        if self.thesis:
            lines.append(f"Thesis: {self.thesis}")
        if self.outline:
            lines.append("Outline:")
            lines.extend(f"  {i}. {item}" for i, item in enumerate(self.outline, 1))
        if self.key_terms:
            lines.append("Key terms:")
            lines.extend(f"  - {t.term}: {t.meaning}" for t in self.key_terms)
        if self.commitment_ledger:
            lines.append("Commitments:")
            lines.extend(f"  - [{e.type.value}] {e.claim}" for e in self.commitment_ledger)
        if self.entities:
            lines.append("Entities: " + ", ".join(e.name for e in self.entities))
        if self.concessions:
            lines.append("Concessions:")
            lines.extend(f"  - {c.claim}" for c in self.concessions)
        if self.redefinitions:
            lines.append("Redefinitions:")
            lines.extend(f"  - {r.term}: {r.meaning}" for r in self.redefinitions)
        ui = self.user_instructions
        if ui is not None and not ui.is_empty:
            if ui.must_add:
                lines.append("Must add: " + "; ".join(ui.must_add))
            if ui.must_preserve:
                lines.append("Must preserve: " + "; ".join(ui.must_preserve))
            if ui.content_additions:
                lines.append("Additions: " + ", ".join(a.value for a in ui.content_additions))
        return "\n".join(lines)


# =============================================================================
# Delta
# =============================================================================


class Conflict(BaseModel):
    """A chunk statement that contradicts an inherited commitment."""

    skeleton_item: str
    chunk_content: str
    description: str


class Delta(BaseModel):
    """Net contribution of one processed unit relative to its inherited skeleton."""

    new_claims: list[str] = Field(default_factory=list)
    terms_used: list[str] = Field(default_factory=list)
    term_definitions: dict[str, str] = Field(
        default_factory=dict,
        description="Terms the output defines, lower-cased term to meaning"
    )
    premises: list[str] = Field(
        default_factory=list,
        description="Things the output assumes without establishing"
    )
    conflicts: list[Conflict] = Field(default_factory=list)
    ledger_additions: list[LedgerEntry] = Field(default_factory=list)


# =============================================================================
# Length Enforcement
# =============================================================================


class LengthEnforcementConfig(BaseModel):
    """Target band for a document or unit output."""

    input_words: int = Field(..., gt=0)
    target_min: int = Field(..., ge=0)
    target_mid: int = Field(..., gt=0)
    target_max: int = Field(..., gt=0)
    ratio: float
    mode: LengthMode

    @model_validator(mode="after")
    def _bracket(self) -> "LengthEnforcementConfig":
        if not self.target_min < self.target_mid < self.target_max:
            raise ValueError(
                f"target band must bracket the midpoint: "
                f"{self.target_min} < {self.target_mid} < {self.target_max}"
            )
        return self


# =============================================================================
# Hierarchy
# =============================================================================


class Chunk(BaseModel):
    """Leaf unit: one slice of a stage's input text."""

    index: int = Field(..., ge=0, description="Position in document order")
    input_text: str
    input_words: int = Field(..., ge=0)
    target_words: int = 0
    min_words: int = 0
    max_words: int = 0

    output_text: str | None = None
    output_words: int = 0
    delta: Delta | None = None
    status: UnitStatus = UnitStatus.PENDING
    retry_count: int = 0
    deviation: int = Field(default=0, description="Words outside the band; negative when short")
    deviation_accepted: bool = False

    inherited_skeleton: Skeleton | None = None
    extra_constraints: list[str] = Field(
        default_factory=list,
        description="Corrective constraints added by stitch or coherence repair"
    )
    objection_indices: list[int] = Field(default_factory=list)
    evaluation: ChunkEvaluation | None = None
    errors: list[UnitError] = Field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def in_band(self) -> bool:
        return self.min_words <= self.output_words <= self.max_words

    @property
    def is_terminal(self) -> bool:
        return self.status in (UnitStatus.COMPLETED, UnitStatus.FAILED)

    @property
    def usable(self) -> bool:
        """Output may be stitched: in band, or accepted with a recorded deviation."""
        if self.output_text is None:
            return False
        return self.status == UnitStatus.COMPLETED or self.deviation_accepted

    def reset_for_rerun(self, constraints: list[str]) -> None:
        """Return the chunk to pending with added constraints."""
        for constraint in constraints:
            if constraint not in self.extra_constraints:
                self.extra_constraints.append(constraint)
        self.status = UnitStatus.PENDING
        self.output_text = None
        self.output_words = 0
        self.delta = None
        self.evaluation = None
        self.retry_count = 0
        self.deviation = 0
        self.deviation_accepted = False
        self.completed_at = None


class Chapter(BaseModel):
    index: int
    title: str = ""
    chunks: list[Chunk] = Field(default_factory=list)
    skeleton: Skeleton | None = None
    inherited_skeleton: Skeleton | None = None
    # Document working skeleton as of the start of this chapter
    context_skeleton: Skeleton | None = None
    deltas_folded: bool = False
    output_text: str | None = None
    status: UnitStatus = UnitStatus.PENDING

    @property
    def input_words(self) -> int:
        return sum(c.input_words for c in self.chunks)

    @property
    def input_text(self) -> str:
        return "".join(c.input_text for c in self.chunks)


class Part(BaseModel):
    index: int
    title: str = ""
    chapters: list[Chapter] = Field(default_factory=list)
    skeleton: Skeleton | None = None
    inherited_skeleton: Skeleton | None = None
    # Part skeleton folded with the deltas of its processed chapters
    working_skeleton: Skeleton | None = None
    output_text: str | None = None
    status: UnitStatus = UnitStatus.PENDING

    @property
    def input_words(self) -> int:
        return sum(ch.input_words for ch in self.chapters)

    @property
    def input_text(self) -> str:
        return "".join(ch.input_text for ch in self.chapters)


class Document(BaseModel):
    """Root unit of one stage's input.

    Flat documents hold a single virtual part with a single virtual chapter;
    only hierarchical documents extract part and chapter skeletons.
    """

    job_id: str
    stage: PipelineStage
    original_text: str
    input_words: int
    depth: StructureDepth = StructureDepth.FLAT
    parts: list[Part] = Field(default_factory=list)
    skeleton: Skeleton | None = None
    # Document skeleton folded with the deltas of every processed chapter
    working_skeleton: Skeleton | None = None
    length_config: LengthEnforcementConfig | None = None
    output_text: str | None = None
    output_words: int = 0
    status: UnitStatus = UnitStatus.PENDING
    stitch_result: "StitchResult | None" = None
    stitch_repairs_done: int = 0

    def iter_chunks(self) -> Iterator[Chunk]:
        for part in self.parts:
            for chapter in part.chapters:
                yield from chapter.chunks

    @property
    def chunks(self) -> list[Chunk]:
        return list(self.iter_chunks())

    def chapters(self) -> list[Chapter]:
        return [ch for part in self.parts for ch in part.chapters]

    def chunk(self, index: int) -> Chunk:
        for chunk in self.iter_chunks():
            if chunk.index == index:
                return chunk
        raise KeyError(f"No chunk {index} in {self.stage.value} document")

    @property
    def is_hierarchical(self) -> bool:
        return self.depth == StructureDepth.HIERARCHICAL


# =============================================================================
# Stitching
# =============================================================================


class Contradiction(BaseModel):
    chunk1: int
    chunk2: int
    claim1: str
    claim2: str
    description: str


class TerminologyDrift(BaseModel):
    term: str
    chunk: int
    original_meaning: str
    drifted_meaning: str
    earlier_chunk: int | None = Field(
        default=None,
        description="Chunk that fixed the original meaning; None if the skeleton did"
    )


class MissingPremise(BaseModel):
    chunk: int
    premise: str
    description: str


class Redundancy(BaseModel):
    chunks: list[int]
    description: str


class RepairAction(BaseModel):
    """One corrective instruction for one chunk."""

    chunk_index: int
    finding: FindingType
    instruction: str


class IntegrationCheck(BaseModel):
    """Whether a stage-4 chunk worked in a mapped response."""

    objection_index: int
    chunk_index: int
    strategy: IntegrationStrategy
    verified: bool
    overlap: float = 0.0


class StitchResult(BaseModel):
    """Outcome of stitching sibling outputs into a parent."""

    output: str = ""
    contradictions: list[Contradiction] = Field(default_factory=list)
    terminology_drift: list[TerminologyDrift] = Field(default_factory=list)
    missing_premises: list[MissingPremise] = Field(default_factory=list)
    redundancies: list[Redundancy] = Field(default_factory=list)
    integrations: list[IntegrationCheck] = Field(default_factory=list)
    repair_plan: list[RepairAction] = Field(default_factory=list)

    @property
    def coherence_score(self) -> CoherenceScore:
        return CoherenceScore.PASS if not self.repair_plan else CoherenceScore.NEEDS_REPAIR

    @property
    def finding_count(self) -> int:
        return (
            len(self.contradictions)
            + len(self.terminology_drift)
            + len(self.missing_premises)
            + len(self.redundancies)
            + sum(1 for i in self.integrations if not i.verified)
        )

    def merge(self, other: "StitchResult") -> None:
        """Fold a child-level result's findings into this one."""
        self.contradictions.extend(other.contradictions)
        self.terminology_drift.extend(other.terminology_drift)
        self.missing_premises.extend(other.missing_premises)
        self.redundancies.extend(other.redundancies)
        self.integrations.extend(other.integrations)
        self.repair_plan.extend(other.repair_plan)

    def flagged_chunks(self) -> dict[int, list[str]]:
        """Chunk index to the repair instructions targeting it."""
        flagged: dict[int, list[str]] = {}
        for action in self.repair_plan:
            flagged.setdefault(action.chunk_index, []).append(action.instruction)
        return flagged


# =============================================================================
# Objections
# =============================================================================


class Objection(BaseModel):
    """One stage-2 objection, tracked through stages 3 and 4."""

    index: int = Field(..., ge=1, description="1-based objection number")
    claim_targeted: str = ""
    claim_location: str = ""
    target_claim_index: int | None = Field(
        default=None,
        description="Index into the stage-1 skeleton commitment ledger"
    )
    type: ObjectionType = ObjectionType.CONCEPTUAL
    severity: ObjectionSeverity = ObjectionSeverity.MODERATE
    objection_text: str = ""
    source_chunk: int | None = None

    # Stage 3
    initial_response: str = ""
    enhanced_response: str = ""
    enhancement_notes: str = ""
    concessions: list[str] = Field(default_factory=list)
    response_chunk: int | None = None

    # Stage 4
    integrated_in_section: str | None = None
    integration_strategy: IntegrationStrategy | None = None
    integration_chunk: int | None = None
    integration_verified: bool = False

    @property
    def has_response(self) -> bool:
        return bool(self.initial_response.strip() or self.enhanced_response.strip())

    def render(self) -> str:
        return (
            f"OBJECTION #{self.index}\n"
            f"Claim: {self.claim_targeted}\n"
            f"Location: {self.claim_location}\n"
            f"Type: {self.type.value}\n"
            f"Severity: {self.severity.value}\n"
            f"Objection: {self.objection_text}\n\n"
        )


# =============================================================================
# Horizontal Coherence
# =============================================================================


class HCViolation(BaseModel):
    type: ViolationType
    severity: ViolationSeverity
    description: str
    details: dict[str, Any] = Field(default_factory=dict)


class RepairTarget(BaseModel):
    """A stage portion the orchestrator should re-run."""

    stage: int = Field(..., ge=1, le=4)
    chunk_index: int | None = None
    objection_index: int | None = None
    violation_type: ViolationType
    instruction: str


class HCRepairPlan(BaseModel):
    targets: list[RepairTarget] = Field(default_factory=list)
    sections_to_revise: list[str] = Field(default_factory=list)
    violations_to_fix: list[str] = Field(default_factory=list)
    instructions: list[str] = Field(default_factory=list)


class HCCheckResult(BaseModel):
    checked_at: datetime = Field(default_factory=_now)
    attempt: int = 0
    violations: list[HCViolation] = Field(default_factory=list)
    counts: dict[str, int] = Field(default_factory=dict)
    repair_plan: HCRepairPlan | None = None

    @property
    def errors(self) -> int:
        return sum(1 for v in self.violations if v.severity == ViolationSeverity.ERROR)

    @property
    def warnings(self) -> int:
        return sum(1 for v in self.violations if v.severity == ViolationSeverity.WARNING)

    @property
    def passed(self) -> bool:
        return not self.violations

    def of_type(self, violation_type: ViolationType) -> list[HCViolation]:
        return [v for v in self.violations if v.type == violation_type]


# =============================================================================
# Pipeline Job
# =============================================================================


class StageRecord(BaseModel):
    stage: PipelineStage
    status: StageStatus = StageStatus.PENDING
    output_text: str | None = None
    output_words: int = 0
    skeleton: Skeleton | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    unresolved_findings: int = 0
    deviation_chunks: list[int] = Field(default_factory=list)
    errors: list[UnitError] = Field(default_factory=list)


def _default_stages() -> dict[int, StageRecord]:
    return {stage.number: StageRecord(stage=stage) for stage in PipelineStage}


class PipelineJob(BaseModel):
    """One user request spanning all four stages."""

    job_id: str = Field(default_factory=lambda: str(uuid4()))
    original_text: str
    custom_instructions: str = ""
    target_audience: str = ""
    objective: str = ""
    user_instructions: UserInstructions = Field(default_factory=UserInstructions)
    coherence_mode: CoherenceMode | None = None
    coherence_state: CoherenceState | None = None

    status: JobStatus = JobStatus.PENDING
    current_stage: int = Field(default=1, ge=1, le=4)
    stages: dict[int, StageRecord] = Field(default_factory=_default_stages)
    objections: list[Objection] = Field(default_factory=list)

    hc_results: list[HCCheckResult] = Field(default_factory=list)
    hc_repair_attempts: int = 0

    errors: list[UnitError] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    completed_at: datetime | None = None
    aborted_at: datetime | None = None

    def stage_record(self, stage: int | PipelineStage) -> StageRecord:
        number = stage.number if isinstance(stage, PipelineStage) else stage
        return self.stages[number]

    @property
    def all_stages_complete(self) -> bool:
        return all(r.status == StageStatus.COMPLETE for r in self.stages.values())

    @property
    def latest_hc_result(self) -> HCCheckResult | None:
        return self.hc_results[-1] if self.hc_results else None

    @property
    def hc_violations(self) -> list[HCViolation]:
        latest = self.latest_hc_result
        return latest.violations if latest else []

    def advance_stage(self) -> int:
        """Move to the next stage that is not complete.

        Stages already complete are skipped, so after a repair reopens a
        subset of stages the job moves straight between reopened ones. When
        every later stage is complete the job moves to the final stage.

        Raises:
            WorkflowError: If the current stage is not complete or the job
                is already on the last stage.
        """
        from hcc.errors.exceptions import WorkflowError

        record = self.stages[self.current_stage]
        if record.status != StageStatus.COMPLETE:
            raise WorkflowError(
                f"Cannot advance past stage {self.current_stage}: status is {record.status.value}",
                node="advance_stage",
            )
        if self.current_stage >= len(self.stages):
            raise WorkflowError("Already at the final stage", node="advance_stage")
        later = [n for n in sorted(self.stages) if n > self.current_stage]
        pending = [n for n in later if self.stages[n].status != StageStatus.COMPLETE]
        self.current_stage = pending[0] if pending else later[-1]
        self.touch()
        return self.current_stage

    def objection(self, index: int) -> Objection:
        for objection in self.objections:
            if objection.index == index:
                return objection
        raise KeyError(f"No objection #{index}")

    def touch(self) -> None:
        self.updated_at = _now()


# =============================================================================
# Snapshots
# =============================================================================


class ChunkSnapshot(BaseModel):
    index: int
    status: UnitStatus
    retry_count: int
    input_words: int
    target_words: int
    output_words: int
    deviation: int
    deviation_accepted: bool
    errors: list[str] = Field(default_factory=list)


class StageSnapshot(BaseModel):
    stage: PipelineStage
    status: StageStatus
    output_words: int
    unresolved_findings: int
    chunks: list[ChunkSnapshot] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class ObjectionSnapshot(BaseModel):
    index: int
    severity: ObjectionSeverity
    addressed: bool
    integrated_in_section: str | None
    integration_verified: bool


class JobSnapshot(BaseModel):
    """Point-in-time view of a job for callers that poll progress."""

    job_id: str
    status: JobStatus
    current_stage: int
    stages: list[StageSnapshot] = Field(default_factory=list)
    objections: list[ObjectionSnapshot] = Field(default_factory=list)
    hc_errors: int = 0
    hc_warnings: int = 0
    hc_repair_attempts: int = 0
    errors: list[str] = Field(default_factory=list)


Document.model_rebuild()
