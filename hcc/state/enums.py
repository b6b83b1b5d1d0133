"""Enums and constants for HCC pipeline state."""

from enum import Enum


class JobStatus(str, Enum):
    """Terminal and transient states of a pipeline job."""

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"  # Cancelled cooperatively; resumable
    COMPLETE = "complete"
    COMPLETED_WITH_WARNINGS = "completed_with_warnings"
    FAILED = "failed"


TERMINAL_JOB_STATUSES = frozenset({
    JobStatus.COMPLETE,
    JobStatus.COMPLETED_WITH_WARNINGS,
    JobStatus.FAILED,
})


class StageStatus(str, Enum):
    """Progress of one pipeline stage."""

    PENDING = "pending"
    SKELETON_EXTRACTION = "skeleton_extraction"
    CHUNK_PROCESSING = "chunk_processing"
    STITCHING = "stitching"
    COMPLETE = "complete"
    FAILED = "failed"


class PipelineStage(str, Enum):
    """The four transformation stages, in order."""

    RECONSTRUCTION = "reconstruction"
    OBJECTIONS = "objections"
    RESPONSES = "responses"
    BULLETPROOF = "bulletproof"

    @property
    def number(self) -> int:
        return STAGE_ORDER.index(self) + 1

    @classmethod
    def from_number(cls, number: int) -> "PipelineStage":
        return STAGE_ORDER[number - 1]


STAGE_ORDER: list[PipelineStage] = [
    PipelineStage.RECONSTRUCTION,
    PipelineStage.OBJECTIONS,
    PipelineStage.RESPONSES,
    PipelineStage.BULLETPROOF,
]


class UnitStatus(str, Enum):
    """Processing state of a hierarchy unit (chunk, chapter, part, document)."""

    PENDING = "pending"
    PROCESSING = "processing"
    RETRYING = "retrying"
    COMPLETED = "completed"
    FAILED = "failed"


class HierarchyLevel(str, Enum):
    """Levels of the document hierarchy, root first."""

    DOCUMENT = "document"
    PART = "part"
    CHAPTER = "chapter"
    CHUNK = "chunk"


class StructureDepth(str, Enum):
    """Whether a document was split flat or into parts and chapters."""

    SINGLE = "single"        # One chunk holds the whole document
    FLAT = "flat"            # Chunks only
    HIERARCHICAL = "hierarchical"  # Parts -> chapters -> chunks


class LengthMode(str, Enum):
    """Ratio of desired output length to input length."""

    HEAVY_COMPRESSION = "heavy_compression"
    MODERATE_COMPRESSION = "moderate_compression"
    MAINTAIN = "maintain"
    MODERATE_EXPANSION = "moderate_expansion"
    HEAVY_EXPANSION = "heavy_expansion"


class LengthConstraint(str, Enum):
    """How a user-specified length should be read."""

    NO_LESS_THAN = "no_less_than"
    NO_MORE_THAN = "no_more_than"
    APPROXIMATELY = "approximately"
    EXACTLY = "exactly"
    RANGE = "range"


class ContentAddition(str, Enum):
    """Structural additions the user asked for."""

    CONCLUDING_CHAPTER = "concluding_chapter"
    INTRODUCTION = "introduction"
    SUMMARY = "summary"
    CUSTOM = "custom"


class LedgerEntryType(str, Enum):
    """Stance a commitment ledger entry records."""

    ASSERTS = "asserts"
    REJECTS = "rejects"
    ASSUMES = "assumes"


class ObjectionType(str, Enum):
    LOGICAL = "logical"
    EMPIRICAL = "empirical"
    CONCEPTUAL = "conceptual"
    METHODOLOGICAL = "methodological"
    PRACTICAL = "practical"


class ObjectionSeverity(str, Enum):
    FATAL = "fatal"
    SERIOUS = "serious"
    MODERATE = "moderate"
    MINOR = "minor"


class IntegrationStrategy(str, Enum):
    """How a stage-3 response is worked into the stage-4 rewrite."""

    PREEMPTIVE = "preemptive"  # Addressed before the claim is made
    INLINE = "inline"          # Addressed where the claim is made
    FOOTNOTE = "footnote"      # Brief note attached to the claim
    STRUCTURAL = "structural"  # Argument restructured around the objection


SEVERITY_STRATEGY: dict[ObjectionSeverity, IntegrationStrategy] = {
    ObjectionSeverity.FATAL: IntegrationStrategy.STRUCTURAL,
    ObjectionSeverity.SERIOUS: IntegrationStrategy.PREEMPTIVE,
    ObjectionSeverity.MODERATE: IntegrationStrategy.INLINE,
    ObjectionSeverity.MINOR: IntegrationStrategy.FOOTNOTE,
}


class ViolationType(str, Enum):
    """Cross-stage coherence violations."""

    COMMITMENT_MISSING = "commitment_missing"
    OBJECTION_NOT_ADDRESSED = "objection_not_addressed"
    RESPONSE_NOT_INTEGRATED = "response_not_integrated"
    TERMINOLOGY_DRIFT = "terminology_drift"
    CONTRADICTION = "contradiction"


class ViolationSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


class FindingType(str, Enum):
    """Within-stage findings surfaced by stitching."""

    CONTRADICTION = "contradiction"
    TERMINOLOGY_DRIFT = "terminology_drift"
    MISSING_PREMISE = "missing_premise"
    REDUNDANCY = "redundancy"
    UNINTEGRATED_RESPONSE = "unintegrated_response"


class CoherenceScore(str, Enum):
    PASS = "pass"
    NEEDS_REPAIR = "needs_repair"


class LengthFailurePolicy(str, Enum):
    """What to do with a chunk that exhausts its length retries."""

    ACCEPT_NEAREST = "accept_nearest"  # Keep closest attempt, record deviation
    ABORT = "abort"                    # Fail the stage


class DeltaMode(str, Enum):
    LOCAL = "local"
    GENERATOR = "generator"


class GenerationKind(str, Enum):
    """What a generator call is for."""

    SKELETON = "skeleton"
    CHUNK = "chunk"
    DELTA = "delta"


class CoherenceMode(str, Enum):
    """Per-document coherence discipline tracked chunk by chunk."""

    LOGICAL_CONSISTENCY = "logical-consistency"
    LOGICAL_COHESIVENESS = "logical-cohesiveness"
    SCIENTIFIC_EXPLANATORY = "scientific-explanatory"
    THEMATIC_PSYCHOLOGICAL = "thematic-psychological"
    INSTRUCTIONAL = "instructional"
    MOTIVATIONAL = "motivational"
    MATHEMATICAL = "mathematical"
    PHILOSOPHICAL = "philosophical"


class EvaluationStatus(str, Enum):
    """Outcome of evaluating one chunk against the coherence state."""

    PRESERVED = "preserved"
    WEAKENED = "weakened"
    BROKEN = "broken"


class RunType(str, Enum):
    """Kinds of run records written to the audit sink."""

    SKELETON = "skeleton"
    CHUNK_PASS = "chunk_pass"
    STITCH = "stitch"
    REPAIR = "repair"
    HC_CHECK = "hc_check"
