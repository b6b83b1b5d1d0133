"""State management for the HCC pipeline."""

from hcc.state.enums import (
    JobStatus,
    StageStatus,
    PipelineStage,
    STAGE_ORDER,
    UnitStatus,
    HierarchyLevel,
    StructureDepth,
    LengthMode,
    LengthConstraint,
    LedgerEntryType,
    ObjectionType,
    ObjectionSeverity,
    IntegrationStrategy,
    ViolationType,
    ViolationSeverity,
    FindingType,
    LengthFailurePolicy,
    CoherenceMode,
    EvaluationStatus,
    GenerationKind,
)
from hcc.state.models import (
    UnitError,
    KeyTerm,
    LedgerEntry,
    Entity,
    Concession,
    Redefinition,
    UserInstructions,
    Skeleton,
    Conflict,
    Delta,
    LengthEnforcementConfig,
    Chunk,
    Chapter,
    Part,
    Document,
    StitchResult,
    RepairAction,
    Objection,
    HCViolation,
    HCCheckResult,
    HCRepairPlan,
    RepairTarget,
    StageRecord,
    PipelineJob,
    JobSnapshot,
)
from hcc.state.coherence_modes import ChunkEvaluation, CoherenceState
from hcc.state.schema import PipelineGraphState

__all__ = [
    # Enums
    "JobStatus",
    "StageStatus",
    "PipelineStage",
    "STAGE_ORDER",
    "UnitStatus",
    "HierarchyLevel",
    "StructureDepth",
    "LengthMode",
    "LengthConstraint",
    "LedgerEntryType",
    "ObjectionType",
    "ObjectionSeverity",
    "IntegrationStrategy",
    "ViolationType",
    "ViolationSeverity",
    "FindingType",
    "LengthFailurePolicy",
    "CoherenceMode",
    "EvaluationStatus",
    "GenerationKind",
    # Models
    "UnitError",
    "KeyTerm",
    "LedgerEntry",
    "Entity",
    "Concession",
    "Redefinition",
    "UserInstructions",
    "Skeleton",
    "Conflict",
    "Delta",
    "LengthEnforcementConfig",
    "Chunk",
    "Chapter",
    "Part",
    "Document",
    "StitchResult",
    "RepairAction",
    "Objection",
    "HCViolation",
    "HCCheckResult",
    "HCRepairPlan",
    "RepairTarget",
    "StageRecord",
    "PipelineJob",
    "JobSnapshot",
    "ChunkEvaluation",
    "CoherenceState",
    # Schema
    "PipelineGraphState",
]
