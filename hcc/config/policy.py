"""Pipeline policy constants.

Every sizing threshold, budget, and retry cap used by the pipeline lives
here so callers can tune them without touching the algorithms. Values can
be overridden from the environment with ``HCC_`` prefixed variables.
"""

import os
from dataclasses import dataclass, field, fields

from hcc.errors.exceptions import ConfigurationError
from hcc.state.enums import DeltaMode, HierarchyLevel, LengthFailurePolicy


def _default_skeleton_budgets() -> dict[HierarchyLevel, int]:
    return {
        HierarchyLevel.DOCUMENT: 2000,
        HierarchyLevel.PART: 1000,
        HierarchyLevel.CHAPTER: 700,
        HierarchyLevel.CHUNK: 150,
    }


def _default_inherited_budgets() -> dict[HierarchyLevel, int]:
    # Budget of the compressed ancestor copy a node of this level receives
    return {
        HierarchyLevel.PART: 500,
        HierarchyLevel.CHAPTER: 300,
        HierarchyLevel.CHUNK: 600,
    }


@dataclass
class PipelinePolicy:
    """Tunable policy for structure, length, retry and repair behavior."""

    # Structure detection
    single_chunk_threshold_words: int = 1200
    chunk_target_words: int = 500
    chunk_min_fraction: float = 0.6
    chunk_max_fraction: float = 1.4
    hierarchy_threshold_words: int = 25000
    chapter_target_words: int = 5000
    part_target_words: int = 25000

    # Length planning
    length_tolerance: float = 0.15
    small_input_words: int = 1000
    small_input_default_target: int = 5000

    # Skeleton budgets (words)
    skeleton_budgets: dict[HierarchyLevel, int] = field(default_factory=_default_skeleton_budgets)
    inherited_budgets: dict[HierarchyLevel, int] = field(default_factory=_default_inherited_budgets)

    # Retry and repair caps
    max_chunk_retries: int = 3
    max_extraction_retries: int = 2
    max_stitch_repairs: int = 1
    hc_max_repair_attempts: int = 2
    length_failure_policy: LengthFailurePolicy = LengthFailurePolicy.ACCEPT_NEAREST

    # Stage sizing
    max_objections: int = 25
    objections_per_response_chunk: int = 5
    words_per_objection: int = 120
    words_per_response: int = 180
    words_per_integration: int = 60

    # Delta and coherence heuristics
    delta_mode: DeltaMode = DeltaMode.LOCAL
    max_new_claims_per_chunk: int = 8
    similarity_threshold: float = 0.6
    redundancy_threshold: float = 0.8
    drift_threshold: float = 0.5
    integration_threshold: float = 0.3

    @classmethod
    def from_env(cls) -> "PipelinePolicy":
        """Build a policy, applying ``HCC_<FIELD>`` overrides for scalar fields."""
        policy = cls()
        for f in fields(cls):
            raw = os.getenv(f"HCC_{f.name.upper()}")
            if raw is None:
                continue
            current = getattr(policy, f.name)
            if isinstance(current, dict):
                continue
            if isinstance(current, LengthFailurePolicy):
                value = LengthFailurePolicy(raw.lower())
            elif isinstance(current, DeltaMode):
                value = DeltaMode(raw.lower())
            elif isinstance(current, bool):
                value = raw.lower() == "true"
            elif isinstance(current, int):
                value = int(raw)
            else:
                value = float(raw)
            setattr(policy, f.name, value)
        policy.validate()
        return policy

    def budget_for(self, level: HierarchyLevel) -> int:
        return self.skeleton_budgets[level]

    def inherited_budget_for(self, level: HierarchyLevel) -> int:
        return self.inherited_budgets[level]

    def validate(self) -> None:
        """Check the policy is internally consistent.

        Raises:
            ConfigurationError: If budgets grow going down the hierarchy,
                an inherited copy is not smaller than its source, or a
                numeric setting is out of range.
        """
        order = [
            HierarchyLevel.DOCUMENT,
            HierarchyLevel.PART,
            HierarchyLevel.CHAPTER,
            HierarchyLevel.CHUNK,
        ]
        budgets = [self.skeleton_budgets[level] for level in order]
        for parent, child, p_budget, c_budget in zip(order, order[1:], budgets, budgets[1:]):
            if c_budget > p_budget:
                raise ConfigurationError(
                    f"Skeleton budget for {child.value} ({c_budget}) exceeds {parent.value} ({p_budget})",
                    setting="skeleton_budgets",
                )

        # Parts inherit from the document, chapters from parts, chunks from
        # chapters or (flat documents) directly from the document.
        sources = {
            HierarchyLevel.PART: [HierarchyLevel.DOCUMENT],
            HierarchyLevel.CHAPTER: [HierarchyLevel.PART],
            HierarchyLevel.CHUNK: [HierarchyLevel.CHAPTER, HierarchyLevel.DOCUMENT],
        }
        for level, parents in sources.items():
            inherited = self.inherited_budgets[level]
            for parent in parents:
                if inherited >= self.skeleton_budgets[parent]:
                    raise ConfigurationError(
                        f"Inherited copy for {level.value} ({inherited}) must be smaller than "
                        f"the {parent.value} budget ({self.skeleton_budgets[parent]})",
                        setting="inherited_budgets",
                    )

        if not 0 < self.length_tolerance < 1:
            raise ConfigurationError("length_tolerance must be in (0, 1)", setting="length_tolerance")
        if not 0 < self.chunk_min_fraction < 1 < self.chunk_max_fraction:
            raise ConfigurationError(
                "chunk fractions must satisfy 0 < min < 1 < max",
                setting="chunk_min_fraction",
            )
        for name in (
            "max_chunk_retries",
            "max_extraction_retries",
            "max_stitch_repairs",
            "hc_max_repair_attempts",
        ):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative", setting=name)
        if self.max_objections < 1:
            raise ConfigurationError("max_objections must be at least 1", setting="max_objections")
