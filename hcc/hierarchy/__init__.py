"""Vertical coherence within one stage: hierarchy, skeletons, chunks, stitching."""

from hcc.hierarchy.chunk_processor import ChunkProcessor, ChunkTask, corrective_instruction
from hcc.hierarchy.coherence import EVALUATORS, evaluate_chunk, initial_state
from hcc.hierarchy.delta import DeltaTracker, fold_deltas, merge_delta
from hcc.hierarchy.length_planner import (
    LengthPlanner,
    apportion,
    band,
    classify_mode,
    parse_user_instructions,
    plan_length,
)
from hcc.hierarchy.skeleton import SkeletonExtractor, compress_skeleton, parse_skeleton
from hcc.hierarchy.stitcher import Stitcher, StitchUnit
from hcc.hierarchy.structure import StructureDetector

__all__ = [
    "ChunkProcessor",
    "ChunkTask",
    "corrective_instruction",
    "EVALUATORS",
    "evaluate_chunk",
    "initial_state",
    "DeltaTracker",
    "fold_deltas",
    "merge_delta",
    "LengthPlanner",
    "apportion",
    "band",
    "classify_mode",
    "parse_user_instructions",
    "plan_length",
    "SkeletonExtractor",
    "compress_skeleton",
    "parse_skeleton",
    "Stitcher",
    "StitchUnit",
    "StructureDetector",
]
