"""Stage writers for the four pipeline stages and the shared stage runner."""

from hcc.config.policy import PipelinePolicy
from hcc.stages.base import BaseStageWriter
from hcc.stages.bulletproof import BulletproofWriter
from hcc.stages.objections import ObjectionsWriter, apportion_quota, parse_objection_blocks
from hcc.stages.reconstruction import ReconstructionWriter
from hcc.stages.responses import ResponsesWriter, parse_response_blocks
from hcc.stages.runner import StageRunner
from hcc.state.enums import PipelineStage

WRITERS: dict[PipelineStage, type[BaseStageWriter]] = {
    PipelineStage.RECONSTRUCTION: ReconstructionWriter,
    PipelineStage.OBJECTIONS: ObjectionsWriter,
    PipelineStage.RESPONSES: ResponsesWriter,
    PipelineStage.BULLETPROOF: BulletproofWriter,
}


def get_writer(stage: PipelineStage, policy: PipelinePolicy | None = None) -> BaseStageWriter:
    return WRITERS[stage](policy)


__all__ = [
    "BaseStageWriter",
    "BulletproofWriter",
    "ObjectionsWriter",
    "ReconstructionWriter",
    "ResponsesWriter",
    "StageRunner",
    "WRITERS",
    "get_writer",
    "apportion_quota",
    "parse_objection_blocks",
    "parse_response_blocks",
]
