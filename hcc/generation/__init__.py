"""Generator capability and audit records."""

from hcc.generation.base import BaseGenerator, PromptContext
from hcc.generation.audit import (
    AuditSink,
    AuditedGenerator,
    CompositeAuditSink,
    GenerationRecord,
    InMemoryAuditSink,
    LengthCheckRecord,
    LoggingAuditSink,
    RunRecord,
)
from hcc.generation.parsing import extract_json_object

__all__ = [
    "BaseGenerator",
    "PromptContext",
    "AuditSink",
    "AuditedGenerator",
    "CompositeAuditSink",
    "GenerationRecord",
    "InMemoryAuditSink",
    "LengthCheckRecord",
    "LoggingAuditSink",
    "RunRecord",
    "extract_json_object",
]
