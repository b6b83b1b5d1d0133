"""Persistence for jobs, stage documents, audit records and graph checkpoints."""

from hcc.memory.checkpointer import get_checkpointer, get_memory_saver, get_sqlite_saver
from hcc.memory.store import JobStore, StoreAuditSink, get_job_store

__all__ = [
    "JobStore",
    "StoreAuditSink",
    "get_job_store",
    "get_checkpointer",
    "get_memory_saver",
    "get_sqlite_saver",
]
