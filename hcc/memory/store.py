"""Durable job state over a LangGraph store.

The store is the source of truth for resumption: every job, every stage
document (with its chunk statuses), and every audit record lives under a
namespaced key. Resuming a job means reloading from here and re-entering
the graph.

Namespaces:
- ("hcc", "jobs")                  key = job_id
- ("hcc", "documents", job_id)     key = "stage-N"
- ("hcc", "audit", job_id)         key = record id
- ("hcc", "cancel")                key = job_id; written by cancel requests only
"""

import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator
from uuid import uuid4

from langgraph.store.base import BaseStore
from langgraph.store.memory import InMemoryStore
from pydantic import BaseModel

from hcc.config.settings import settings
from hcc.errors.exceptions import JobNotFoundError
from hcc.generation.audit import GenerationRecord, LengthCheckRecord, RunRecord
from hcc.state.enums import PipelineStage
from hcc.state.models import Chunk, Document, PipelineJob

logger = logging.getLogger(__name__)

ROOT_NAMESPACE = "hcc"
JOBS_NAMESPACE = (ROOT_NAMESPACE, "jobs")
CANCEL_NAMESPACE = (ROOT_NAMESPACE, "cancel")

# BaseStore.search pages results; jobs and audit trails are read whole
_SEARCH_LIMIT = 10_000


def _stage_number(stage: int | PipelineStage) -> int:
    return stage.number if isinstance(stage, PipelineStage) else stage


def _document_key(stage: int | PipelineStage) -> str:
    return f"stage-{_stage_number(stage)}"


class JobStore:
    """
    Persistence for pipeline jobs and their stage documents.

    Example:
        ```python
        store = JobStore()
        store.save_job(job)
        job = store.load_job(job.job_id)
        for chunk in store.iter_chunks(job.job_id, PipelineStage.RECONSTRUCTION):
            print(chunk.index, chunk.status)
        ```
    """

    def __init__(self, store: BaseStore | None = None):
        self.store = store or InMemoryStore()

    # =========================================================================
    # Jobs
    # =========================================================================

    def save_job(self, job: PipelineJob) -> None:
        job.touch()
        self.store.put(JOBS_NAMESPACE, job.job_id, job.model_dump(mode="json"))

    def load_job(self, job_id: str) -> PipelineJob:
        """
        Load a job.

        Raises:
            JobNotFoundError: If no job with ``job_id`` was saved.
        """
        item = self.store.get(JOBS_NAMESPACE, job_id)
        if item is None:
            raise JobNotFoundError(job_id)
        return PipelineJob.model_validate(item.value)

    def list_jobs(self) -> list[PipelineJob]:
        items = self.store.search(JOBS_NAMESPACE, limit=_SEARCH_LIMIT)
        jobs = [PipelineJob.model_validate(item.value) for item in items]
        return sorted(jobs, key=lambda j: j.created_at)

    # =========================================================================
    # Cancellation
    # =========================================================================

    def request_cancel(self, job_id: str) -> datetime:
        """Record a cancel request apart from the job, so job saves cannot clear it."""
        existing = self.cancel_requested(job_id)
        if existing is not None:
            return existing
        requested_at = datetime.now(timezone.utc)
        self.store.put(CANCEL_NAMESPACE, job_id, {"requested_at": requested_at.isoformat()})
        return requested_at

    def cancel_requested(self, job_id: str) -> datetime | None:
        item = self.store.get(CANCEL_NAMESPACE, job_id)
        if item is None:
            return None
        return datetime.fromisoformat(item.value["requested_at"])

    def clear_cancel(self, job_id: str) -> None:
        self.store.delete(CANCEL_NAMESPACE, job_id)

    # =========================================================================
    # Documents
    # =========================================================================

    def save_document(self, document: Document) -> None:
        self.store.put(
            (ROOT_NAMESPACE, "documents", document.job_id),
            _document_key(document.stage),
            document.model_dump(mode="json"),
        )

    def load_document(self, job_id: str, stage: int | PipelineStage) -> Document | None:
        item = self.store.get((ROOT_NAMESPACE, "documents", job_id), _document_key(stage))
        if item is None:
            return None
        return Document.model_validate(item.value)

    def iter_chunks(self, job_id: str, stage: int | PipelineStage) -> Iterator[Chunk]:
        """Chunks of one stage document in document order; empty if none."""
        document = self.load_document(job_id, stage)
        if document is None:
            return iter(())
        return document.iter_chunks()

    # =========================================================================
    # Audit
    # =========================================================================

    def append_audit(self, job_id: str, kind: str, record: BaseModel | dict[str, Any]) -> str:
        key = str(uuid4())
        value = record.model_dump(mode="json") if isinstance(record, BaseModel) else dict(record)
        value["_kind"] = kind
        self.store.put((ROOT_NAMESPACE, "audit", job_id), key, value)
        return key

    def list_audit(self, job_id: str, kind: str | None = None) -> list[dict[str, Any]]:
        items = self.store.search((ROOT_NAMESPACE, "audit", job_id), limit=_SEARCH_LIMIT)
        records = [item.value for item in items if kind is None or item.value.get("_kind") == kind]
        return sorted(records, key=lambda r: r.get("recorded_at", ""))


class StoreAuditSink:
    """Audit sink that appends records under the job's audit namespace."""

    def __init__(self, job_store: JobStore, job_id: str | None = None):
        self.job_store = job_store
        self.job_id = job_id

    def _job_id(self, record: BaseModel) -> str:
        return getattr(record, "job_id", "") or self.job_id or "unassigned"

    def record_generation(self, record: GenerationRecord) -> None:
        self.job_store.append_audit(self._job_id(record), "generation", record)

    def record_length_check(self, record: LengthCheckRecord) -> None:
        self.job_store.append_audit(self._job_id(record), "length_check", record)

    def record_run(self, record: RunRecord) -> None:
        self.job_store.append_audit(self._job_id(record), "run", record)


# =============================================================================
# Factory
# =============================================================================


def get_job_store(persistent: bool = False, db_path: Path | str | None = None) -> JobStore:
    """
    Get a job store.

    Args:
        persistent: If True, back the store with SQLite so jobs survive a
            process restart. If False, keep everything in memory.
        db_path: SQLite database path. Defaults to <data_dir>/jobs.db

    Returns:
        JobStore instance.
    """
    if not persistent:
        return JobStore(InMemoryStore())

    from langgraph.store.sqlite import SqliteStore

    path = Path(db_path) if db_path else Path(settings.data_dir) / "jobs.db"
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=False, isolation_level=None)
    store = SqliteStore(conn)
    store.setup()
    logger.info(f"STORE: using SQLite job store at {path}")
    return JobStore(store)
