"""Checkpointer configuration for the pipeline graph.

The job store holds the durable unit state; the checkpointer records the
graph's own step history per job thread so runs can be inspected and
replayed with LangGraph tooling.
"""

import sqlite3
from pathlib import Path

from langgraph.checkpoint.memory import MemorySaver
from langgraph.checkpoint.sqlite import SqliteSaver

from hcc.config.settings import settings


def get_memory_saver() -> MemorySaver:
    """In-memory checkpointer; lost when the process ends."""
    return MemorySaver()


def get_sqlite_saver(db_path: Path | str | None = None) -> SqliteSaver:
    """
    Get a SQLite-backed checkpointer.

    Args:
        db_path: Path to SQLite database. Defaults to <data_dir>/checkpoints.db

    Returns:
        SqliteSaver instance.
    """
    path = Path(db_path) if db_path else Path(settings.data_dir) / "checkpoints.db"
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), check_same_thread=False)
    return SqliteSaver(conn)


def get_checkpointer(persistent: bool = False, db_path: Path | str | None = None):
    """
    Get appropriate checkpointer based on environment.

    Args:
        persistent: If True, use SQLite. If False, use in-memory.
        db_path: Custom database path for SQLite.

    Returns:
        Checkpointer instance.
    """
    if persistent:
        return get_sqlite_saver(db_path)
    return get_memory_saver()
