from __future__ import annotations

from ..config import Settings, settings
from .base import ProgressStore, ProgressUpdate
from .memory import MemoryProgressStore
from .sqlite import SQLiteProgressStore


def create_store(config: Settings = settings) -> ProgressStore:
    """設定に応じた進捗ストアを初期化する。"""

    if config.progress_store == "memory":
        return MemoryProgressStore()
    return SQLiteProgressStore(db_path=config.srs_db_path)


__all__ = [
    "MemoryProgressStore",
    "ProgressStore",
    "ProgressUpdate",
    "SQLiteProgressStore",
    "create_store",
]
