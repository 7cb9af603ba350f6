from __future__ import annotations

import json
import sqlite3
from datetime import UTC, datetime
from functools import partial
from pathlib import Path
from typing import Any, Callable, Iterable, TypeVar

import anyio

from ..errors import PersistenceError
from ..logging import logger
from ..models.progress import ProgressRecord, state_of
from .base import ProgressStore, ProgressUpdate

T = TypeVar("T")

# SQLite のバインド変数上限（既定 999）を超えないよう IN 句を分割する
_IN_CHUNK = 500

_PROGRESS_COLUMNS = (
    "repetitions",
    "easiness",
    "interval_days",
    "next_review_date",
    "last_reviewed_on",
    "last_reviewed_at",
    "last_quality",
    "total_reviews",
    "correct_reviews",
    "streak",
    "best_streak",
)


class SQLiteProgressStore(ProgressStore):
    """SQLite-backed progress store.

    - (learner_id, card_id) を主キーとする upsert（last write wins）
    - 採点は BEGIN IMMEDIATE で読み取り〜更新を 1 トランザクションにまとめる
    - request_id 付きの採点は適用済み結果を記録し、重複送信を再適用しない
    - 同期 I/O は anyio のワーカースレッドへオフロードする
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._ensure_dirs()
        self._init_db()

    # --- low-level helpers ---
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=10.0, isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA foreign_keys=ON;")
        return conn

    def _ensure_dirs(self) -> None:
        p = Path(self.db_path)
        if p.parent and not p.parent.exists():
            p.parent.mkdir(parents=True, exist_ok=True)

    def _init_db(self) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS progress (
                    learner_id TEXT NOT NULL,
                    card_id TEXT NOT NULL,
                    repetitions INTEGER NOT NULL,
                    easiness REAL NOT NULL,
                    interval_days INTEGER NOT NULL,
                    next_review_date TEXT NOT NULL,
                    last_reviewed_on TEXT NOT NULL,
                    last_reviewed_at TEXT NOT NULL,
                    last_quality INTEGER NOT NULL,
                    total_reviews INTEGER NOT NULL DEFAULT 0,
                    correct_reviews INTEGER NOT NULL DEFAULT 0,
                    streak INTEGER NOT NULL DEFAULT 0,
                    best_streak INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (learner_id, card_id)
                );
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS grading_requests (
                    learner_id TEXT NOT NULL,
                    card_id TEXT NOT NULL,
                    request_id TEXT NOT NULL,
                    record TEXT NOT NULL,
                    applied_at TEXT NOT NULL,
                    PRIMARY KEY (learner_id, card_id, request_id)
                );
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_progress_learner_due ON progress(learner_id, next_review_date);"
            )
        finally:
            conn.close()

    async def _run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        # anyio.to_thread.run_sync はキーワード引数を転送しないため partial で包む
        try:
            return await anyio.to_thread.run_sync(partial(func, *args, **kwargs))
        except sqlite3.Error as exc:
            logger.error("progress_store_error", backend="sqlite", error=repr(exc))
            raise PersistenceError(f"sqlite progress store failed: {exc}") from exc

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> ProgressRecord:
        return ProgressRecord.from_dict({key: row[key] for key in _PROGRESS_COLUMNS})

    @staticmethod
    def _write_record(
        conn: sqlite3.Connection, learner_id: str, card_id: str, record: ProgressRecord
    ) -> None:
        data = record.to_dict()
        placeholders = ", ".join("?" for _ in range(len(_PROGRESS_COLUMNS) + 3))
        conn.execute(
            f"""
            INSERT OR REPLACE INTO progress(
                learner_id, card_id, {", ".join(_PROGRESS_COLUMNS)}, updated_at
            ) VALUES ({placeholders});
            """,
            (
                learner_id,
                card_id,
                *(data[key] for key in _PROGRESS_COLUMNS),
                datetime.now(UTC).isoformat(),
            ),
        )

    # --- sync implementations ---
    def _get_sync(self, learner_id: str, card_id: str) -> ProgressRecord | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM progress WHERE learner_id = ? AND card_id = ?;",
                (learner_id, card_id),
            ).fetchone()
            return self._row_to_record(row) if row is not None else None
        finally:
            conn.close()

    def _get_many_sync(self, learner_id: str, card_ids: list[str]) -> dict[str, ProgressRecord]:
        result: dict[str, ProgressRecord] = {}
        conn = self._connect()
        try:
            for start in range(0, len(card_ids), _IN_CHUNK):
                chunk = card_ids[start : start + _IN_CHUNK]
                marks = ", ".join("?" for _ in chunk)
                cur = conn.execute(
                    f"SELECT * FROM progress WHERE learner_id = ? AND card_id IN ({marks});",
                    (learner_id, *chunk),
                )
                for row in cur.fetchall():
                    result[row["card_id"]] = self._row_to_record(row)
            return result
        finally:
            conn.close()

    def _list_sync(self, learner_id: str) -> dict[str, ProgressRecord]:
        conn = self._connect()
        try:
            cur = conn.execute(
                "SELECT * FROM progress WHERE learner_id = ? ORDER BY next_review_date ASC, card_id ASC;",
                (learner_id,),
            )
            return {row["card_id"]: self._row_to_record(row) for row in cur.fetchall()}
        finally:
            conn.close()

    def _upsert_sync(self, learner_id: str, card_id: str, record: ProgressRecord) -> None:
        conn = self._connect()
        try:
            with conn:
                self._write_record(conn, learner_id, card_id, record)
        finally:
            conn.close()

    def _apply_sync(
        self,
        learner_id: str,
        card_id: str,
        update: ProgressUpdate,
        request_id: str | None,
    ) -> ProgressRecord:
        conn = self._connect()
        try:
            # BEGIN IMMEDIATE to avoid concurrent writers on the same row
            conn.execute("BEGIN IMMEDIATE;")
            if request_id is not None:
                applied = conn.execute(
                    """
                    SELECT record FROM grading_requests
                    WHERE learner_id = ? AND card_id = ? AND request_id = ?;
                    """,
                    (learner_id, card_id, request_id),
                ).fetchone()
                if applied is not None:
                    conn.execute("ROLLBACK;")
                    logger.info(
                        "grading_request_deduplicated",
                        learner_id=learner_id,
                        card_id=card_id,
                        grading_request_id=request_id,
                    )
                    return ProgressRecord.from_dict(json.loads(applied["record"]))

            row = conn.execute(
                "SELECT * FROM progress WHERE learner_id = ? AND card_id = ?;",
                (learner_id, card_id),
            ).fetchone()
            before = self._row_to_record(row) if row is not None else None
            record = update(state_of(before))
            self._write_record(conn, learner_id, card_id, record)
            if request_id is not None:
                conn.execute(
                    """
                    INSERT INTO grading_requests(learner_id, card_id, request_id, record, applied_at)
                    VALUES (?, ?, ?, ?, ?);
                    """,
                    (
                        learner_id,
                        card_id,
                        request_id,
                        json.dumps(record.to_dict()),
                        datetime.now(UTC).isoformat(),
                    ),
                )
            conn.execute("COMMIT;")
            return record
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK;")
            raise
        finally:
            conn.close()

    # --- public API ---
    async def get(self, learner_id: str, card_id: str) -> ProgressRecord | None:
        return await self._run(self._get_sync, learner_id, card_id)

    async def get_many(
        self, learner_id: str, card_ids: Iterable[str]
    ) -> dict[str, ProgressRecord]:
        ids = list(dict.fromkeys(card_ids))
        if not ids:
            return {}
        return await self._run(self._get_many_sync, learner_id, ids)

    async def list_for_learner(self, learner_id: str) -> dict[str, ProgressRecord]:
        return await self._run(self._list_sync, learner_id)

    async def upsert(self, learner_id: str, card_id: str, record: ProgressRecord) -> None:
        await self._run(self._upsert_sync, learner_id, card_id, record)

    async def apply(
        self,
        learner_id: str,
        card_id: str,
        update: ProgressUpdate,
        *,
        request_id: str | None = None,
    ) -> ProgressRecord:
        return await self._run(self._apply_sync, learner_id, card_id, update, request_id)
