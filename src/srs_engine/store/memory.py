from __future__ import annotations

import threading
from typing import Iterable

from ..models.progress import ProgressRecord, state_of
from .base import ProgressStore, ProgressUpdate


class MemoryProgressStore(ProgressStore):
    """Process-local progress store.

    Critical sections never await, so a thread lock is enough and the store
    is not bound to a single event loop.
    """

    def __init__(self) -> None:
        self._records: dict[tuple[str, str], ProgressRecord] = {}
        self._applied: dict[tuple[str, str, str], ProgressRecord] = {}
        self._lock = threading.Lock()

    async def get(self, learner_id: str, card_id: str) -> ProgressRecord | None:
        return self._records.get((learner_id, card_id))

    async def get_many(
        self, learner_id: str, card_ids: Iterable[str]
    ) -> dict[str, ProgressRecord]:
        result: dict[str, ProgressRecord] = {}
        for card_id in card_ids:
            record = self._records.get((learner_id, card_id))
            if record is not None:
                result[card_id] = record
        return result

    async def list_for_learner(self, learner_id: str) -> dict[str, ProgressRecord]:
        return {
            card_id: record
            for (owner, card_id), record in self._records.items()
            if owner == learner_id
        }

    async def upsert(self, learner_id: str, card_id: str, record: ProgressRecord) -> None:
        with self._lock:
            self._records[(learner_id, card_id)] = record

    async def apply(
        self,
        learner_id: str,
        card_id: str,
        update: ProgressUpdate,
        *,
        request_id: str | None = None,
    ) -> ProgressRecord:
        with self._lock:
            if request_id is not None:
                previous = self._applied.get((learner_id, card_id, request_id))
                if previous is not None:
                    return previous
            record = update(state_of(self._records.get((learner_id, card_id))))
            self._records[(learner_id, card_id)] = record
            if request_id is not None:
                self._applied[(learner_id, card_id, request_id)] = record
            return record
