"""Progress store port.

The engine reads and writes learner progress only through this contract.
Implementations:
    - SQLiteProgressStore: local SQLite file (WAL, immediate transactions).
    - MemoryProgressStore: process-local dict, used in tests and demos.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Iterable

from ..models.progress import ProgressRecord, ProgressState

ProgressUpdate = Callable[[ProgressState], ProgressRecord]


class ProgressStore(ABC):
    @abstractmethod
    async def get(self, learner_id: str, card_id: str) -> ProgressRecord | None:
        """Return the record for one (learner, card) pair, or None if never graded."""

    @abstractmethod
    async def get_many(
        self, learner_id: str, card_ids: Iterable[str]
    ) -> dict[str, ProgressRecord]:
        """Return records keyed by card id. Cards without progress are omitted."""

    @abstractmethod
    async def list_for_learner(self, learner_id: str) -> dict[str, ProgressRecord]:
        """Return every tracked record of a learner keyed by card id."""

    @abstractmethod
    async def upsert(self, learner_id: str, card_id: str, record: ProgressRecord) -> None:
        """Insert or replace the record (last write wins).

        Raises PersistenceError when the backend is unreachable or rejects the write.
        """

    @abstractmethod
    async def apply(
        self,
        learner_id: str,
        card_id: str,
        update: ProgressUpdate,
        *,
        request_id: str | None = None,
    ) -> ProgressRecord:
        """Read-modify-write one pair inside a single transaction.

        When `request_id` was already applied to the same pair, the stored
        result is returned and `update` is not called again.
        """

    async def close(self) -> None:  # pragma: no cover - optional hook
        return None
