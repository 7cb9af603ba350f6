"""Review session controller.

1 回の学習セッション内で due カードを順に出題し、採点を受けて
スケジューリングエンジンで進捗を更新する状態機械。

状態遷移:
    idle → presenting(card) → revealed(card) → grading → presenting(next) | complete

なぜ: 学習者の操作をストレージのレイテンシで止めないため、採点後は
ローカル状態を即座に進め、進捗の書き込みは asyncio タスクとして
非同期に発行する。書き込みが最終的に失敗した場合は PersistenceFailure
として記録し、握りつぶさずに呼び出し元へ報告・再送できるようにする。
"""

from __future__ import annotations

import asyncio
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from functools import partial
from typing import Callable, Iterable, Mapping

from .errors import (
    InvalidTransitionError,
    PersistenceError,
    SessionNotFoundError,
    UnknownCardError,
)
from .logging import logger
from .metrics import MetricsRegistry, registry
from .models.card import Flashcard
from .models.progress import ProgressRecord, state_of
from .scheduling import apply_review, is_passing, validate_quality
from .selector import select_due
from .store.base import ProgressStore


class SessionState(str, Enum):
    idle = "idle"
    presenting = "presenting"
    revealed = "revealed"
    grading = "grading"
    complete = "complete"


@dataclass
class SessionTally:
    reviewed: int = 0
    correct: int = 0
    streak: int = 0
    best_streak: int = 0

    def add(self, quality: int) -> None:
        self.reviewed += 1
        if is_passing(quality):
            self.correct += 1
            self.streak += 1
            self.best_streak = max(self.best_streak, self.streak)
        else:
            self.streak = 0


@dataclass(frozen=True)
class SessionSummary:
    reviewed: int
    correct: int
    accuracy: float
    best_streak: int
    elapsed_seconds: float
    unsaved: int


@dataclass(frozen=True)
class PersistenceFailure:
    """A grading whose progress write failed after all attempts.

    `quality` と `request_id` が再送時のペイロード。`record` は採点時に
    クライアントへ返した楽観的な結果。
    """

    card_id: str
    quality: int
    request_id: str
    record: ProgressRecord
    error: str
    attempts: int
    failed_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class GradeOutcome:
    card_id: str
    quality: int
    record: ProgressRecord
    state: SessionState
    next_card: Flashcard | None
    summary: SessionSummary | None


class ReviewSessionController:
    def __init__(
        self,
        *,
        learner_id: str,
        due_cards: Iterable[Flashcard],
        progress_by_card: Mapping[str, ProgressRecord],
        store: ProgressStore,
        today: date,
        session_id: str | None = None,
        max_retries: int = 3,
        retry_backoff_ms: int = 50,
        clock: Callable[[], float] = time.monotonic,
        metrics: MetricsRegistry = registry,
    ) -> None:
        self.session_id = session_id or uuid.uuid4().hex
        self.learner_id = learner_id
        self.today = today
        self._cards = list(due_cards)
        # 構築時点の進捗。GradeOutcome の楽観的な結果の計算にだけ使い、
        # 保存はストア側の read-modify-write で最新の進捗に対して行う
        self._before = dict(progress_by_card)
        self._store = store
        self._max_retries = max(1, max_retries)
        self._backoff_sec = max(0, retry_backoff_ms) / 1000
        self._clock = clock
        self._metrics = metrics
        self._state = SessionState.idle
        self._position = 0
        self._tally = SessionTally()
        self._started_at: float | None = None
        self._finished_at: float | None = None
        self._pending: set[asyncio.Task[None]] = set()
        self._failures: dict[str, PersistenceFailure] = {}

    @classmethod
    async def build(
        cls,
        *,
        learner_id: str,
        candidates: Iterable[Flashcard],
        store: ProgressStore,
        today: date,
        limit: int | None = None,
        **kwargs,
    ) -> "ReviewSessionController":
        """Read current progress once and build a controller over the due set."""
        cards = list(candidates)
        progress = await store.get_many(learner_id, [card.id for card in cards])
        due = select_due(cards, progress, today, limit=limit)
        return cls(
            learner_id=learner_id,
            due_cards=due,
            progress_by_card=progress,
            store=store,
            today=today,
            **kwargs,
        )

    # --- read-only views ---
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def position(self) -> int:
        return self._position

    @property
    def total(self) -> int:
        return len(self._cards)

    @property
    def tally(self) -> SessionTally:
        return self._tally

    @property
    def current_card(self) -> Flashcard | None:
        if self._state in (SessionState.presenting, SessionState.revealed):
            return self._cards[self._position]
        return None

    @property
    def failures(self) -> list[PersistenceFailure]:
        return list(self._failures.values())

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    # --- transitions ---
    def start(self) -> SessionState:
        if self._state is not SessionState.idle:
            raise InvalidTransitionError(f"session already started (state={self._state.value})")
        self._started_at = self._clock()
        if not self._cards:
            self._finish()
            logger.info("session_empty", session_id=self.session_id, learner_id=self.learner_id)
            return self._state
        self._state = SessionState.presenting
        logger.info(
            "session_started",
            session_id=self.session_id,
            learner_id=self.learner_id,
            cards=len(self._cards),
        )
        return self._state

    def reveal(self) -> Flashcard:
        if self._state is not SessionState.presenting:
            raise InvalidTransitionError(f"cannot reveal in state {self._state.value}")
        self._state = SessionState.revealed
        return self._cards[self._position]

    async def grade(self, quality: int, *, card_id: str | None = None) -> GradeOutcome:
        """Grade the revealed card, dispatch the write and advance.

        The write runs as a background task; this coroutine does not wait
        for storage.
        """
        if self._state is not SessionState.revealed:
            raise InvalidTransitionError(f"cannot grade in state {self._state.value}")
        quality = validate_quality(quality)
        card = self._cards[self._position]
        if card_id is not None and card_id != card.id:
            raise UnknownCardError(f"card {card_id!r} is not the current card of this session")

        self._state = SessionState.grading
        record = apply_review(state_of(self._before.get(card.id)), quality, self.today)
        # 採点ごとの request_id。再送時も同じ ID を使い、ストア側で一度だけ適用させる
        request_id = f"{self.session_id}:{self._tally.reviewed}"
        self._dispatch(card.id, quality, request_id, record)
        self._tally.add(quality)
        self._metrics.record_grade(passed=is_passing(quality))
        logger.info(
            "review_graded",
            session_id=self.session_id,
            learner_id=self.learner_id,
            card_id=card.id,
            quality=quality,
            interval_days=record.interval_days,
            next_review_date=record.next_review_date.isoformat(),
        )

        next_card: Flashcard | None = None
        summary: SessionSummary | None = None
        if self._position < len(self._cards) - 1:
            self._position += 1
            self._state = SessionState.presenting
            next_card = self._cards[self._position]
        else:
            self._finish()
            summary = self.summary()
        return GradeOutcome(
            card_id=card.id,
            quality=quality,
            record=record,
            state=self._state,
            next_card=next_card,
            summary=summary,
        )

    def abandon(self) -> None:
        """Stop presenting. Records graded so far stay as written."""
        if self._state is not SessionState.complete:
            logger.info(
                "session_abandoned",
                session_id=self.session_id,
                learner_id=self.learner_id,
                reviewed=self._tally.reviewed,
                remaining=len(self._cards) - self._tally.reviewed,
            )
            self._finish(log=False)

    def summary(self) -> SessionSummary:
        if self._started_at is None:
            elapsed = 0.0
        else:
            end = self._finished_at if self._finished_at is not None else self._clock()
            elapsed = max(0.0, end - self._started_at)
        reviewed = self._tally.reviewed
        return SessionSummary(
            reviewed=reviewed,
            correct=self._tally.correct,
            accuracy=(self._tally.correct / reviewed) if reviewed else 0.0,
            best_streak=self._tally.best_streak,
            elapsed_seconds=round(elapsed, 3),
            unsaved=len(self._failures),
        )

    # --- persistence ---
    async def drain(self) -> list[PersistenceFailure]:
        """Wait for every outstanding write and return the failures so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending))
        return self.failures

    async def retry_failed(self) -> list[PersistenceFailure]:
        """Re-dispatch the failed writes with their original payload and wait for them."""
        retrying = list(self._failures.values())
        for failure in retrying:
            self._failures.pop(failure.card_id, None)
            self._dispatch(failure.card_id, failure.quality, failure.request_id, failure.record)
        return await self.drain()

    def _dispatch(
        self, card_id: str, quality: int, request_id: str, record: ProgressRecord
    ) -> None:
        task = asyncio.get_running_loop().create_task(
            self._persist(card_id, quality, request_id, record)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist(
        self, card_id: str, quality: int, request_id: str, record: ProgressRecord
    ) -> None:
        update = partial(apply_review, quality=quality, today=self.today)
        for attempt in range(1, self._max_retries + 1):
            try:
                stored = await self._store.apply(
                    self.learner_id, card_id, update, request_id=request_id
                )
            except Exception as exc:
                # 任意のストア実装の例外を失敗として記録し、タスク内で消えないようにする
                if attempt >= self._max_retries:
                    self._failures[card_id] = PersistenceFailure(
                        card_id=card_id,
                        quality=quality,
                        request_id=request_id,
                        record=record,
                        error=str(exc) or exc.__class__.__name__,
                        attempts=attempt,
                    )
                    self._metrics.incr("persist_failures")
                    logger.error(
                        "progress_persist_failed",
                        session_id=self.session_id,
                        learner_id=self.learner_id,
                        card_id=card_id,
                        attempts=attempt,
                        error=repr(exc),
                        exc_info=not isinstance(exc, PersistenceError),
                    )
                    return
                logger.warning(
                    "progress_persist_retry",
                    session_id=self.session_id,
                    card_id=card_id,
                    attempt=attempt,
                    retries=self._max_retries,
                    error=repr(exc),
                )
                await asyncio.sleep(self._backoff_sec * attempt)
            else:
                self._before[card_id] = stored
                return

    def _finish(self, *, log: bool = True) -> None:
        self._state = SessionState.complete
        self._finished_at = self._clock()
        if log:
            summary = self.summary()
            logger.info(
                "session_completed",
                session_id=self.session_id,
                learner_id=self.learner_id,
                reviewed=summary.reviewed,
                correct=summary.correct,
                accuracy=summary.accuracy,
            )


class SessionRegistry:
    """Active review sessions keyed by id.

    上限を超えた場合は最も古いセッションから破棄する（メモリ使用量の抑制）。
    """

    def __init__(self, max_sessions: int = 1_000) -> None:
        self._sessions: OrderedDict[str, ReviewSessionController] = OrderedDict()
        self._max_sessions = max(1, int(max_sessions))
        self._lock = threading.Lock()

    def add(self, controller: ReviewSessionController) -> None:
        with self._lock:
            while len(self._sessions) >= self._max_sessions:
                evicted_id, evicted = self._sessions.popitem(last=False)
                unsaved = len(evicted.failures)
                log_method = logger.warning if unsaved else logger.info
                log_method(
                    "session_evicted",
                    session_id=evicted_id,
                    learner_id=evicted.learner_id,
                    unsaved=unsaved,
                    pending_writes=evicted.pending_writes,
                )
            self._sessions[controller.session_id] = controller

    def get(self, session_id: str) -> ReviewSessionController:
        with self._lock:
            controller = self._sessions.get(session_id)
        if controller is None:
            raise SessionNotFoundError(f"session {session_id!r} not found")
        return controller

    def discard(self, session_id: str) -> ReviewSessionController:
        with self._lock:
            controller = self._sessions.pop(session_id, None)
        if controller is None:
            raise SessionNotFoundError(f"session {session_id!r} not found")
        return controller

    def __len__(self) -> int:
        return len(self._sessions)
