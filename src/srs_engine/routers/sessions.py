from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from ..catalog import CardCatalog, CardFilter
from ..config import settings
from ..dependencies import get_catalog, get_sessions, get_store, resolve_today
from ..errors import (
    InvalidTransitionError,
    PersistenceError,
    SchedulingError,
    SessionNotFoundError,
    UnknownCardError,
)
from ..logging import logger
from ..models.review import ProgressSnapshot
from ..models.session import (
    CardView,
    SessionGradeRequest,
    SessionStartRequest,
    SessionSummaryView,
    SessionView,
    UnsavedGrade,
)
from ..scheduling import resolve_quality
from ..session import GradeOutcome, ReviewSessionController, SessionRegistry, SessionState
from ..store.base import ProgressStore
from .review import persistence_error, validation_error

router = APIRouter(tags=["sessions"])


def _session_error(exc: SchedulingError) -> HTTPException:
    if isinstance(exc, SessionNotFoundError):
        return validation_error(exc, status_code=404)
    if isinstance(exc, InvalidTransitionError):
        return validation_error(exc, status_code=409)
    return validation_error(exc)


def _view(controller: ReviewSessionController, outcome: GradeOutcome | None = None) -> SessionView:
    card = controller.current_card
    card_view: CardView | None = None
    if card is not None:
        revealed = controller.state is SessionState.revealed
        # presenting 中は問題面のみを返す
        card_view = CardView(
            id=card.id,
            question=card.question,
            answer=card.answer if revealed else None,
            explanation=card.explanation if revealed else None,
        )
    summary_view: SessionSummaryView | None = None
    if controller.state is SessionState.complete:
        summary = controller.summary()
        summary_view = SessionSummaryView(
            reviewed=summary.reviewed,
            correct=summary.correct,
            accuracy=summary.accuracy,
            best_streak=summary.best_streak,
            elapsed_seconds=summary.elapsed_seconds,
            unsaved=summary.unsaved,
        )
    tally = controller.tally
    return SessionView(
        session_id=controller.session_id,
        learner_id=controller.learner_id,
        state=controller.state.value,
        position=controller.position,
        total=controller.total,
        reviewed=tally.reviewed,
        correct=tally.correct,
        streak=tally.streak,
        card=card_view,
        last_graded=(
            ProgressSnapshot.from_record(outcome.card_id, outcome.record) if outcome is not None else None
        ),
        summary=summary_view,
        pending_writes=controller.pending_writes,
        unsaved=[
            UnsavedGrade(card_id=f.card_id, error=f.error, attempts=f.attempts)
            for f in controller.failures
        ],
    )


@router.post("/sessions", response_model=SessionView, summary="復習セッションを開始")
async def start_session(
    req: SessionStartRequest,
    store: ProgressStore = Depends(get_store),
    catalog: CardCatalog = Depends(get_catalog),
    sessions: SessionRegistry = Depends(get_sessions),
) -> SessionView:
    """Build the due set from catalog candidates and start presenting.

    due が 0 件の場合はエラーにせず、空のサマリー付きで complete を返す。
    """
    card_filter = CardFilter(
        topic_id=req.topic_id,
        card_ids=tuple(req.card_ids) if req.card_ids is not None else None,
    )
    candidates = await catalog.list_candidate_cards(card_filter)
    try:
        controller = await ReviewSessionController.build(
            learner_id=req.learner_id,
            candidates=candidates,
            store=store,
            today=resolve_today(req.today),
            limit=req.limit or settings.session_card_limit,
            max_retries=settings.persist_max_retries,
            retry_backoff_ms=settings.persist_retry_backoff_ms,
        )
    except PersistenceError as exc:
        raise persistence_error(exc) from exc
    controller.start()
    sessions.add(controller)
    return _view(controller)


@router.get("/sessions/{session_id}", response_model=SessionView, summary="セッション状態を取得")
async def get_session(
    session_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
) -> SessionView:
    try:
        controller = sessions.get(session_id)
    except SchedulingError as exc:
        raise _session_error(exc) from exc
    return _view(controller)


@router.post("/sessions/{session_id}/reveal", response_model=SessionView, summary="解答を表示")
async def reveal_card(
    session_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
) -> SessionView:
    try:
        controller = sessions.get(session_id)
        controller.reveal()
    except SchedulingError as exc:
        raise _session_error(exc) from exc
    return _view(controller)


@router.post("/sessions/{session_id}/grade", response_model=SessionView, summary="現在のカードを採点")
async def grade_card(
    session_id: str,
    req: SessionGradeRequest,
    sessions: SessionRegistry = Depends(get_sessions),
) -> SessionView:
    """Grade the revealed card and advance without waiting for storage.

    保存に失敗した採点は unsaved に列挙され、/retry で同じ内容を再送できる。
    """
    try:
        controller = sessions.get(session_id)
        quality = resolve_quality(req.quality, req.button)
        outcome = await controller.grade(quality, card_id=req.card_id)
    except UnknownCardError as exc:
        raise validation_error(exc) from exc
    except SchedulingError as exc:
        logger.info("review_grade_rejected", session_id=session_id, reason_code=exc.reason_code)
        raise _session_error(exc) from exc
    if req.wait_for_write:
        await controller.drain()
    return _view(controller, outcome)


@router.post("/sessions/{session_id}/retry", response_model=SessionView, summary="保存失敗した採点を再送")
async def retry_unsaved(
    session_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
) -> SessionView:
    try:
        controller = sessions.get(session_id)
    except SchedulingError as exc:
        raise _session_error(exc) from exc
    await controller.retry_failed()
    return _view(controller)


@router.delete("/sessions/{session_id}", status_code=204, summary="セッションを終了・破棄")
async def end_session(
    session_id: str,
    sessions: SessionRegistry = Depends(get_sessions),
) -> Response:
    """Abandon the session. Already graded cards keep their saved progress."""
    try:
        controller = sessions.discard(session_id)
    except SchedulingError as exc:
        raise _session_error(exc) from exc
    controller.abandon()
    await controller.drain()
    return Response(status_code=204)
