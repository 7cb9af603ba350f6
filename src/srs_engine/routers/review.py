from datetime import date
from functools import partial

from fastapi import APIRouter, Depends, HTTPException, Query

from ..config import settings
from ..dependencies import get_store, resolve_today
from ..errors import PersistenceError, SchedulingError
from ..logging import logger
from ..metrics import registry
from ..models.review import (
    DueCardsResponse,
    ForecastResponse,
    GradeRequest,
    ProgressSnapshot,
    ProgressStatsResponse,
)
from ..scheduling import apply_review, is_passing, resolve_quality
from ..selector import select_due_ids
from ..stats import forecast, summarize_progress
from ..store.base import ProgressStore

router = APIRouter(tags=["review"])


def validation_error(exc: SchedulingError, *, status_code: int = 422) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"message": str(exc), "reason_code": exc.reason_code},
    )


def persistence_error(exc: PersistenceError) -> HTTPException:
    # 採点前の状態は採点時点で確定しているため、同じペイロードでの再送は安全
    return HTTPException(
        status_code=503,
        detail={
            "message": "progress could not be saved; retry the same request",
            "reason_code": exc.reason_code,
            "retryable": exc.retryable,
        },
    )


@router.get("/due", response_model=DueCardsResponse, summary="出題すべきカード ID を取得")
async def review_due(
    learner_id: str = Query(min_length=1, max_length=128),
    card_ids: list[str] = Query(default=[]),
    today: date | None = None,
    limit: int | None = Query(default=None, ge=1, le=1000),
    store: ProgressStore = Depends(get_store),
) -> DueCardsResponse:
    """Return due card ids for the learner, never-graded cards first.

    進捗ストアへの書き込みは行わない（読み取りのみ）。
    """
    day = resolve_today(today)
    try:
        progress = await store.get_many(learner_id, card_ids)
    except PersistenceError as exc:
        raise persistence_error(exc) from exc
    items = select_due_ids(card_ids, progress, day, limit=limit or settings.due_limit_default)
    return DueCardsResponse(items=items, today=day)


@router.post("/grade", response_model=ProgressSnapshot, summary="採点して次回出題日を更新")
async def review_grade(
    req: GradeRequest,
    store: ProgressStore = Depends(get_store),
) -> ProgressSnapshot:
    """Grade one card with SM-2 and persist the updated record.

    読み取り〜更新は 1 トランザクションで行い、request_id が既に適用済みなら
    保存済みの結果をそのまま返す。
    """
    try:
        quality = resolve_quality(req.quality, req.button)
    except SchedulingError as exc:
        logger.info(
            "review_grade_rejected",
            learner_id=req.learner_id,
            card_id=req.card_id,
            reason_code=exc.reason_code,
        )
        raise validation_error(exc) from exc

    day = resolve_today(req.today)
    try:
        record = await store.apply(
            req.learner_id,
            req.card_id,
            partial(apply_review, quality=quality, today=day),
            request_id=req.request_id,
        )
    except PersistenceError as exc:
        registry.incr("persist_failures")
        logger.error(
            "progress_persist_failed",
            learner_id=req.learner_id,
            card_id=req.card_id,
            error=repr(exc),
        )
        raise persistence_error(exc) from exc

    registry.record_grade(passed=is_passing(quality))
    logger.info(
        "review_graded",
        learner_id=req.learner_id,
        card_id=req.card_id,
        quality=quality,
        repetitions=record.repetitions,
        interval_days=record.interval_days,
        next_review_date=record.next_review_date.isoformat(),
    )
    return ProgressSnapshot.from_record(req.card_id, record)


@router.get(
    "/progress/{learner_id}/{card_id}",
    response_model=ProgressSnapshot,
    summary="カード単位の進捗を取得",
)
async def review_progress(
    learner_id: str,
    card_id: str,
    store: ProgressStore = Depends(get_store),
) -> ProgressSnapshot:
    try:
        record = await store.get(learner_id, card_id)
    except PersistenceError as exc:
        raise persistence_error(exc) from exc
    if record is None:
        raise HTTPException(
            status_code=404,
            detail={"message": "card has not been graded yet", "reason_code": "NOT_TRACKED"},
        )
    return ProgressSnapshot.from_record(card_id, record)


@router.get("/forecast", response_model=ForecastResponse, summary="復習予定（今日/明日/今週/それ以降）")
async def review_forecast(
    learner_id: str = Query(min_length=1, max_length=128),
    today: date | None = None,
    store: ProgressStore = Depends(get_store),
) -> ForecastResponse:
    day = resolve_today(today)
    try:
        progress = await store.list_for_learner(learner_id)
    except PersistenceError as exc:
        raise persistence_error(exc) from exc
    buckets = forecast(progress, day)
    return ForecastResponse(
        today=day,
        overdue=buckets.overdue,
        due_today=buckets.today,
        tomorrow=buckets.tomorrow,
        this_week=buckets.this_week,
        later=buckets.later,
    )


@router.get("/stats", response_model=ProgressStatsResponse, summary="学習者単位の進捗統計")
async def review_stats(
    learner_id: str = Query(min_length=1, max_length=128),
    today: date | None = None,
    store: ProgressStore = Depends(get_store),
) -> ProgressStatsResponse:
    """Return aggregate progress for the learner.

    - due: 今日までに出題予定の件数
    - mastered: repetitions が MASTERED_REPETITIONS 以上のカード数
    """
    day = resolve_today(today)
    try:
        progress = await store.list_for_learner(learner_id)
    except PersistenceError as exc:
        raise persistence_error(exc) from exc
    summary = summarize_progress(progress, day, mastered_repetitions=settings.mastered_repetitions)
    return ProgressStatsResponse(
        today=day,
        tracked=summary.tracked,
        due=summary.due,
        mastered=summary.mastered,
        learning=summary.learning,
        total_reviews=summary.total_reviews,
        correct_reviews=summary.correct_reviews,
        accuracy=summary.accuracy,
        best_streak=summary.best_streak,
    )
