from datetime import UTC, date, datetime, timedelta

import pytest

from srs_engine.models.progress import ProgressRecord
from srs_engine.stats import forecast, summarize_progress

TODAY = date(2026, 6, 1)


def _progress(offset_days: int, *, repetitions: int = 1, total: int = 1, correct: int = 1, best: int = 1):
    return ProgressRecord(
        repetitions=repetitions,
        easiness=2.5,
        interval_days=1,
        next_review_date=TODAY + timedelta(days=offset_days),
        last_reviewed_on=TODAY,
        last_reviewed_at=datetime(2026, 6, 1, tzinfo=UTC),
        last_quality=4,
        total_reviews=total,
        correct_reviews=correct,
        streak=0,
        best_streak=best,
    )


def test_forecast_buckets():
    progress = {
        "a": _progress(-2),
        "b": _progress(0),
        "c": _progress(1),
        "d": _progress(3),
        "e": _progress(7),
        "f": _progress(8),
    }
    result = forecast(progress, TODAY)
    assert result.overdue == 1
    assert result.today == 1
    assert result.tomorrow == 1
    assert result.this_week == 2
    assert result.later == 1


def test_forecast_empty():
    result = forecast({}, TODAY)
    assert (result.overdue, result.today, result.tomorrow, result.this_week, result.later) == (0, 0, 0, 0, 0)


def test_summarize_progress_counts_mastered_and_accuracy():
    progress = {
        "a": _progress(-1, repetitions=4, total=5, correct=4, best=4),
        "b": _progress(0, repetitions=0, total=3, correct=1, best=1),
        "c": _progress(5, repetitions=3, total=2, correct=2, best=2),
    }
    summary = summarize_progress(progress, TODAY, mastered_repetitions=3)
    assert summary.tracked == 3
    assert summary.due == 2
    assert summary.mastered == 2
    assert summary.learning == 1
    assert summary.total_reviews == 10
    assert summary.correct_reviews == 7
    assert summary.accuracy == pytest.approx(0.7)
    assert summary.best_streak == 4


def test_summarize_progress_without_reviews_has_zero_accuracy():
    summary = summarize_progress({}, TODAY)
    assert summary.tracked == 0
    assert summary.accuracy == 0.0
    assert summary.best_streak == 0


def test_forecast_overdue_matches_days_overdue():
    from srs_engine.models.progress import Tracked
    from srs_engine.scheduling import days_overdue

    progress = {"a": _progress(-1), "b": _progress(0)}
    result = forecast(progress, TODAY)
    assert result.overdue == sum(days_overdue(Tracked(r), TODAY) > 0 for r in progress.values())
    assert result.overdue == 1
