"""SM-2 scheduling engine.

採点値（0..5）から次回出題日・易しさ係数・連続正答数を更新する純関数群。
I/O や時計の暗黙参照は持たず、`today` と `now` は呼び出し側から渡す
（`now` の省略時のみ現在時刻を使う）。

- quality >= 3: 合格。repetitions+1、間隔は 1 → 6 → round(前回間隔 × easiness)
- quality <  3: ラプス。repetitions=0、間隔=1、easiness-0.2
- easiness は常に 1.3 以上に下限クランプする
"""

from __future__ import annotations

import math
from datetime import UTC, date, datetime, timedelta

from .errors import InvalidQualityError
from .models.progress import (
    INITIAL_EASINESS,
    MIN_EASINESS,
    PASSING_QUALITY,
    QUALITY_MAX,
    QUALITY_MIN,
    GradeButton,
    NewCard,
    ProgressRecord,
    ProgressState,
    Tracked,
)


def validate_quality(quality: object) -> int:
    """Return ``quality`` if it is an integer grade on the 0..5 scale.

    bool は int のサブクラスだが採点値としては受け付けない。
    """
    if isinstance(quality, bool) or not isinstance(quality, int):
        raise InvalidQualityError(f"quality must be an integer, got {quality!r}")
    if quality < QUALITY_MIN or quality > QUALITY_MAX:
        raise InvalidQualityError(
            f"quality must be within {QUALITY_MIN}..{QUALITY_MAX}, got {quality}"
        )
    return quality


def resolve_quality(quality: int | None = None, button: GradeButton | str | None = None) -> int:
    """Resolve a grade given either as a raw quality or as a named button."""
    if (quality is None) == (button is None):
        raise InvalidQualityError("exactly one of quality or button must be given")
    if button is not None:
        try:
            return GradeButton(button).quality
        except ValueError as exc:
            raise InvalidQualityError(f"unknown grade button: {button!r}") from exc
    return validate_quality(quality)


def is_passing(quality: int) -> bool:
    return quality >= PASSING_QUALITY


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _next_easiness(easiness: float, quality: int) -> float:
    miss = QUALITY_MAX - quality
    updated = easiness + (0.1 - miss * (0.08 + miss * 0.02))
    return max(MIN_EASINESS, updated)


def apply_review(
    state: ProgressState,
    quality: int,
    today: date,
    *,
    now: datetime | None = None,
) -> ProgressRecord:
    """Compute the updated progress record after one grading.

    Total for every quality on the canonical scale. Out-of-range values are a
    caller contract violation and must be rejected with `validate_quality`
    before calling.
    """
    if isinstance(state, Tracked):
        prior = state.record
        repetitions = prior.repetitions
        easiness = prior.easiness
        interval_days = prior.interval_days
        total_reviews = prior.total_reviews
        correct_reviews = prior.correct_reviews
        streak = prior.streak
        best_streak = prior.best_streak
    elif isinstance(state, NewCard):
        repetitions, easiness, interval_days = 0, INITIAL_EASINESS, 0
        total_reviews = correct_reviews = streak = best_streak = 0
    else:
        raise TypeError(f"unsupported progress state: {state!r}")

    passed = is_passing(quality)
    if passed:
        repetitions += 1
        if repetitions == 1:
            interval_days = 1
        elif repetitions == 2:
            interval_days = 6
        else:
            # 前回間隔 × 更新前の easiness。0 日への潰れを防ぐため 1 日を下限とする
            interval_days = max(1, _round_half_up(interval_days * easiness))
        easiness = _next_easiness(easiness, quality)
        streak += 1
        correct_reviews += 1
    else:
        repetitions = 0
        interval_days = 1
        easiness = max(MIN_EASINESS, easiness - 0.2)
        streak = 0

    return ProgressRecord(
        repetitions=repetitions,
        easiness=easiness,
        interval_days=interval_days,
        next_review_date=today + timedelta(days=interval_days),
        last_reviewed_on=today,
        last_reviewed_at=now or datetime.now(UTC),
        last_quality=quality,
        total_reviews=total_reviews + 1,
        correct_reviews=correct_reviews,
        streak=streak,
        best_streak=max(best_streak, streak),
    )


def is_due(state: ProgressState, today: date) -> bool:
    """True iff the card was never graded or its review date has arrived."""
    if isinstance(state, NewCard):
        return True
    return state.record.next_review_date <= today


def days_overdue(state: ProgressState, today: date) -> int:
    if isinstance(state, NewCard):
        return 0
    return max(0, (today - state.record.next_review_date).days)
