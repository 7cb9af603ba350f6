from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Union


# 採点スケールは 0..5 に一本化する（ボタン UI は GradeButton で写像）
QUALITY_MIN = 0
QUALITY_MAX = 5
PASSING_QUALITY = 3

INITIAL_EASINESS = 2.5
MIN_EASINESS = 1.3


class GradeButton(str, Enum):
    """Discrete grading buttons mapped onto the canonical 0..5 scale."""

    again = "again"
    hard = "hard"
    good = "good"
    easy = "easy"

    @property
    def quality(self) -> int:
        return _BUTTON_QUALITY[self]


_BUTTON_QUALITY = {
    GradeButton.again: 1,
    GradeButton.hard: 3,
    GradeButton.good: 4,
    GradeButton.easy: 5,
}


@dataclass(frozen=True)
class ProgressRecord:
    """Per (learner, card) scheduling state.

    - repetitions: 直近のラプス以降の連続合格回数
    - easiness: 間隔の伸び率（常に 1.3 以上）
    - next_review_date == last_reviewed_on + interval_days
    """

    repetitions: int
    easiness: float
    interval_days: int
    next_review_date: date
    last_reviewed_on: date
    last_reviewed_at: datetime
    last_quality: int
    total_reviews: int = 0
    correct_reviews: int = 0
    streak: int = 0
    best_streak: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["next_review_date"] = self.next_review_date.isoformat()
        data["last_reviewed_on"] = self.last_reviewed_on.isoformat()
        data["last_reviewed_at"] = self.last_reviewed_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProgressRecord":
        return cls(
            repetitions=int(data["repetitions"]),
            easiness=float(data["easiness"]),
            interval_days=int(data["interval_days"]),
            next_review_date=_as_date(data["next_review_date"]),
            last_reviewed_on=_as_date(data["last_reviewed_on"]),
            last_reviewed_at=_as_datetime(data["last_reviewed_at"]),
            last_quality=int(data["last_quality"]),
            total_reviews=int(data.get("total_reviews") or 0),
            correct_reviews=int(data.get("correct_reviews") or 0),
            streak=int(data.get("streak") or 0),
            best_streak=int(data.get("best_streak") or 0),
        )


@dataclass(frozen=True)
class NewCard:
    """A card that has never been graded by the learner."""


@dataclass(frozen=True)
class Tracked:
    record: ProgressRecord


ProgressState = Union[NewCard, Tracked]

NEW = NewCard()


def state_of(record: ProgressRecord | None) -> ProgressState:
    """Convert the nullable storage form into the explicit state variant."""
    if record is None:
        return NEW
    return Tracked(record)


def _as_date(value: date | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


def _as_datetime(value: datetime | str) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)
