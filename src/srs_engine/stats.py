"""Review forecast and aggregate progress statistics.

復習予定の見える化（今日/明日/今週/それ以降）と、学習者単位の集計を返す。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Mapping

from .models.progress import ProgressRecord, Tracked
from .scheduling import days_overdue


@dataclass(frozen=True)
class Forecast:
    overdue: int = 0
    today: int = 0
    tomorrow: int = 0
    this_week: int = 0
    later: int = 0


@dataclass(frozen=True)
class ProgressSummary:
    tracked: int
    due: int
    mastered: int
    learning: int
    total_reviews: int
    correct_reviews: int
    accuracy: float
    best_streak: int


def forecast(progress_by_card: Mapping[str, ProgressRecord], today: date) -> Forecast:
    """Bucket tracked cards by how far away their next review is."""
    counts = {"overdue": 0, "today": 0, "tomorrow": 0, "this_week": 0, "later": 0}
    for record in progress_by_card.values():
        if days_overdue(Tracked(record), today) > 0:
            counts["overdue"] += 1
            continue
        delta = (record.next_review_date - today).days
        if delta == 0:
            counts["today"] += 1
        elif delta == 1:
            counts["tomorrow"] += 1
        elif delta <= 7:
            counts["this_week"] += 1
        else:
            counts["later"] += 1
    return Forecast(**counts)


def summarize_progress(
    progress_by_card: Mapping[str, ProgressRecord],
    today: date,
    *,
    mastered_repetitions: int = 3,
) -> ProgressSummary:
    records = list(progress_by_card.values())
    mastered = sum(1 for r in records if r.repetitions >= mastered_repetitions)
    total_reviews = sum(r.total_reviews for r in records)
    correct_reviews = sum(r.correct_reviews for r in records)
    return ProgressSummary(
        tracked=len(records),
        due=sum(1 for r in records if r.next_review_date <= today),
        mastered=mastered,
        learning=len(records) - mastered,
        total_reviews=total_reviews,
        correct_reviews=correct_reviews,
        accuracy=(correct_reviews / total_reviews) if total_reviews else 0.0,
        best_streak=max((r.best_streak for r in records), default=0),
    )
