from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .progress import GradeButton, ProgressRecord


class DueCardsResponse(BaseModel):
    """Ordered due card identifiers (new cards first).

    今すぐ出題すべきカード ID の一覧。未学習カードが先頭に並ぶ。
    """

    items: list[str]
    today: date


class GradeRequest(BaseModel):
    """Request model for submitting a review grade.

    - quality: 0..5 の採点値（3 以上で合格）
    - button: again|hard|good|easy（quality の代わりに指定可能）
    - request_id: 重複送信を一度だけ適用するための採点リクエスト ID
    """

    model_config = ConfigDict(extra="ignore")

    learner_id: str = Field(min_length=1, max_length=128)
    card_id: str = Field(min_length=1, max_length=128)
    quality: int | None = None
    button: GradeButton | None = None
    today: date | None = None
    request_id: str | None = Field(default=None, min_length=1, max_length=128)

    @model_validator(mode="after")
    def _one_grade(self) -> "GradeRequest":
        if (self.quality is None) == (self.button is None):
            raise ValueError("exactly one of quality or button must be given")
        return self


class ProgressSnapshot(BaseModel):
    """Serialized ProgressRecord returned to clients."""

    card_id: str
    repetitions: int
    easiness: float
    interval_days: int
    next_review_date: date
    last_reviewed_on: date
    last_reviewed_at: datetime
    last_quality: int
    total_reviews: int
    correct_reviews: int
    streak: int
    best_streak: int

    @classmethod
    def from_record(cls, card_id: str, record: ProgressRecord) -> "ProgressSnapshot":
        return cls(card_id=card_id, **record.to_dict())


class ForecastResponse(BaseModel):
    today: date
    overdue: int
    due_today: int
    tomorrow: int
    this_week: int
    later: int


class ProgressStatsResponse(BaseModel):
    """進捗の見える化 用の統計レスポンス。"""

    today: date
    tracked: int
    due: int
    mastered: int
    learning: int
    total_reviews: int
    correct_reviews: int
    accuracy: float
    best_streak: int
