from datetime import date

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .progress import GradeButton
from .review import ProgressSnapshot


class SessionStartRequest(BaseModel):
    """Start a review session over catalog cards.

    card_ids と topic_id のどちらか（または両方）で候補カードを絞り込む。
    どちらも省略した場合はカタログ全体が候補になる。
    """

    model_config = ConfigDict(extra="ignore")

    learner_id: str = Field(min_length=1, max_length=128)
    card_ids: list[str] | None = None
    topic_id: str | None = None
    today: date | None = None
    limit: int | None = Field(default=None, ge=1, le=500)


class SessionGradeRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    quality: int | None = None
    button: GradeButton | None = None
    card_id: str | None = None
    # true の場合は進捗の書き込み完了を待ってから応答する
    wait_for_write: bool = False

    @model_validator(mode="after")
    def _one_grade(self) -> "SessionGradeRequest":
        if (self.quality is None) == (self.button is None):
            raise ValueError("exactly one of quality or button must be given")
        return self


class CardView(BaseModel):
    id: str
    question: str
    answer: str | None = None
    explanation: str | None = None


class SessionSummaryView(BaseModel):
    reviewed: int
    correct: int
    accuracy: float
    best_streak: int
    elapsed_seconds: float
    unsaved: int


class UnsavedGrade(BaseModel):
    card_id: str
    error: str
    attempts: int


class SessionView(BaseModel):
    """Snapshot of one review session for the client.

    - card: presenting 中は問題面のみ、revealed で解答/解説も含める
    - unsaved: 保存に失敗した採点（retry で再送可能）
    """

    session_id: str
    learner_id: str
    state: str
    position: int
    total: int
    reviewed: int
    correct: int
    streak: int
    card: CardView | None = None
    last_graded: ProgressSnapshot | None = None
    summary: SessionSummaryView | None = None
    pending_writes: int = 0
    unsaved: list[UnsavedGrade] = []
