from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Flashcard:
    """Immutable study unit supplied by the catalog. Read-only to the engine."""

    id: str
    question: str
    answer: str
    explanation: str | None = None
    topic_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Flashcard":
        card_id = str(data.get("id") or "").strip()
        if not card_id:
            raise ValueError("flashcard id is required")
        return cls(
            id=card_id,
            question=str(data.get("question") or ""),
            answer=str(data.get("answer") or ""),
            explanation=(str(data.get("explanation") or "").strip() or None),
            topic_id=(str(data.get("topic_id") or "").strip() or None),
        )
