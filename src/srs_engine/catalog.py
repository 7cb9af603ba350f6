"""Catalog collaborator.

カード本体（問題文・解答）の供給元。科目/トピック階層はこのサービスの
責務外のため、ここでは topic_id による単純な絞り込みだけを提供する。
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .logging import logger
from .models.card import Flashcard


@dataclass(frozen=True)
class CardFilter:
    topic_id: str | None = None
    card_ids: tuple[str, ...] | None = None


class CardCatalog(ABC):
    @abstractmethod
    async def list_candidate_cards(self, card_filter: CardFilter) -> list[Flashcard]:
        """Return the candidate cards matching the filter, in catalog order."""


class MemoryCardCatalog(CardCatalog):
    def __init__(self, cards: Iterable[Flashcard] = ()) -> None:
        self._cards: dict[str, Flashcard] = {}
        for card in cards:
            self.add(card)

    def add(self, card: Flashcard) -> None:
        self._cards[card.id] = card

    def __len__(self) -> int:
        return len(self._cards)

    async def list_candidate_cards(self, card_filter: CardFilter) -> list[Flashcard]:
        if card_filter.card_ids is not None:
            # 指定 ID の順序を保ち、重複とカタログに無い ID は黙って除外する
            cards = [
                self._cards[cid] for cid in dict.fromkeys(card_filter.card_ids) if cid in self._cards
            ]
        else:
            cards = list(self._cards.values())
        if card_filter.topic_id is not None:
            cards = [card for card in cards if card.topic_id == card_filter.topic_id]
        return cards


def load_cards_jsonl(path: Path) -> list[Flashcard]:
    """Load flashcards from a JSONL file (one object per line).

    壊れた行は警告ログを出してスキップする。
    """
    cards: list[Flashcard] = []
    with path.open("r", encoding="utf-8") as fh:
        for lineno, line in enumerate(fh, start=1):
            text = line.strip()
            if not text:
                continue
            try:
                cards.append(Flashcard.from_dict(json.loads(text)))
            except (ValueError, TypeError, AttributeError) as exc:
                logger.warning("catalog_seed_line_skipped", path=str(path), line=lineno, error=repr(exc))
    return cards
