from __future__ import annotations

from datetime import date
from typing import Callable, Iterable, Mapping, TypeVar

from .models.card import Flashcard
from .models.progress import ProgressRecord, state_of
from .scheduling import is_due

T = TypeVar("T")


def _partition(
    items: Iterable[T],
    key: Callable[[T], str],
    progress_by_card: Mapping[str, ProgressRecord],
    today: date,
) -> tuple[list[T], list[T]]:
    new_items: list[T] = []
    due_items: list[T] = []
    seen: set[str] = set()
    for item in items:
        item_key = key(item)
        # 重複 ID は最初の出現だけを残す
        if item_key in seen:
            continue
        seen.add(item_key)
        record = progress_by_card.get(item_key)
        if record is None:
            new_items.append(item)
        elif is_due(state_of(record), today):
            due_items.append(item)
    return new_items, due_items


def _order(new_items: list[T], due_items: list[T], limit: int | None) -> list[T]:
    ordered = new_items + due_items
    if limit is not None:
        ordered = ordered[: max(0, limit)]
    return ordered


def partition_due(
    cards: Iterable[Flashcard],
    progress_by_card: Mapping[str, ProgressRecord],
    today: date,
) -> tuple[list[Flashcard], list[Flashcard]]:
    """Split the due candidates into (never graded, graded and due).

    入力順を保持した安定な分割。期日前のカードはどちらにも含めず、
    同じ ID のカードは最初の 1 枚だけを残す。
    """
    return _partition(cards, lambda card: card.id, progress_by_card, today)


def select_due(
    cards: Iterable[Flashcard],
    progress_by_card: Mapping[str, ProgressRecord],
    today: date,
    *,
    limit: int | None = None,
) -> list[Flashcard]:
    """Return the cards to present now, new material first.

    Projection only: the progress mapping is never modified. `limit` caps the
    ordered result, so new cards are kept in preference to review cards.
    """
    new_cards, due_cards = partition_due(cards, progress_by_card, today)
    return _order(new_cards, due_cards, limit)


def select_due_ids(
    card_ids: Iterable[str],
    progress_by_card: Mapping[str, ProgressRecord],
    today: date,
    *,
    limit: int | None = None,
) -> list[str]:
    """Same policy as `select_due` for callers that only hold card identifiers."""
    new_ids, due_ids = _partition(card_ids, lambda cid: cid, progress_by_card, today)
    return _order(new_ids, due_ids, limit)
