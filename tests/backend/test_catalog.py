import asyncio
import json
from pathlib import Path

import pytest

from srs_engine.catalog import CardFilter, MemoryCardCatalog, load_cards_jsonl
from srs_engine.config import settings
from srs_engine.models.card import Flashcard


def _catalog() -> MemoryCardCatalog:
    return MemoryCardCatalog(
        [
            Flashcard(id="a", question="qa", answer="aa", topic_id="cardio"),
            Flashcard(id="b", question="qb", answer="ab", topic_id="renal"),
            Flashcard(id="c", question="qc", answer="ac", topic_id="cardio"),
        ]
    )


def test_filter_by_topic_keeps_catalog_order():
    cards = asyncio.run(_catalog().list_candidate_cards(CardFilter(topic_id="cardio")))
    assert [c.id for c in cards] == ["a", "c"]


def test_filter_by_ids_keeps_requested_order_and_drops_unknown():
    cards = asyncio.run(_catalog().list_candidate_cards(CardFilter(card_ids=("c", "zz", "a"))))
    assert [c.id for c in cards] == ["c", "a"]


def test_empty_id_filter_yields_no_cards():
    assert asyncio.run(_catalog().list_candidate_cards(CardFilter(card_ids=()))) == []


def test_load_cards_jsonl_skips_broken_lines(tmp_path: Path):
    path = tmp_path / "cards.jsonl"
    lines = [
        json.dumps({"id": "k1", "question": "Q1", "answer": "A1", "topic_id": "t"}),
        "",
        "{not json",
        json.dumps({"question": "missing id", "answer": "x"}),
        json.dumps([1, 2, 3]),
        json.dumps({"id": "k2", "question": "Q2", "answer": "A2", "explanation": "  "}),
    ]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    cards = load_cards_jsonl(path)

    assert [c.id for c in cards] == ["k1", "k2"]
    assert cards[0].topic_id == "t"
    assert cards[1].explanation is None


def test_app_catalog_is_seeded_from_jsonl(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    from srs_engine.main import _load_catalog

    path = tmp_path / "seed.jsonl"
    path.write_text(json.dumps({"id": "s1", "question": "Q", "answer": "A"}) + "\n", encoding="utf-8")
    monkeypatch.setattr(settings, "catalog_seed_jsonl", str(path))

    catalog = _load_catalog()

    assert len(catalog) == 1


def test_missing_seed_file_fails_in_strict_mode(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    from srs_engine.main import _load_catalog

    monkeypatch.setattr(settings, "catalog_seed_jsonl", str(tmp_path / "nope.jsonl"))
    monkeypatch.setattr(settings, "strict_mode", True)
    with pytest.raises(RuntimeError):
        _load_catalog()

    monkeypatch.setattr(settings, "strict_mode", False)
    assert len(_load_catalog()) == 0


def test_filter_by_ids_drops_duplicates():
    cards = asyncio.run(_catalog().list_candidate_cards(CardFilter(card_ids=("a", "a", "b", "a"))))
    assert [c.id for c in cards] == ["a", "b"]
