import asyncio

import pytest
from fastapi.testclient import TestClient

from srs_engine.catalog import MemoryCardCatalog
from srs_engine.errors import PersistenceError
from srs_engine.main import create_app
from srs_engine.models.card import Flashcard
from srs_engine.store.memory import MemoryProgressStore

DAY0 = "2026-02-01"


class BrokenStore(MemoryProgressStore):
    async def upsert(self, learner_id, card_id, record):
        raise PersistenceError("store offline")

    async def apply(self, learner_id, card_id, update, *, request_id=None):
        raise PersistenceError("store offline")


def _catalog() -> MemoryCardCatalog:
    return MemoryCardCatalog(
        [
            Flashcard(id="card-1", question="Beta blocker antidote?", answer="Glucagon", topic_id="pharm"),
            Flashcard(id="card-2", question="Digoxin antidote?", answer="Digibind", topic_id="pharm"),
            Flashcard(
                id="card-3",
                question="Most common cause of SAH?",
                answer="Trauma",
                explanation="Aneurysm rupture is the most common non-traumatic cause.",
                topic_id="neuro",
            ),
        ]
    )


@pytest.fixture()
def store() -> MemoryProgressStore:
    return MemoryProgressStore()


@pytest.fixture()
def client(store: MemoryProgressStore):
    app = create_app(store=store, catalog=_catalog())
    with TestClient(app) as test_client:
        yield test_client


def _grade(client: TestClient, card_id: str, quality: int, today: str = DAY0, **extra):
    payload = {"learner_id": "u1", "card_id": card_id, "quality": quality, "today": today}
    payload.update(extra)
    return client.post("/api/review/grade", json=payload)


def test_health(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
    assert resp.headers.get("X-Request-ID")


def test_grade_new_card(client):
    resp = _grade(client, "card-1", 5)
    assert resp.status_code == 200
    body = resp.json()
    assert body["card_id"] == "card-1"
    assert body["repetitions"] == 1
    assert body["interval_days"] == 1
    assert body["next_review_date"] == "2026-02-02"
    assert body["easiness"] == pytest.approx(2.6)


def test_grade_sequence_follows_sm2(client):
    _grade(client, "card-1", 5, today="2026-02-01")
    body = _grade(client, "card-1", 5, today="2026-02-02").json()
    assert body["repetitions"] == 2
    assert body["interval_days"] == 6
    assert body["next_review_date"] == "2026-02-08"

    lapse = _grade(client, "card-1", 2, today="2026-02-08").json()
    assert lapse["repetitions"] == 0
    assert lapse["interval_days"] == 1
    assert lapse["easiness"] == pytest.approx(2.5)


def test_grade_with_button(client):
    resp = client.post(
        "/api/review/grade",
        json={"learner_id": "u1", "card_id": "card-2", "button": "again", "today": DAY0},
    )
    assert resp.status_code == 200
    assert resp.json()["last_quality"] == 1
    assert resp.json()["repetitions"] == 0


@pytest.mark.parametrize("quality", [-1, 6, 42])
def test_grade_rejects_out_of_range_quality(client, store, quality):
    resp = _grade(client, "card-1", quality)
    assert resp.status_code == 422
    assert resp.json()["detail"]["reason_code"] == "INVALID_QUALITY"
    assert asyncio.run(store.get("u1", "card-1")) is None


def test_grade_requires_quality_or_button(client):
    resp = client.post("/api/review/grade", json={"learner_id": "u1", "card_id": "card-1"})
    assert resp.status_code == 422
    resp = client.post(
        "/api/review/grade",
        json={"learner_id": "u1", "card_id": "card-1", "quality": 4, "button": "good"},
    )
    assert resp.status_code == 422


def test_duplicate_submit_is_applied_once(client):
    first = _grade(client, "card-1", 5, request_id="grade-abc").json()
    second = _grade(client, "card-1", 5, request_id="grade-abc").json()
    assert second == first
    progress = client.get("/api/review/progress/u1/card-1").json()
    assert progress["total_reviews"] == 1


def test_grade_reports_persistence_failure():
    app = create_app(store=BrokenStore(), catalog=_catalog())
    with TestClient(app) as client:
        resp = _grade(client, "card-1", 4)
    assert resp.status_code == 503
    detail = resp.json()["detail"]
    assert detail["reason_code"] == "PERSISTENCE_FAILED"
    assert detail["retryable"] is True


def test_due_orders_new_cards_first(client):
    _grade(client, "card-1", 1, today="2026-01-31")  # 2026-02-01 に due
    _grade(client, "card-2", 5, today="2026-01-31")
    _grade(client, "card-2", 5, today="2026-02-01")  # 2026-02-07 まで due ではない
    resp = client.get(
        "/api/review/due",
        params={"learner_id": "u1", "card_ids": ["card-1", "card-2", "card-3"], "today": DAY0},
    )
    assert resp.status_code == 200
    assert resp.json()["items"] == ["card-3", "card-1"]


def test_due_with_no_candidates(client):
    resp = client.get("/api/review/due", params={"learner_id": "u1", "today": DAY0})
    assert resp.status_code == 200
    assert resp.json()["items"] == []


def test_due_does_not_write_progress(client, store):
    client.get("/api/review/due", params={"learner_id": "u1", "card_ids": ["card-1"], "today": DAY0})
    assert asyncio.run(store.list_for_learner("u1")) == {}


def test_progress_404_for_untracked_card(client):
    resp = client.get("/api/review/progress/u1/card-9")
    assert resp.status_code == 404
    assert resp.json()["detail"]["reason_code"] == "NOT_TRACKED"


def test_forecast_and_stats(client):
    _grade(client, "card-1", 5, today=DAY0)  # 明日
    _grade(client, "card-2", 0, today="2026-01-20")  # 期限切れ
    forecast = client.get("/api/review/forecast", params={"learner_id": "u1", "today": DAY0}).json()
    assert forecast["overdue"] == 1
    assert forecast["tomorrow"] == 1
    assert forecast["due_today"] == 0

    stats = client.get("/api/review/stats", params={"learner_id": "u1", "today": DAY0}).json()
    assert stats["tracked"] == 2
    assert stats["due"] == 1
    assert stats["total_reviews"] == 2
    assert stats["correct_reviews"] == 1
    assert stats["accuracy"] == pytest.approx(0.5)


def test_session_flow(client):
    resp = client.post(
        "/api/review/sessions",
        json={"learner_id": "u1", "topic_id": "pharm", "today": DAY0},
    )
    assert resp.status_code == 200
    view = resp.json()
    session_id = view["session_id"]
    assert view["state"] == "presenting"
    assert view["total"] == 2
    assert view["card"]["id"] == "card-1"
    # 問題面のみで解答は伏せる
    assert view["card"]["answer"] is None

    early = client.post(f"/api/review/sessions/{session_id}/grade", json={"quality": 4})
    assert early.status_code == 409

    revealed = client.post(f"/api/review/sessions/{session_id}/reveal").json()
    assert revealed["state"] == "revealed"
    assert revealed["card"]["answer"] == "Glucagon"

    graded = client.post(
        f"/api/review/sessions/{session_id}/grade",
        json={"quality": 5, "wait_for_write": True},
    ).json()
    assert graded["state"] == "presenting"
    assert graded["reviewed"] == 1
    assert graded["last_graded"]["card_id"] == "card-1"
    assert graded["card"]["id"] == "card-2"

    client.post(f"/api/review/sessions/{session_id}/reveal")
    done = client.post(
        f"/api/review/sessions/{session_id}/grade",
        json={"button": "again", "wait_for_write": True},
    ).json()
    assert done["state"] == "complete"
    assert done["card"] is None
    assert done["summary"]["reviewed"] == 2
    assert done["summary"]["correct"] == 1
    assert done["summary"]["accuracy"] == pytest.approx(0.5)

    progress = client.get("/api/review/progress/u1/card-2").json()
    assert progress["last_quality"] == 1


def test_session_with_nothing_due_is_complete(client):
    resp = client.post(
        "/api/review/sessions",
        json={"learner_id": "u1", "card_ids": [], "today": DAY0},
    )
    assert resp.status_code == 200
    view = resp.json()
    assert view["state"] == "complete"
    summary = view["summary"]
    assert summary["reviewed"] == 0
    assert summary["accuracy"] == 0.0
    assert summary["unsaved"] == 0
    assert view["card"] is None


def test_session_rejects_grading_other_card(client):
    session_id = client.post(
        "/api/review/sessions",
        json={"learner_id": "u1", "card_ids": ["card-3"], "today": DAY0},
    ).json()["session_id"]
    client.post(f"/api/review/sessions/{session_id}/reveal")
    resp = client.post(
        f"/api/review/sessions/{session_id}/grade",
        json={"quality": 4, "card_id": "card-1"},
    )
    assert resp.status_code == 422
    assert resp.json()["detail"]["reason_code"] == "UNKNOWN_CARD"


def test_session_surfaces_unsaved_grades():
    app = create_app(store=BrokenStore(), catalog=_catalog())
    with TestClient(app) as client:
        session_id = client.post(
            "/api/review/sessions",
            json={"learner_id": "u1", "card_ids": ["card-1", "card-2"], "today": DAY0},
        ).json()["session_id"]
        client.post(f"/api/review/sessions/{session_id}/reveal")
        view = client.post(
            f"/api/review/sessions/{session_id}/grade",
            json={"quality": 4, "wait_for_write": True},
        ).json()
        assert view["state"] == "presenting"
        assert [u["card_id"] for u in view["unsaved"]] == ["card-1"]

        retried = client.post(f"/api/review/sessions/{session_id}/retry").json()
        assert [u["card_id"] for u in retried["unsaved"]] == ["card-1"]


def test_unknown_session_returns_404(client):
    assert client.get("/api/review/sessions/nope").status_code == 404
    assert client.delete("/api/review/sessions/nope").status_code == 404


def test_delete_session(client):
    session_id = client.post(
        "/api/review/sessions",
        json={"learner_id": "u1", "today": DAY0},
    ).json()["session_id"]
    assert client.delete(f"/api/review/sessions/{session_id}").status_code == 204
    assert client.get(f"/api/review/sessions/{session_id}").status_code == 404


def test_metrics_count_grades(client):
    from srs_engine.metrics import registry

    registry.reset()
    _grade(client, "card-1", 5)
    _grade(client, "card-2", 1)
    snapshot = client.get("/metrics").json()
    assert snapshot["reviews"]["graded"] == 2
    assert snapshot["reviews"]["lapses"] == 1
    assert "/api/review/grade" in snapshot["paths"]


def test_session_ignores_duplicate_card_ids(client):
    view = client.post(
        "/api/review/sessions",
        json={"learner_id": "u1", "card_ids": ["card-1", "card-1"], "today": DAY0},
    ).json()
    assert view["total"] == 1


def test_session_grade_does_not_overwrite_direct_grades(client):
    session_id = client.post(
        "/api/review/sessions",
        json={"learner_id": "u1", "card_ids": ["card-1"], "today": DAY0},
    ).json()["session_id"]
    # セッション開始後に別経路で 2 回採点される
    _grade(client, "card-1", 5, today=DAY0)
    _grade(client, "card-1", 5, today="2026-02-02")

    client.post(f"/api/review/sessions/{session_id}/reveal")
    client.post(
        f"/api/review/sessions/{session_id}/grade",
        json={"quality": 4, "wait_for_write": True},
    )

    progress = client.get("/api/review/progress/u1/card-1").json()
    assert progress["total_reviews"] == 3
    assert progress["repetitions"] == 3
