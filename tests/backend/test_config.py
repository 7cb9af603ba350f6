import pytest
from pydantic import ValidationError

from srs_engine.config import Settings


def test_defaults(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("PROGRESS_STORE", raising=False)
    settings = Settings(_env_file=None)
    assert settings.progress_store == "sqlite"
    assert settings.review_timezone == "UTC"
    assert settings.session_card_limit == 20
    assert settings.due_limit_default is None


def test_store_backend_is_normalized():
    assert Settings(progress_store=" Memory ").progress_store == "memory"


def test_unknown_store_backend_is_rejected():
    with pytest.raises(ValidationError, match="PROGRESS_STORE"):
        Settings(progress_store="redis")


def test_unknown_timezone_is_rejected():
    with pytest.raises(ValidationError, match="REVIEW_TIMEZONE"):
        Settings(review_timezone="Mars/Olympus_Mons")


def test_env_overrides(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("REVIEW_TIMEZONE", "Europe/Prague")
    monkeypatch.setenv("PERSIST_MAX_RETRIES", "5")
    monkeypatch.setenv("CATALOG_SEED_JSONL", "  ")
    settings = Settings()
    assert settings.review_timezone == "Europe/Prague"
    assert settings.persist_max_retries == 5
    assert settings.catalog_seed_jsonl is None


def test_negative_limits_are_rejected():
    with pytest.raises(ValidationError):
        Settings(session_card_limit=0)
    with pytest.raises(ValidationError):
        Settings(persist_max_retries=0)
