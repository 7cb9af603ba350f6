"""FastAPI dependencies resolving the per-app collaborators from `app.state`."""

from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

from fastapi import Request

from .catalog import CardCatalog
from .config import settings
from .session import SessionRegistry
from .store.base import ProgressStore


def get_store(request: Request) -> ProgressStore:
    return request.app.state.progress_store


def get_catalog(request: Request) -> CardCatalog:
    return request.app.state.catalog


def get_sessions(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def resolve_today(today: date | None) -> date:
    """Use the client-supplied date, else the current date in REVIEW_TIMEZONE.

    なぜ: 日付境界をサーバのローカル時刻に依存させず、設定したタイムゾーンで
    「今日」を一意に決める。
    """
    if today is not None:
        return today
    return datetime.now(ZoneInfo(settings.review_timezone)).date()
