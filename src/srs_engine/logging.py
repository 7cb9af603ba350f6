"""Structured logging setup.

構造化ログの初期化を一元的に行う。リクエスト ID は contextvars 経由で
全ログへ自動付与されるため、採点イベントとアクセスログを突合できる。
"""

from typing import Any

import logging
import structlog
from structlog import contextvars as structlog_contextvars
from .config import settings


_CONTEXT_KEYS = ("request_id", "learner_id", "session_id")


def _merge_review_context(
    _logger: structlog.types.WrappedLogger,
    _method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Merge review-related contextvars into the payload without overriding explicit values.

    なぜ: 個別のログ呼び出しで learner_id 等を明示した場合はそちらを優先し、
    ContextVar の値は欠けているキーだけを補う。
    """

    context = structlog_contextvars.get_contextvars()
    for key in _CONTEXT_KEYS:
        if key in context and key not in event_dict:
            event_dict[key] = context[key]
    return event_dict


def configure_logging() -> None:
    """Configure structlog for application-wide logging.

    アプリ全体のロギング設定を行う。標準 logging を初期化し、
    structlog で ISO タイムスタンプと JSON 形式の出力を有効化する。
    """
    # stdlib 側の出力に余計なプレフィックスを付けないため、フォーマットは
    # メッセージのみ(%(message)s)に固定する。
    logging.basicConfig(
        level=getattr(logging, str(settings.log_level).upper(), logging.INFO),
        format="%(message)s",
        handlers=[logging.StreamHandler()],
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            _merge_review_context,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
    )

    # Optional: Sentry integration (enabled if DSN is provided)
    if settings.sentry_dsn:
        import sentry_sdk
        from sentry_sdk.integrations.logging import LoggingIntegration

        sentry_logging = LoggingIntegration(
            level=logging.INFO,
            event_level=logging.ERROR,
        )
        sentry_sdk.init(dsn=settings.sentry_dsn, integrations=[sentry_logging])


logger = structlog.get_logger()
