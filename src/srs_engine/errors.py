"""Error taxonomy for the review service.

入力不正（採点値・カード・状態遷移）はエンジン実行前に同期的に拒否し、
永続化の失敗だけは再試行可能な別種の例外として呼び出し元へ伝播させる。
"""

from __future__ import annotations


class SchedulingError(Exception):
    """Base class for caller-visible validation errors."""

    reason_code = "INVALID_INPUT"


class InvalidQualityError(SchedulingError, ValueError):
    """Quality grade outside the canonical 0..5 scale (or not an integer)."""

    reason_code = "INVALID_QUALITY"


class UnknownCardError(SchedulingError, LookupError):
    """Grading a card that is not part of the candidate set / current session."""

    reason_code = "UNKNOWN_CARD"


class InvalidTransitionError(SchedulingError):
    """Session action not allowed in the current state (e.g. grading before reveal)."""

    reason_code = "INVALID_TRANSITION"


class SessionNotFoundError(SchedulingError, LookupError):
    reason_code = "SESSION_NOT_FOUND"


class PersistenceError(RuntimeError):
    """Progress store unreachable or write rejected.

    再試行しても安全（採点前の状態は採点時点で確定しているため）。
    """

    reason_code = "PERSISTENCE_FAILED"
    retryable = True
