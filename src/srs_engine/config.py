from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_DB_PATH = ".data/srs.sqlite3"
_STORE_BACKENDS = frozenset({"sqlite", "memory"})


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    環境変数から読み込まれるアプリ設定クラス。
    - environment: 実行環境（development/staging/production など）
    - progress_store: 学習進捗の永続化バックエンド（sqlite / memory）
    - review_timezone: 「今日」を決めるタイムゾーン
    """

    environment: str = Field(
        default="development",
        description="Runtime environment / 実行環境",
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level / ルートロガーのレベル",
    )

    # --- 進捗ストア ---
    progress_store: str = Field(
        default="sqlite",
        description="Progress store backend (sqlite|memory) / 進捗ストアのバックエンド",
    )
    srs_db_path: str = Field(
        default=DEFAULT_DB_PATH,
        description="Path to SRS SQLite database / SRS用SQLite DBパス",
    )
    persist_max_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts per progress write / 進捗書き込みの試行回数",
    )
    persist_retry_backoff_ms: int = Field(
        default=50,
        ge=0,
        description="Linear backoff between write attempts (ms) / 再試行間隔(ms)",
    )

    # --- 出題 ---
    review_timezone: str = Field(
        default="UTC",
        description="IANA timezone used to derive 'today' / 「今日」算出に使うタイムゾーン",
    )
    due_limit_default: int | None = Field(
        default=None,
        ge=1,
        description="Default cap for GET /due (unset = no cap) / due 一覧の既定上限",
    )
    session_card_limit: int = Field(
        default=20,
        ge=1,
        description="Max cards per review session / 1セッションの最大出題数",
    )
    mastered_repetitions: int = Field(
        default=3,
        ge=1,
        description="Repetitions at which a card counts as mastered / 習得済みとみなす連続正答数",
    )

    # --- カタログ（外部コラボレータ）の簡易シード ---
    catalog_seed_jsonl: str | None = Field(
        default=None,
        description="Optional JSONL of flashcards loaded at startup / 起動時に読み込むカードJSONL",
    )

    sentry_dsn: str | None = Field(default=None, description="Sentry DSN (enable if set)")

    # --- Strict mode ---
    strict_mode: bool = Field(
        default=True,
        description="Fail fast on missing/invalid configuration (disable only for tests)",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    @field_validator("progress_store", mode="before")
    @classmethod
    def _validate_store(cls, value: object) -> str:
        backend = str(value or "").strip().lower()
        if backend not in _STORE_BACKENDS:
            raise ValueError(
                f"PROGRESS_STORE must be one of {sorted(_STORE_BACKENDS)}, got {value!r}"
            )
        return backend

    @field_validator("review_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown REVIEW_TIMEZONE: {value!r}") from exc
        return value

    @field_validator("catalog_seed_jsonl", "sentry_dsn", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        # .env で空文字を指定した場合は未設定として扱う
        if isinstance(value, str) and not value.strip():
            return None
        return value


settings = Settings()
