from __future__ import annotations

from pathlib import Path

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from . import __version__
from .catalog import CardCatalog, MemoryCardCatalog, load_cards_jsonl
from .config import settings
from .logging import configure_logging, logger
from .middleware import AccessLogAndMetricsMiddleware, RequestIDMiddleware
from .routers import health, review, sessions
from .session import SessionRegistry
from .store import ProgressStore, create_store


def _load_catalog() -> CardCatalog:
    """Build the in-memory catalog, optionally seeded from CATALOG_SEED_JSONL."""
    catalog = MemoryCardCatalog()
    if not settings.catalog_seed_jsonl:
        return catalog
    path = Path(settings.catalog_seed_jsonl)
    if not path.exists():
        if settings.strict_mode:
            raise RuntimeError(f"CATALOG_SEED_JSONL not found: {path}")
        logger.warning("catalog_seed_missing", path=str(path))
        return catalog
    for card in load_cards_jsonl(path):
        catalog.add(card)
    logger.info("catalog_seeded", path=str(path), cards=len(catalog))
    return catalog


def create_app(
    *,
    store: ProgressStore | None = None,
    catalog: CardCatalog | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    store / catalog を渡すとそれを使い、省略時は設定から生成する。
    """
    configure_logging()
    app = FastAPI(title="SRS Engine API", version=__version__)

    app.state.progress_store = store if store is not None else create_store(settings)
    app.state.catalog = catalog if catalog is not None else _load_catalog()
    app.state.sessions = SessionRegistry()
    logger.info(
        "app_configured",
        environment=settings.environment,
        progress_store=type(app.state.progress_store).__name__,
        review_timezone=settings.review_timezone,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Starlette では後から追加したミドルウェアが外側で実行される。
    # RequestID を外側に置き、AccessLog のログにも request_id が載るようにする。
    app.add_middleware(AccessLogAndMetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.include_router(review.router, prefix="/api/review")
    app.include_router(sessions.router, prefix="/api/review")
    app.include_router(health.router)

    return app


app = create_app()
