from fastapi import APIRouter
from fastapi.responses import JSONResponse
from ..metrics import registry

router = APIRouter()


@router.get("/healthz")
def health_check() -> dict[str, str]:
    """Simple health check endpoint.

    ライブネス/レディネス確認用の簡易エンドポイント。
    """
    return {"status": "ok"}


@router.get("/metrics")
def metrics() -> JSONResponse:
    """Return in-memory metrics snapshot.

    パス別の p95/エラー件数と、採点・ラプス・保存失敗のカウンタを返す。
    """
    return JSONResponse(content=registry.snapshot())
