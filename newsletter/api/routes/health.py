"""GET /health: liveness check plus the delivery settings this process runs with."""
from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy.engine import make_url

from newsletter.core.settings import get_settings
from newsletter.delivery.queue import claim_strategy_for_dialect

router = APIRouter(tags=["health"])


@router.get("/health", summary="Basic health check")
def health_check() -> dict[str, str | int | bool]:
    settings = get_settings()
    backend = make_url(settings.database_url).get_backend_name()
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.app_env,
        "database_backend": backend,
        "delivery_claim_strategy": claim_strategy_for_dialect(backend),
        "delivery_worker_enabled": settings.delivery_worker_enabled,
        "delivery_max_attempts": settings.delivery_max_attempts,
    }
