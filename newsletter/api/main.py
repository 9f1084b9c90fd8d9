"""FastAPI application factory.

Assembles the API routers and, when ``DELIVERY_WORKER_ENABLED`` is set,
hosts the delivery worker loop on a background thread for the lifetime of
the app.  This module is the authoritative app object; newsletter/main.py
re-exports it.
"""
from __future__ import annotations

import logging
import threading
from contextlib import asynccontextmanager

from fastapi import FastAPI

from newsletter.api.routes.health import router as health_router
from newsletter.api.routes.newsletters import router as newsletters_router
from newsletter.core.logging import setup_logging
from newsletter.core.settings import get_settings
from newsletter.delivery.run import start_background_worker

logger = logging.getLogger(__name__)

WORKER_JOIN_TIMEOUT_S = 30


@asynccontextmanager
async def lifespan(_: FastAPI):
    setup_logging()
    stop_event = threading.Event()
    worker_thread = None
    if get_settings().delivery_worker_enabled:
        worker_thread = start_background_worker(stop_event)
    yield
    stop_event.set()
    if worker_thread is not None:
        worker_thread.join(timeout=WORKER_JOIN_TIMEOUT_S)
        if worker_thread.is_alive():
            logger.warning("Delivery worker did not stop within %ss", WORKER_JOIN_TIMEOUT_S)


settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(newsletters_router)
