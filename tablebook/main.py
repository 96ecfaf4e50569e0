"""
FastAPI app entrypoint.

Public availability, slot locks and bookings; staff admin; POS webhooks.
"""
from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import FastAPI, Request

from tablebook.api.router import api_router
from tablebook.core.config import get_settings
from tablebook.core.errors import install_error_handlers
from tablebook.scheduler.jobs import run_lock_reaper_job, run_payment_timeout_job, run_queue_drain_job

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)


def _build_scheduler() -> BackgroundScheduler:
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(run_lock_reaper_job, "interval", seconds=settings.reaper_interval_seconds, id="lock_reaper")
    scheduler.add_job(run_queue_drain_job, "interval", seconds=settings.queue_interval_seconds, id="pos_queue")
    scheduler.add_job(
        run_payment_timeout_job,
        "interval",
        seconds=settings.payment_timeout_interval_seconds,
        id="payment_timeout",
    )
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = None
    if settings.scheduler_enabled:
        scheduler = _build_scheduler()
        scheduler.start()
        app.state.scheduler = scheduler
        logger.info("Background jobs scheduled")
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)


app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
install_error_handlers(app)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(api_router, prefix=settings.api_prefix)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
