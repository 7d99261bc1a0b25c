"""
benchline.api.main — FastAPI application entry point
=====================================================

Run with::

    uvicorn benchline.api.main:app --reload --port 8000
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import timedelta

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from benchline.api.deps import get_config, get_dispatcher, get_engine  # noqa: E402
from benchline.api.routes.activities import router as activities_router  # noqa: E402
from benchline.errors import BenchlineError  # noqa: E402
from benchline.services.deadline_sweep import PaymentDeadlineSweeper  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the DB engine, run the sweep."""
    cfg = get_config()
    engine = get_engine()
    sweeper = PaymentDeadlineSweeper(
        engine,
        get_dispatcher(),
        interval_minutes=cfg.sweep_interval_minutes,
        payment_deadline=timedelta(hours=cfg.payment_deadline_hours),
    )
    sweeper.start(asyncio.get_running_loop())
    logger.info("Benchline API started — engine ready (%s)", engine.url.database)
    yield
    sweeper.stop()
    get_dispatcher().close()
    logger.info("Benchline API shutting down")


app = FastAPI(
    title="Benchline API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(activities_router, prefix="/api")


@app.exception_handler(BenchlineError)
async def benchline_error_handler(request: Request, exc: BenchlineError):
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.get("/api/health")
def health():
    return {"status": "ok"}
