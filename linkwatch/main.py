# linkwatch/main.py

import os
import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from linkwatch.core.ratelimit import limiter, rate_limit_exceeded_handler

from linkwatch.core.config import Settings, load_settings
from linkwatch.core.logging import configure_logging
from linkwatch.db.init_db import init_db
from linkwatch.db.session import create_session_factory

from linkwatch.sites.routes import router as sites_router
from linkwatch.scans.routes import router as scans_router
from linkwatch.ignores.routes import router as ignores_router

from linkwatch.notifications.webhook import build_notifier
from linkwatch.scans.cleanup import reap_expired_jobs, reaper_loop
from linkwatch.scans.scheduler import scheduler_loop
from linkwatch.scans.worker import scans_worker_loop

logger = logging.getLogger(__name__)


def _cors_origins() -> tuple[list[str], bool]:
    # FRONTEND_ORIGIN = https://app.example.com,http://localhost:5173
    raw_origins = os.getenv("FRONTEND_ORIGIN", "*").strip()
    if raw_origins == "*":
        return ["*"], False  # can't use credentials with "*"
    return [o.strip().rstrip("/") for o in raw_origins.split(",") if o.strip()], True


def create_app(settings: Settings | None = None, *, run_workers: bool | None = None) -> FastAPI:
    settings = settings or load_settings()
    if run_workers is None:
        run_workers = os.getenv("RUN_WORKERS_IN_API", "1").strip().lower() in ("1", "true", "yes", "on")

    app = FastAPI(title="LinkWatch API")
    app.state.settings = settings
    app.state.session_factory = create_session_factory(settings.database_url)

    allow_origins, allow_credentials = _cors_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    @app.on_event("startup")
    async def on_startup():
        session_factory = app.state.session_factory
        init_db(session_factory.kw["bind"])

        if not run_workers:
            return

        notifier = build_notifier(settings)
        db = session_factory()
        try:
            result = reap_expired_jobs(db, notifier)
            if result["requeued"] or result["failed"]:
                logger.info("startup reaper: %s", result)
        finally:
            db.close()

        app.state.background_tasks = [
            asyncio.create_task(scans_worker_loop(session_factory, settings, notifier)),
            asyncio.create_task(reaper_loop(session_factory, settings, notifier)),
            asyncio.create_task(scheduler_loop(session_factory, settings)),
        ]

    @app.on_event("shutdown")
    async def on_shutdown():
        for task in getattr(app.state, "background_tasks", []):
            task.cancel()

    app.include_router(sites_router)
    app.include_router(scans_router)
    app.include_router(ignores_router)

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/")
    def root():
        return {"ok": True, "message": "LinkWatch API is running", "docs": "/docs"}

    return app


configure_logging()
app = create_app()
