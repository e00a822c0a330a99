"""
FastAPI application factory.

Assembles the app, registers all routers and exception handlers, and
wires up lifecycle events.  Database schema is managed by Alembic —
NOT create_all.
"""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI

from device_auth.controllers.auth_controller import router as auth_router
from device_auth.controllers.session_controller import router as session_router
from device_auth.core.config import get_settings
from device_auth.core.database import engine
from device_auth.core.error_handling import register_exception_handlers
from device_auth.models import Base  # noqa: F401 - ensures all models are registered
from device_auth.tasks.session_cleanup import schedule_session_cleanup_job

# Raises ConfigurationError before anything is served if secrets are missing.
settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    register_exception_handlers(app)

    # ── Register routers ─────────────────────────────────────────────
    app.include_router(session_router)
    app.include_router(auth_router)

    scheduler = AsyncIOScheduler(timezone="UTC")
    app.state.scheduler = scheduler

    # ── Startup / Shutdown ───────────────────────────────────────────
    @app.on_event("startup")
    async def on_startup() -> None:
        """Start the session expiry sweep.

        NOTE: Database schema is managed by Alembic migrations.
        Run `alembic upgrade head` before starting the app.
        """
        if not settings.SESSION_SWEEP_ENABLED:
            logger.info("Session sweep disabled.")
            return
        schedule_session_cleanup_job(scheduler)
        scheduler.start()
        logger.info("Background scheduler started.")

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        if scheduler.running:
            scheduler.shutdown(wait=False)
            logger.info("Background scheduler stopped.")
        await engine.dispose()
        logger.info("Database engine disposed.")

    # ── Health check ─────────────────────────────────────────────────
    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
