"""
Sigscore FastAPI application entry point.

Pipeline: signal -> dedup -> identity -> store -> score -> alerts
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from sigscore import __version__
from sigscore.config import get_settings
from sigscore.db.session import check_db_connection, engine
from sigscore.errors import SignalEngineError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("Sigscore starting")
    try:
        try:
            check_db_connection()
            logger.info("Database connection verified")
        except Exception as e:
            logger.critical("Database unreachable: %s", e)
            raise

        # A bad scoring config must stop the deploy, not the first scoring job.
        try:
            from sigscore.taxonomy.loader import load_scoring_config

            load_scoring_config()
            logger.info("Scoring configuration validated")
        except Exception as e:
            logger.critical("Scoring configuration invalid at startup: %s", e)
            raise

        yield
    finally:
        logger.info("Sigscore shutting down")
        engine.dispose()
        logger.info("Database connection pool closed")


async def signal_engine_error_handler(request: Request, exc: SignalEngineError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.add_exception_handler(SignalEngineError, signal_engine_error_handler)

    from sigscore.api.alerts import router as alerts_router
    from sigscore.api.identity import router as identity_router
    from sigscore.api.scores import router as scores_router
    from sigscore.api.signals import router as signals_router

    app.include_router(signals_router, prefix="/api/signals", tags=["signals"])
    app.include_router(identity_router, prefix="/api/identity", tags=["identity"])
    app.include_router(scores_router, prefix="/api/scores", tags=["scores"])
    app.include_router(alerts_router, prefix="/api/alerts", tags=["alerts"])

    # Internal job endpoints (cron/scripts, token-authenticated)
    from sigscore.api.internal import router as internal_router

    app.include_router(internal_router, tags=["internal"])

    @app.get("/health")
    def health():
        """Health check endpoint. Confirms DB connectivity."""
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return {"status": "ok", "version": __version__, "database": "connected"}
        except Exception:
            return JSONResponse(
                status_code=503,
                content={"status": "unhealthy", "version": __version__, "database": "disconnected"},
            )

    return app


app = create_app()
