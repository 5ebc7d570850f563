import asyncio
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from alembic import command  # type: ignore
from alembic.config import Config

from pairwatch.cache import init_cache, shutdown_cache
from pairwatch.config import settings
from pairwatch.database import AsyncSessionLocal, engine, ping_database
from pairwatch.dependencies import Services, build_services
from pairwatch.errors import (
    NotFoundError,
    PairwatchError,
    PreconditionError,
    VerificationFailure,
)
from pairwatch.routers import (
    alerts_router,
    employees_router,
    health_router,
    pairs_router,
    sessions_router,
    sites_router,
)
from pairwatch.services.storage import SqlPresenceRepository
from pairwatch.utils.logging import get_logger

logger = get_logger(__name__)


def run_migrations() -> None:
    root_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    alembic_cfg = Config(os.path.join(root_dir, "alembic.ini"))
    alembic_cfg.set_main_option("script_location", os.path.join(root_dir, "alembic"))
    command.upgrade(alembic_cfg, "head")


async def _start_database_services() -> Services:
    logger.info(f"Server starting up... DB URL: {settings.DATABASE_URL.split('@')[-1]}")
    if settings.RUN_MIGRATIONS_ON_STARTUP:
        try:
            logger.info("Checking for database migrations...")
            # env.py drives its own event loop, so it can't share ours.
            await asyncio.to_thread(run_migrations)
            logger.info("Database is up to date.")
        except Exception as e:
            logger.warning(f"Migration Warning: {e}")
    try:
        await ping_database()
        logger.info("Database connection established.")
    except Exception as e:
        logger.critical(f"Database connection failed! {e}")

    cache = await init_cache()
    return build_services(SqlPresenceRepository(AsyncSessionLocal), cache)


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Build the API. Passing `services` skips the database and cache startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        app.state.services = services or await _start_database_services()
        await app.state.services.manager.recover()

        yield

        logger.info("Server shutting down...")
        await app.state.services.manager.shutdown()
        if owned:
            await shutdown_cache()
            await engine.dispose()

    app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PairwatchError)
    async def pairwatch_error_handler(request: Request, exc: PairwatchError):
        body = {"detail": exc.message, "error": type(exc).__name__}
        if isinstance(exc, VerificationFailure):
            body.update(factor=exc.factor, reason=exc.reason, confidence=exc.confidence)
            code = status.HTTP_422_UNPROCESSABLE_ENTITY
        elif isinstance(exc, NotFoundError):
            code = status.HTTP_404_NOT_FOUND
        elif isinstance(exc, PreconditionError):
            code = status.HTTP_409_CONFLICT
        else:
            code = status.HTTP_400_BAD_REQUEST
        return JSONResponse(status_code=code, content=body)

    # --- Register Routers ---
    app.include_router(health_router)
    app.include_router(employees_router)
    app.include_router(sites_router)
    app.include_router(pairs_router)
    app.include_router(sessions_router)
    app.include_router(alerts_router)

    @app.get("/")
    async def root():
        return {
            "message": f"Welcome to {settings.PROJECT_NAME}",
            "docs": "/docs",
            "version": settings.VERSION,
        }

    return app


app = create_app()


def start():
    import uvicorn

    uvicorn.run(
        "pairwatch.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
