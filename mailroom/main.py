"""
Mailroom - FastAPI application.

    uvicorn mailroom.main:app
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mailroom.api.routes import router as api_router
from mailroom.api.routes.health import router as health_router
from mailroom.core.config import settings
from mailroom.core.logging import get_logger, setup_logging
from mailroom.core.middleware import setup_exception_handlers, setup_middleware
from mailroom.db.database import Base, engine

setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME.lower(),
)

logger = get_logger(__name__)

_DEV_ORIGINS = ["http://localhost", "http://localhost:3000", "http://127.0.0.1:3000"]


def _cors_origins() -> list[str]:
    """ALLOWED_ORIGINS as a list; DEBUG falls back to the local frontend origins"""
    origins = [o.strip() for o in settings.ALLOWED_ORIGINS.split(",") if o.strip()]
    if not origins and settings.DEBUG:
        return list(_DEV_ORIGINS)
    return origins


async def _prepare_schema() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # create_all never alters an existing table
    if engine.dialect.name == "postgresql":
        from mailroom.db.migrations import run_all_migrations

        async with engine.begin() as conn:
            await run_all_migrations(conn)
    logger.info("Database schema ready", extra_data={"dialect": engine.dialect.name})


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    await _prepare_schema()
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Application stopped, database connections disposed")


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.APP_NAME,
        version="1.0.0",
        description=(
            "Newsletter publication service. Publishing is idempotent per user "
            "and idempotency key; emails go out through a durable delivery queue."
        ),
        openapi_tags=[
            {"name": "Newsletters", "description": "Publish issues to confirmed subscribers."},
            {"name": "Health", "description": "Liveness and readiness probes."},
        ],
        lifespan=lifespan,
    )

    setup_middleware(application, debug=settings.DEBUG)
    setup_exception_handlers(application)

    origins = _cors_origins()
    if origins:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", "X-Correlation-ID"],
        )

    application.include_router(health_router)
    application.include_router(api_router, prefix="/api")
    return application


app = create_app()
