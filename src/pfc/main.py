"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from pfc.challenges.cron_router import router as cron_router
from pfc.challenges.router import router as challenges_router
from pfc.config import get_settings
from pfc.database import close_db, init_db
from pfc.dependencies import close_oracle
from pfc.health.router import router as health_router
from pfc.middleware import setup_middleware
from pfc.redis_client import close_redis, init_redis


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    yield

    await close_oracle()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Portfolio Challenges API",
        description="XP-staked portfolio challenges against the index or another user",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(challenges_router)
    app.include_router(cron_router)

    return app


app = create_app()
