"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from redeem.catalog.router import router as catalog_router
from redeem.catalog.seed import seed_catalog
from redeem.commitments.router import router as commitments_router
from redeem.config import get_settings
from redeem.database import close_db, create_tables, get_session, init_db
from redeem.health.router import router as health_router
from redeem.middleware import setup_middleware
from redeem.payments.router import router as payments_router
from redeem.redis_client import close_redis, init_redis
from redeem.stats.router import router as stats_router
from redeem.wall.router import router as wall_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    if settings.auto_create_schema:
        await create_tables()

    # Seed catalog and charities (idempotent)
    try:
        async for db in get_session():
            await seed_catalog(db)
            break
    except Exception:
        logger.warning("catalog_seed_failed", exc_info=True)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Redeem Commitments API",
        description="Recovery commitments: relapse-triggered service actions and charity penalties",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(commitments_router)
    app.include_router(catalog_router)
    app.include_router(stats_router)
    app.include_router(wall_router)
    app.include_router(payments_router)

    return app


app = create_app()
