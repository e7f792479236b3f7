"""Health, readiness, and version endpoints."""

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from redeem.config import get_settings
from redeem.database import get_session
from redeem.redis_client import get_redis

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness check: 200 while the process is up."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    response: Response,
    db: AsyncSession = Depends(get_session),
) -> dict[str, object]:
    """Readiness check.

    The database is required (503 without it). Redis only carries pushes
    and rate limits, and a missing gateway key only blocks financial
    relapses, so either of those reports ``degraded``.
    """
    settings = get_settings()
    checks: dict[str, str] = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    try:
        await get_redis().ping()
        checks["redis"] = "ok"
    except Exception as exc:
        checks["redis"] = f"error: {exc}"

    checks["payments"] = "ok" if settings.stripe_secret_key and settings.stripe_webhook_secret else "not configured"

    if checks["database"] != "ok":
        response.status_code = 503
        status = "unavailable"
    elif all(v == "ok" for v in checks.values()):
        status = "ready"
    else:
        status = "degraded"
    return {"status": status, "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
        "payment_provider": settings.payment_provider,
    }
