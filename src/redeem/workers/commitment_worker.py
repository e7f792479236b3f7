"""Commitment arq worker: periodic sweeps and side-effect retries.

Run with: arq redeem.workers.commitment_worker.WorkerSettings

Every job opens its own session; deadlines live in the database, so a
restarted worker simply picks up whatever is due on the next tick.
"""

from __future__ import annotations

import redis.asyncio as aioredis
import structlog
from arq import cron
from arq.connections import RedisSettings
from sqlalchemy.ext.asyncio import AsyncSession

from redeem.commitments.sweeps import sweep_auto_approve, sweep_overdue
from redeem.config import get_settings
from redeem.database import close_db, get_session, init_db
from redeem.notifications.service import dispatch_pending
from redeem.payments.gateway import create_gateway
from redeem.payments.service import retry_pending_transfers

logger = structlog.get_logger()


async def _get_db_session() -> AsyncSession:
    """Get a database session for the worker."""
    async for session in get_session():
        return session
    raise RuntimeError("Failed to get database session")


async def commitment_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize DB, pub/sub Redis and the payment gateway."""
    settings = get_settings()
    await init_db(settings.database_url)

    ctx["redis"] = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    ctx["gateway"] = create_gateway(settings)
    logger.info("commitment_worker_started")


async def commitment_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("commitment_worker_stopped")


async def run_overdue_sweep(ctx: dict) -> dict:  # type: ignore[type-arg]
    """Hourly: ACTION_PENDING past deadline -> ACTION_OVERDUE."""
    db = await _get_db_session()
    try:
        report = await sweep_overdue(db, ctx.get("redis"))
        return report.as_dict()
    finally:
        await db.close()


async def run_auto_approve_sweep(ctx: dict) -> dict:  # type: ignore[type-arg]
    """Daily: approve live proofs unverified for the auto-approval window."""
    db = await _get_db_session()
    try:
        report = await sweep_auto_approve(db, ctx.get("redis"))
        return report.as_dict()
    finally:
        await db.close()


async def deliver_notifications(ctx: dict) -> int:  # type: ignore[type-arg]
    """Every minute: push outbox rows whose first delivery failed."""
    settings = get_settings()
    db = await _get_db_session()
    try:
        return await dispatch_pending(db, ctx.get("redis"), limit=settings.notification_batch_size)
    except Exception:
        logger.exception("notification_redelivery_failed")
        return 0
    finally:
        await db.close()


async def retry_charity_transfers(ctx: dict) -> int:  # type: ignore[type-arg]
    """Every 15 minutes: transfer completed donations not yet sent to their charity."""
    db = await _get_db_session()
    try:
        transferred = await retry_pending_transfers(db, ctx["gateway"], redis=ctx.get("redis"))
        if transferred:
            logger.info("charity_transfers_retried", transferred=transferred)
        return transferred
    except Exception:
        logger.exception("charity_transfer_retry_failed")
        return 0
    finally:
        await db.close()


def _every(minutes: int) -> set[int]:
    return set(range(0, 60, max(1, minutes)))


_settings = get_settings()


class WorkerSettings:
    """arq worker settings for the commitment scheduler."""

    functions = [run_overdue_sweep, run_auto_approve_sweep, deliver_notifications, retry_charity_transfers]
    cron_jobs = [
        cron(run_overdue_sweep, minute=_settings.overdue_sweep_minute, unique=True),
        cron(
            run_auto_approve_sweep,
            hour=_settings.auto_approve_sweep_hour,
            minute=0,
            unique=True,
        ),
        cron(deliver_notifications, unique=True),
        cron(retry_charity_transfers, minute=_every(_settings.transfer_retry_interval_minutes), unique=True),
    ]
    on_startup = commitment_startup
    on_shutdown = commitment_shutdown
    redis_settings = RedisSettings.from_dsn(_settings.arq_redis_url)
    max_jobs = 4
    job_timeout = 600
    allow_abort_jobs = True
