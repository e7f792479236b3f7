"""Service Stats Aggregator.

The per-user row is mutated only through ``on_action_completed`` and
``on_overdue``. Both take the row lock (SELECT ... FOR UPDATE on Postgres)
so concurrent verifications for the same user serialize on it.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from redeem.db.enums import ActionCategory, CommitmentStatus
from redeem.db.models import Action, Commitment, UserServiceStats

logger = logging.getLogger(__name__)

RECENT_ACTIONS_LIMIT = 10


def _insert(db: AsyncSession) -> Any:  # noqa: ANN401
    """Dialect-specific INSERT supporting ON CONFLICT."""
    if db.get_bind().dialect.name == "sqlite":
        return sqlite_insert
    return pg_insert


async def get_or_create_stats(
    db: AsyncSession,
    user_id: int,
    now: datetime | None = None,
    *,
    for_update: bool = True,
) -> UserServiceStats:
    """Get the stats row for a user, creating it if missing.

    The insert is ON CONFLICT DO NOTHING so two first-time writers cannot
    both create the row; the follow-up select takes the lock.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    stmt = (
        _insert(db)(UserServiceStats)
        .values(user_id=user_id, created_at=now, updated_at=now)
        .on_conflict_do_nothing(index_elements=["user_id"])
    )
    await db.execute(stmt)

    query = select(UserServiceStats).where(UserServiceStats.user_id == user_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalar_one()


async def on_action_completed(
    db: AsyncSession,
    user_id: int,
    hours: Decimal,
    is_hybrid_financial: bool = False,
    amount: int | None = None,
    now: datetime | None = None,
) -> UserServiceStats:
    """Record a verified completion: hours, action count, streak, money."""
    if now is None:
        now = datetime.now(timezone.utc)

    stats = await get_or_create_stats(db, user_id, now)
    stats.total_service_hours = Decimal(stats.total_service_hours) + Decimal(hours)
    stats.total_actions_completed += 1
    stats.redemption_streak += 1
    stats.longest_redemption_streak = max(stats.longest_redemption_streak, stats.redemption_streak)
    stats.last_redemption_at = now
    if is_hybrid_financial and amount:
        stats.total_money_donated += amount
    stats.updated_at = now
    await db.flush()

    logger.info(
        "Stats updated for user %s: +%s hours, streak %d",
        user_id, hours, stats.redemption_streak,
    )
    return stats


async def on_overdue(db: AsyncSession, user_id: int, now: datetime | None = None) -> UserServiceStats:
    """Reset the redemption streak after an overdue failure."""
    if now is None:
        now = datetime.now(timezone.utc)

    stats = await get_or_create_stats(db, user_id, now)
    previous = stats.redemption_streak
    stats.redemption_streak = 0
    stats.updated_at = now
    await db.flush()

    if previous:
        logger.info("Redemption streak reset for user %s (was %d)", user_id, previous)
    return stats


async def get_service_stats(
    db: AsyncSession,
    user_id: int,
    default_custom_hours: float = 1.0,
) -> dict[str, Any]:
    """Totals plus per-category and per-month breakdowns and recent actions."""
    result = await db.execute(
        select(UserServiceStats).where(UserServiceStats.user_id == user_id)
    )
    stats = result.scalar_one_or_none()

    rows = await db.execute(
        select(Commitment, Action)
        .outerjoin(Action, Action.id == Commitment.action_id)
        .where(
            Commitment.user_id == user_id,
            Commitment.status == CommitmentStatus.ACTION_COMPLETED,
            Commitment.deleted_at.is_(None),
        )
        .order_by(Commitment.action_completed_at.desc())
    )

    by_category: dict[str, dict[str, Any]] = defaultdict(lambda: {"count": 0, "hours": 0.0})
    by_month: dict[str, dict[str, Any]] = defaultdict(lambda: {"count": 0, "hours": 0.0})
    recent: list[dict[str, Any]] = []

    for commitment, action in rows.all():
        hours = float(action.estimated_hours) if action else default_custom_hours
        category = action.category.value if action else ActionCategory.CUSTOM.value
        title = action.title if action else (commitment.custom_action_description or "Custom action")

        by_category[category]["count"] += 1
        by_category[category]["hours"] += hours

        completed_at = commitment.action_completed_at
        if completed_at is not None:
            month = completed_at.strftime("%Y-%m")
            by_month[month]["count"] += 1
            by_month[month]["hours"] += hours

        if len(recent) < RECENT_ACTIONS_LIMIT:
            recent.append({
                "commitment_id": commitment.id,
                "title": title,
                "category": category,
                "hours": hours,
                "completed_at": completed_at,
            })

    return {
        "user_id": user_id,
        "total_service_hours": float(stats.total_service_hours) if stats else 0.0,
        "total_money_donated": stats.total_money_donated if stats else 0,
        "total_actions_completed": stats.total_actions_completed if stats else 0,
        "redemption_streak": stats.redemption_streak if stats else 0,
        "longest_redemption_streak": stats.longest_redemption_streak if stats else 0,
        "last_redemption_at": stats.last_redemption_at if stats else None,
        "by_category": dict(by_category),
        "by_month": dict(sorted(by_month.items(), reverse=True)),
        "recent_actions": recent,
    }
