"""Redemption Wall: publisher and public feed."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from redeem.db.enums import ActionCategory
from redeem.db.models import Action, ActionProof, Commitment, RedemptionWallEntry
from redeem.errors import NotFoundError

logger = logging.getLogger(__name__)

VALID_SORTS = {"recent", "most_encouraged"}
ANONYMOUS_NAME = "Anonymous"


async def publish_if_eligible(
    db: AsyncSession,
    commitment: Commitment,
    action: Action | None,
    proof: ActionProof,
    hours: Decimal,
    now: datetime | None = None,
) -> RedemptionWallEntry | None:
    """Create the wall entry for a completed commitment.

    No-op unless the owner opted into public sharing. The unique index on
    ``commitment_id`` makes a second publish a no-op as well.
    """
    if not commitment.allow_public_share:
        return None
    if now is None:
        now = datetime.now(timezone.utc)

    insert = sqlite_insert if db.get_bind().dialect.name == "sqlite" else pg_insert
    stmt = (
        insert(RedemptionWallEntry)
        .values(
            commitment_id=commitment.id,
            user_id=commitment.user_id,
            action_id=action.id if action else None,
            proof_id=proof.id,
            action_title=action.title if action else (commitment.custom_action_description or "Custom action"),
            action_category=action.category if action else ActionCategory.CUSTOM,
            hours=hours,
            media_type=proof.media_type,
            media_url=proof.media_url,
            thumbnail_url=proof.thumbnail_url,
            is_anonymous=True,
            user_reflection=proof.user_notes,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["commitment_id"])
    )
    await db.execute(stmt)

    result = await db.execute(
        select(RedemptionWallEntry).where(RedemptionWallEntry.commitment_id == commitment.id)
    )
    entry = result.scalar_one_or_none()
    if entry is not None:
        logger.info("Published commitment %s to the redemption wall", commitment.id)
    return entry


def _entry_to_dict(entry: RedemptionWallEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "display_name": ANONYMOUS_NAME if entry.is_anonymous else f"User {entry.user_id}",
        "action_title": entry.action_title,
        "action_category": entry.action_category.value,
        "hours": float(entry.hours),
        "media_type": entry.media_type.value,
        "media_url": entry.media_url,
        "thumbnail_url": entry.thumbnail_url,
        "user_reflection": entry.user_reflection,
        "encouragement_count": entry.encouragement_count,
        "comment_count": entry.comment_count,
        "created_at": entry.created_at,
    }


async def get_redemption_wall(
    db: AsyncSession,
    limit: int = 20,
    offset: int = 0,
    category: ActionCategory | None = None,
    sort: str = "recent",
) -> dict[str, Any]:
    """Paginated public feed of visible entries, anonymized."""
    if sort not in VALID_SORTS:
        sort = "recent"

    query = select(RedemptionWallEntry).where(RedemptionWallEntry.is_visible.is_(True))
    if category is not None:
        query = query.where(RedemptionWallEntry.action_category == category)

    if sort == "most_encouraged":
        query = query.order_by(
            RedemptionWallEntry.encouragement_count.desc(),
            RedemptionWallEntry.created_at.desc(),
        )
    else:
        query = query.order_by(RedemptionWallEntry.created_at.desc(), RedemptionWallEntry.id.desc())

    # One extra row tells us whether another page exists
    result = await db.execute(query.offset(offset).limit(limit + 1))
    entries = list(result.scalars().all())
    has_more = len(entries) > limit

    return {
        "entries": [_entry_to_dict(e) for e in entries[:limit]],
        "limit": limit,
        "offset": offset,
        "has_more": has_more,
    }


async def encourage(db: AsyncSession, entry_id: int) -> int:
    """Atomically bump the encouragement counter. Returns the new count."""
    result = await db.execute(
        update(RedemptionWallEntry)
        .where(
            RedemptionWallEntry.id == entry_id,
            RedemptionWallEntry.is_visible.is_(True),
        )
        .values(encouragement_count=RedemptionWallEntry.encouragement_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Wall entry {entry_id} not found")

    count = await db.execute(
        select(RedemptionWallEntry.encouragement_count).where(RedemptionWallEntry.id == entry_id)
    )
    return count.scalar_one()
