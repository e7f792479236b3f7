"""Notifier: transactional outbox plus Redis pub/sub delivery.

``notify`` only writes a row inside the caller's transaction, so a
notification exists if and only if the transition that produced it
committed. Delivery happens after commit; rows that could not be pushed
stay undelivered and are retried by the ``deliver_notifications`` job.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from redeem.db.models import Notification

logger = logging.getLogger(__name__)

MAX_DELIVERY_ATTEMPTS = 10

# kind -> (type, title)
NOTIFICATION_KINDS: dict[str, tuple[str, str]] = {
    "partner_selected": ("partner", "You've been chosen as an accountability partner"),
    "relapse_reported": ("commitment", "Your commitment is now active"),
    "partner_relapse_reported": ("partner", "Your partner reported a relapse"),
    "proof_verification_needed": ("partner", "Proof is waiting for your review"),
    "proof_approved": ("commitment", "Your proof was approved"),
    "proof_rejected": ("commitment", "Your proof needs another look"),
    "action_overdue": ("commitment", "Your action deadline has passed"),
    "donation_succeeded": ("payment", "Your donation went through"),
    "donation_failed": ("payment", "Your donation could not be processed"),
    "transfer_complete": ("payment", "Your donation reached the charity"),
}


async def notify(
    db: AsyncSession,
    user_id: int,
    kind: str,
    payload: dict[str, Any] | None = None,
    *,
    description: str | None = None,
    now: datetime | None = None,
) -> Notification:
    """Queue a notification in the outbox. Does not commit."""
    if kind not in NOTIFICATION_KINDS:
        raise ValueError(f"Unknown notification kind: {kind}")
    if now is None:
        now = datetime.now(timezone.utc)

    type_, title = NOTIFICATION_KINDS[kind]
    notification = Notification(
        user_id=user_id,
        type=type_,
        subtype=kind,
        title=title,
        description=description,
        payload=payload or {},
        created_at=now,
    )
    db.add(notification)
    await db.flush()
    return notification


async def push_notification_to_user(redis: object | None, notification: Notification) -> bool:
    """Publish a notification to ws:user:{user_id}. Returns True if published."""
    if redis is None:
        return False

    ws_payload = {
        "event": "notification",
        "data": {
            "id": str(notification.id),
            "type": notification.type,
            "subtype": notification.subtype,
            "title": notification.title,
            "description": notification.description,
            "payload": notification.payload,
            "timestamp": notification.created_at.isoformat() if notification.created_at else None,
            "read": False,
        },
    }
    try:
        await redis.publish(  # type: ignore[attr-defined]
            f"ws:user:{notification.user_id}",
            json.dumps(ws_payload, default=str),
        )
    except Exception:
        logger.warning(
            "Failed to push notification %s via ws:user:%s",
            notification.id,
            notification.user_id,
            exc_info=True,
        )
        return False
    return True


async def _push_and_mark(
    redis: object | None,
    notifications: Iterable[Notification],
    now: datetime,
) -> int:
    delivered = 0
    for notification in notifications:
        notification.delivery_attempts += 1
        if await push_notification_to_user(redis, notification):
            notification.delivered_at = now
            delivered += 1
    return delivered


async def deliver(
    db: AsyncSession,
    redis: object | None,
    notifications: list[Notification],
) -> int:
    """Best-effort push of freshly committed notifications.

    Never raises: the transition that queued them has already committed.
    """
    if redis is None or not notifications:
        return 0

    now = datetime.now(timezone.utc)
    try:
        delivered = await _push_and_mark(redis, notifications, now)
        await db.commit()
    except Exception:
        logger.warning("Failed to record notification delivery", exc_info=True)
        await db.rollback()
        return 0
    return delivered


async def dispatch_pending(
    db: AsyncSession,
    redis: object | None,
    limit: int = 200,
    now: datetime | None = None,
) -> int:
    """Retry undelivered outbox rows, oldest first. Returns how many were delivered."""
    if redis is None:
        return 0
    if now is None:
        now = datetime.now(timezone.utc)

    result = await db.execute(
        select(Notification)
        .where(
            Notification.delivered_at.is_(None),
            Notification.delivery_attempts < MAX_DELIVERY_ATTEMPTS,
        )
        .order_by(Notification.id)
        .limit(limit)
    )
    pending = list(result.scalars().all())
    if not pending:
        return 0

    delivered = await _push_and_mark(redis, pending, now)
    await db.commit()

    logger.info("Delivered %d/%d pending notifications", delivered, len(pending))
    return delivered

