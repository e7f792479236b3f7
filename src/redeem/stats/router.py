"""Service stats endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from redeem.auth.dependencies import get_current_user
from redeem.config import get_settings
from redeem.database import get_session
from redeem.db.models import User
from redeem.stats.schemas import RecentAction, ServiceStatsResponse
from redeem.stats.service import get_service_stats

router = APIRouter(prefix="/api/v1", tags=["Stats"])


@router.get("/users/{user_id}/service-stats", response_model=ServiceStatsResponse)
async def service_stats_endpoint(
    user_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Redemption totals and breakdowns. Users may only read their own."""
    if user.id != user_id:
        raise HTTPException(status_code=403, detail="You can only view your own service stats")

    stats = await get_service_stats(db, user_id, get_settings().default_custom_action_hours)
    recent = [
        RecentAction(**{**item, "commitment_id": str(item["commitment_id"])})
        for item in stats.pop("recent_actions")
    ]
    stats["user_id"] = str(user_id)
    return ServiceStatsResponse(**stats, recent_actions=recent)
