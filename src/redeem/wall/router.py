"""Redemption wall endpoints."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from redeem.auth.dependencies import get_current_user
from redeem.database import get_session
from redeem.db.enums import ActionCategory
from redeem.db.models import User
from redeem.wall.schemas import EncourageResponse, WallEntryResponse, WallResponse
from redeem.wall.service import encourage, get_redemption_wall

router = APIRouter(prefix="/api/v1", tags=["Redemption Wall"])


@router.get("/redemption-wall", response_model=WallResponse)
async def redemption_wall_endpoint(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    category: ActionCategory | None = Query(None),
    sort: Literal["recent", "most_encouraged"] = Query("recent"),
    db: AsyncSession = Depends(get_session),
):
    """Public, anonymized feed of completed redemptions."""
    feed = await get_redemption_wall(db, limit, offset, category, sort)
    entries = [WallEntryResponse(**{**e, "id": str(e["id"])}) for e in feed["entries"]]
    return WallResponse(entries=entries, limit=limit, offset=offset, has_more=feed["has_more"])


@router.post("/redemption-wall/{entry_id}/encourage", response_model=EncourageResponse)
async def encourage_endpoint(
    entry_id: int,
    _user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    count = await encourage(db, entry_id)
    await db.commit()
    return EncourageResponse(encouragement_count=count)
