"""Pydantic schemas for service stats."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class BreakdownItem(BaseModel):
    count: int
    hours: float


class RecentAction(BaseModel):
    commitment_id: str
    title: str
    category: str
    hours: float
    completed_at: datetime | None = None


class ServiceStatsResponse(BaseModel):
    success: bool = True
    user_id: str
    total_service_hours: float
    total_money_donated: int
    total_actions_completed: int
    redemption_streak: int
    longest_redemption_streak: int
    last_redemption_at: datetime | None = None
    by_category: dict[str, BreakdownItem] = {}
    by_month: dict[str, BreakdownItem] = {}
    recent_actions: list[RecentAction] = []
