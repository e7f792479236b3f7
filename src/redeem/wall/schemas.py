"""Pydantic schemas for the redemption wall."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class WallEntryResponse(BaseModel):
    id: str
    display_name: str
    action_title: str
    action_category: str
    hours: float
    media_type: str
    media_url: str
    thumbnail_url: str | None = None
    user_reflection: str | None = None
    encouragement_count: int
    comment_count: int
    created_at: datetime


class WallResponse(BaseModel):
    entries: list[WallEntryResponse]
    limit: int
    offset: int
    has_more: bool


class EncourageResponse(BaseModel):
    success: bool = True
    encouragement_count: int
