"""Pydantic schemas for the action catalog and charity directory."""

from __future__ import annotations

from pydantic import BaseModel

from redeem.db.enums import ActionCategory, ActionDifficulty


class ActionResponse(BaseModel):
    id: str
    title: str
    description: str
    category: ActionCategory
    difficulty: ActionDifficulty
    estimated_hours: float
    proof_instructions: str
    requires_location: bool


class ActionListResponse(BaseModel):
    actions: list[ActionResponse]
    total: int


class CharityResponse(BaseModel):
    id: str
    name: str
    description: str | None = None
    category: str
    website: str
    is_verified: bool
    accepts_transfers: bool
    total_donations_received: int
    total_commitments_count: int


class CharityListResponse(BaseModel):
    charities: list[CharityResponse]
    total: int
