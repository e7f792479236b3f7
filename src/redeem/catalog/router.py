"""Action catalog and charity directory endpoints (public, read-only)."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from redeem.catalog.schemas import ActionListResponse, ActionResponse, CharityListResponse, CharityResponse
from redeem.catalog.service import get_action, get_active_charity, list_actions, list_charities
from redeem.database import get_session
from redeem.db.enums import ActionCategory, ActionDifficulty
from redeem.db.models import Action, CharityOrganization

router = APIRouter(prefix="/api/v1", tags=["Catalog"])


def build_action_response(action: Action) -> ActionResponse:
    return ActionResponse(
        id=str(action.id),
        title=action.title,
        description=action.description,
        category=action.category,
        difficulty=action.difficulty,
        estimated_hours=float(action.estimated_hours),
        proof_instructions=action.proof_instructions,
        requires_location=action.requires_location,
    )


def _build_charity_response(charity: CharityOrganization) -> CharityResponse:
    return CharityResponse(
        id=str(charity.id),
        name=charity.name,
        description=charity.description,
        category=charity.category,
        website=charity.website,
        is_verified=charity.is_verified,
        accepts_transfers=bool(charity.payout_account_id),
        total_donations_received=charity.total_donations_received,
        total_commitments_count=charity.total_commitments_count,
    )


@router.get("/actions", response_model=ActionListResponse)
async def list_actions_endpoint(
    category: ActionCategory | None = Query(None),
    difficulty: ActionDifficulty | None = Query(None),
    db: AsyncSession = Depends(get_session),
):
    """List active catalog actions, optionally filtered."""
    actions = await list_actions(db, category, difficulty)
    return ActionListResponse(actions=[build_action_response(a) for a in actions], total=len(actions))


@router.get("/actions/{action_id}", response_model=ActionResponse)
async def get_action_endpoint(
    action_id: int,
    db: AsyncSession = Depends(get_session),
):
    return build_action_response(await get_action(db, action_id))


@router.get("/charities", response_model=CharityListResponse)
async def list_charities_endpoint(
    category: str | None = Query(None, max_length=32),
    db: AsyncSession = Depends(get_session),
):
    charities = await list_charities(db, category)
    return CharityListResponse(
        charities=[_build_charity_response(c) for c in charities],
        total=len(charities),
    )


@router.get("/charities/{charity_id}", response_model=CharityResponse)
async def get_charity_endpoint(
    charity_id: int,
    db: AsyncSession = Depends(get_session),
):
    return _build_charity_response(await get_active_charity(db, charity_id))
