"""Action Catalog and charity directory (read-only to the engine)."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from redeem.db.enums import ActionCategory, ActionDifficulty
from redeem.db.models import Action, CharityOrganization
from redeem.errors import NotFoundError


async def list_actions(
    db: AsyncSession,
    category: ActionCategory | None = None,
    difficulty: ActionDifficulty | None = None,
) -> list[Action]:
    """Active catalog actions, grouped by category then easiest first."""
    query = select(Action).where(Action.is_active.is_(True))
    if category is not None:
        query = query.where(Action.category == category)
    if difficulty is not None:
        query = query.where(Action.difficulty == difficulty)
    query = query.order_by(Action.category, Action.estimated_hours, Action.title)
    result = await db.execute(query)
    return list(result.scalars().all())


async def find_active_by_id(db: AsyncSession, action_id: int) -> Action | None:
    result = await db.execute(
        select(Action).where(Action.id == action_id, Action.is_active.is_(True))
    )
    return result.scalar_one_or_none()


async def get_action(db: AsyncSession, action_id: int) -> Action:
    """Active action by id. Raises NotFoundError."""
    action = await find_active_by_id(db, action_id)
    if action is None:
        raise NotFoundError(f"Action {action_id} not found")
    return action


async def find_action_by_id(db: AsyncSession, action_id: int | None) -> Action | None:
    """Any action by id, active or not (completed commitments keep their action)."""
    if action_id is None:
        return None
    result = await db.execute(select(Action).where(Action.id == action_id))
    return result.scalar_one_or_none()


async def list_charities(db: AsyncSession, category: str | None = None) -> list[CharityOrganization]:
    query = select(CharityOrganization).where(
        CharityOrganization.is_active.is_(True),
        CharityOrganization.deleted_at.is_(None),
    )
    if category is not None:
        query = query.where(CharityOrganization.category == category)
    result = await db.execute(query.order_by(CharityOrganization.name))
    return list(result.scalars().all())


async def get_active_charity(db: AsyncSession, charity_id: int) -> CharityOrganization:
    """Active, non-deleted charity by id. Raises NotFoundError."""
    result = await db.execute(
        select(CharityOrganization).where(
            CharityOrganization.id == charity_id,
            CharityOrganization.is_active.is_(True),
            CharityOrganization.deleted_at.is_(None),
        )
    )
    charity = result.scalar_one_or_none()
    if charity is None:
        raise NotFoundError(f"Charity {charity_id} not found")
    return charity
