"""Proof Store: append-only submission history with one live proof per commitment.

Callers hold the commitment row lock; both steps of ``supersede_and_create``
run inside the caller's transaction and commit together. The partial unique
index ``uq_action_proofs_live`` backs this at the database level.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from redeem.db.enums import ProofMediaType
from redeem.db.models import ActionProof


async def supersede_and_create(
    db: AsyncSession,
    commitment_id: int,
    user_id: int,
    media_type: ProofMediaType,
    media_url: str,
    captured_at: datetime,
    submitted_at: datetime,
    *,
    thumbnail_url: str | None = None,
    user_notes: str | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
    location_address: str | None = None,
    is_late_submission: bool = False,
    is_backdated: bool = False,
) -> ActionProof:
    """Mark every prior proof superseded, then insert the new live one."""
    await db.execute(
        update(ActionProof)
        .where(
            ActionProof.commitment_id == commitment_id,
            ActionProof.is_superseded.is_(False),
        )
        .values(is_superseded=True, updated_at=submitted_at)
        .execution_options(synchronize_session="fetch")
    )

    proof = ActionProof(
        commitment_id=commitment_id,
        user_id=user_id,
        media_type=media_type,
        media_url=media_url,
        thumbnail_url=thumbnail_url,
        user_notes=user_notes,
        latitude=latitude,
        longitude=longitude,
        location_address=location_address,
        captured_at=captured_at,
        submitted_at=submitted_at,
        is_late_submission=is_late_submission,
        is_backdated=is_backdated,
        is_superseded=False,
        created_at=submitted_at,
        updated_at=submitted_at,
    )
    db.add(proof)
    await db.flush()
    return proof


async def find_live(db: AsyncSession, commitment_id: int, *, for_update: bool = False) -> ActionProof | None:
    """Get the one non-superseded proof for a commitment, if any."""
    stmt = select(ActionProof).where(
        ActionProof.commitment_id == commitment_id,
        ActionProof.is_superseded.is_(False),
    )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def find_by_id(db: AsyncSession, proof_id: int, *, for_update: bool = False) -> ActionProof | None:
    stmt = select(ActionProof).where(ActionProof.id == proof_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()

