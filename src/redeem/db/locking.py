"""Row locking and transaction helpers shared by the engine and payments."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from redeem.db.models import Commitment
from redeem.errors import ConflictError, NotFoundError


async def load_commitment(
    db: AsyncSession,
    commitment_id: int,
    *,
    for_update: bool = False,
) -> Commitment:
    """Load a live (not soft-deleted) commitment, optionally row-locked.

    A locked load refreshes any copy already in the identity map so the
    version counter reflects the row as it is now.
    """
    stmt = select(Commitment).where(
        Commitment.id == commitment_id,
        Commitment.deleted_at.is_(None),
    )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    commitment = result.scalar_one_or_none()
    if commitment is None:
        raise NotFoundError(f"Commitment {commitment_id} not found")
    return commitment


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncIterator[None]:
    """Run the block as one transaction: commit on success, roll back on any error.

    A lost optimistic version check (StaleDataError, raised at flush or
    commit) surfaces as ConflictError.
    """
    try:
        yield
        await db.commit()
    except StaleDataError as exc:
        await db.rollback()
        raise ConflictError("Commitment was modified concurrently; retry the operation") from exc
    except BaseException:
        await db.rollback()
        raise
