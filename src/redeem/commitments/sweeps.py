"""Periodic sweeps over persisted deadlines.

Both sweeps select candidate ids first, then handle each commitment in its
own transaction. A failure on one commitment is recorded in the report and
the sweep moves on. Every per-commitment step re-checks its condition under
the row lock, so running a sweep twice (or two workers at once) has no
additional effect.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from redeem.commitments import rules
from redeem.commitments.service import mark_overdue, verify_proof
from redeem.config import get_settings
from redeem.db.enums import CommitmentStatus
from redeem.db.models import ActionProof, Commitment

logger = structlog.get_logger()


@dataclass
class SweepReport:
    """Outcome of one sweep run."""

    processed: list[int] = field(default_factory=list)
    failed: list[tuple[int, str]] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "processed": len(self.processed),
            "failed": [{"commitment_id": cid, "error": err} for cid, err in self.failed],
        }


async def sweep_overdue(
    db: AsyncSession,
    redis: object | None = None,
    now: datetime | None = None,
    limit: int = 1000,
) -> SweepReport:
    """Move every ACTION_PENDING commitment past its deadline to ACTION_OVERDUE."""
    if now is None:
        now = datetime.now(timezone.utc)

    result = await db.execute(
        select(Commitment.id)
        .where(
            Commitment.status == CommitmentStatus.ACTION_PENDING,
            Commitment.action_deadline < now,
            Commitment.deleted_at.is_(None),
        )
        .order_by(Commitment.action_deadline)
        .limit(limit)
    )
    candidate_ids = list(result.scalars().all())
    await db.commit()

    report = SweepReport()
    for commitment_id in candidate_ids:
        try:
            if await mark_overdue(db, commitment_id, redis=redis, now=now):
                report.processed.append(commitment_id)
        except Exception as exc:
            logger.exception("overdue_sweep_item_failed", commitment_id=commitment_id)
            report.failed.append((commitment_id, str(exc)))

    logger.info(
        "overdue_sweep_complete",
        candidates=len(candidate_ids),
        processed=len(report.processed),
        failed=len(report.failed),
    )
    return report


async def sweep_auto_approve(
    db: AsyncSession,
    redis: object | None = None,
    now: datetime | None = None,
    limit: int = 1000,
) -> SweepReport:
    """Approve live proofs left unverified for the auto-approval window.

    Only commitments without required partner verification qualify, and
    only their current live proof is considered.
    """
    settings = get_settings()
    if now is None:
        now = datetime.now(timezone.utc)
    cutoff = rules.auto_approve_cutoff(now, settings.auto_approve_after_hours)

    result = await db.execute(
        select(Commitment.id, Commitment.user_id, ActionProof.id)
        .join(ActionProof, ActionProof.commitment_id == Commitment.id)
        .where(
            Commitment.status == CommitmentStatus.ACTION_PROOF_SUBMITTED,
            Commitment.require_partner_verification.is_(False),
            Commitment.deleted_at.is_(None),
            ActionProof.is_superseded.is_(False),
            ActionProof.partner_approved.is_(None),
            ActionProof.submitted_at <= cutoff,
        )
        .order_by(ActionProof.submitted_at)
        .limit(limit)
    )
    candidates = list(result.all())
    await db.commit()

    report = SweepReport()
    for commitment_id, user_id, proof_id in candidates:
        try:
            await verify_proof(
                db,
                commitment_id,
                user_id,
                proof_id,
                True,
                auto_approval=True,
                redis=redis,
                now=now,
            )
            report.processed.append(commitment_id)
        except Exception as exc:
            logger.exception("auto_approve_item_failed", commitment_id=commitment_id, proof_id=proof_id)
            report.failed.append((commitment_id, str(exc)))

    logger.info(
        "auto_approve_sweep_complete",
        candidates=len(candidates),
        processed=len(report.processed),
        failed=len(report.failed),
    )
    return report
