"""Commitment Engine: owns the lifecycle state machine.

Every mutating operation runs as one transaction (``atomic``): the
commitment row is loaded with a row lock and its version counter makes a
concurrent writer fail with ConflictError instead of overwriting. Outbox
notifications are written inside the same transaction and pushed after
commit; a failed push never undoes the transition.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from redeem.catalog.service import find_action_by_id, find_active_by_id, get_active_charity
from redeem.commitments import proof_store, rules
from redeem.commitments.state_machine import validate_transition
from redeem.config import get_settings
from redeem.db.enums import CommitmentStatus, CommitmentType, ProofMediaType, RejectionReason
from redeem.db.locking import atomic, load_commitment
from redeem.db.models import Action, ActionProof, CharityDonation, Commitment, Notification, User
from redeem.errors import AuthorizationError, ConflictError, DependencyError, NotFoundError, ValidationError
from redeem.notifications.service import deliver, notify
from redeem.payments.gateway import BasePaymentGateway
from redeem.payments.service import charge_for_failure
from redeem.stats.service import on_action_completed, on_overdue
from redeem.wall.service import publish_if_eligible

logger = structlog.get_logger()

S = CommitmentStatus
FINANCIAL_TYPES = frozenset({CommitmentType.FINANCIAL, CommitmentType.HYBRID})
PROOF_OPEN_STATES = frozenset({S.ACTION_PENDING, S.ACTION_OVERDUE})


@dataclass
class RelapseReport:
    commitment: Commitment
    relapse_date_adjusted: bool = False
    donation: CharityDonation | None = None


@dataclass
class ProofSubmission:
    commitment: Commitment
    proof: ActionProof
    verification_required: bool
    auto_approve_at: datetime | None


@dataclass
class VerificationOutcome:
    commitment: Commitment
    proof: ActionProof
    approved: bool
    hours_credited: Decimal | None = None
    hours_remaining: float | None = None
    wall_entry_id: int | None = None


@dataclass
class DeadlineCheck:
    commitment_id: int
    status: CommitmentStatus
    deadline_passed: bool
    action_deadline: datetime | None
    now: datetime
    hours_overdue: float
    options: list[dict[str, str]] = field(default_factory=list)


@dataclass
class CommitmentView:
    commitment: Commitment
    action: Action | None
    live_proof: ActionProof | None


def _now(now: datetime | None) -> datetime:
    return rules.ensure_aware(now) if now is not None else datetime.now(timezone.utc)


async def _load_for_actor(
    db: AsyncSession,
    commitment_id: int,
    actor_id: int,
    *,
    allow_partner: bool = False,
    for_update: bool = True,
) -> Commitment:
    """Load a commitment the actor may act on.

    A missing or tombstoned commitment fails exactly like one owned by
    someone else, so callers cannot tell which ids exist.
    """
    try:
        commitment = await load_commitment(db, commitment_id, for_update=for_update)
    except NotFoundError:
        raise AuthorizationError() from None
    allowed = {commitment.user_id}
    if allow_partner and commitment.partner_id is not None:
        allowed.add(commitment.partner_id)
    if actor_id not in allowed:
        raise AuthorizationError()
    return commitment


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


async def create_commitment(
    db: AsyncSession,
    user_id: int,
    *,
    commitment_type: CommitmentType | str,
    target_date: datetime,
    action_id: int | None = None,
    custom_action_description: str | None = None,
    partner_id: int | None = None,
    require_partner_verification: bool = False,
    allow_public_share: bool = False,
    financial_amount: int | None = None,
    charity_id: int | None = None,
    redis: object | None = None,
    now: datetime | None = None,
) -> Commitment:
    """Validate and persist a new ACTIVE commitment, then notify the partner."""
    settings = get_settings()
    now = _now(now)

    try:
        commitment_type = CommitmentType(commitment_type)
    except ValueError:
        raise ValidationError(f"Unknown commitment type: {commitment_type}") from None

    target_date = rules.validate_target_date(
        target_date, now, settings.target_date_min_days, settings.target_date_max_days,
    )

    custom = (custom_action_description or "").strip() or None
    if (action_id is None) == (custom is None):
        raise ValidationError("Provide exactly one of action_id or custom_action_description")
    if custom is not None and partner_id is None:
        raise ValidationError("Custom actions require an accountability partner")
    if partner_id is not None and partner_id == user_id:
        raise ValidationError("You cannot be your own accountability partner")
    if require_partner_verification and partner_id is None:
        raise ValidationError("Partner verification requires an accountability partner")

    if commitment_type in FINANCIAL_TYPES:
        if charity_id is None:
            raise ValidationError("Financial commitments require a charity")
        if financial_amount is None:
            raise ValidationError("Financial commitments require an amount")
        if not settings.min_financial_amount <= financial_amount <= settings.max_financial_amount:
            raise ValidationError(
                f"Financial amount must be between {settings.min_financial_amount} "
                f"and {settings.max_financial_amount} (minor units)"
            )
    elif financial_amount is not None or charity_id is not None:
        raise ValidationError("Only FINANCIAL or HYBRID commitments take an amount and charity")

    queued: list[Notification] = []
    async with atomic(db):
        if action_id is not None and await find_active_by_id(db, action_id) is None:
            raise NotFoundError(f"Action {action_id} not found")
        if partner_id is not None:
            partner = await db.get(User, partner_id)
            if partner is None or partner.is_banned:
                raise NotFoundError(f"Partner {partner_id} not found")
        if charity_id is not None:
            await get_active_charity(db, charity_id)

        commitment = Commitment(
            user_id=user_id,
            commitment_type=commitment_type,
            action_id=action_id,
            custom_action_description=custom,
            target_date=target_date,
            partner_id=partner_id,
            require_partner_verification=require_partner_verification,
            allow_public_share=allow_public_share,
            status=S.ACTIVE,
            financial_amount=financial_amount,
            charity_id=charity_id,
            created_at=now,
            updated_at=now,
        )
        db.add(commitment)
        await db.flush()

        if partner_id is not None:
            queued.append(await notify(
                db, partner_id, "partner_selected",
                {"commitment_id": commitment.id, "user_id": user_id},
                now=now,
            ))

    logger.info(
        "commitment_created",
        commitment_id=commitment.id,
        user_id=user_id,
        commitment_type=commitment_type.value,
        partner_id=partner_id,
    )
    await deliver(db, redis, queued)
    return commitment


# ---------------------------------------------------------------------------
# Relapse
# ---------------------------------------------------------------------------


async def report_relapse(
    db: AsyncSession,
    commitment_id: int,
    user_id: int,
    relapse_date: datetime | None = None,
    *,
    gateway: BasePaymentGateway | None = None,
    redis: object | None = None,
    now: datetime | None = None,
) -> RelapseReport:
    """Activate a commitment: ACTIVE -> ACTION_PENDING with a 48h deadline.

    For FINANCIAL/HYBRID the payment intent is created inside the same
    transaction; a gateway failure aborts the whole report.
    """
    settings = get_settings()
    now = _now(now)

    queued: list[Notification] = []
    async with atomic(db):
        commitment = await _load_for_actor(db, commitment_id, user_id)
        if commitment.relapse_reported_at is not None:
            raise ConflictError("Relapse already reported for this commitment")
        if commitment.status != S.ACTIVE:
            raise ConflictError(f"Cannot report relapse: commitment is {commitment.status.value}")
        validate_transition(commitment.status, S.ACTION_PENDING)

        relapse_at, adjusted = rules.resolve_relapse_date(
            relapse_date,
            now,
            commitment.created_at,
            settings.relapse_max_backdate_hours,
            settings.clock_skew_seconds,
        )
        if adjusted:
            logger.warning(
                "relapse_date_clamped",
                commitment_id=commitment_id,
                requested=relapse_date.isoformat() if relapse_date else None,
                recorded=relapse_at.isoformat(),
            )

        commitment.status = S.ACTION_PENDING
        commitment.relapse_reported_at = relapse_at
        commitment.action_deadline = rules.compute_deadline(relapse_at, settings.action_deadline_hours)
        commitment.updated_at = now
        report = RelapseReport(commitment=commitment, relapse_date_adjusted=adjusted)

        if commitment.commitment_type in FINANCIAL_TYPES:
            if gateway is None:
                raise DependencyError("Payment gateway is not configured")
            report.donation = await charge_for_failure(
                db,
                commitment,
                commitment.financial_amount or 0,
                commitment.charity_id,  # type: ignore[arg-type]
                gateway=gateway,
                currency=settings.payment_currency,
                now=now,
            )

        payload: dict[str, Any] = {
            "commitment_id": commitment.id,
            "action_deadline": commitment.action_deadline.isoformat(),
        }
        queued.append(await notify(db, commitment.user_id, "relapse_reported", payload, now=now))
        if commitment.partner_id is not None:
            queued.append(await notify(db, commitment.partner_id, "partner_relapse_reported", payload, now=now))

    logger.info(
        "relapse_reported",
        commitment_id=commitment_id,
        user_id=user_id,
        action_deadline=report.commitment.action_deadline.isoformat(),
        adjusted=report.relapse_date_adjusted,
        donation_id=report.donation.id if report.donation else None,
    )
    await deliver(db, redis, queued)
    return report


# ---------------------------------------------------------------------------
# Proof submission and verification
# ---------------------------------------------------------------------------


async def submit_proof(
    db: AsyncSession,
    commitment_id: int,
    user_id: int,
    *,
    media_type: ProofMediaType | str,
    media_url: str,
    thumbnail_url: str | None = None,
    user_notes: str | None = None,
    latitude: float | None = None,
    longitude: float | None = None,
    location_address: str | None = None,
    captured_at: datetime | None = None,
    redis: object | None = None,
    now: datetime | None = None,
) -> ProofSubmission:
    """Record new evidence and move the commitment to ACTION_PROOF_SUBMITTED."""
    settings = get_settings()
    now = _now(now)

    try:
        media_type = ProofMediaType(media_type)
    except ValueError:
        raise ValidationError(f"Unknown media type: {media_type}") from None
    if not media_url or not media_url.strip():
        raise ValidationError("A media reference is required")
    if (latitude is None) != (longitude is None):
        raise ValidationError("Latitude and longitude must be given together")
    if latitude is not None and not -90 <= latitude <= 90:
        raise ValidationError("Latitude must be between -90 and 90")
    if longitude is not None and not -180 <= longitude <= 180:
        raise ValidationError("Longitude must be between -180 and 180")

    queued: list[Notification] = []
    async with atomic(db):
        commitment = await _load_for_actor(db, commitment_id, user_id)
        if commitment.commitment_type == CommitmentType.FINANCIAL:
            raise ConflictError("Financial commitments have no proof step")
        if commitment.status not in PROOF_OPEN_STATES:
            raise ConflictError(f"Cannot submit proof: commitment is {commitment.status.value}")
        validate_transition(commitment.status, S.ACTION_PROOF_SUBMITTED)

        late = rules.is_late(now, commitment.action_deadline)
        captured, backdated = rules.clamp_captured_at(captured_at, now, commitment.relapse_reported_at)

        proof = await proof_store.supersede_and_create(
            db,
            commitment.id,
            user_id,
            media_type,
            media_url.strip(),
            captured,
            now,
            thumbnail_url=thumbnail_url,
            user_notes=user_notes,
            latitude=latitude,
            longitude=longitude,
            location_address=location_address,
            is_late_submission=late,
            is_backdated=backdated,
        )

        commitment.status = S.ACTION_PROOF_SUBMITTED
        commitment.updated_at = now

        verification_required = commitment.require_partner_verification
        approve_at = None if verification_required else rules.auto_approve_at(now, settings.auto_approve_after_hours)

        if commitment.partner_id is not None:
            queued.append(await notify(
                db, commitment.partner_id, "proof_verification_needed",
                {
                    "commitment_id": commitment.id,
                    "proof_id": proof.id,
                    "is_late_submission": late,
                    "is_backdated": backdated,
                    "auto_approve_at": approve_at.isoformat() if approve_at else None,
                },
                now=now,
            ))

    logger.info(
        "proof_submitted",
        commitment_id=commitment_id,
        proof_id=proof.id,
        is_late=late,
        is_backdated=backdated,
        verification_required=verification_required,
    )
    await deliver(db, redis, queued)
    return ProofSubmission(
        commitment=commitment,
        proof=proof,
        verification_required=verification_required,
        auto_approve_at=approve_at,
    )


def _check_verifier(commitment: Commitment, verifier_id: int, auto_approval: bool) -> None:
    if auto_approval:
        # The system approves on the owner's behalf only when no partner sign-off is required
        if verifier_id != commitment.user_id or commitment.require_partner_verification:
            raise AuthorizationError()
        return
    if commitment.partner_id is None or verifier_id != commitment.partner_id:
        raise AuthorizationError()


async def verify_proof(
    db: AsyncSession,
    commitment_id: int,
    verifier_id: int,
    proof_id: int,
    approved: bool,
    *,
    rejection_reason: RejectionReason | str | None = None,
    rejection_notes: str | None = None,
    auto_approval: bool = False,
    redis: object | None = None,
    now: datetime | None = None,
) -> VerificationOutcome:
    """Approve or reject the live proof.

    Approval completes the commitment and is the only path that touches
    service stats and the redemption wall. Rejection needs a reason and
    returns the commitment to ACTION_PENDING with its original deadline.
    """
    settings = get_settings()
    now = _now(now)

    if not approved:
        if rejection_reason is None:
            raise ValidationError("A rejection reason is required")
        try:
            rejection_reason = RejectionReason(rejection_reason)
        except ValueError:
            raise ValidationError(f"Unknown rejection reason: {rejection_reason}") from None

    queued: list[Notification] = []
    async with atomic(db):
        try:
            commitment = await load_commitment(db, commitment_id, for_update=True)
        except NotFoundError:
            raise AuthorizationError() from None
        _check_verifier(commitment, verifier_id, auto_approval)
        if commitment.status != S.ACTION_PROOF_SUBMITTED:
            raise ConflictError(f"Cannot verify proof: commitment is {commitment.status.value}")

        proof = await proof_store.find_by_id(db, proof_id, for_update=True)
        if proof is None or proof.commitment_id != commitment.id:
            raise NotFoundError(f"Proof {proof_id} not found for this commitment")
        if proof.is_superseded:
            raise ConflictError("Proof has been superseded by a newer submission")
        if proof.partner_approved is not None:
            raise ConflictError("Proof has already been verified")

        proof.verified_at = now
        proof.verified_by = verifier_id
        proof.updated_at = now
        outcome = VerificationOutcome(commitment=commitment, proof=proof, approved=approved)

        if approved:
            validate_transition(commitment.status, S.ACTION_COMPLETED)
            action = await find_action_by_id(db, commitment.action_id)
            hours = (
                Decimal(action.estimated_hours) if action is not None
                else Decimal(str(settings.default_custom_action_hours))
            )

            proof.partner_approved = True
            commitment.status = S.ACTION_COMPLETED
            commitment.action_completed_at = now
            commitment.updated_at = now

            await on_action_completed(
                db,
                commitment.user_id,
                hours,
                is_hybrid_financial=commitment.commitment_type == CommitmentType.HYBRID,
                amount=commitment.financial_amount,
                now=now,
            )
            entry = await publish_if_eligible(db, commitment, action, proof, hours, now)
            outcome.hours_credited = hours
            outcome.wall_entry_id = entry.id if entry is not None else None

            queued.append(await notify(
                db, commitment.user_id, "proof_approved",
                {"commitment_id": commitment.id, "proof_id": proof.id, "hours": float(hours)},
                now=now,
            ))
        else:
            validate_transition(commitment.status, S.ACTION_PENDING)
            proof.partner_approved = False
            proof.rejection_reason = rejection_reason  # type: ignore[assignment]
            proof.rejection_notes = rejection_notes
            commitment.status = S.ACTION_PENDING
            commitment.updated_at = now
            outcome.hours_remaining = rules.hours_remaining(commitment.action_deadline, now)

            queued.append(await notify(
                db, commitment.user_id, "proof_rejected",
                {
                    "commitment_id": commitment.id,
                    "proof_id": proof.id,
                    "reason": proof.rejection_reason.value,
                    "notes": rejection_notes,
                    "hours_remaining": outcome.hours_remaining,
                },
                now=now,
            ))

    logger.info(
        "proof_verified",
        commitment_id=commitment_id,
        proof_id=proof_id,
        approved=approved,
        auto_approval=auto_approval,
        verifier_id=verifier_id,
    )
    await deliver(db, redis, queued)
    return outcome


# ---------------------------------------------------------------------------
# Overdue, failure, deletion
# ---------------------------------------------------------------------------


async def mark_overdue(
    db: AsyncSession,
    commitment_id: int,
    *,
    redis: object | None = None,
    now: datetime | None = None,
) -> bool:
    """ACTION_PENDING past its deadline -> ACTION_OVERDUE, streak reset.

    Re-checks the condition under the row lock and returns False when there
    is nothing to do, so repeated sweeps are harmless.
    """
    now = _now(now)

    queued: list[Notification] = []
    async with atomic(db):
        commitment = await load_commitment(db, commitment_id, for_update=True)
        if (
            commitment.status != S.ACTION_PENDING
            or commitment.action_deadline is None
            or commitment.action_deadline >= now
        ):
            return False
        validate_transition(commitment.status, S.ACTION_OVERDUE)

        commitment.status = S.ACTION_OVERDUE
        commitment.updated_at = now
        await on_overdue(db, commitment.user_id, now)
        queued.append(await notify(
            db, commitment.user_id, "action_overdue",
            {
                "commitment_id": commitment.id,
                "action_deadline": commitment.action_deadline.isoformat(),
            },
            now=now,
        ))

    logger.info("commitment_overdue", commitment_id=commitment_id, user_id=commitment.user_id)
    await deliver(db, redis, queued)
    return True


async def check_deadline(
    db: AsyncSession,
    commitment_id: int,
    user_id: int,
    now: datetime | None = None,
) -> DeadlineCheck:
    """Read-only view of where the commitment stands against its deadline."""
    now = _now(now)
    commitment = await _load_for_actor(db, commitment_id, user_id, for_update=False)

    deadline = commitment.action_deadline
    passed = deadline is not None and now > deadline
    check = DeadlineCheck(
        commitment_id=commitment.id,
        status=commitment.status,
        deadline_passed=passed,
        action_deadline=deadline,
        now=now,
        hours_overdue=rules.hours_overdue(deadline, now),
    )
    if passed and commitment.status in PROOF_OPEN_STATES:
        if commitment.commitment_type != CommitmentType.FINANCIAL:
            check.options.append({
                "type": "late_completion",
                "description": "Submit proof now; it will be marked as a late submission",
            })
        check.options.append({
            "type": "accept_failure",
            "description": "Close this commitment as failed",
        })
    return check


async def accept_failure(
    db: AsyncSession,
    commitment_id: int,
    user_id: int,
    now: datetime | None = None,
) -> Commitment:
    """Owner closes an overdue commitment as FAILED (terminal)."""
    now = _now(now)
    async with atomic(db):
        commitment = await _load_for_actor(db, commitment_id, user_id)
        if commitment.status != S.ACTION_OVERDUE:
            raise ConflictError(f"Only overdue commitments can be closed as failed (is {commitment.status.value})")
        validate_transition(commitment.status, S.FAILED)
        commitment.status = S.FAILED
        commitment.updated_at = now

    logger.info("commitment_failed", commitment_id=commitment_id, user_id=user_id)
    return commitment


async def delete_commitment(
    db: AsyncSession,
    commitment_id: int,
    user_id: int,
    now: datetime | None = None,
) -> None:
    """Tombstone an ACTIVE commitment. Once a relapse is reported it stays."""
    now = _now(now)
    async with atomic(db):
        commitment = await _load_for_actor(db, commitment_id, user_id)
        if commitment.status != S.ACTIVE:
            raise ConflictError("Only commitments that have not been activated can be deleted")
        commitment.deleted_at = now
        commitment.updated_at = now

    logger.info("commitment_deleted", commitment_id=commitment_id, user_id=user_id)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def get_commitment(db: AsyncSession, commitment_id: int, actor_id: int) -> CommitmentView:
    """Commitment with its action and live proof; owner or partner only."""
    commitment = await _load_for_actor(db, commitment_id, actor_id, allow_partner=True, for_update=False)
    action = await find_action_by_id(db, commitment.action_id)
    live = await proof_store.find_live(db, commitment.id)
    return CommitmentView(commitment=commitment, action=action, live_proof=live)


async def list_user_commitments(
    db: AsyncSession,
    user_id: int,
    status: CommitmentStatus | None = None,
) -> list[Commitment]:
    query = select(Commitment).where(
        Commitment.user_id == user_id,
        Commitment.deleted_at.is_(None),
    )
    if status is not None:
        query = query.where(Commitment.status == status)
    result = await db.execute(query.order_by(Commitment.created_at.desc(), Commitment.id.desc()))
    return list(result.scalars().all())


async def list_partner_verification_requests(db: AsyncSession, partner_id: int) -> list[CommitmentView]:
    """Commitments awaiting this partner's review, oldest submission first."""
    result = await db.execute(
        select(Commitment, ActionProof, Action)
        .join(
            ActionProof,
            (ActionProof.commitment_id == Commitment.id) & ActionProof.is_superseded.is_(False),
        )
        .outerjoin(Action, Action.id == Commitment.action_id)
        .where(
            Commitment.partner_id == partner_id,
            Commitment.status == S.ACTION_PROOF_SUBMITTED,
            Commitment.deleted_at.is_(None),
        )
        .order_by(ActionProof.submitted_at)
    )
    return [
        CommitmentView(commitment=commitment, action=action, live_proof=proof)
        for commitment, proof, action in result.all()
    ]
