"""Payment Trigger: penalty charges, webhook resolution, charity transfers.

A Donation moves PENDING -> PROCESSING -> COMPLETED | FAILED, and
COMPLETED -> REFUNDED. Its lifecycle is independent of the commitment's;
the only field it writes back is ``financial_paid_at`` (and COMPLETED for a
pure FINANCIAL commitment still waiting on payment).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from redeem.commitments.state_machine import can_transition
from redeem.db.enums import CommitmentStatus, CommitmentType, DonationStatus
from redeem.db.locking import atomic, load_commitment
from redeem.db.models import CharityDonation, CharityOrganization, Commitment, Notification
from redeem.errors import ConflictError, DependencyError, NotFoundError
from redeem.notifications.service import deliver, notify
from redeem.payments.gateway import BasePaymentGateway

logger = structlog.get_logger()

UNRESOLVED = (DonationStatus.PENDING, DonationStatus.PROCESSING)


async def charge_for_failure(
    db: AsyncSession,
    commitment: Commitment,
    amount: int,
    charity_id: int,
    *,
    gateway: BasePaymentGateway,
    currency: str = "usd",
    now: datetime | None = None,
) -> CharityDonation:
    """Create a payment intent and a PENDING donation. Does not commit.

    Raises DependencyError if the gateway call fails; the caller rolls back.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    metadata = {
        "user_id": str(commitment.user_id),
        "commitment_id": str(commitment.id),
        "charity_id": str(charity_id),
        "type": "commitment_penalty",
    }
    charge = await gateway.create_charge(amount, currency, metadata)

    donation = CharityDonation(
        commitment_id=commitment.id,
        user_id=commitment.user_id,
        charity_id=charity_id,
        amount=amount,
        currency=currency,
        status=DonationStatus.PENDING,
        payment_method=gateway.name,
        gateway_payment_id=charge.ref,
        client_secret=charge.client_secret,
        donation_metadata=metadata,
        created_at=now,
        updated_at=now,
    )
    db.add(donation)
    await db.flush()

    logger.info(
        "charge_created",
        commitment_id=commitment.id,
        donation_id=donation.id,
        amount=amount,
        ref=charge.ref,
    )
    return donation


async def _find_donation_by_ref(db: AsyncSession, ref: str) -> CharityDonation | None:
    result = await db.execute(
        select(CharityDonation)
        .where(CharityDonation.gateway_payment_id == ref)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _get_donation(db: AsyncSession, donation_id: int, *, for_update: bool = True) -> CharityDonation:
    stmt = select(CharityDonation).where(CharityDonation.id == donation_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt.execution_options(populate_existing=True))
    donation = result.scalar_one_or_none()
    if donation is None:
        raise NotFoundError(f"Donation {donation_id} not found")
    return donation


async def _get_charity(db: AsyncSession, charity_id: int, *, for_update: bool = True) -> CharityOrganization:
    stmt = select(CharityOrganization).where(CharityOrganization.id == charity_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt.execution_options(populate_existing=True))
    return result.scalar_one()


async def mark_processing(db: AsyncSession, ref: str, now: datetime | None = None) -> CharityDonation | None:
    """Gateway reports the charge is in flight."""
    if now is None:
        now = datetime.now(timezone.utc)
    async with atomic(db):
        donation = await _find_donation_by_ref(db, ref)
        if donation is not None and donation.status == DonationStatus.PENDING:
            donation.status = DonationStatus.PROCESSING
            donation.updated_at = now
    return donation


async def on_charge_resolved(
    db: AsyncSession,
    ref: str,
    succeeded: bool,
    *,
    gateway: BasePaymentGateway | None = None,
    redis: object | None = None,
    charge_id: str | None = None,
    failure_reason: str | None = None,
    now: datetime | None = None,
) -> CharityDonation | None:
    """Resolve a pending charge. Idempotent: a resolved donation is left as is.

    On success the donation completes, the commitment records
    ``financial_paid_at`` and the charity transfer is attempted after commit.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    queued: list[Notification] = []
    async with atomic(db):
        donation = await _find_donation_by_ref(db, ref)
        if donation is None:
            logger.warning("charge_resolved_unknown_ref", ref=ref)
            return None
        if donation.status not in UNRESOLVED:
            logger.info("charge_already_resolved", ref=ref, status=donation.status.value)
            return donation

        donation.updated_at = now
        if succeeded:
            donation.status = DonationStatus.COMPLETED
            donation.payment_date = now
            donation.gateway_charge_id = charge_id

            commitment = await load_commitment(db, donation.commitment_id, for_update=True)
            commitment.financial_paid_at = now
            commitment.updated_at = now
            if commitment.commitment_type == CommitmentType.FINANCIAL and can_transition(
                commitment.status, CommitmentStatus.COMPLETED
            ):
                commitment.status = CommitmentStatus.COMPLETED

            charity = await _get_charity(db, donation.charity_id)
            charity.total_donations_received += donation.amount
            charity.total_commitments_count += 1
            charity.updated_at = now

            queued.append(await notify(
                db, donation.user_id, "donation_succeeded",
                {"commitment_id": donation.commitment_id, "donation_id": donation.id, "amount": donation.amount},
                now=now,
            ))
        else:
            donation.status = DonationStatus.FAILED
            donation.failure_reason = failure_reason or "Payment failed"
            queued.append(await notify(
                db, donation.user_id, "donation_failed",
                {"commitment_id": donation.commitment_id, "donation_id": donation.id,
                 "reason": donation.failure_reason},
                now=now,
            ))

    logger.info(
        "charge_resolved",
        ref=ref,
        donation_id=donation.id,
        status=donation.status.value,
        commitment_id=donation.commitment_id,
    )
    await deliver(db, redis, queued)

    if succeeded and gateway is not None:
        await transfer_to_charity(db, donation.id, gateway, redis=redis, now=now)
    return donation


async def transfer_to_charity(
    db: AsyncSession,
    donation_id: int,
    gateway: BasePaymentGateway,
    *,
    redis: object | None = None,
    now: datetime | None = None,
) -> bool:
    """Move 100% of a completed donation to the charity's payout account.

    The gateway call runs between two short transactions so no row lock is
    held while it is in flight; the ``transfer-{donation_id}`` idempotency
    key makes a repeated call return the same transfer. Returns True if this
    call recorded a transfer. Failures are logged and left for
    ``retry_pending_transfers``; they never affect the donation's status.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    async with atomic(db):
        donation = await _get_donation(db, donation_id, for_update=False)
        if donation.status != DonationStatus.COMPLETED or donation.transfer_id:
            return False
        charity = await _get_charity(db, donation.charity_id, for_update=False)
        if not charity.payout_account_id:
            logger.warning("charity_missing_payout_account", charity_id=charity.id, donation_id=donation.id)
            return False
        amount, currency, charge_id = donation.amount, donation.currency, donation.gateway_charge_id
        charity_id, charity_name, destination = charity.id, charity.name, charity.payout_account_id
        user_id, commitment_id = donation.user_id, donation.commitment_id

    try:
        transfer_id = await gateway.create_transfer(
            amount,
            currency,
            destination,
            {
                "donation_id": str(donation_id),
                "commitment_id": str(commitment_id),
                "charity_id": str(charity_id),
            },
            source_charge_id=charge_id,
        )
    except DependencyError:
        logger.warning("transfer_failed", donation_id=donation_id, exc_info=True)
        return False

    queued: list[Notification] = []
    async with atomic(db):
        donation = await _get_donation(db, donation_id)
        if donation.transfer_id:
            logger.info("transfer_already_recorded", donation_id=donation_id, transfer_id=donation.transfer_id)
            return False
        donation.transfer_id = transfer_id
        donation.transfer_date = now
        donation.updated_at = now
        queued.append(await notify(
            db, user_id, "transfer_complete",
            {"donation_id": donation_id, "charity_id": charity_id, "charity_name": charity_name},
            now=now,
        ))

    logger.info("transfer_created", donation_id=donation_id, transfer_id=transfer_id)
    await deliver(db, redis, queued)
    return True


async def retry_pending_transfers(
    db: AsyncSession,
    gateway: BasePaymentGateway,
    *,
    redis: object | None = None,
    limit: int = 100,
) -> int:
    """Retry transfers for completed donations that have none yet."""
    result = await db.execute(
        select(CharityDonation.id)
        .where(
            CharityDonation.status == DonationStatus.COMPLETED,
            CharityDonation.transfer_id.is_(None),
        )
        .order_by(CharityDonation.id)
        .limit(limit)
    )
    donation_ids = list(result.scalars().all())
    await db.commit()

    transferred = 0
    for donation_id in donation_ids:
        if await transfer_to_charity(db, donation_id, gateway, redis=redis):
            transferred += 1
    return transferred


async def refund_donation(
    db: AsyncSession,
    donation_id: int,
    gateway: BasePaymentGateway,
    reason: str | None = None,
    now: datetime | None = None,
) -> CharityDonation:
    """Admin refund of a completed donation through the gateway."""
    if now is None:
        now = datetime.now(timezone.utc)

    async with atomic(db):
        donation = await _get_donation(db, donation_id)
        if donation.status != DonationStatus.COMPLETED:
            raise ConflictError(f"Only completed donations can be refunded (status is {donation.status.value})")

        refund_id = await gateway.create_refund(donation.gateway_payment_id, reason)
        donation.status = DonationStatus.REFUNDED
        donation.failure_reason = reason
        donation.donation_metadata = {**(donation.donation_metadata or {}), "refund_id": refund_id}
        donation.updated_at = now

        charity = await _get_charity(db, donation.charity_id)
        charity.total_donations_received = max(0, charity.total_donations_received - donation.amount)
        charity.updated_at = now

    logger.info("donation_refunded", donation_id=donation_id, refund_id=refund_id)
    return donation


async def handle_webhook_event(
    db: AsyncSession,
    event: dict[str, Any],
    gateway: BasePaymentGateway,
    redis: object | None = None,
) -> str:
    """Dispatch an authenticated gateway event. Returns what was done."""
    event_type = event.get("type", "")
    obj = event.get("data", {}).get("object", {})
    ref = obj.get("id")
    if not ref:
        return "ignored"

    if event_type == "payment_intent.succeeded":
        donation = await on_charge_resolved(
            db, ref, True, gateway=gateway, redis=redis, charge_id=obj.get("latest_charge"),
        )
        return "resolved" if donation is not None else "unknown"
    if event_type == "payment_intent.payment_failed":
        error = obj.get("last_payment_error") or {}
        donation = await on_charge_resolved(
            db, ref, False, redis=redis, failure_reason=error.get("message"),
        )
        return "resolved" if donation is not None else "unknown"
    if event_type == "payment_intent.processing":
        donation = await mark_processing(db, ref)
        return "processing" if donation is not None else "unknown"

    logger.debug("webhook_event_ignored", event_type=event_type)
    return "ignored"
