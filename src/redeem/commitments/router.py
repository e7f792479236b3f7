"""Commitment API endpoints: a thin 1:1 mapping onto the engine.

Domain errors propagate to the global handler, which turns them into
400/403/404/409/502 JSON bodies.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from redeem.auth.dependencies import get_current_user
from redeem.catalog.router import build_action_response
from redeem.commitments.schemas import (
    CommitmentEnvelope,
    CommitmentListResponse,
    CommitmentResponse,
    CreateCommitmentRequest,
    DeadlineCheckResponse,
    DonationSummary,
    ProofResponse,
    ProofSubmissionResponse,
    RecoveryOption,
    RelapseResponse,
    ReportRelapseRequest,
    SubmitProofRequest,
    VerificationInfo,
    VerificationRequestListResponse,
    VerificationResponse,
    VerifyProofRequest,
)
from redeem.commitments.service import (
    CommitmentView,
    accept_failure,
    check_deadline,
    create_commitment,
    delete_commitment,
    get_commitment,
    list_partner_verification_requests,
    list_user_commitments,
    report_relapse,
    submit_proof,
    verify_proof,
)
from redeem.database import get_session
from redeem.db.enums import CommitmentStatus
from redeem.db.models import Action, ActionProof, Commitment, User
from redeem.payments.gateway import BasePaymentGateway, get_payment_gateway
from redeem.redis_client import get_optional_redis

router = APIRouter(prefix="/api/v1", tags=["Commitments"])


# ── Helpers ──


def _build_proof_response(proof: ActionProof) -> ProofResponse:
    return ProofResponse(
        id=str(proof.id),
        media_type=proof.media_type,
        media_url=proof.media_url,
        thumbnail_url=proof.thumbnail_url,
        user_notes=proof.user_notes,
        latitude=proof.latitude,
        longitude=proof.longitude,
        location_address=proof.location_address,
        captured_at=proof.captured_at,
        submitted_at=proof.submitted_at,
        partner_approved=proof.partner_approved,
        verified_at=proof.verified_at,
        rejection_reason=proof.rejection_reason,
        rejection_notes=proof.rejection_notes,
        is_late_submission=proof.is_late_submission,
        is_backdated=proof.is_backdated,
    )


def _build_commitment_response(
    commitment: Commitment,
    action: Action | None = None,
    live_proof: ActionProof | None = None,
) -> CommitmentResponse:
    return CommitmentResponse(
        id=str(commitment.id),
        user_id=str(commitment.user_id),
        commitment_type=commitment.commitment_type,
        status=commitment.status,
        action=build_action_response(action) if action is not None else None,
        custom_action_description=commitment.custom_action_description,
        target_date=commitment.target_date,
        partner_id=str(commitment.partner_id) if commitment.partner_id is not None else None,
        require_partner_verification=commitment.require_partner_verification,
        allow_public_share=commitment.allow_public_share,
        relapse_reported_at=commitment.relapse_reported_at,
        action_deadline=commitment.action_deadline,
        action_completed_at=commitment.action_completed_at,
        financial_amount=commitment.financial_amount,
        financial_paid_at=commitment.financial_paid_at,
        charity_id=str(commitment.charity_id) if commitment.charity_id is not None else None,
        created_at=commitment.created_at,
        live_proof=_build_proof_response(live_proof) if live_proof is not None else None,
    )


def _build_view_response(view: CommitmentView) -> CommitmentResponse:
    return _build_commitment_response(view.commitment, view.action, view.live_proof)


# ── Commitments ──


@router.post("/commitments", response_model=CommitmentEnvelope, status_code=201)
async def create_commitment_endpoint(
    body: CreateCommitmentRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_optional_redis),
):
    """Create a commitment that activates when the user reports a relapse."""
    commitment = await create_commitment(db, user.id, redis=redis, **body.model_dump())
    view = await get_commitment(db, commitment.id, user.id)
    return CommitmentEnvelope(status=commitment.status, commitment=_build_view_response(view))


@router.get("/commitments", response_model=CommitmentListResponse)
async def list_commitments_endpoint(
    status: CommitmentStatus | None = Query(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """List the caller's commitments, newest first."""
    commitments = await list_user_commitments(db, user.id, status)
    items = [_build_commitment_response(c) for c in commitments]
    return CommitmentListResponse(commitments=items, total=len(items))


@router.get("/commitments/{commitment_id}", response_model=CommitmentEnvelope)
async def get_commitment_endpoint(
    commitment_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Commitment detail for its owner or partner."""
    view = await get_commitment(db, commitment_id, user.id)
    return CommitmentEnvelope(status=view.commitment.status, commitment=_build_view_response(view))


@router.delete("/commitments/{commitment_id}", status_code=204)
async def delete_commitment_endpoint(
    commitment_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Soft-delete a commitment that has not been activated."""
    await delete_commitment(db, commitment_id, user.id)


@router.post("/commitments/{commitment_id}/report-relapse", response_model=RelapseResponse)
async def report_relapse_endpoint(
    commitment_id: int,
    body: ReportRelapseRequest | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    gateway: BasePaymentGateway = Depends(get_payment_gateway),
    redis: object | None = Depends(get_optional_redis),
):
    """Report a relapse; starts the action deadline and any penalty charge."""
    relapse_date = body.relapse_date if body is not None else None
    report = await report_relapse(db, commitment_id, user.id, relapse_date, gateway=gateway, redis=redis)

    commitment = report.commitment
    donation = None
    if report.donation is not None:
        donation = DonationSummary(
            id=str(report.donation.id),
            amount=report.donation.amount,
            currency=report.donation.currency,
            status=report.donation.status.value,
            client_secret=report.donation.client_secret,
        )
    return RelapseResponse(
        status=commitment.status,
        action_deadline=commitment.action_deadline,
        relapse_date_adjusted=report.relapse_date_adjusted,
        donation=donation,
        commitment=_build_commitment_response(commitment),
    )


@router.post("/commitments/{commitment_id}/submit-proof", response_model=ProofSubmissionResponse)
async def submit_proof_endpoint(
    commitment_id: int,
    body: SubmitProofRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_optional_redis),
):
    """Submit evidence for the committed action."""
    submission = await submit_proof(db, commitment_id, user.id, redis=redis, **body.model_dump())
    return ProofSubmissionResponse(
        status=submission.commitment.status,
        proof=_build_proof_response(submission.proof),
        verification=VerificationInfo(
            required=submission.verification_required,
            auto_approve_at=submission.auto_approve_at,
        ),
    )


@router.post("/commitments/{commitment_id}/verify-proof", response_model=VerificationResponse)
async def verify_proof_endpoint(
    commitment_id: int,
    body: VerifyProofRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    redis: object | None = Depends(get_optional_redis),
):
    """Partner approves or rejects the live proof."""
    outcome = await verify_proof(
        db,
        commitment_id,
        user.id,
        body.proof_id,
        body.approved,
        rejection_reason=body.rejection_reason,
        rejection_notes=body.rejection_notes,
        redis=redis,
    )
    return VerificationResponse(
        status=outcome.commitment.status,
        approved=outcome.approved,
        hours_credited=float(outcome.hours_credited) if outcome.hours_credited is not None else None,
        hours_remaining=outcome.hours_remaining,
        proof=_build_proof_response(outcome.proof),
    )


@router.get("/commitments/{commitment_id}/check-deadline", response_model=DeadlineCheckResponse)
async def check_deadline_endpoint(
    commitment_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    check = await check_deadline(db, commitment_id, user.id)
    return DeadlineCheckResponse(
        status=check.status,
        deadline_passed=check.deadline_passed,
        action_deadline=check.action_deadline,
        now=check.now,
        hours_overdue=check.hours_overdue,
        options=[RecoveryOption(**o) for o in check.options],
    )


@router.post("/commitments/{commitment_id}/accept-failure", response_model=CommitmentEnvelope)
async def accept_failure_endpoint(
    commitment_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Close an overdue commitment as failed."""
    commitment = await accept_failure(db, commitment_id, user.id)
    return CommitmentEnvelope(status=commitment.status, commitment=_build_commitment_response(commitment))


# ── Partner ──


@router.get("/partner/verification-requests", response_model=VerificationRequestListResponse)
async def partner_verification_requests_endpoint(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Proofs waiting on the caller as accountability partner."""
    views = await list_partner_verification_requests(db, user.id)
    items = [_build_view_response(v) for v in views]
    return VerificationRequestListResponse(requests=items, total=len(items))
