"""Pydantic schemas for commitment endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from redeem.catalog.schemas import ActionResponse
from redeem.db.enums import CommitmentStatus, CommitmentType, ProofMediaType, RejectionReason

# --- Requests ---


class CreateCommitmentRequest(BaseModel):
    commitment_type: CommitmentType
    target_date: datetime
    action_id: int | None = None
    custom_action_description: str | None = Field(None, max_length=1000)
    partner_id: int | None = None
    require_partner_verification: bool = False
    allow_public_share: bool = False
    financial_amount: int | None = Field(None, gt=0, description="Minor currency units")
    charity_id: int | None = None


class ReportRelapseRequest(BaseModel):
    relapse_date: datetime | None = None


class SubmitProofRequest(BaseModel):
    media_type: ProofMediaType
    media_url: str = Field(..., min_length=1, max_length=500)
    thumbnail_url: str | None = Field(None, max_length=500)
    user_notes: str | None = Field(None, max_length=2000)
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)
    location_address: str | None = Field(None, max_length=500)
    captured_at: datetime | None = None


class VerifyProofRequest(BaseModel):
    proof_id: int
    approved: bool
    rejection_reason: RejectionReason | None = None
    rejection_notes: str | None = Field(None, max_length=2000)


# --- Responses ---


class ProofResponse(BaseModel):
    id: str
    media_type: ProofMediaType
    media_url: str
    thumbnail_url: str | None = None
    user_notes: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    location_address: str | None = None
    captured_at: datetime
    submitted_at: datetime
    partner_approved: bool | None = None
    verified_at: datetime | None = None
    rejection_reason: RejectionReason | None = None
    rejection_notes: str | None = None
    is_late_submission: bool
    is_backdated: bool


class CommitmentResponse(BaseModel):
    id: str
    user_id: str
    commitment_type: CommitmentType
    status: CommitmentStatus
    action: ActionResponse | None = None
    custom_action_description: str | None = None
    target_date: datetime
    partner_id: str | None = None
    require_partner_verification: bool
    allow_public_share: bool
    relapse_reported_at: datetime | None = None
    action_deadline: datetime | None = None
    action_completed_at: datetime | None = None
    financial_amount: int | None = None
    financial_paid_at: datetime | None = None
    charity_id: str | None = None
    created_at: datetime
    live_proof: ProofResponse | None = None


class CommitmentEnvelope(BaseModel):
    success: bool = True
    status: CommitmentStatus
    commitment: CommitmentResponse


class CommitmentListResponse(BaseModel):
    success: bool = True
    commitments: list[CommitmentResponse]
    total: int


class DonationSummary(BaseModel):
    id: str
    amount: int
    currency: str
    status: str
    client_secret: str | None = None


class RelapseResponse(BaseModel):
    success: bool = True
    status: CommitmentStatus
    action_deadline: datetime
    relapse_date_adjusted: bool = False
    donation: DonationSummary | None = None
    commitment: CommitmentResponse


class VerificationInfo(BaseModel):
    required: bool
    auto_approve_at: datetime | None = None


class ProofSubmissionResponse(BaseModel):
    success: bool = True
    status: CommitmentStatus
    proof: ProofResponse
    verification: VerificationInfo


class VerificationResponse(BaseModel):
    success: bool = True
    status: CommitmentStatus
    approved: bool
    hours_credited: float | None = None
    hours_remaining: float | None = None
    proof: ProofResponse


class RecoveryOption(BaseModel):
    type: str
    description: str


class DeadlineCheckResponse(BaseModel):
    success: bool = True
    status: CommitmentStatus
    deadline_passed: bool
    action_deadline: datetime | None = None
    now: datetime
    hours_overdue: float
    options: list[RecoveryOption] = []


class VerificationRequestListResponse(BaseModel):
    success: bool = True
    requests: list[CommitmentResponse]
    total: int
