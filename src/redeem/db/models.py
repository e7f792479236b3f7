"""ORM models for the commitment engine and its collaborators.

One table per entity. Proofs, donations and wall entries hang off
``commitments`` by foreign key; only commitments are soft-deleted.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from redeem.db.base import Base, BigIntPK, JSONType, UTCDateTime
from redeem.db.enums import (
    ActionCategory,
    ActionDifficulty,
    CommitmentStatus,
    CommitmentType,
    DonationStatus,
    ProofMediaType,
    RejectionReason,
)


def _enum(cls: type) -> Enum:
    return Enum(cls, native_enum=False, length=32)


# ---------------------------------------------------------------------------
# Users (owned by the account subsystem; only the columns the engine reads)
# ---------------------------------------------------------------------------


class User(Base):
    """Maps to the 'users' table."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True, unique=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_banned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


# ---------------------------------------------------------------------------
# Action Catalog
# ---------------------------------------------------------------------------


class Action(Base):
    """A redeemable action from the admin-curated catalog."""

    __tablename__ = "actions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[ActionCategory] = mapped_column(_enum(ActionCategory), nullable=False, index=True)
    difficulty: Mapped[ActionDifficulty] = mapped_column(
        _enum(ActionDifficulty), nullable=False, default=ActionDifficulty.MEDIUM
    )
    estimated_hours: Mapped[Decimal] = mapped_column(Numeric(4, 1), nullable=False, default=Decimal("1.0"))
    proof_instructions: Mapped[str] = mapped_column(Text, nullable=False)
    requires_location: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Charities
# ---------------------------------------------------------------------------


class CharityOrganization(Base):
    """A vetted charity that receives penalty donations."""

    __tablename__ = "charity_organizations"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    legal_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    mission: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    website: Mapped[str] = mapped_column(String(500), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    payout_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    country: Mapped[str] = mapped_column(String(2), nullable=False, default="US")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    tax_id: Mapped[str] = mapped_column(String(50), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    total_donations_received: Mapped[int] = mapped_column(BigIntPK, nullable=False, default=0)
    total_commitments_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


# ---------------------------------------------------------------------------
# Commitments
# ---------------------------------------------------------------------------


class Commitment(Base):
    """A user's pledge that activates when they report a relapse.

    ``version_id`` is bumped on every UPDATE; a write against a stale
    version raises StaleDataError.
    """

    __tablename__ = "commitments"
    __table_args__ = (
        Index("idx_commitments_status_deadline", "status", "action_deadline"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    commitment_type: Mapped[CommitmentType] = mapped_column(_enum(CommitmentType), nullable=False)
    action_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("actions.id", ondelete="SET NULL"), nullable=True
    )
    custom_action_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    target_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    partner_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    require_partner_verification: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    allow_public_share: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[CommitmentStatus] = mapped_column(
        _enum(CommitmentStatus), nullable=False, default=CommitmentStatus.ACTIVE
    )
    relapse_reported_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    action_deadline: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    action_completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    financial_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)  # minor units
    financial_paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    charity_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("charity_organizations.id", ondelete="SET NULL"), nullable=True
    )
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __mapper_args__ = {"version_id_col": version_id}  # noqa: RUF012


class ActionProof(Base):
    """One submission attempt. At most one row per commitment is live."""

    __tablename__ = "action_proofs"
    __table_args__ = (
        Index(
            "uq_action_proofs_live",
            "commitment_id",
            unique=True,
            postgresql_where=text("is_superseded = false"),
            sqlite_where=text("is_superseded = 0"),
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    commitment_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("commitments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    media_type: Mapped[ProofMediaType] = mapped_column(_enum(ProofMediaType), nullable=False)
    media_url: Mapped[str] = mapped_column(String(500), nullable=False)
    thumbnail_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    user_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    captured_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    partner_approved: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    verified_by: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    rejection_reason: Mapped[RejectionReason | None] = mapped_column(_enum(RejectionReason), nullable=True)
    rejection_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_late_submission: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_backdated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_superseded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Service stats
# ---------------------------------------------------------------------------


class UserServiceStats(Base):
    """Per-user redemption counters. Mutated only by redeem.stats.service."""

    __tablename__ = "user_service_stats"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    total_service_hours: Mapped[Decimal] = mapped_column(Numeric(8, 1), nullable=False, default=Decimal("0"))
    total_money_donated: Mapped[int] = mapped_column(BigIntPK, nullable=False, default=0)
    total_actions_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    redemption_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_redemption_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_redemption_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Redemption wall
# ---------------------------------------------------------------------------


class RedemptionWallEntry(Base):
    """Public feed entry snapshotting a completed commitment."""

    __tablename__ = "redemption_wall"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    commitment_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("commitments.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    user_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("actions.id", ondelete="SET NULL"), nullable=True
    )
    proof_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("action_proofs.id", ondelete="CASCADE"), nullable=False
    )
    action_title: Mapped[str] = mapped_column(String(255), nullable=False)
    action_category: Mapped[ActionCategory] = mapped_column(_enum(ActionCategory), nullable=False)
    hours: Mapped[Decimal] = mapped_column(Numeric(4, 1), nullable=False)
    media_type: Mapped[ProofMediaType] = mapped_column(_enum(ProofMediaType), nullable=False)
    media_url: Mapped[str] = mapped_column(String(500), nullable=False)
    thumbnail_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_anonymous: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    user_reflection: Mapped[str | None] = mapped_column(Text, nullable=True)
    encouragement_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    comment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Donations (Payment Trigger)
# ---------------------------------------------------------------------------


class CharityDonation(Base):
    """A penalty transfer. Its lifecycle is independent of the commitment's."""

    __tablename__ = "charity_donations"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    commitment_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("commitments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    charity_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("charity_organizations.id", ondelete="RESTRICT"), nullable=False
    )
    amount: Mapped[int] = mapped_column(BigIntPK, nullable=False)  # minor units
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    status: Mapped[DonationStatus] = mapped_column(
        _enum(DonationStatus), nullable=False, default=DonationStatus.PENDING, index=True
    )
    payment_method: Mapped[str] = mapped_column(String(16), nullable=False, default="stripe")
    gateway_payment_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    gateway_charge_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    transfer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    transfer_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    donation_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Notifications (outbox)
# ---------------------------------------------------------------------------


class Notification(Base):
    """Persisted user notification; ``delivered_at`` is set once pushed."""

    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notifications_undelivered", "delivered_at", "id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    subtype: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    delivery_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    delivered_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
