"""String enums shared by the ORM models and API schemas."""

from __future__ import annotations

from enum import Enum


class CommitmentType(str, Enum):
    SERVICE = "SERVICE"
    FINANCIAL = "FINANCIAL"
    HYBRID = "HYBRID"


class CommitmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ACTION_PENDING = "ACTION_PENDING"
    ACTION_PROOF_SUBMITTED = "ACTION_PROOF_SUBMITTED"
    ACTION_COMPLETED = "ACTION_COMPLETED"
    ACTION_OVERDUE = "ACTION_OVERDUE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ActionCategory(str, Enum):
    COMMUNITY_SERVICE = "COMMUNITY_SERVICE"
    CHURCH_SERVICE = "CHURCH_SERVICE"
    CHARITY = "CHARITY"
    HELPING_INDIVIDUALS = "HELPING_INDIVIDUALS"
    ENVIRONMENTAL = "ENVIRONMENTAL"
    EDUCATION = "EDUCATION"
    HEALTHCARE = "HEALTHCARE"
    CUSTOM = "CUSTOM"


class ActionDifficulty(str, Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"


class ProofMediaType(str, Enum):
    PHOTO = "PHOTO"
    VIDEO = "VIDEO"
    OTHER = "OTHER"


class RejectionReason(str, Enum):
    PHOTO_UNCLEAR = "PHOTO_UNCLEAR"
    FACE_NOT_VISIBLE = "FACE_NOT_VISIBLE"
    WRONG_LOCATION = "WRONG_LOCATION"
    ACTION_NOT_PERFORMED = "ACTION_NOT_PERFORMED"
    SUSPICIOUS = "SUSPICIOUS"
    OTHER = "OTHER"


class DonationStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
