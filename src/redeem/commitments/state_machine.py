"""Commitment lifecycle transition table.

ACTIVE -> ACTION_PENDING -> ACTION_PROOF_SUBMITTED -> ACTION_COMPLETED
                         \\-> ACTION_OVERDUE -> FAILED
ACTION_PENDING / ACTION_OVERDUE -> COMPLETED for paid FINANCIAL commitments.
Rejection moves ACTION_PROOF_SUBMITTED back to ACTION_PENDING.
"""

from __future__ import annotations

from redeem.db.enums import CommitmentStatus
from redeem.errors import ConflictError

S = CommitmentStatus

VALID_TRANSITIONS: dict[CommitmentStatus, list[CommitmentStatus]] = {
    S.ACTIVE: [S.ACTION_PENDING],
    S.ACTION_PENDING: [S.ACTION_PROOF_SUBMITTED, S.ACTION_OVERDUE, S.COMPLETED],
    S.ACTION_PROOF_SUBMITTED: [S.ACTION_COMPLETED, S.ACTION_PENDING],
    S.ACTION_OVERDUE: [S.ACTION_PROOF_SUBMITTED, S.FAILED, S.COMPLETED],
    S.ACTION_COMPLETED: [],
    S.COMPLETED: [],
    S.FAILED: [],
}

TERMINAL_STATES = frozenset({S.ACTION_COMPLETED, S.COMPLETED, S.FAILED})


def is_terminal(status: CommitmentStatus) -> bool:
    return status in TERMINAL_STATES


def can_transition(current: CommitmentStatus, target: CommitmentStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, [])


def validate_transition(current: CommitmentStatus, target: CommitmentStatus) -> None:
    """Validate a state transition. Raises ConflictError if invalid."""
    if is_terminal(current):
        raise ConflictError(f"Commitment is already {current.value} and cannot change")
    if not can_transition(current, target):
        valid = [s.value for s in VALID_TRANSITIONS.get(current, [])]
        raise ConflictError(
            f"Invalid transition: {current.value} -> {target.value}. "
            f"Valid transitions: {valid}"
        )
