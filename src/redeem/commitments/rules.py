"""Pure business rules over timestamps: no I/O, no session.

All functions take ``now`` explicitly so the sweeps and the tests can pin
the clock.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from redeem.errors import ValidationError

DEFAULT_ACTION_DEADLINE_HOURS = 48
DEFAULT_AUTO_APPROVE_AFTER_HOURS = 24


def ensure_aware(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def validate_target_date(
    target_date: datetime,
    now: datetime,
    min_days: int = 1,
    max_days: int = 90,
) -> datetime:
    """Check ``target_date`` lies within [now + min_days, now + max_days]."""
    target_date = ensure_aware(target_date)
    earliest = now + timedelta(days=min_days)
    latest = now + timedelta(days=max_days)
    # Allow a minute of slack on the lower bound for request latency
    if target_date < earliest - timedelta(minutes=1):
        raise ValidationError(f"Target date must be at least {min_days} day(s) in the future")
    if target_date > latest:
        raise ValidationError(f"Target date cannot be more than {max_days} days in the future")
    return target_date


def resolve_relapse_date(
    relapse_date: datetime | None,
    now: datetime,
    created_at: datetime,
    max_backdate_hours: int = 48,
    clock_skew_seconds: int = 300,
) -> tuple[datetime, bool]:
    """Turn a caller-supplied relapse time into the one the engine records.

    Returns ``(relapse_at, adjusted)``. Future dates beyond clock skew and
    dates before the commitment existed are rejected. Anything older than
    the backdate window is clamped to its edge and flagged as adjusted.
    """
    if relapse_date is None:
        return now, False

    relapse_date = ensure_aware(relapse_date)
    if relapse_date > now + timedelta(seconds=clock_skew_seconds):
        raise ValidationError("Relapse date cannot be in the future")
    if relapse_date > now:
        return now, False
    if relapse_date < ensure_aware(created_at):
        raise ValidationError("Relapse date cannot be before the commitment was created")

    floor = now - timedelta(hours=max_backdate_hours)
    if relapse_date < floor:
        return floor, True
    return relapse_date, False


def compute_deadline(relapse_at: datetime, deadline_hours: int = DEFAULT_ACTION_DEADLINE_HOURS) -> datetime:
    return relapse_at + timedelta(hours=deadline_hours)


def is_late(submitted_at: datetime, action_deadline: datetime | None) -> bool:
    """A submission is late when received strictly after the deadline snapshot."""
    if action_deadline is None:
        return False
    return submitted_at > ensure_aware(action_deadline)


def auto_approve_at(submitted_at: datetime, after_hours: int = DEFAULT_AUTO_APPROVE_AFTER_HOURS) -> datetime:
    return submitted_at + timedelta(hours=after_hours)


def auto_approve_cutoff(now: datetime, after_hours: int = DEFAULT_AUTO_APPROVE_AFTER_HOURS) -> datetime:
    """Proofs submitted at or before this instant are due for auto-approval."""
    return now - timedelta(hours=after_hours)


def clamp_captured_at(
    captured_at: datetime | None,
    submitted_at: datetime,
    relapse_at: datetime | None,
) -> tuple[datetime, bool]:
    """Return ``(captured_at, is_backdated)``.

    Future capture times are clamped to the server receipt time. Evidence
    captured before the relapse was reported is flagged, not rejected.
    """
    if captured_at is None:
        return submitted_at, False
    captured_at = ensure_aware(captured_at)
    if captured_at > submitted_at:
        captured_at = submitted_at
    backdated = relapse_at is not None and captured_at < ensure_aware(relapse_at)
    return captured_at, backdated


def hours_overdue(action_deadline: datetime | None, now: datetime) -> float:
    """Whole-hour count past the deadline, 0 when not yet passed."""
    if action_deadline is None:
        return 0
    delta = now - ensure_aware(action_deadline)
    if delta <= timedelta(0):
        return 0
    return delta.total_seconds() // 3600


def hours_remaining(action_deadline: datetime | None, now: datetime) -> float:
    """Hours left before the deadline, rounded to one decimal, never negative."""
    if action_deadline is None:
        return 0.0
    delta = ensure_aware(action_deadline) - now
    return max(0.0, round(delta.total_seconds() / 3600, 1))
