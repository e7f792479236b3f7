"""Scheduler sweeps and concurrent-writer behaviour."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from redeem.commitments.service import create_commitment, get_commitment, report_relapse, submit_proof
from redeem.commitments.sweeps import SweepReport, sweep_auto_approve, sweep_overdue
from redeem.database import get_session_factory
from redeem.db.enums import CommitmentStatus, CommitmentType
from redeem.db.locking import atomic, load_commitment
from redeem.errors import ConflictError
from redeem.stats.service import on_overdue

T0 = datetime.now(timezone.utc).replace(microsecond=0)


async def _pending(db, owner, action, relapse_at=T0) -> int:
    commitment = await create_commitment(
        db, owner.id,
        commitment_type=CommitmentType.SERVICE,
        target_date=T0 + timedelta(days=7),
        action_id=action.id,
        now=T0,
    )
    await report_relapse(db, commitment.id, owner.id, now=relapse_at)
    return commitment.id


class TestSweepReport:
    def test_as_dict(self):
        report = SweepReport(processed=[1, 2], failed=[(3, "boom")])
        assert report.as_dict() == {"processed": 2, "failed": [{"commitment_id": 3, "error": "boom"}]}


class TestOverdueSweep:
    @pytest.mark.asyncio
    async def test_only_expired_pending_commitments(self, db, owner, action):
        early = await _pending(db, owner, action, T0)
        later = await _pending(db, owner, action, T0 + timedelta(hours=10))

        report = await sweep_overdue(db, now=T0 + timedelta(hours=50))
        assert report.processed == [early]

        assert (await get_commitment(db, early, owner.id)).commitment.status == CommitmentStatus.ACTION_OVERDUE
        assert (await get_commitment(db, later, owner.id)).commitment.status == CommitmentStatus.ACTION_PENDING

    @pytest.mark.asyncio
    async def test_repeated_sweeps_have_no_extra_effect(self, db, owner, action):
        cid = await _pending(db, owner, action)
        at = T0 + timedelta(hours=60)
        assert (await sweep_overdue(db, now=at)).processed == [cid]
        assert (await sweep_overdue(db, now=at)).processed == []
        assert (await sweep_overdue(db, now=at + timedelta(days=1))).processed == []

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_sweep(self, db, owner, action):
        first = await _pending(db, owner, action, T0)
        second = await _pending(db, owner, action, T0 + timedelta(minutes=1))

        calls = {"n": 0}

        async def flaky(db_, user_id, now=None):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("stats row unavailable")
            return await on_overdue(db_, user_id, now)

        with patch("redeem.commitments.service.on_overdue", new=flaky):
            report = await sweep_overdue(db, now=T0 + timedelta(hours=49))

        assert report.processed == [second]
        assert report.failed == [(first, "stats row unavailable")]
        assert (await get_commitment(db, first, owner.id)).commitment.status == CommitmentStatus.ACTION_PENDING

        retry = await sweep_overdue(db, now=T0 + timedelta(hours=50))
        assert retry.processed == [first]


class TestAutoApproveSweep:
    @pytest.mark.asyncio
    async def test_uses_live_proof_submission_time(self, db, owner, action):
        cid = await _pending(db, owner, action)
        await submit_proof(
            db, cid, owner.id, media_type="PHOTO", media_url="https://cdn.example.com/1.jpg",
            now=T0 + timedelta(hours=30),
        )
        report = await sweep_auto_approve(db, now=T0 + timedelta(hours=40))
        assert report.processed == []
        report = await sweep_auto_approve(db, now=T0 + timedelta(hours=54))
        assert report.processed == [cid]

    @pytest.mark.asyncio
    async def test_notifications_pushed_when_redis_available(self, db, owner, action):
        cid = await _pending(db, owner, action)
        await submit_proof(
            db, cid, owner.id, media_type="PHOTO", media_url="https://cdn.example.com/1.jpg",
            now=T0 + timedelta(hours=1),
        )
        redis = AsyncMock()
        await sweep_auto_approve(db, redis=redis, now=T0 + timedelta(hours=30))

        channels = [call.args[0] for call in redis.publish.await_args_list]
        assert channels == [f"ws:user:{owner.id}"]


class TestConcurrentWriters:
    @pytest.mark.asyncio
    async def test_stale_writer_gets_conflict(self, db, owner, action):
        """Two sessions load the same version; the second to commit loses."""
        cid = await _pending(db, owner, action)

        async with get_session_factory()() as stale:
            loaded = await load_commitment(stale, cid)
            assert loaded.version_id == 2

            # Another worker moves the commitment on first
            assert (await sweep_overdue(db, now=T0 + timedelta(hours=49))).processed == [cid]

            with pytest.raises(ConflictError, match="modified concurrently"):
                async with atomic(stale):
                    loaded.status = CommitmentStatus.ACTION_PROOF_SUBMITTED
                    loaded.updated_at = T0 + timedelta(hours=49)

        view = await get_commitment(db, cid, owner.id)
        assert view.commitment.status == CommitmentStatus.ACTION_OVERDUE
        assert view.commitment.version_id == 3
