"""HTTP-level tests for the commitment, stats, wall, catalog and webhook routes."""

import json
import time
from datetime import datetime, timedelta, timezone

import pytest
from conftest import auth_headers

from redeem.payments.gateway import compute_signature

WEBHOOK_SECRET = "whsec_test_secret"


def _target(days: int = 7) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


async def _create(client, user, **body) -> dict:
    payload = {"commitment_type": "SERVICE", "target_date": _target(), **body}
    resp = await client.post("/api/v1/commitments", json=payload, headers=auth_headers(user))
    assert resp.status_code == 201, resp.text
    return resp.json()["commitment"]


def _signed(event: dict) -> tuple[bytes, dict[str, str]]:
    payload = json.dumps(event).encode()
    ts = int(time.time())
    header = f"t={ts},v1={compute_signature(payload, ts, WEBHOOK_SECRET)}"
    return payload, {"Stripe-Signature": header, "Content-Type": "application/json"}


class TestAuth:
    @pytest.mark.asyncio
    async def test_missing_token_rejected(self, client):
        resp = await client.get("/api/v1/commitments")
        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"
        assert resp.json()["error"] == "http_error"

    @pytest.mark.asyncio
    async def test_garbage_token(self, client):
        resp = await client.get("/api/v1/commitments", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401
        assert resp.json()["success"] is False


class TestCommitmentRoutes:
    @pytest.mark.asyncio
    async def test_create_get_list_delete(self, client, owner, action):
        created = await _create(client, owner, action_id=action.id)
        assert created["status"] == "ACTIVE"
        assert created["user_id"] == str(owner.id)
        assert created["action"]["title"] == "Serve at soup kitchen"

        resp = await client.get(f"/api/v1/commitments/{created['id']}", headers=auth_headers(owner))
        assert resp.status_code == 200
        assert resp.json()["commitment"]["id"] == created["id"]

        resp = await client.get("/api/v1/commitments", headers=auth_headers(owner))
        assert resp.json()["total"] == 1

        resp = await client.delete(f"/api/v1/commitments/{created['id']}", headers=auth_headers(owner))
        assert resp.status_code == 204

        resp = await client.get("/api/v1/commitments", headers=auth_headers(owner))
        assert resp.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_list_filters_by_status(self, client, owner, action):
        first = await _create(client, owner, action_id=action.id)
        await _create(client, owner, action_id=action.id)
        await client.post(f"/api/v1/commitments/{first['id']}/report-relapse", headers=auth_headers(owner))

        resp = await client.get(
            "/api/v1/commitments", params={"status": "ACTION_PENDING"}, headers=auth_headers(owner),
        )
        body = resp.json()
        assert body["total"] == 1
        assert body["commitments"][0]["id"] == first["id"]

    @pytest.mark.asyncio
    async def test_schema_validation_is_422(self, client, owner):
        resp = await client.post(
            "/api/v1/commitments",
            json={"commitment_type": "NOT_A_TYPE", "target_date": _target()},
            headers=auth_headers(owner),
        )
        assert resp.status_code == 422
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == "validation_error"
        assert body["errors"]

    @pytest.mark.asyncio
    async def test_domain_validation_is_400(self, client, owner, action):
        resp = await client.post(
            "/api/v1/commitments",
            json={
                "commitment_type": "SERVICE",
                "target_date": _target(),
                "action_id": action.id,
                "custom_action_description": "Also this",
            },
            headers=auth_headers(owner),
        )
        assert resp.status_code == 400
        assert resp.json() == {
            "success": False,
            "error": "validation_error",
            "detail": "Provide exactly one of action_id or custom_action_description",
        }

    @pytest.mark.asyncio
    async def test_stranger_is_forbidden(self, client, owner, stranger, action):
        created = await _create(client, owner, action_id=action.id)
        resp = await client.get(f"/api/v1/commitments/{created['id']}", headers=auth_headers(stranger))
        assert resp.status_code == 403
        assert resp.json()["error"] == "forbidden"

    @pytest.mark.asyncio
    async def test_missing_and_foreign_commitments_look_the_same(self, client, owner, stranger, action):
        created = await _create(client, owner, action_id=action.id)
        for method, suffix in (
            ("GET", ""),
            ("POST", "/report-relapse"),
            ("GET", "/check-deadline"),
            ("POST", "/accept-failure"),
            ("DELETE", ""),
        ):
            existing = await client.request(
                method, f"/api/v1/commitments/{created['id']}{suffix}", headers=auth_headers(stranger),
            )
            missing = await client.request(
                method, f"/api/v1/commitments/999999{suffix}", headers=auth_headers(stranger),
            )
            assert existing.status_code == missing.status_code == 403
            assert existing.json() == missing.json()

        # Owners get the same answer for ids that do not exist
        resp = await client.get("/api/v1/commitments/999999", headers=auth_headers(owner))
        assert resp.status_code == 403
        assert resp.json()["error"] == "forbidden"

    @pytest.mark.asyncio
    async def test_double_relapse_is_409(self, client, owner, action):
        created = await _create(client, owner, action_id=action.id)
        url = f"/api/v1/commitments/{created['id']}/report-relapse"

        first = await client.post(url, headers=auth_headers(owner))
        assert first.status_code == 200
        assert first.json()["status"] == "ACTION_PENDING"
        assert first.json()["action_deadline"] is not None
        assert first.json()["donation"] is None

        second = await client.post(url, headers=auth_headers(owner))
        assert second.status_code == 409
        assert second.json()["error"] == "conflict"

    @pytest.mark.asyncio
    async def test_future_relapse_date_rejected(self, client, owner, action):
        created = await _create(client, owner, action_id=action.id)
        future = (datetime.now(timezone.utc) + timedelta(days=2)).isoformat()
        resp = await client.post(
            f"/api/v1/commitments/{created['id']}/report-relapse",
            json={"relapse_date": future},
            headers=auth_headers(owner),
        )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Relapse date cannot be in the future"

        resp = await client.get(f"/api/v1/commitments/{created['id']}", headers=auth_headers(owner))
        assert resp.json()["status"] == "ACTIVE"

    @pytest.mark.asyncio
    async def test_check_deadline_before_expiry(self, client, owner, action):
        created = await _create(client, owner, action_id=action.id)
        await client.post(f"/api/v1/commitments/{created['id']}/report-relapse", headers=auth_headers(owner))

        resp = await client.get(
            f"/api/v1/commitments/{created['id']}/check-deadline", headers=auth_headers(owner),
        )
        body = resp.json()
        assert resp.status_code == 200
        assert body["deadline_passed"] is False
        assert body["hours_overdue"] == 0
        assert body["options"] == []

    @pytest.mark.asyncio
    async def test_accept_failure_requires_overdue(self, client, owner, action):
        created = await _create(client, owner, action_id=action.id)
        await client.post(f"/api/v1/commitments/{created['id']}/report-relapse", headers=auth_headers(owner))
        resp = await client.post(
            f"/api/v1/commitments/{created['id']}/accept-failure", headers=auth_headers(owner),
        )
        assert resp.status_code == 409


class TestProofFlow:
    @pytest.mark.asyncio
    async def test_submit_and_partner_approval(self, client, owner, partner, action):
        created = await _create(
            client, owner,
            action_id=action.id,
            partner_id=partner.id,
            require_partner_verification=True,
            allow_public_share=True,
        )
        cid = created["id"]
        await client.post(f"/api/v1/commitments/{cid}/report-relapse", headers=auth_headers(owner))

        resp = await client.post(
            f"/api/v1/commitments/{cid}/submit-proof",
            json={
                "media_type": "PHOTO",
                "media_url": "https://cdn.example.com/proof.jpg",
                "user_notes": "Served dinner for forty people",
                "latitude": 40.7,
                "longitude": -74.0,
            },
            headers=auth_headers(owner),
        )
        assert resp.status_code == 200, resp.text
        submission = resp.json()
        assert submission["status"] == "ACTION_PROOF_SUBMITTED"
        assert submission["verification"] == {"required": True, "auto_approve_at": None}
        proof_id = int(submission["proof"]["id"])

        resp = await client.get("/api/v1/partner/verification-requests", headers=auth_headers(partner))
        requests = resp.json()
        assert requests["total"] == 1
        assert requests["requests"][0]["live_proof"]["id"] == str(proof_id)

        # Owner cannot verify their own proof
        resp = await client.post(
            f"/api/v1/commitments/{cid}/verify-proof",
            json={"proof_id": proof_id, "approved": True},
            headers=auth_headers(owner),
        )
        assert resp.status_code == 403

        resp = await client.post(
            f"/api/v1/commitments/{cid}/verify-proof",
            json={"proof_id": proof_id, "approved": True},
            headers=auth_headers(partner),
        )
        assert resp.status_code == 200, resp.text
        outcome = resp.json()
        assert outcome["status"] == "ACTION_COMPLETED"
        assert outcome["approved"] is True
        assert outcome["hours_credited"] == 3.0
        assert outcome["proof"]["partner_approved"] is True

        resp = await client.get("/api/v1/redemption-wall")
        wall = resp.json()
        assert len(wall["entries"]) == 1
        assert wall["entries"][0]["display_name"] == "Anonymous"
        assert wall["entries"][0]["user_reflection"] == "Served dinner for forty people"

        entry_id = wall["entries"][0]["id"]
        resp = await client.post(f"/api/v1/redemption-wall/{entry_id}/encourage", headers=auth_headers(partner))
        assert resp.json() == {"success": True, "encouragement_count": 1}

        resp = await client.get(f"/api/v1/users/{owner.id}/service-stats", headers=auth_headers(owner))
        stats = resp.json()
        assert stats["user_id"] == str(owner.id)
        assert stats["total_service_hours"] == 3.0
        assert stats["total_actions_completed"] == 1
        assert stats["recent_actions"][0]["commitment_id"] == cid

    @pytest.mark.asyncio
    async def test_rejection_needs_reason(self, client, owner, partner, action):
        created = await _create(
            client, owner, action_id=action.id, partner_id=partner.id, require_partner_verification=True,
        )
        cid = created["id"]
        await client.post(f"/api/v1/commitments/{cid}/report-relapse", headers=auth_headers(owner))
        resp = await client.post(
            f"/api/v1/commitments/{cid}/submit-proof",
            json={"media_type": "PHOTO", "media_url": "https://cdn.example.com/blurry.jpg"},
            headers=auth_headers(owner),
        )
        proof_id = int(resp.json()["proof"]["id"])

        resp = await client.post(
            f"/api/v1/commitments/{cid}/verify-proof",
            json={"proof_id": proof_id, "approved": False},
            headers=auth_headers(partner),
        )
        assert resp.status_code == 400

        resp = await client.post(
            f"/api/v1/commitments/{cid}/verify-proof",
            json={"proof_id": proof_id, "approved": False, "rejection_reason": "PHOTO_UNCLEAR"},
            headers=auth_headers(partner),
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "ACTION_PENDING"
        assert resp.json()["proof"]["rejection_reason"] == "PHOTO_UNCLEAR"

    @pytest.mark.asyncio
    async def test_unverified_proof_gets_auto_approve_time(self, client, owner, action):
        created = await _create(client, owner, action_id=action.id)
        cid = created["id"]
        await client.post(f"/api/v1/commitments/{cid}/report-relapse", headers=auth_headers(owner))
        resp = await client.post(
            f"/api/v1/commitments/{cid}/submit-proof",
            json={"media_type": "VIDEO", "media_url": "https://cdn.example.com/clip.mp4"},
            headers=auth_headers(owner),
        )
        verification = resp.json()["verification"]
        assert verification["required"] is False
        assert verification["auto_approve_at"] is not None


class TestPaymentRoutes:
    @pytest.mark.asyncio
    async def test_gateway_outage_is_502(self, client, owner, charity, action, gateway):
        created = await _create(
            client, owner,
            commitment_type="FINANCIAL",
            action_id=action.id,
            financial_amount=2500,
            charity_id=charity.id,
        )
        gateway.fail_charges = True

        resp = await client.post(
            f"/api/v1/commitments/{created['id']}/report-relapse", headers=auth_headers(owner),
        )
        assert resp.status_code == 502
        assert resp.json()["error"] == "dependency_error"

        resp = await client.get(f"/api/v1/commitments/{created['id']}", headers=auth_headers(owner))
        assert resp.json()["status"] == "ACTIVE"

    @pytest.mark.asyncio
    async def test_webhook_completes_financial_commitment(self, client, owner, charity, action, gateway):
        created = await _create(
            client, owner,
            commitment_type="FINANCIAL",
            action_id=action.id,
            financial_amount=2500,
            charity_id=charity.id,
        )
        resp = await client.post(
            f"/api/v1/commitments/{created['id']}/report-relapse", headers=auth_headers(owner),
        )
        donation = resp.json()["donation"]
        assert donation["amount"] == 2500
        assert donation["status"] == "PENDING"
        assert donation["client_secret"] == "pi_test_1_secret"

        payload, headers = _signed({
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_test_1", "latest_charge": "ch_test_1"}},
        })
        resp = await client.post("/api/v1/payments/webhook", content=payload, headers=headers)
        assert resp.status_code == 200
        assert resp.json() == {"received": True, "outcome": "resolved"}

        resp = await client.get(f"/api/v1/commitments/{created['id']}", headers=auth_headers(owner))
        assert resp.json()["status"] == "COMPLETED"
        assert len(gateway.transfers) == 1

    @pytest.mark.asyncio
    async def test_webhook_bad_signature(self, client):
        payload = json.dumps({"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_x"}}}).encode()
        resp = await client.post(
            "/api/v1/payments/webhook",
            content=payload,
            headers={"Stripe-Signature": f"t={int(time.time())},v1=deadbeef"},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid webhook signature"

    @pytest.mark.asyncio
    async def test_webhook_unknown_event_ignored(self, client):
        payload, headers = _signed({"type": "customer.created", "data": {"object": {"id": "cus_1"}}})
        resp = await client.post("/api/v1/payments/webhook", content=payload, headers=headers)
        assert resp.json()["outcome"] == "ignored"


class TestStatsRoute:
    @pytest.mark.asyncio
    async def test_other_users_stats_forbidden(self, client, owner, stranger):
        resp = await client.get(f"/api/v1/users/{owner.id}/service-stats", headers=auth_headers(stranger))
        assert resp.status_code == 403
        assert resp.json()["success"] is False

    @pytest.mark.asyncio
    async def test_empty_stats(self, client, owner):
        resp = await client.get(f"/api/v1/users/{owner.id}/service-stats", headers=auth_headers(owner))
        body = resp.json()
        assert body["total_service_hours"] == 0.0
        assert body["recent_actions"] == []


class TestWallRoute:
    @pytest.mark.asyncio
    async def test_empty_feed_is_public(self, client):
        resp = await client.get("/api/v1/redemption-wall", params={"limit": 5, "sort": "most_encouraged"})
        assert resp.status_code == 200
        assert resp.json() == {"entries": [], "limit": 5, "offset": 0, "has_more": False}

    @pytest.mark.asyncio
    async def test_bad_sort_rejected(self, client):
        resp = await client.get("/api/v1/redemption-wall", params={"sort": "random"})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_encourage_missing_entry(self, client, owner):
        resp = await client.post("/api/v1/redemption-wall/4242/encourage", headers=auth_headers(owner))
        assert resp.status_code == 404


class TestCatalogRoutes:
    @pytest.mark.asyncio
    async def test_actions(self, client, action):
        resp = await client.get("/api/v1/actions")
        body = resp.json()
        assert body["total"] == 1
        assert body["actions"][0]["id"] == str(action.id)
        assert body["actions"][0]["estimated_hours"] == 3.0

        resp = await client.get(f"/api/v1/actions/{action.id}")
        assert resp.json()["title"] == "Serve at soup kitchen"

        resp = await client.get("/api/v1/actions", params={"category": "ENVIRONMENTAL"})
        assert resp.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_charities(self, client, charity):
        resp = await client.get("/api/v1/charities")
        body = resp.json()
        assert body["total"] == 1
        assert body["charities"][0]["accepts_transfers"] is True

        resp = await client.get(f"/api/v1/charities/{charity.id}")
        assert resp.json()["name"] == "Test Charity"

        resp = await client.get("/api/v1/charities/999")
        assert resp.status_code == 404
