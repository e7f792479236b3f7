"""Tests for payment webhook authentication."""

import json

import pytest

from redeem.errors import ValidationError
from redeem.payments.gateway import compute_signature, parse_webhook_event, verify_webhook_signature

SECRET = "whsec_unit"
TS = 1_760_000_000


def _header(payload: bytes, ts: int = TS, secret: str = SECRET) -> str:
    return f"t={ts},v1={compute_signature(payload, ts, secret)}"


class TestVerifySignature:
    payload = b'{"type": "payment_intent.succeeded"}'

    def test_valid_signature(self):
        verify_webhook_signature(self.payload, _header(self.payload), SECRET, now=TS + 10)

    def test_any_matching_v1_accepted(self):
        header = f"t={TS},v1=deadbeef,v1={compute_signature(self.payload, TS, SECRET)}"
        verify_webhook_signature(self.payload, header, SECRET, now=TS)

    def test_missing_header(self):
        with pytest.raises(ValidationError, match="Missing"):
            verify_webhook_signature(self.payload, None, SECRET, now=TS)

    def test_malformed_header(self):
        with pytest.raises(ValidationError, match="Malformed"):
            verify_webhook_signature(self.payload, "garbage", SECRET, now=TS)
        with pytest.raises(ValidationError, match="Malformed"):
            verify_webhook_signature(self.payload, "t=abc,v1=00", SECRET, now=TS)

    def test_wrong_secret(self):
        header = _header(self.payload, secret="whsec_other")
        with pytest.raises(ValidationError, match="Invalid"):
            verify_webhook_signature(self.payload, header, SECRET, now=TS)

    def test_tampered_body(self):
        header = _header(self.payload)
        with pytest.raises(ValidationError, match="Invalid"):
            verify_webhook_signature(b'{"type": "other"}', header, SECRET, now=TS)

    def test_stale_timestamp(self):
        with pytest.raises(ValidationError, match="tolerance"):
            verify_webhook_signature(self.payload, _header(self.payload), SECRET, now=TS + 301)


class TestParseEvent:
    def test_returns_event(self):
        body = json.dumps({"type": "payment_intent.succeeded", "data": {"object": {"id": "pi_1"}}}).encode()
        event = parse_webhook_event(body, _header(body), SECRET, now=TS)
        assert event["data"]["object"]["id"] == "pi_1"

    def test_rejects_non_json(self):
        body = b"not json"
        with pytest.raises(ValidationError, match="JSON"):
            parse_webhook_event(body, _header(body), SECRET, now=TS)

    def test_rejects_non_event(self):
        body = b'{"id": "evt_1"}'
        with pytest.raises(ValidationError, match="not an event"):
            parse_webhook_event(body, _header(body), SECRET, now=TS)
