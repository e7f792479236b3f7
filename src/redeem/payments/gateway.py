"""
Payment gateway abstraction.

The engine only needs three calls: create a charge (payment intent), move
funds to a charity's connected account, and refund. Stripe is the one
production provider; tests substitute an in-memory subclass.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from redeem.config import Settings, get_settings
from redeem.errors import DependencyError, ValidationError

logger = structlog.get_logger()


@dataclass(frozen=True)
class ChargeResult:
    """Pending reference returned by the gateway for a new charge."""

    ref: str
    status: str
    client_secret: str | None = None


class BasePaymentGateway(ABC):
    """Abstract base class for payment gateways."""

    name = "base"

    @abstractmethod
    async def create_charge(self, amount: int, currency: str, metadata: dict[str, str]) -> ChargeResult:
        """Create a payment intent. Raises DependencyError on failure."""
        ...

    @abstractmethod
    async def create_transfer(
        self,
        amount: int,
        currency: str,
        destination: str,
        metadata: dict[str, str],
        source_charge_id: str | None = None,
    ) -> str:
        """Transfer funds to a connected account. Returns the transfer id."""
        ...

    @abstractmethod
    async def create_refund(self, charge_ref: str, reason: str | None = None) -> str:
        """Refund a charge. Returns the refund id."""
        ...


def _form_metadata(metadata: dict[str, str]) -> dict[str, str]:
    return {f"metadata[{key}]": str(value) for key, value in metadata.items()}


class StripeGateway(BasePaymentGateway):
    """Stripe REST API over httpx (form-encoded bodies)."""

    name = "stripe"

    def __init__(self, secret_key: str, api_base: str = "https://api.stripe.com/v1", timeout: float = 10.0) -> None:
        self.secret_key = secret_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    async def _post(self, path: str, data: dict[str, Any], idempotency_key: str | None = None) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.secret_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(f"{self.api_base}{path}", data=data, headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "gateway_request_rejected",
                path=path,
                status=exc.response.status_code,
                provider=self.name,
            )
            raise DependencyError(f"Payment gateway rejected the request ({exc.response.status_code})") from exc
        except httpx.HTTPError as exc:
            logger.warning("gateway_request_failed", path=path, error=str(exc), provider=self.name)
            raise DependencyError("Payment gateway unavailable") from exc

    async def create_charge(self, amount: int, currency: str, metadata: dict[str, str]) -> ChargeResult:
        data: dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "automatic_payment_methods[enabled]": "true",
            "description": "Recovery commitment donation",
            **_form_metadata(metadata),
        }
        key = f"charge-{metadata.get('commitment_id', '')}"
        body = await self._post("/payment_intents", data, idempotency_key=key)
        return ChargeResult(ref=body["id"], status=body.get("status", "pending"), client_secret=body.get("client_secret"))

    async def create_transfer(
        self,
        amount: int,
        currency: str,
        destination: str,
        metadata: dict[str, str],
        source_charge_id: str | None = None,
    ) -> str:
        data: dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "destination": destination,
            **_form_metadata(metadata),
        }
        if metadata.get("commitment_id"):
            data["transfer_group"] = f"commitment_{metadata['commitment_id']}"
        if source_charge_id:
            data["source_transaction"] = source_charge_id
        key = f"transfer-{metadata.get('donation_id', '')}"
        body = await self._post("/transfers", data, idempotency_key=key)
        return body["id"]

    async def create_refund(self, charge_ref: str, reason: str | None = None) -> str:
        data: dict[str, Any] = {"payment_intent": charge_ref}
        if reason:
            data["metadata[reason]"] = reason
        body = await self._post("/refunds", data, idempotency_key=f"refund-{charge_ref}")
        return body["id"]


def create_gateway(settings: Settings | None = None) -> BasePaymentGateway:
    """Create the payment gateway selected by configuration."""
    if settings is None:
        settings = get_settings()
    provider_name = settings.payment_provider.lower()

    if provider_name == "stripe":
        return StripeGateway(
            secret_key=settings.stripe_secret_key,
            api_base=settings.stripe_api_base,
            timeout=settings.payment_http_timeout_seconds,
        )
    raise ValueError(f"Unknown payment provider: {settings.payment_provider}")


def get_payment_gateway() -> BasePaymentGateway:
    """FastAPI dependency returning the configured gateway."""
    return create_gateway(get_settings())


# ---------------------------------------------------------------------------
# Webhook authentication
# ---------------------------------------------------------------------------


def compute_signature(payload: bytes, timestamp: int, secret: str) -> str:
    signed = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    payload: bytes,
    header: str | None,
    secret: str,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> None:
    """Verify a ``t=<ts>,v1=<hex>`` signature header. Raises ValidationError."""
    if not header:
        raise ValidationError("Missing webhook signature")
    if now is None:
        now = time.time()

    timestamp: int | None = None
    signatures: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise ValidationError("Malformed webhook signature") from None
        elif key == "v1":
            signatures.append(value)

    if timestamp is None or not signatures:
        raise ValidationError("Malformed webhook signature")
    if abs(now - timestamp) > tolerance_seconds:
        raise ValidationError("Webhook timestamp outside tolerance")

    expected = compute_signature(payload, timestamp, secret)
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise ValidationError("Invalid webhook signature")


def parse_webhook_event(
    payload: bytes,
    header: str | None,
    secret: str,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> dict[str, Any]:
    """Authenticate and decode a webhook body."""
    verify_webhook_signature(payload, header, secret, tolerance_seconds, now)
    try:
        event = json.loads(payload)
    except ValueError:
        raise ValidationError("Webhook body is not valid JSON") from None
    if not isinstance(event, dict) or "type" not in event:
        raise ValidationError("Webhook body is not an event")
    return event
