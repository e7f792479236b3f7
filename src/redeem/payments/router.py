"""Payment gateway webhook endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from redeem.config import get_settings
from redeem.database import get_session
from redeem.payments.gateway import BasePaymentGateway, get_payment_gateway, parse_webhook_event
from redeem.payments.service import handle_webhook_event
from redeem.redis_client import get_optional_redis

router = APIRouter(prefix="/api/v1", tags=["Payments"])


@router.post("/payments/webhook")
async def payment_webhook_endpoint(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_session),
    gateway: BasePaymentGateway = Depends(get_payment_gateway),
    redis: object | None = Depends(get_optional_redis),
) -> dict[str, object]:
    """Authenticated gateway callback; resolves pending donations."""
    settings = get_settings()
    payload = await request.body()
    event = parse_webhook_event(
        payload,
        stripe_signature,
        settings.stripe_webhook_secret,
        settings.stripe_webhook_tolerance_seconds,
    )
    outcome = await handle_webhook_event(db, event, gateway, redis)
    return {"received": True, "outcome": outcome}
