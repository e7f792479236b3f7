"""Shared test fixtures.

Tests run against a throwaway SQLite file (aiosqlite) with the schema built
from the ORM metadata, and an in-memory payment gateway. Redis is never
initialized, so rate limiting and pushes are skipped.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from decimal import Decimal

_TEST_DIR = tempfile.mkdtemp(prefix="redeem_test_")
os.environ["REDEEM_DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DIR, 'redeem_test.db')}"
os.environ["REDEEM_LOG_FORMAT"] = "console"
os.environ["REDEEM_STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["REDEEM_JWT_SECRET"] = "test-secret-key-for-jwt-signing-only"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from redeem.config import get_settings

get_settings.cache_clear()

from redeem.auth.jwt import create_access_token  # noqa: E402
from redeem.database import close_db, create_tables, get_engine, get_session_factory, init_db  # noqa: E402
from redeem.db.base import Base  # noqa: E402
from redeem.db.enums import ActionCategory, ActionDifficulty  # noqa: E402
from redeem.db.models import Action, CharityOrganization, User  # noqa: E402
from redeem.errors import DependencyError  # noqa: E402
from redeem.payments.gateway import BasePaymentGateway, ChargeResult, get_payment_gateway  # noqa: E402


class FakeGateway(BasePaymentGateway):
    """In-memory gateway that records every call."""

    name = "stripe"

    def __init__(self) -> None:
        self.charges: list[dict] = []
        self.transfers: list[dict] = []
        self.refunds: list[str] = []
        self.fail_charges = False
        self.fail_transfers = False

    async def create_charge(self, amount: int, currency: str, metadata: dict[str, str]) -> ChargeResult:
        if self.fail_charges:
            raise DependencyError("Payment gateway unavailable")
        ref = f"pi_test_{len(self.charges) + 1}"
        self.charges.append({"ref": ref, "amount": amount, "currency": currency, "metadata": metadata})
        return ChargeResult(ref=ref, status="requires_payment_method", client_secret=f"{ref}_secret")

    async def create_transfer(
        self,
        amount: int,
        currency: str,
        destination: str,
        metadata: dict[str, str],
        source_charge_id: str | None = None,
    ) -> str:
        if self.fail_transfers:
            raise DependencyError("Payment gateway unavailable")
        transfer_id = f"tr_test_{len(self.transfers) + 1}"
        self.transfers.append({
            "id": transfer_id,
            "amount": amount,
            "destination": destination,
            "metadata": metadata,
            "source_charge_id": source_charge_id,
        })
        return transfer_id

    async def create_refund(self, charge_ref: str, reason: str | None = None) -> str:
        self.refunds.append(charge_ref)
        return f"re_test_{len(self.refunds)}"


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[None, None]:
    """Fresh schema per test."""
    await init_db(get_settings().database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await create_tables()
    yield
    await close_db()


@pytest_asyncio.fixture
async def db(db_engine: None) -> AsyncGenerator[AsyncSession, None]:
    async with get_session_factory()() as session:
        yield session


async def _persist(row):
    """Insert in a short-lived session so the row stays loaded after test-side rollbacks."""
    async with get_session_factory()() as session:
        session.add(row)
        await session.commit()
    return row


async def _make_user(email: str, name: str) -> User:
    return await _persist(User(email=email, display_name=name, created_at=datetime.now(timezone.utc)))


@pytest_asyncio.fixture
async def owner(db: AsyncSession) -> User:
    return await _make_user("owner@example.com", "Owner")


@pytest_asyncio.fixture
async def partner(db: AsyncSession) -> User:
    return await _make_user("partner@example.com", "Partner")


@pytest_asyncio.fixture
async def stranger(db: AsyncSession) -> User:
    return await _make_user("stranger@example.com", "Stranger")


@pytest_asyncio.fixture
async def action(db: AsyncSession) -> Action:
    """Catalog action worth 3 service hours."""
    now = datetime.now(timezone.utc)
    row = Action(
        title="Serve at soup kitchen",
        description="Help serve meals at a local soup kitchen.",
        category=ActionCategory.COMMUNITY_SERVICE,
        difficulty=ActionDifficulty.MEDIUM,
        estimated_hours=Decimal("3"),
        proof_instructions="Photo of you serving food.",
        requires_location=True,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    return await _persist(row)


@pytest_asyncio.fixture
async def charity(db: AsyncSession) -> CharityOrganization:
    now = datetime.now(timezone.utc)
    row = CharityOrganization(
        name="Test Charity",
        category="HUMAN_TRAFFICKING",
        website="https://charity.example.org",
        email="give@charity.example.org",
        tax_id="00-0000000",
        payout_account_id="acct_test_charity",
        is_active=True,
        is_verified=True,
        created_at=now,
        updated_at=now,
    )
    return await _persist(row)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def client(db_engine: None, gateway: FakeGateway) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client over the ASGI app with the fake gateway wired in."""
    from redeem.main import create_app

    app = create_app()
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}
