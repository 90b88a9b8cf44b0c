"""
tests/conftest.py
Shared fixtures: a fresh SQLite schema per test, an in-memory Redis stand-in,
seeded users / providers / adventure, and an httpx client bound to the app.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_booking_core.db"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-not-for-production"
os.environ["APP_ENV"] = "test"
os.environ["CANCELLATION_REFUND_TIERS"] = ""
os.environ["BOOKING_TAX_PERCENT"] = "0"

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

import shared.models.models  # noqa: F401
from config.database import AsyncSessionLocal, Base, engine
from config.redis_client import get_redis
from main import app
from shared.models.models import (
    Adventure,
    Booking,
    BookingStatus,
    Guide,
    PaymentStatus,
    Porter,
    User,
    UserRole,
)
from shared.utils.security import create_access_token


class FakeRedis:
    """Async subset of redis.asyncio.Redis used by the request path."""

    def __init__(self):
        self.store = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            removed += self.store.pop(key, None) is not None
        return removed

    async def exists(self, key):
        return int(key in self.store)

    async def ping(self):
        return True


def auth_headers(user: User) -> dict:
    token, _ = create_access_token(str(user.id), user.role.value, user.email)
    return {"Authorization": f"Bearer {token}"}


def today() -> date:
    return datetime.now(timezone.utc).date()


def make_booking(
    customer: User,
    adventure: Adventure,
    guide: Optional[Guide] = None,
    porter: Optional[Porter] = None,
    status: BookingStatus = BookingStatus.PENDING,
    start_in_days: int = 30,
    duration_days: int = 5,
    total: Decimal = Decimal("1000.00"),
    paid: Decimal = Decimal("0.00"),
) -> Booking:
    start = today() + timedelta(days=start_in_days)
    return Booking(
        id=uuid.uuid4(),
        booking_number=f"NATEST{uuid.uuid4().hex[:8].upper()}",
        customer_id=customer.id,
        adventure_id=adventure.id,
        guide_id=guide.id if guide else None,
        porter_id=porter.id if porter else None,
        start_date=start,
        end_date=start + timedelta(days=duration_days),
        duration_days=duration_days,
        group_size=1,
        participants=[],
        equipment_items=[],
        status=status,
        base_price=total,
        total_amount=total,
        currency="USD",
        payment_status=PaymentStatus.PENDING if paid == 0 else PaymentStatus.PARTIAL,
        payment_transactions=[],
        paid_amount=paid,
        remaining_amount=total - paid,
        refund_amount=Decimal("0.00"),
        progress={"milestones": [], "daily_reports": []},
    )


# ── Database ──────────────────────────────────────────────────

@pytest_asyncio.fixture
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSessionLocal() as session:
        yield session
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest_asyncio.fixture
async def client(db, fake_redis):
    app.dependency_overrides[get_redis] = lambda: fake_redis
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ── Seed data ─────────────────────────────────────────────────

async def _add(db, obj):
    db.add(obj)
    await db.commit()
    return obj


@pytest_asyncio.fixture
async def user(db) -> User:
    return await _add(db, User(
        id=uuid.uuid4(), email="tourist@example.com", full_name="Test Tourist", role=UserRole.TOURIST
    ))


@pytest_asyncio.fixture
async def other_user(db) -> User:
    return await _add(db, User(
        id=uuid.uuid4(), email="other@example.com", full_name="Other Tourist", role=UserRole.TOURIST
    ))


@pytest_asyncio.fixture
async def admin_user(db) -> User:
    return await _add(db, User(
        id=uuid.uuid4(), email="admin@example.com", full_name="Admin", role=UserRole.ADMIN
    ))


@pytest_asyncio.fixture
async def guide_user(db) -> User:
    return await _add(db, User(
        id=uuid.uuid4(), email="guide@example.com", full_name="Test Guide", role=UserRole.GUIDE
    ))


@pytest_asyncio.fixture
async def other_guide_user(db) -> User:
    return await _add(db, User(
        id=uuid.uuid4(), email="guide2@example.com", full_name="Other Guide", role=UserRole.GUIDE
    ))


@pytest_asyncio.fixture
async def porter_user(db) -> User:
    return await _add(db, User(
        id=uuid.uuid4(), email="porter@example.com", full_name="Test Porter", role=UserRole.PORTER
    ))


@pytest_asyncio.fixture
async def guide(db, guide_user: User) -> Guide:
    return await _add(db, Guide(id=uuid.uuid4(), user_id=guide_user.id, daily_rate=Decimal("50.00")))


@pytest_asyncio.fixture
async def porter(db, porter_user: User) -> Porter:
    return await _add(db, Porter(id=uuid.uuid4(), user_id=porter_user.id, daily_rate=Decimal("25.00")))


@pytest_asyncio.fixture
async def adventure(db, guide_user: User) -> Adventure:
    return await _add(db, Adventure(
        id=uuid.uuid4(),
        provider_id=guide_user.id,
        title="Annapurna Base Camp Trek",
        base_price=Decimal("1000.00"),
        currency="USD",
        permits=[
            {"name": "ACAP", "cost": 30, "required": True, "included_in_price": False},
            {"name": "TIMS", "cost": 10, "required": True, "included_in_price": False},
            {"name": "Park entry", "cost": 15, "required": True, "included_in_price": True},
        ],
        group_discounts=[{"min_size": 4, "percent": 5}, {"min_size": 8, "percent": 10}],
        early_bird_discount={"days_in_advance": 60, "percent": 10},
        availability_windows=[],
        blackout_dates=[],
    ))
