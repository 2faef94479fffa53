"""Pytest configuration and fixtures."""
from datetime import datetime
from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.limiter import limiter
from app.auth.security import create_access_token
from app.models.user import User
from app.models.event import Event
from app.models.ticket import Ticket
from app.models.affiliate import Affiliate
from main import app


@pytest.fixture
async def test_db():
    """Create test database."""
    TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
    # One shared connection, so the in-memory database outlives each checkout
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    AsyncSessionLocal = sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with AsyncSessionLocal() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def client(test_db):
    """HTTP client bound to the app, sharing the test session."""
    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    limiter.reset()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_headers(user: User) -> dict:
    token = create_access_token(data={"sub": user.uuid, "email": user.email, "role": user.user_role})
    return {"Authorization": f"Bearer {token}"}


async def make_user(
    db,
    email: str,
    role: str = "fan",
    connect_account: Optional[str] = None,
    status: str = "active",
) -> User:
    user = User(
        name=email.split("@")[0].title(),
        email=email,
        user_role=role,
        status=status,
        stripe_connect_account_id=connect_account,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def make_event(
    db,
    artist: User,
    status: str = "scheduled",
    ticket_price: int = 2000,
    capacity: Optional[int] = None,
    tickets_sold: int = 0,
    ended_at: Optional[datetime] = None,
) -> Event:
    event = Event(
        artist_id=artist.uuid,
        title="Rooftop Session",
        status=status,
        ticket_price=ticket_price,
        currency="eur",
        capacity=capacity,
        tickets_sold=tickets_sold,
        ended_at=ended_at,
    )
    db.add(event)
    await db.commit()
    await db.refresh(event)
    return event


async def make_ticket(
    db,
    event: Event,
    user: User,
    status: str = "pending",
    payment_intent_id: Optional[str] = None,
    affiliate_id: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> Ticket:
    ticket = Ticket(
        event_id=event.uuid,
        user_id=user.uuid,
        affiliate_id=affiliate_id,
        purchase_price=event.ticket_price,
        currency=event.currency,
        payment_intent_id=payment_intent_id,
        status=status,
    )
    if created_at is not None:
        ticket.created_at = created_at
    db.add(ticket)
    await db.commit()
    await db.refresh(ticket)
    return ticket


async def make_affiliate(db, user: User, code: str, parent: Optional[Affiliate] = None) -> Affiliate:
    affiliate = Affiliate(
        uuid=user.uuid,
        referral_code=code,
        parent_affiliate_id=parent.uuid if parent else None,
        grandparent_affiliate_id=parent.parent_affiliate_id if parent else None,
    )
    db.add(affiliate)
    await db.commit()
    await db.refresh(affiliate)
    return affiliate


@pytest.fixture
async def artist(test_db):
    return await make_user(test_db, "artist@example.com", role="artist", connect_account="acct_artist123")


@pytest.fixture
async def fan(test_db):
    return await make_user(test_db, "fan@example.com")
