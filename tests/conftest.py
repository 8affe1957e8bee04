"""
Test fixtures for the Campus Points test suite.

This module provides shared fixtures used across all test files:

  - db_engine / db_session: Fresh in-memory SQLite database for each test
  - make_user / make_promotion / make_event: factories that insert rows
  - users: a standard cast (regular, other, cashier, suspicious cashier,
    manager, superuser) with known balances
  - client: Async HTTP test client with get_db overridden
  - auth_headers: Bearer headers for any seeded user
  - points_of / transaction_count: read committed state through a fresh session

Key design decisions:
  - In-memory SQLite (sqlite+aiosqlite://) is used for speed and isolation.
    Each test gets a completely fresh database — no state leaks between tests.
  - Service tests call the ledger directly with db_session, exactly as the
    routers do; HTTP tests go through the real app with the test session.
  - Tokens are minted with create_access_token; login is not part of
    this service.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

import campus_points.models  # noqa: F401
from campus_points.database import Base, get_db
from campus_points.main import app
from campus_points.models.event import Event, EventGuest, EventOrganizer
from campus_points.models.promotion import Promotion, PromotionType
from campus_points.models.transaction import Transaction
from campus_points.models.user import Role, User
from campus_points.security import create_access_token


# In-memory SQLite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh async engine with all tables for each test."""
    engine = create_async_engine(TEST_DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide an async session bound to the test engine."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_user(db_session):
    """Insert and commit a user; returns the User."""

    async def _make_user(
        utorid: str,
        role: Role = Role.REGULAR,
        points: int = 0,
        verified: bool = True,
        suspicious: bool = False,
    ) -> User:
        user = User(
            utorid=utorid,
            name=utorid.title(),
            role=role,
            points=points,
            verified=verified,
            suspicious=suspicious,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make_user


@pytest.fixture
def make_promotion(db_session):
    """Insert and commit a promotion that is active now unless told otherwise."""

    async def _make_promotion(
        type: PromotionType = PromotionType.AUTOMATIC,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        min_spending=None,
        rate: float | None = None,
        points: int | None = None,
        name: str = "Promo",
    ) -> Promotion:
        now = datetime.now(timezone.utc)
        promotion = Promotion(
            name=name,
            description="",
            type=type,
            start_time=start_time or now - timedelta(days=1),
            end_time=end_time or now + timedelta(days=1),
            min_spending=min_spending,
            rate=rate,
            points=points,
        )
        db_session.add(promotion)
        await db_session.commit()
        return promotion

    return _make_promotion


@pytest.fixture
def make_event(db_session):
    """Insert and commit an event with confirmed/unconfirmed guests and organizers."""

    async def _make_event(
        points_remain: int = 1000,
        confirmed: list[User] = (),
        unconfirmed: list[User] = (),
        organizers: list[User] = (),
        name: str = "Orientation",
    ) -> Event:
        event = Event(name=name, points_remain=points_remain, points_awarded=0)
        db_session.add(event)
        await db_session.flush()
        for user in confirmed:
            db_session.add(EventGuest(event_id=event.id, user_id=user.id, confirmed=True))
        for user in unconfirmed:
            db_session.add(EventGuest(event_id=event.id, user_id=user.id, confirmed=False))
        for user in organizers:
            db_session.add(EventOrganizer(event_id=event.id, user_id=user.id))
        await db_session.commit()
        return event

    return _make_event


@pytest_asyncio.fixture
async def users(make_user):
    """
    The standard cast used throughout the suite.

    regular and other start at 100 points; staff start at 0.
    """

    class Cast:
        pass

    cast = Cast()
    cast.regular = await make_user("regular1", points=100)
    cast.other = await make_user("regular2", points=100)
    cast.unverified = await make_user("newbie", points=100, verified=False)
    cast.cashier = await make_user("cashier1", role=Role.CASHIER)
    cast.suspicious_cashier = await make_user(
        "cashier2", role=Role.CASHIER, suspicious=True
    )
    cast.manager = await make_user("manager1", role=Role.MANAGER)
    cast.superuser = await make_user("super1", role=Role.SUPERUSER)
    return cast


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(session_factory):
    """
    Async HTTP test client with the test database injected.

    This overrides the get_db dependency so all requests hit the
    in-memory test database instead of the real one.
    """

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Build an Authorization header for a seeded user."""

    def _auth_headers(user: User) -> dict:
        token = create_access_token({"sub": str(user.id)})
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


@pytest.fixture
def points_of(session_factory):
    """Read a user's current balance through a fresh session."""

    async def _points_of(user: User | int) -> int:
        user_id = user if isinstance(user, int) else user.id
        async with session_factory() as session:
            return await session.scalar(select(User.points).where(User.id == user_id))

    return _points_of


@pytest.fixture
def transaction_count(session_factory):
    """Count committed ledger rows through a fresh session."""

    async def _transaction_count() -> int:
        async with session_factory() as session:
            return await session.scalar(select(func.count()).select_from(Transaction))

    return _transaction_count
