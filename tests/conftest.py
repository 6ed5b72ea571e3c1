"""
Pytest configuration and fixtures
Shared test setup for all test modules.

Every test gets its own SQLite file database (aiosqlite, WAL mode, BEGIN
IMMEDIATE for seat transactions) so concurrent seat mutators really contend
for the write lock.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("STRIPE_MANAGER_PRICE_ID", "price_manager_seat")
os.environ.setdefault("STRIPE_TECH_PRICE_ID", "price_tech_seat")

from datetime import timedelta  # noqa: E402
from typing import AsyncGenerator, Optional  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from main import app  # noqa: E402
from maintenancehub.core.security import create_access_token, hash_password  # noqa: E402
from maintenancehub.db.base import utcnow  # noqa: E402
from maintenancehub.db.session import (  # noqa: E402
    build_engine,
    build_session_factory,
    get_db,
    get_session_factory,
)
from maintenancehub.models import Base, Company, Invitation, PlatformRole, User  # noqa: E402
from maintenancehub.models.company import PackageType  # noqa: E402
from maintenancehub.models.invitation import InvitationStatus  # noqa: E402

TEST_PASSWORD = "TestPassword123!"


@pytest.fixture
async def engine(tmp_path):
    test_engine = build_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'maintenancehub.db'}", poolclass=NullPool
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with the app's sessions bound to the test database."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_company(session_factory):
    """Create a paying company (active subscription, full access) unless overridden."""

    async def _make(
        name: str = "Acme Plant",
        manager_seats: int = 1,
        tech_seats: int = 2,
        **fields,
    ) -> Company:
        values = {
            "package_type": PackageType.full_access.value,
            "subscription_status": "active",
        }
        values.update(fields)
        company = Company(
            name=name,
            purchased_manager_seats=manager_seats,
            purchased_tech_seats=tech_seats,
            **values,
        )
        async with session_factory() as session:
            session.add(company)
            await session.commit()
        return company

    return _make


@pytest.fixture
def make_user(session_factory):
    """Insert a user directly, bypassing seat checks (test setup only)."""
    counter = {"n": 0}

    async def _make(
        company_id: Optional[str] = None,
        role: str = "tech",
        email: Optional[str] = None,
        platform_admin: bool = False,
        password: Optional[str] = None,
    ) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            hashed_password=hash_password(password) if password else None,
            role=role,
            company_id=company_id,
            platform_role=(
                PlatformRole.platform_admin.value
                if platform_admin
                else PlatformRole.customer_user.value
            ),
        )
        async with session_factory() as session:
            session.add(user)
            await session.commit()
        return user

    return _make


@pytest.fixture
def make_invitation(session_factory):
    """Insert an invitation directly (test setup only)."""
    counter = {"n": 0}

    async def _make(
        company_id: str,
        role: str = "tech",
        email: Optional[str] = None,
        status: str = InvitationStatus.pending.value,
        expires_in: timedelta = timedelta(days=7),
    ) -> Invitation:
        counter["n"] += 1
        invitation = Invitation(
            company_id=company_id,
            email=email or f"invitee{counter['n']}@example.com",
            role=role,
            status=status,
            token=f"token-{counter['n']}-{company_id}",
            expires_at=utcnow() + expires_in,
        )
        async with session_factory() as session:
            session.add(invitation)
            await session.commit()
        return invitation

    return _make


def auth_headers(
    user: User,
    simulated_role: Optional[str] = None,
    simulated_package: Optional[str] = None,
) -> dict:
    token = create_access_token(
        subject=user.id,
        company_id=user.company_id,
        role=user.role,
        platform_role=user.platform_role,
        simulated_role=simulated_role,
        simulated_package=simulated_package,
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    return auth_headers
