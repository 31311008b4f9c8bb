"""
Pytest fixtures for testing.

Provides:
- Async database session (SQLite in-memory)
- Test client with auth helpers
- Factory fixtures for users, roles, permissions and grants
- Seeded system roles and an admin caller
"""

import os

# Settings are read at import time; these must be set first.
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("AUTH_BCRYPT_ROUNDS", "4")
os.environ.setdefault("AUTH_SECRET_KEY", "test-secret-key")

from datetime import datetime
from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from rbac_admin.main import app
from rbac_admin.models.base import Base
from rbac_admin.models.rbac import Permission, Role, RolePermissionGrant, UserRoleGrant
from rbac_admin.models.user import User
from rbac_admin.api.dependencies.database import get_db
from rbac_admin.db.seed import SeedResult, seed
from rbac_admin.services.auth import create_tokens, hash_password


# Test database URL (SQLite in-memory for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

DEFAULT_PASSWORD = "Str0ng!Pass"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """
    Database session shared by the test and the app.

    Audit records commit as they are written, so the schema is recreated
    per test instead of relying on a rollback.
    """
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def client(db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    Test client with database session override.
    """

    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


# ============ Factory Fixtures ============


class UserFactory:
    """Factory for creating test users."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        username: str | None = None,
        email: str | None = None,
        password: str = DEFAULT_PASSWORD,
        is_active: bool = True,
    ) -> User:
        """Create a user in the database."""
        suffix = uuid4().hex[:8]
        user = User(
            username=username or f"user_{suffix}",
            email=email or f"test-{suffix}@example.com",
            password_hash=hash_password(password),
            first_name="Test",
            last_name="User",
            is_active=is_active,
        )
        self.db.add(user)
        await self.db.commit()
        return user


class RoleFactory:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        name: str | None = None,
        is_active: bool = True,
        is_protected: bool = False,
    ) -> Role:
        role = Role(
            name=name or f"role_{uuid4().hex[:8]}",
            description="Test role",
            is_active=is_active,
            is_protected=is_protected,
        )
        self.db.add(role)
        await self.db.commit()
        return role


class PermissionFactory:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        resource: str = "articles",
        action: str | None = None,
        is_active: bool = True,
        is_protected: bool = False,
    ) -> Permission:
        action = action or f"act_{uuid4().hex[:8]}"
        permission = Permission(
            name=f"{resource}:{action}",
            resource=resource,
            action=action,
            is_active=is_active,
            is_protected=is_protected,
        )
        self.db.add(permission)
        await self.db.commit()
        return permission


class GrantHelper:
    """Writes grant rows directly, bypassing services and validation."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def assign(
        self,
        user: User,
        role: Role,
        expires_at: datetime | None = None,
        is_active: bool = True,
    ) -> UserRoleGrant:
        grant = UserRoleGrant(
            user_id=user.id,
            role_id=role.id,
            expires_at=expires_at,
            is_active=is_active,
        )
        self.db.add(grant)
        await self.db.commit()
        return grant

    async def grant(
        self,
        role: Role,
        permission: Permission,
        expires_at: datetime | None = None,
        is_active: bool = True,
    ) -> RolePermissionGrant:
        grant = RolePermissionGrant(
            role_id=role.id,
            permission_id=permission.id,
            expires_at=expires_at,
            is_active=is_active,
        )
        self.db.add(grant)
        await self.db.commit()
        return grant


@pytest_asyncio.fixture
async def user_factory(db: AsyncSession) -> UserFactory:
    """Fixture that provides UserFactory."""
    return UserFactory(db)


@pytest_asyncio.fixture
async def role_factory(db: AsyncSession) -> RoleFactory:
    return RoleFactory(db)


@pytest_asyncio.fixture
async def permission_factory(db: AsyncSession) -> PermissionFactory:
    return PermissionFactory(db)


@pytest_asyncio.fixture
async def grants(db: AsyncSession) -> GrantHelper:
    return GrantHelper(db)


@pytest_asyncio.fixture
async def test_user(user_factory: UserFactory) -> User:
    """Create a standard test user with no roles."""
    return await user_factory.create()


# ============ Seeded Data ============


@pytest_asyncio.fixture
async def seeded(db: AsyncSession) -> SeedResult:
    """System roles, default permissions and their mapping."""
    return await seed(db)


async def get_role(db: AsyncSession, name: str) -> Role:
    return (await db.execute(select(Role).where(Role.name == name))).scalar_one()


async def get_permission(db: AsyncSession, resource: str, action: str) -> Permission:
    stmt = select(Permission).where(Permission.resource == resource, Permission.action == action)
    return (await db.execute(stmt)).scalar_one()


@pytest_asyncio.fixture
async def admin_user(
    db: AsyncSession,
    seeded: SeedResult,
    user_factory: UserFactory,
    grants: GrantHelper,
) -> User:
    """A user holding the seeded super_admin role."""
    user = await user_factory.create(username="admin", email="admin@example.com")
    await grants.assign(user, await get_role(db, "super_admin"))
    return user


@pytest_asyncio.fixture
async def manager_user(
    db: AsyncSession,
    seeded: SeedResult,
    user_factory: UserFactory,
    grants: GrantHelper,
) -> User:
    """A user holding the seeded manager role (reads, no admin role)."""
    user = await user_factory.create(username="manager", email="manager@example.com")
    await grants.assign(user, await get_role(db, "manager"))
    return user


# ============ Auth Helpers ============


def get_auth_headers(user: User) -> dict[str, str]:
    """Bearer headers for any user."""
    token = create_tokens(user.id).access_token
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def auth_headers(test_user: User) -> dict[str, str]:
    """Get auth headers for test user."""
    return get_auth_headers(test_user)


@pytest_asyncio.fixture
async def admin_auth_headers(admin_user: User) -> dict[str, str]:
    """Get auth headers for admin user."""
    return get_auth_headers(admin_user)


@pytest_asyncio.fixture
async def manager_auth_headers(manager_user: User) -> dict[str, str]:
    return get_auth_headers(manager_user)


@pytest.fixture
def headers_for():
    """``headers_for(user)`` -> bearer headers, for users made inside a test."""
    return get_auth_headers


@pytest.fixture
def lookup(db: AsyncSession):
    """Find seeded rows by name: ``await lookup.role("admin")``."""

    class Lookup:
        @staticmethod
        async def role(name: str) -> Role:
            return await get_role(db, name)

        @staticmethod
        async def permission(resource: str, action: str) -> Permission:
            return await get_permission(db, resource, action)

    return Lookup()
