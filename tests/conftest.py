"""
Custody - Test Configuration
============================
Pytest fixtures and configuration for all test types.
"""

import os
from typing import AsyncGenerator, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment before importing app
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SESSION_SECRET"] = "test_session_secret_key_0123456789abcdef"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["CORS_ORIGINS"] = "http://localhost:3000"
os.environ["ENVIRONMENT"] = "test"
os.environ["RATE_LIMIT_AUTH"] = "1000/minute"
os.environ["RATE_LIMIT_GLOBAL"] = "1000/minute"
os.environ["AUDIT_WRITE_TIMEOUT_SECONDS"] = "2"
os.environ["ALERT_WEBHOOK_URL"] = ""

from custody.db.database import Base
from custody.db.models import AuditLog, Evidence, StolenItem, Tenant, User
from custody.services.audit import AuditLogger, SqlAuditStore
from custody.services.identity import HASH_ALGORITHM_BCRYPT, HASH_ALGORITHM_PLAINTEXT
from custody.services.password import PasswordService
from custody.services.permissions import Identity, Role
from custody.services.session import SessionStore

STRONG_PASSWORD = "Ev1dence!Locker42"


# ===========================================
# Database Fixtures
# ===========================================

@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create async engine for testing with in-memory SQLite."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def audit_store(session_factory) -> SqlAuditStore:
    """Audit store writing through its own sessions on the test engine."""
    return SqlAuditStore(session_factory)


@pytest.fixture
def audit_logger(audit_store) -> AuditLogger:
    return AuditLogger(audit_store)


@pytest.fixture
def audit_entries(session_factory):
    """Fetch persisted audit entries, optionally filtered by column values."""

    async def fetch(**filters) -> list[AuditLog]:
        stmt = select(AuditLog).order_by(AuditLog.timestamp)
        for column, value in filters.items():
            stmt = stmt.where(getattr(AuditLog, column) == value)
        async with session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    return fetch


# ===========================================
# Tenant and User Fixtures
# ===========================================

@pytest_asyncio.fixture
async def tenant_a(db_session: AsyncSession) -> Tenant:
    tenant = Tenant(id="farm-A", name="Farm A", slug=f"farm-a-{uuid4().hex[:6]}")
    db_session.add(tenant)
    await db_session.commit()
    return tenant


@pytest_asyncio.fixture
async def tenant_b(db_session: AsyncSession) -> Tenant:
    tenant = Tenant(id="farm-B", name="Farm B", slug=f"farm-b-{uuid4().hex[:6]}")
    db_session.add(tenant)
    await db_session.commit()
    return tenant


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Factory creating a user; ``legacy=True`` stores the password in plaintext."""

    async def create(
        role: Role = Role.PROPERTY_OWNER,
        tenant: Optional[Tenant] = None,
        password: str = STRONG_PASSWORD,
        legacy: bool = False,
        is_active: bool = True,
        email_verified: bool = True,
        username: Optional[str] = None,
    ) -> User:
        username = username or f"{role.value}_{uuid4().hex[:8]}"
        user = User(
            username=username,
            name=username.replace("_", " ").title(),
            email=f"{username}@example.com",
            password=password if legacy else await PasswordService(rounds=4).hash(password),
            password_algo=HASH_ALGORITHM_PLAINTEXT if legacy else HASH_ALGORITHM_BCRYPT,
            role=role,
            tenant_id=tenant.id if tenant else None,
            is_active=is_active,
            email_verified=email_verified,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return create


def identity_for(user: User) -> Identity:
    return Identity.issue(
        id=user.id,
        username=user.username,
        display_name=user.name,
        email=user.email,
        role=user.role,
        tenant_id=user.tenant_id,
    )


@pytest_asyncio.fixture
async def owner_a(make_user, tenant_a) -> User:
    return await make_user(Role.PROPERTY_OWNER, tenant_a)


@pytest_asyncio.fixture
async def owner_b(make_user, tenant_b) -> User:
    return await make_user(Role.PROPERTY_OWNER, tenant_b)


@pytest_asyncio.fixture
async def officer(make_user) -> User:
    return await make_user(Role.LAW_ENFORCEMENT)


@pytest_asyncio.fixture
async def super_admin(make_user) -> User:
    return await make_user(Role.SUPER_ADMIN)


# ===========================================
# Item and Evidence Fixtures
# ===========================================

@pytest_asyncio.fixture
async def item_b(db_session: AsyncSession, tenant_b, owner_b) -> StolenItem:
    item = StolenItem(
        tenant_id=tenant_b.id,
        name="Tractor",
        description="John Deere 5075E",
        created_by=owner_b.id,
    )
    db_session.add(item)
    await db_session.commit()
    return item


@pytest_asyncio.fixture
async def evidence_b(db_session: AsyncSession, item_b, owner_b) -> Evidence:
    evidence = Evidence(
        item_id=item_b.id,
        tenant_id=item_b.tenant_id,
        file_name="receipt.pdf",
        content_type="application/pdf",
        content_hash="a" * 64,
        uploaded_by=owner_b.id,
    )
    db_session.add(evidence)
    await db_session.commit()
    return evidence


# ===========================================
# HTTP Client Fixtures
# ===========================================

@pytest_asyncio.fixture
async def client(db_session: AsyncSession, audit_store) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client for API testing."""
    from custody.api.deps import get_audit_store
    from custody.api.server import app
    from custody.db.database import get_db

    # Override database dependency
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_store] = lambda: audit_store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def login_as(client: AsyncClient):
    """Put a valid session cookie for ``user`` on the client without a login round trip."""

    def set_session(user: User) -> AsyncClient:
        sessions = SessionStore()
        client.cookies.set(sessions.cookie_name, sessions.issue(identity_for(user)))
        return client

    return set_session
