"""
Custody - Identity Repository
==============================
Narrow credential-store interface used by the auth core, with the
SQLAlchemy-backed implementation.
"""

from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from custody.db.models import User, utc_now
from custody.services.permissions import Identity, Role

HASH_ALGORITHM_BCRYPT = "bcrypt"
HASH_ALGORITHM_PLAINTEXT = "plaintext"


@dataclass
class CredentialRecord:
    """A stored credential plus the account attributes needed to issue an Identity."""

    identity_id: str
    username: str
    display_name: str
    email: str
    role: Role
    tenant_id: Optional[str]
    hashed_secret: str
    hash_algorithm_version: str
    is_active: bool = True
    email_verified: bool = False

    def __repr__(self) -> str:
        # Keep the secret out of logs and tracebacks
        return (
            f"CredentialRecord(identity_id={self.identity_id!r}, username={self.username!r}, "
            f"role={self.role.value!r}, tenant_id={self.tenant_id!r}, "
            f"hash_algorithm_version={self.hash_algorithm_version!r})"
        )

    def to_identity(self) -> Identity:
        return Identity.issue(
            id=self.identity_id,
            username=self.username,
            display_name=self.display_name,
            email=self.email,
            role=self.role,
            tenant_id=self.tenant_id,
        )


class IdentityRepository(Protocol):
    async def find_by_credentials(self, username: str) -> Optional[CredentialRecord]: ...

    async def get_credential(self, identity_id: str) -> Optional[CredentialRecord]: ...

    async def save_credential(
        self, identity_id: str, hashed_secret: str, algorithm: str
    ) -> None: ...

    async def record_login(self, identity_id: str) -> None: ...

    async def list_legacy_credentials(self) -> list[CredentialRecord]: ...


def _to_record(user: User) -> CredentialRecord:
    return CredentialRecord(
        identity_id=user.id,
        username=user.username,
        display_name=user.name,
        email=user.email,
        role=user.role if isinstance(user.role, Role) else Role(user.role),
        tenant_id=user.tenant_id,
        hashed_secret=user.password,
        hash_algorithm_version=user.password_algo,
        is_active=bool(user.is_active),
        email_verified=bool(user.email_verified),
    )


class SqlIdentityRepository:
    """IdentityRepository over the ``users`` table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_by_credentials(self, username: str) -> Optional[CredentialRecord]:
        result = await self.db.execute(select(User).where(User.username == username))
        user = result.scalar_one_or_none()
        return _to_record(user) if user else None

    async def get_credential(self, identity_id: str) -> Optional[CredentialRecord]:
        user = await self.db.get(User, identity_id)
        return _to_record(user) if user else None

    async def save_credential(
        self, identity_id: str, hashed_secret: str, algorithm: str
    ) -> None:
        await self.db.execute(
            update(User)
            .where(User.id == identity_id)
            .values(password=hashed_secret, password_algo=algorithm, updated_at=utc_now())
        )
        await self.db.commit()

    async def record_login(self, identity_id: str) -> None:
        await self.db.execute(
            update(User).where(User.id == identity_id).values(last_login_at=utc_now())
        )
        await self.db.commit()

    async def list_legacy_credentials(self) -> list[CredentialRecord]:
        result = await self.db.execute(
            select(User).where(User.password_algo != HASH_ALGORITHM_BCRYPT)
        )
        return [_to_record(u) for u in result.scalars().all()]
