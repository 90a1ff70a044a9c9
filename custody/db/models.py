"""
Custody - Database Models
==========================
SQLAlchemy models for tenants, credentials and the audit trail, plus the
tenant-scoped item/evidence tables the guarded endpoints operate on.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean, DateTime, Enum, ForeignKey, String, Text, JSON, Index
)
from sqlalchemy.orm import relationship, Mapped, mapped_column

from custody.db.database import Base
from custody.services.permissions import Role


def _new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Naive UTC wall clock, matching the DateTime columns below."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an offset-aware datetime to the naive UTC form the columns store."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# ============== MODELS ==============

class Tenant(Base):
    """
    Isolation boundary: one case/property. All case data and most
    identities belong to exactly one tenant.
    """
    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    users = relationship("User", back_populates="tenant")


class User(Base):
    """
    Account and credential record.

    ``password`` holds a bcrypt hash, or the legacy plaintext value for
    accounts created before hashing was introduced (``password_algo`` is
    ``plaintext`` for those until they are migrated).
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    username: Mapped[str] = mapped_column(String(150), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    password: Mapped[str] = mapped_column(String(255), nullable=False)
    password_algo: Mapped[str] = mapped_column(String(20), nullable=False, default="bcrypt")

    role: Mapped[Role] = mapped_column(
        Enum(Role, values_callable=lambda x: [e.value for e in x], native_enum=False, length=32),
        nullable=False,
        default=Role.PROPERTY_OWNER,
    )
    tenant_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True, index=True
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)

    tenant = relationship("Tenant", back_populates="users")


class AuditLog(Base):
    """
    Append-only audit trail for chain of custody and compliance review.

    No foreign key to users: entries must outlive the accounts they name,
    which is also why ``username`` is stored alongside ``user_id``.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Action info
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    resource: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)  # "type:id"
    resource_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Details
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Request info
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    # Outcome
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="info")

    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index("ix_audit_user_action_ts", "user_id", "action", "timestamp"),
        Index("ix_audit_timestamp", "timestamp"),
        Index("ix_audit_action", "action"),
        Index("ix_audit_resource", "resource"),
    )


class StolenItem(Base):
    """A reported item within a tenant's case."""
    __tablename__ = "stolen_items"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    tenant_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    evidence = relationship(
        "Evidence", back_populates="item", cascade="all, delete-orphan", passive_deletes=True
    )


class Evidence(Base):
    """Evidence file metadata. Storage of the file itself lives elsewhere."""
    __tablename__ = "evidence"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    item_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("stolen_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tenant_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    content_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)  # SHA256
    uploaded_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    item = relationship("StolenItem", back_populates="evidence")
