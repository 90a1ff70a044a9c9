"""
Custody - Roles, Permissions and Identity
==========================================
Closed role and permission enums, the role -> permission table, and the
Identity value carried by a session.
"""

from dataclasses import dataclass, field
from enum import Enum as PyEnum
from typing import Any, Optional


class Role(str, PyEnum):
    PROPERTY_OWNER = "property_owner"
    LAW_ENFORCEMENT = "law_enforcement"
    INSURANCE_AGENT = "insurance_agent"
    BROKER = "broker"
    BANKER = "banker"
    ASSET_MANAGER = "asset_manager"
    ASSISTANT = "assistant"
    SECRETARY = "secretary"
    MANAGER = "manager"
    EXECUTIVE_ASSISTANT = "executive_assistant"
    SUPER_ADMIN = "super_admin"


class Permission(str, PyEnum):
    READ_OWN = "read:own"
    WRITE_OWN = "write:own"
    READ_ALL = "read:all"
    WRITE_ALL = "write:all"
    UPLOAD_EVIDENCE = "upload:evidence"
    GENERATE_REPORTS = "generate:reports"
    ADMIN_USERS = "admin:users"
    ADMIN_SYSTEM = "admin:system"
    ADMIN_TENANTS = "admin:tenants"
    SUPER_ADMIN = "super:admin"

    @property
    def is_admin(self) -> bool:
        return self.value.startswith("admin:") or self is Permission.SUPER_ADMIN


_STAKEHOLDER = frozenset({
    Permission.READ_OWN,
    Permission.WRITE_OWN,
    Permission.UPLOAD_EVIDENCE,
})
_SUPPORT_STAFF = frozenset({Permission.READ_OWN, Permission.WRITE_OWN})

ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.PROPERTY_OWNER: frozenset({
        Permission.READ_OWN,
        Permission.WRITE_OWN,
        Permission.UPLOAD_EVIDENCE,
        Permission.GENERATE_REPORTS,
    }),
    Role.LAW_ENFORCEMENT: frozenset({
        Permission.READ_ALL,
        Permission.WRITE_ALL,
        Permission.ADMIN_USERS,
        Permission.ADMIN_SYSTEM,
    }),
    Role.SUPER_ADMIN: frozenset({
        Permission.READ_ALL,
        Permission.WRITE_ALL,
        Permission.ADMIN_USERS,
        Permission.ADMIN_SYSTEM,
        Permission.ADMIN_TENANTS,
        Permission.SUPER_ADMIN,
    }),
    Role.INSURANCE_AGENT: _STAKEHOLDER,
    Role.BROKER: _STAKEHOLDER,
    Role.BANKER: _STAKEHOLDER,
    Role.ASSET_MANAGER: _STAKEHOLDER,
    Role.ASSISTANT: _SUPPORT_STAFF,
    Role.SECRETARY: _SUPPORT_STAFF,
    Role.MANAGER: _SUPPORT_STAFF,
    Role.EXECUTIVE_ASSISTANT: _SUPPORT_STAFF,
}

# Roles whose identities are not bound to a tenant.
PLATFORM_ROLES = frozenset({Role.SUPER_ADMIN, Role.LAW_ENFORCEMENT})


def permissions_for(role: Role) -> frozenset[Permission]:
    """Permission set granted to ``role`` at credential-issuance time."""
    return ROLE_PERMISSIONS[role]


@dataclass(frozen=True)
class Identity:
    """
    An authenticated actor for the lifetime of one session.

    ``permissions`` is fixed when the identity is issued; a role change only
    takes effect after the user logs in again.
    """

    id: str
    username: str
    display_name: str
    email: str
    role: Role
    tenant_id: Optional[str] = None
    permissions: frozenset[Permission] = field(default_factory=frozenset)

    @classmethod
    def issue(
        cls,
        id: str,
        username: str,
        display_name: str,
        email: str,
        role: Role,
        tenant_id: Optional[str] = None,
    ) -> "Identity":
        """Build an identity with permissions derived from ``role``."""
        return cls(
            id=id,
            username=username,
            display_name=display_name,
            email=email,
            role=role,
            tenant_id=tenant_id,
            permissions=permissions_for(role),
        )

    def has(self, *permissions: Permission) -> bool:
        """True if the identity holds any of ``permissions``."""
        return any(p in self.permissions for p in permissions)

    @property
    def is_platform_wide(self) -> bool:
        return self.tenant_id is None and self.role in PLATFORM_ROLES

    @property
    def has_admin_permission(self) -> bool:
        return any(p.is_admin for p in self.permissions)

    def to_claims(self) -> dict[str, Any]:
        return {
            "sub": self.id,
            "username": self.username,
            "name": self.display_name,
            "email": self.email,
            "role": self.role.value,
            "tenant_id": self.tenant_id,
            "permissions": sorted(p.value for p in self.permissions),
        }

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "Identity":
        """
        Rebuild an identity from token claims.

        Raises ValueError/KeyError on unknown roles or permissions so a token
        minted under an old role table never resolves.
        """
        return cls(
            id=str(claims["sub"]),
            username=claims["username"],
            display_name=claims["name"],
            email=claims["email"],
            role=Role(claims["role"]),
            tenant_id=claims.get("tenant_id"),
            permissions=frozenset(Permission(p) for p in claims["permissions"]),
        )
