"""
Custody - Authorization Policy
===============================
Tenant isolation and role-based access decisions, plus the guard that
pairs every decision on a sensitive path with an audit entry.

Decision order (first match wins):
1. No identity                                   -> deny
2. Platform-wide role, matching platform
   permission, action allowed across tenants     -> permit
3. Resource outside any tenant, non-admin caller -> deny
4. Resource in another tenant                    -> deny
5. Role rules for the action                     -> permit / deny
6. Otherwise                                     -> deny
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum as PyEnum
from typing import Any, AsyncIterator, Optional

import structlog
from fastapi import Request

from custody.config import settings
from custody.errors import ForbiddenError
from custody.monitoring.metrics import record_access_denial
from custody.services.audit import (
    AuditAction,
    AuditEvent,
    AuditLogger,
    AuditSeverity,
    default_severity,
)
from custody.services.permissions import Identity, Permission, Role

logger = structlog.get_logger(__name__)


class ResourceAction(str, PyEnum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    UPLOAD = "upload"
    EXPORT = "export"
    MANAGE_USERS = "manage_users"
    ADMIN = "admin"


# Permissions that let a platform-wide identity act on any tenant's data.
PLATFORM_GRANTS: dict[ResourceAction, tuple[Permission, ...]] = {
    ResourceAction.READ: (Permission.READ_ALL,),
    ResourceAction.WRITE: (Permission.WRITE_ALL,),
    ResourceAction.DELETE: (Permission.WRITE_ALL,),
    ResourceAction.EXPORT: (Permission.READ_ALL, Permission.GENERATE_REPORTS),
    ResourceAction.ADMIN: (Permission.ADMIN_SYSTEM, Permission.ADMIN_TENANTS),
    ResourceAction.MANAGE_USERS: (Permission.ADMIN_USERS,),
}

# Permissions that allow the action within the caller's own tenant.
TENANT_GRANTS: dict[ResourceAction, tuple[Permission, ...]] = {
    ResourceAction.READ: (Permission.READ_OWN, Permission.READ_ALL),
    ResourceAction.WRITE: (Permission.WRITE_OWN, Permission.WRITE_ALL),
    ResourceAction.DELETE: (Permission.WRITE_OWN, Permission.WRITE_ALL),
    ResourceAction.UPLOAD: (Permission.UPLOAD_EVIDENCE,),
    ResourceAction.EXPORT: (Permission.GENERATE_REPORTS,),
    ResourceAction.ADMIN: (Permission.ADMIN_SYSTEM, Permission.ADMIN_TENANTS),
}


@dataclass(frozen=True)
class Resource:
    """A record being accessed. ``tenant_id`` None means platform-level."""

    type: str
    id: Optional[str] = None
    tenant_id: Optional[str] = None
    owner_id: Optional[str] = None

    @property
    def label(self) -> Optional[str]:
        return f"{self.type}:{self.id}" if self.id else None


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


def _permit(reason: str) -> AccessDecision:
    return AccessDecision(True, reason)


def _deny(reason: str) -> AccessDecision:
    return AccessDecision(False, reason)


class AuthorizationPolicy:
    """Pure decision function; no I/O."""

    def __init__(self, cross_tenant_actions: Optional[set[str]] = None):
        if cross_tenant_actions is None:
            cross_tenant_actions = settings.cross_tenant_actions
        self.cross_tenant_actions = {ResourceAction(a) for a in cross_tenant_actions}

    def evaluate(
        self,
        identity: Optional[Identity],
        action: ResourceAction,
        resource: Resource,
    ) -> AccessDecision:
        action = ResourceAction(action)

        if identity is None:
            return _deny("unauthenticated")

        if (
            identity.is_platform_wide
            and action in self.cross_tenant_actions
            and identity.has(*PLATFORM_GRANTS.get(action, ()))
        ):
            return _permit("platform_permission")

        if resource.tenant_id is None:
            if not identity.has_admin_permission:
                return _deny("platform_resource")
        elif resource.tenant_id != identity.tenant_id:
            return _deny("tenant_mismatch")

        return self._role_rules(identity, action, resource)

    def _role_rules(
        self, identity: Identity, action: ResourceAction, resource: Resource
    ) -> AccessDecision:
        if action is ResourceAction.MANAGE_USERS:
            if identity.role is not Role.PROPERTY_OWNER:
                return _deny("not_tenant_owner")
            if resource.type == "user" and resource.id == identity.id:
                return _deny("self_management")
            return _permit("tenant_owner")

        if identity.has(*TENANT_GRANTS.get(action, ())):
            return _permit("role_permission")

        return _deny("missing_permission")

    def can_access(
        self,
        identity: Optional[Identity],
        action: ResourceAction,
        resource: Resource,
    ) -> bool:
        return self.evaluate(identity, action, resource).allowed

    def require_access(
        self,
        identity: Optional[Identity],
        action: ResourceAction,
        resource: Resource,
    ) -> AccessDecision:
        """Return the permit decision or raise ForbiddenError."""
        decision = self.evaluate(identity, action, resource)
        if not decision.allowed:
            raise ForbiddenError(decision.reason)
        return decision


class AccessGuard:
    """
    Authorization check plus audit entry for one sensitive operation.

    Every outcome leaves exactly one audit entry:
    - denied: ``success=False``, severity warning, ForbiddenError raised
    - block raised: ``success=False``, severity error, exception re-raised
    - block completed: ``success=True``, severity by action convention

    With ``record_success=False`` the caller writes the success entry itself,
    through the matching ``AuditLogger`` helper.

    Usage:
        async with guard.check(identity, ResourceAction.DELETE, resource,
                               AuditAction.ITEM_DELETED, request=request) as details:
            await db.delete(item)
            details["name"] = item.name
    """

    def __init__(self, policy: AuthorizationPolicy, audit: AuditLogger):
        self.policy = policy
        self.audit = audit

    async def _record(
        self,
        identity: Optional[Identity],
        audit_action: AuditAction,
        resource: Resource,
        request: Optional[Request],
        details: dict[str, Any],
        success: bool,
        severity: AuditSeverity,
    ) -> None:
        await self.audit.record(AuditEvent.for_identity(
            identity,
            audit_action,
            request=request,
            resource=resource.label,
            resource_type=resource.type,
            details=details or None,
            success=success,
            severity=severity,
        ))

    @asynccontextmanager
    async def check(
        self,
        identity: Optional[Identity],
        action: ResourceAction,
        resource: Resource,
        audit_action: AuditAction,
        request: Optional[Request] = None,
        details: Optional[dict[str, Any]] = None,
        record_success: bool = True,
    ) -> AsyncIterator[dict[str, Any]]:
        details = dict(details or {})
        decision = self.policy.evaluate(identity, action, resource)

        if not decision.allowed:
            record_access_denial(ResourceAction(action).value, decision.reason)
            logger.warning(
                "access_denied",
                user_id=identity.id if identity else None,
                action=ResourceAction(action).value,
                resource=resource.label,
                reason=decision.reason,
            )
            await self._record(
                identity, audit_action, resource, request,
                {**details, "reason": decision.reason},
                success=False, severity=AuditSeverity.WARNING,
            )
            raise ForbiddenError(decision.reason)

        try:
            yield details
        except Exception as e:
            await self._record(
                identity, audit_action, resource, request,
                {**details, "error": type(e).__name__},
                success=False, severity=AuditSeverity.ERROR,
            )
            raise

        if record_success:
            await self._record(
                identity, audit_action, resource, request, details,
                success=True, severity=default_severity(AuditAction(audit_action)),
            )
