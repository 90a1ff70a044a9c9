"""
Custody - Tenant User Routes
============================
Property owners manage the members of their own tenant. Nobody manages
their own account through these endpoints.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from custody.api.deps import get_access_guard, get_audit_logger, get_current_identity
from custody.db.database import get_db
from custody.db.models import User, utc_now
from custody.errors import ValidationError
from custody.schemas.tenant_users import TenantUserResponse, TenantUserUpdate
from custody.services.audit import AuditAction, AuditLogger
from custody.services.authorization import AccessGuard, Resource, ResourceAction
from custody.services.permissions import PLATFORM_ROLES, Identity

router = APIRouter(prefix="/tenant/users", tags=["Tenant Users"])


def _user_resource(user_id: str, user: Optional[User]) -> Resource:
    if user is None:
        return Resource("user", user_id)
    return Resource("user", user.id, tenant_id=user.tenant_id, owner_id=user.id)


@router.get("", response_model=List[TenantUserResponse])
async def list_tenant_users(
    request: Request,
    identity: Identity = Depends(get_current_identity),
    guard: AccessGuard = Depends(get_access_guard),
    db: AsyncSession = Depends(get_db),
):
    """Members of the caller's tenant."""
    resource = Resource("tenant", identity.tenant_id, tenant_id=identity.tenant_id)

    async with guard.check(
        identity,
        ResourceAction.MANAGE_USERS,
        resource,
        AuditAction.TENANT_ACCESSED,
        request=request,
    ) as details:
        result = await db.execute(
            select(User)
            .where(User.tenant_id == identity.tenant_id)
            .order_by(User.created_at.desc())
        )
        users = result.scalars().all()
        details["userCount"] = len(users)
        return [TenantUserResponse.model_validate(u) for u in users]


@router.patch("/{user_id}", response_model=TenantUserResponse)
async def update_tenant_user(
    request: Request,
    user_id: str,
    data: TenantUserUpdate,
    identity: Identity = Depends(get_current_identity),
    guard: AccessGuard = Depends(get_access_guard),
    audit: AuditLogger = Depends(get_audit_logger),
    db: AsyncSession = Depends(get_db),
):
    """Update name, role or active flag of a tenant member."""
    user = await db.get(User, user_id)
    changes = data.model_dump(exclude_unset=True, mode="json")
    action = AuditAction.PERMISSIONS_CHANGED if "role" in changes else AuditAction.USER_MODIFIED

    async with guard.check(
        identity,
        ResourceAction.MANAGE_USERS,
        _user_resource(user_id, user),
        action,
        request=request,
        details={"changes": changes},
        record_success=False,
    ):
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        if data.role is not None and data.role in PLATFORM_ROLES:
            raise ValidationError("Platform roles cannot be assigned by a tenant owner")

        before = {key: getattr(user, key) for key in changes}
        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(user, key, value)
        user.updated_at = utc_now()
        await db.commit()

    await audit.record_admin_action(
        identity,
        action,
        target_identity_id=user_id,
        details={"before": before, "after": changes},
        request=request,
    )
    return TenantUserResponse.model_validate(user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_tenant_user(
    request: Request,
    user_id: str,
    identity: Identity = Depends(get_current_identity),
    guard: AccessGuard = Depends(get_access_guard),
    audit: AuditLogger = Depends(get_audit_logger),
    db: AsyncSession = Depends(get_db),
):
    """
    Remove a member from the tenant.

    The account is detached and deactivated rather than deleted, so audit
    entries that name it stay meaningful.
    """
    user = await db.get(User, user_id)

    async with guard.check(
        identity,
        ResourceAction.MANAGE_USERS,
        _user_resource(user_id, user),
        AuditAction.USER_DEACTIVATED,
        request=request,
        record_success=False,
    ):
        if user is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
        former_tenant = user.tenant_id
        user.tenant_id = None
        user.is_active = False
        user.updated_at = utc_now()
        await db.commit()

    await audit.record_admin_action(
        identity,
        AuditAction.USER_DEACTIVATED,
        target_identity_id=user_id,
        details={"username": user.username, "tenantId": former_tenant},
        request=request,
    )
