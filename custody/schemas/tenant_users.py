"""
Custody - Tenant User Schemas
=============================
Models for tenant-scoped user management.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from custody.services.permissions import Role


class TenantUserResponse(BaseModel):
    id: str
    username: str
    name: str
    email: str
    role: Role
    is_active: bool
    email_verified: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class TenantUserUpdate(BaseModel):
    """Fields a property owner may change on a member of their tenant."""
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    role: Optional[Role] = None
    is_active: Optional[bool] = None
