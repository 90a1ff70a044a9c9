"""
Custody - Auth Schemas
======================
Pydantic models for login, session identity and password management.
"""

from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field

from custody.services.permissions import Identity


class LoginRequest(BaseModel):
    """Login request."""
    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=1024)


class IdentityResponse(BaseModel):
    """The authenticated identity as carried by the session."""
    id: str
    username: str
    name: str
    email: str
    role: str
    tenant_id: Optional[str] = None
    permissions: List[str] = []

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityResponse":
        return cls(
            id=identity.id,
            username=identity.username,
            name=identity.display_name,
            email=identity.email,
            role=identity.role.value,
            tenant_id=identity.tenant_id,
            permissions=sorted(p.value for p in identity.permissions),
        )


class PasswordChangeRequest(BaseModel):
    """Change the caller's password."""
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1, max_length=72)


class PasswordStrengthRequest(BaseModel):
    password: str


class PasswordStrengthResponse(BaseModel):
    is_valid: bool
    strength: str
    violations: List[str] = []
    errors: List[str] = []


class SuperAdminCreate(BaseModel):
    """Input for the create-superadmin command."""
    username: str = Field(..., min_length=3, max_length=64)
    email: EmailStr
    name: str = Field(..., min_length=2, max_length=255)
    password: str = Field(..., min_length=12, max_length=72)
