"""
Custody - Auth Routes
=====================
Cookie-session login/logout and password management, with rate limiting.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status

from custody.api.deps import (
    get_auth_service,
    get_current_identity,
    get_optional_identity,
    get_session_store,
)
from custody.api.limiter import limiter
from custody.config import settings
from custody.schemas.auth import (
    IdentityResponse,
    LoginRequest,
    PasswordChangeRequest,
    PasswordStrengthRequest,
    PasswordStrengthResponse,
)
from custody.services.auth import AuthService
from custody.services.password import validate_strength
from custody.services.permissions import Identity
from custody.services.session import SessionStore

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/login", response_model=IdentityResponse)
@limiter.limit(settings.rate_limit_auth)
async def login(
    request: Request,
    response: Response,
    data: LoginRequest,
    auth: AuthService = Depends(get_auth_service),
    sessions: SessionStore = Depends(get_session_store),
):
    """Verify credentials and start a session. Failures are always 401 "Invalid credentials"."""
    identity, token = await auth.login(data.username, data.password, request=request)
    sessions.attach(response, token)
    return IdentityResponse.from_identity(identity)


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    identity: Optional[Identity] = Depends(get_optional_identity),
    auth: AuthService = Depends(get_auth_service),
    sessions: SessionStore = Depends(get_session_store),
):
    """End the session. Calling it without a session is not an error."""
    await auth.logout(identity, request=request)
    sessions.invalidate(response)
    return {"success": True}


@router.get("/me", response_model=IdentityResponse)
async def get_me(identity: Identity = Depends(get_current_identity)):
    """The identity carried by the current session."""
    return IdentityResponse.from_identity(identity)


@router.post("/password", status_code=status.HTTP_200_OK)
@limiter.limit(settings.rate_limit_auth)
async def change_password(
    request: Request,
    data: PasswordChangeRequest,
    identity: Identity = Depends(get_current_identity),
    auth: AuthService = Depends(get_auth_service),
):
    """Change the caller's password. The new one must pass the strength policy."""
    await auth.change_password(
        identity, data.current_password, data.new_password, request=request
    )
    return {"success": True}


@router.post("/password/strength", response_model=PasswordStrengthResponse)
async def password_strength(data: PasswordStrengthRequest):
    """Evaluate a candidate password without storing anything."""
    report = validate_strength(data.password)
    return PasswordStrengthResponse(
        is_valid=report.is_valid,
        strength=report.strength,
        violations=report.violations,
        errors=report.errors,
    )
