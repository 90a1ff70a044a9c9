"""
Custody - API Dependencies
==========================
FastAPI dependencies wiring the session cookie, the audit trail and the
access guard into the routes.
"""

from functools import lru_cache
from typing import Optional

import structlog
from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from custody.config import settings
from custody.db.database import AsyncSessionLocal, get_db
from custody.services.audit import AuditLogger, AuditQuery, AuditStore, SqlAuditStore
from custody.services.auth import AuthService
from custody.services.authorization import AccessGuard, AuthorizationPolicy
from custody.services.identity import SqlIdentityRepository
from custody.services.password import PasswordService
from custody.services.permissions import Identity
from custody.services.session import SessionStore

logger = structlog.get_logger(__name__)


@lru_cache
def get_session_store() -> SessionStore:
    return SessionStore()


@lru_cache
def get_policy() -> AuthorizationPolicy:
    return AuthorizationPolicy()


def get_audit_store() -> AuditStore:
    """Audit entries get their own sessions, independent of the request's."""
    return SqlAuditStore(AsyncSessionLocal)


def get_audit_logger(store: AuditStore = Depends(get_audit_store)) -> AuditLogger:
    return AuditLogger(store, alert_webhook_url=settings.alert_webhook_url)


def get_audit_query(store: AuditStore = Depends(get_audit_store)) -> AuditQuery:
    return AuditQuery(store)


def get_access_guard(
    policy: AuthorizationPolicy = Depends(get_policy),
    audit: AuditLogger = Depends(get_audit_logger),
) -> AccessGuard:
    return AccessGuard(policy, audit)


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
    sessions: SessionStore = Depends(get_session_store),
) -> AuthService:
    repository = SqlIdentityRepository(db)
    return AuthService(repository, audit, PasswordService(repository), sessions)


async def get_optional_identity(
    request: Request,
    sessions: SessionStore = Depends(get_session_store),
) -> Optional[Identity]:
    """Identity from the session cookie, or None when there is no valid session."""
    return sessions.resolve_request(request)


async def get_current_identity(
    identity: Optional[Identity] = Depends(get_optional_identity),
) -> Identity:
    if identity is None:
        logger.debug("auth_required")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return identity
