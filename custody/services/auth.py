"""
Custody - Auth Service
=======================
Login, logout and password-change flows. Every attempt is audited.
"""

from typing import Optional

import structlog
from fastapi import Request

from custody.errors import AuthenticationError, ValidationError
from custody.monitoring.metrics import record_legacy_login
from custody.services.audit import AuditAction, AuditEvent, AuditLogger, AuditSeverity
from custody.services.identity import CredentialRecord, IdentityRepository
from custody.services.password import PasswordService
from custody.services.permissions import Identity, Role
from custody.services.session import SessionStore

logger = structlog.get_logger(__name__)


class AuthService:
    """Credential checks on top of the identity repository."""

    def __init__(
        self,
        repository: IdentityRepository,
        audit: AuditLogger,
        passwords: Optional[PasswordService] = None,
        sessions: Optional[SessionStore] = None,
    ):
        self.repository = repository
        self.audit = audit
        self.passwords = passwords or PasswordService(repository)
        self.sessions = sessions or SessionStore()

    @staticmethod
    def _account_problem(record: CredentialRecord) -> Optional[str]:
        if not record.is_active:
            return "account_inactive"
        if not record.email_verified and record.role is not Role.SUPER_ADMIN:
            return "email_not_verified"
        return None

    async def _fail(
        self,
        username: str,
        reason: str,
        record: Optional[CredentialRecord] = None,
        request: Optional[Request] = None,
        legacy_format: bool = False,
    ) -> AuthenticationError:
        logger.info("login_failed", username=username, reason=reason)
        await self.audit.record_auth_attempt(
            username,
            success=False,
            reason=reason,
            legacy_format=legacy_format,
            user_id=record.identity_id if record else None,
            request=request,
        )
        return AuthenticationError(reason)

    async def login(
        self,
        username: str,
        password: str,
        request: Optional[Request] = None,
    ) -> tuple[Identity, str]:
        """
        Verify credentials and issue a session.

        Returns:
            (identity, session token)

        Raises:
            AuthenticationError: unknown user, wrong password, or an account
                that may not sign in. The public message is the same in
                every case.
        """
        if not username or not password:
            raise await self._fail(username or "", "missing_credentials", request=request)

        record = await self.repository.find_by_credentials(username)
        if record is None:
            raise await self._fail(username, "unknown_user", request=request)

        legacy = self.passwords.needs_migration(record.hashed_secret)
        if not await self.passwords.verify(password, record.hashed_secret):
            raise await self._fail(username, "invalid_password", record, request, legacy)

        problem = self._account_problem(record)
        if problem:
            raise await self._fail(username, problem, record, request, legacy)

        if legacy:
            try:
                await self.passwords.migrate(record.identity_id, password)
            except ValidationError:
                # Secret bcrypt cannot take (over 72 bytes); needs an admin reset
                raise await self._fail(
                    username, "legacy_migration_failed", record, request, legacy
                )
            record_legacy_login()

        await self.repository.record_login(record.identity_id)

        identity = record.to_identity()
        await self.audit.record_auth_attempt(
            username,
            success=True,
            identity=identity,
            legacy_format=legacy,
            request=request,
        )
        logger.info("login_succeeded", user_id=identity.id, role=identity.role.value)
        return identity, self.sessions.issue(identity)

    async def logout(
        self, identity: Optional[Identity], request: Optional[Request] = None
    ) -> None:
        """Audit the end of a session. Nothing to do without one."""
        if identity is None:
            return
        await self.audit.record(AuditEvent.for_identity(
            identity,
            AuditAction.LOGOUT,
            request=request,
            resource=f"user:{identity.id}",
            resource_type="user",
        ))

    async def change_password(
        self,
        identity: Identity,
        current_password: str,
        new_password: str,
        request: Optional[Request] = None,
    ) -> None:
        """
        Replace the caller's password.

        Raises:
            AuthenticationError: ``current_password`` does not match.
            ValidationError: ``new_password`` fails the strength policy.
        """
        record = await self.repository.get_credential(identity.id)
        if record is None or not await self.passwords.verify(
            current_password, record.hashed_secret
        ):
            await self._record_reset(identity, False, "invalid_current_password", request)
            raise AuthenticationError("invalid_current_password")

        try:
            await self.passwords.change(identity.id, new_password)
        except ValidationError:
            await self._record_reset(identity, False, "weak_password", request)
            raise

        await self._record_reset(identity, True, None, request)

    async def _record_reset(
        self,
        identity: Identity,
        success: bool,
        reason: Optional[str],
        request: Optional[Request],
    ) -> None:
        await self.audit.record(AuditEvent.for_identity(
            identity,
            AuditAction.PASSWORD_RESET,
            request=request,
            resource=f"user:{identity.id}",
            resource_type="user",
            details={"reason": reason} if reason else None,
            success=success,
            severity=AuditSeverity.INFO if success else AuditSeverity.WARNING,
        ))
