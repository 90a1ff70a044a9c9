"""
Custody - Session Store
========================
Stateless sessions: the full Identity is serialized into an HMAC-signed
JWT and carried in an HTTP-only cookie. No server-side session table is
consulted, so tampering is detected by the signature alone.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from fastapi import Request, Response

from custody.config import settings
from custody.errors import SessionDecodeError
from custody.services.permissions import Identity

logger = structlog.get_logger(__name__)

TOKEN_TYPE = "session"


class SessionStore:
    """Issues, resolves and invalidates signed session tokens."""

    def __init__(
        self,
        secret: Optional[str] = None,
        algorithm: Optional[str] = None,
        ttl: Optional[timedelta] = None,
        cookie_name: Optional[str] = None,
        secure: Optional[bool] = None,
    ):
        self.secret = secret or settings.session_secret
        self.algorithm = algorithm or settings.session_algorithm
        self.ttl = ttl or timedelta(days=settings.session_ttl_days)
        self.cookie_name = cookie_name or settings.session_cookie_name
        self.secure = settings.is_production if secure is None else secure

    def issue(self, identity: Identity) -> str:
        """Serialize ``identity`` into a token with an absolute expiry."""
        now = datetime.now(timezone.utc)
        payload = identity.to_claims()
        payload.update({
            "typ": TOKEN_TYPE,
            "iat": now,
            "exp": now + self.ttl,
        })
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def resolve(self, token: Optional[str]) -> Optional[Identity]:
        """
        Return the Identity carried by ``token``, or None when there is no
        usable session (missing, malformed, tampered, expired, retired role).
        """
        if not token:
            return None
        try:
            return self._decode(token)
        except SessionDecodeError as e:
            logger.info("session_rejected", reason=str(e))
            return None

    def resolve_request(self, request: Request) -> Optional[Identity]:
        return self.resolve(request.cookies.get(self.cookie_name))

    def _decode(self, token: str) -> Identity:
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "iat", "sub"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise SessionDecodeError("expired") from e
        except jwt.InvalidTokenError as e:
            raise SessionDecodeError("invalid_token") from e

        if claims.get("typ") != TOKEN_TYPE:
            raise SessionDecodeError("wrong_token_type")

        try:
            return Identity.from_claims(claims)
        except (KeyError, ValueError, TypeError) as e:
            raise SessionDecodeError("invalid_claims") from e

    def attach(self, response: Response, token: str) -> None:
        """Set the session cookie on ``response``."""
        response.set_cookie(
            key=self.cookie_name,
            value=token,
            max_age=int(self.ttl.total_seconds()),
            httponly=True,
            secure=self.secure,
            samesite="lax",
            path="/",
        )

    def invalidate(self, response: Response) -> None:
        """Clear the session cookie. Safe to call when no session exists."""
        response.delete_cookie(
            key=self.cookie_name,
            path="/",
            httponly=True,
            secure=self.secure,
            samesite="lax",
        )
