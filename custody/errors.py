"""
Custody - Error Taxonomy
========================
Exceptions raised by the access-control and audit core.
"""

from typing import Any, Optional


class CustodyError(Exception):
    """Base class for all custody errors."""


class ValidationError(CustodyError):
    """Malformed input to a password, session or audit operation."""


class AuthenticationError(CustodyError):
    """
    Login failed.

    The public message never says whether the username or the password was
    wrong; the specific cause is kept in ``reason`` for the audit trail.
    """

    public_message = "Invalid credentials"

    def __init__(self, reason: str = "invalid_credentials"):
        super().__init__(self.public_message)
        self.reason = reason


class ForbiddenError(CustodyError):
    """Authorization denied. ``reason`` is for the audit entry, not the client."""

    public_message = "Access denied"

    def __init__(self, reason: str = "denied"):
        super().__init__(self.public_message)
        self.reason = reason


class AuditWriteError(CustodyError):
    """An audit entry could not be persisted. Never leaves AuditLogger."""

    def __init__(self, message: str, entry: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.entry = entry


class SessionDecodeError(CustodyError):
    """Session token is missing, malformed, tampered with or expired."""
