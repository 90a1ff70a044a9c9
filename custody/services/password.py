"""
Custody - Password Service
===========================
bcrypt hashing with a fixed cost factor, constant-time verification,
detection and migration of legacy plaintext credentials, and the
password-strength policy used at account creation and password change.
"""

import asyncio
import hmac
import re
from dataclasses import dataclass, field
from typing import Optional

import bcrypt
import structlog

from custody.config import settings
from custody.errors import ValidationError
from custody.services.identity import HASH_ALGORITHM_BCRYPT, IdentityRepository

logger = structlog.get_logger(__name__)

# Modular-crypt bcrypt hash: $2b$<cost>$<22 salt chars><31 hash chars>
BCRYPT_HASH_RE = re.compile(r"^\$2[aby]\$\d{2}\$[./A-Za-z0-9]{53}$")

# bcrypt only looks at the first 72 bytes
BCRYPT_MAX_BYTES = 72

MIN_PASSWORD_LENGTH = 12
STRONG_PASSWORD_LENGTH = 16

COMMON_PASSWORDS = frozenset({
    "password", "password123", "12345678", "123456789", "1234567890",
    "qwerty", "abc123", "monkey", "1234567", "12345678910",
    "password1", "qwerty123", "admin", "letmein", "welcome",
    "admin123", "root", "password!",
})


@dataclass
class StrengthReport:
    """Result of the strength policy. ``violations`` holds rule codes, ``errors`` the messages."""

    is_valid: bool
    strength: str  # weak | medium | strong
    violations: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


_STRENGTH_RULES = (
    ("too_short", lambda p: len(p) >= MIN_PASSWORD_LENGTH,
     f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"),
    ("missing_uppercase", lambda p: re.search(r"[A-Z]", p) is not None,
     "Password must contain at least one uppercase letter"),
    ("missing_lowercase", lambda p: re.search(r"[a-z]", p) is not None,
     "Password must contain at least one lowercase letter"),
    ("missing_digit", lambda p: re.search(r"[0-9]", p) is not None,
     "Password must contain at least one number"),
    ("missing_special", lambda p: re.search(r"[^A-Za-z0-9]", p) is not None,
     "Password must contain at least one special character (!@#$%^&*, etc.)"),
    ("common_password", lambda p: not is_common_password(p),
     "Password is too common"),
)


def is_common_password(password: str) -> bool:
    """True if ``password`` is on the common-password list (case-insensitive)."""
    return password.lower() in COMMON_PASSWORDS


def validate_strength(password: str) -> StrengthReport:
    """
    Check ``password`` against the strength policy.

    Requirements: at least 12 characters, upper and lower case letters,
    a digit and a special character. A compliant password is ``medium``,
    or ``strong`` from 16 characters; anything else is ``weak``.
    """
    password = password or ""
    report = StrengthReport(is_valid=True, strength="weak")

    for code, check, message in _STRENGTH_RULES:
        if not check(password):
            report.violations.append(code)
            report.errors.append(message)

    if report.violations:
        report.is_valid = False
    elif len(password) >= STRONG_PASSWORD_LENGTH:
        report.strength = "strong"
    else:
        report.strength = "medium"

    return report


class PasswordService:
    """
    Hashes and verifies credentials.

    bcrypt is CPU-bound, so hashing and checking run in a worker thread to
    keep the event loop responsive.
    """

    def __init__(
        self,
        repository: Optional[IdentityRepository] = None,
        rounds: Optional[int] = None,
    ):
        self.repository = repository
        self.rounds = rounds or settings.bcrypt_rounds

    @staticmethod
    def needs_migration(stored: str) -> bool:
        """True if ``stored`` is not a bcrypt hash, i.e. a legacy plaintext value."""
        return not bool(stored) or BCRYPT_HASH_RE.match(stored) is None

    async def hash(self, plaintext: str) -> str:
        """
        Hash a plaintext password.

        Raises:
            ValidationError: empty password or longer than bcrypt accepts.
        """
        if not plaintext:
            raise ValidationError("Password cannot be empty")
        encoded = plaintext.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_BYTES:
            raise ValidationError(f"Password cannot exceed {BCRYPT_MAX_BYTES} bytes")

        hashed = await asyncio.to_thread(bcrypt.hashpw, encoded, bcrypt.gensalt(rounds=self.rounds))
        return hashed.decode("utf-8")

    async def verify(self, plaintext: str, stored: str) -> bool:
        """
        Verify ``plaintext`` against a stored credential.

        bcrypt hashes are checked with bcrypt; anything else is treated as a
        legacy plaintext value and compared directly (constant time). The
        legacy path logs a warning every time it is taken.

        Raises:
            ValidationError: empty ``plaintext``.
        """
        if not plaintext:
            raise ValidationError("Password cannot be empty")
        if not stored:
            return False

        candidate = plaintext.encode("utf-8")

        if not self.needs_migration(stored):
            if len(candidate) > BCRYPT_MAX_BYTES:
                return False
            return await asyncio.to_thread(bcrypt.checkpw, candidate, stored.encode("utf-8"))

        logger.warning(
            "legacy_password_verification",
            note="plaintext credential in use; will be migrated on successful login",
        )
        return hmac.compare_digest(candidate, stored.encode("utf-8"))

    async def migrate(self, identity_id: str, plaintext: str) -> None:
        """
        Re-hash a verified legacy password and persist it.

        Must be called right after a successful legacy verification.
        """
        if self.repository is None:
            raise RuntimeError("PasswordService.migrate requires an identity repository")

        hashed = await self.hash(plaintext)
        await self.repository.save_credential(identity_id, hashed, HASH_ALGORITHM_BCRYPT)
        logger.info("password_migrated", user_id=identity_id)

    async def change(self, identity_id: str, new_password: str) -> None:
        """Store a new password for ``identity_id`` after it passed the strength policy."""
        if self.repository is None:
            raise RuntimeError("PasswordService.change requires an identity repository")

        report = validate_strength(new_password)
        if not report.is_valid:
            raise ValidationError("; ".join(report.errors))

        hashed = await self.hash(new_password)
        await self.repository.save_credential(identity_id, hashed, HASH_ALGORITHM_BCRYPT)
        logger.info("password_changed", user_id=identity_id)
