#!/usr/bin/env python3
"""
Custody CLI
===========

Operational commands for the audit & access-control service.

Usage:
    python -m custody.cli <command> [options]
    custody <command> [options]

Examples:
    custody create-superadmin --username root --email ops@example.com --name "Ops Admin"
    custody migrate-passwords --dry-run
    custody audit-stats --days 7
"""

import argparse
import asyncio
import getpass
import sys
from datetime import timedelta
from typing import Optional

import pydantic
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import custody.logging_config  # noqa: F401  configures structlog
from custody.db.database import AsyncSessionLocal, init_db, session_scope
from custody.db.models import User, utc_now
from custody.errors import ValidationError
from custody.schemas.auth import SuperAdminCreate
from custody.services.audit import (
    AuditAction,
    AuditEvent,
    AuditLogger,
    AuditQuery,
    AuditSeverity,
    SqlAuditStore,
)
from custody.services.identity import HASH_ALGORITHM_BCRYPT, SqlIdentityRepository
from custody.services.password import PasswordService, validate_strength
from custody.services.permissions import Role

logger = structlog.get_logger(__name__)

CLI_ACTOR = "cli"


def create_parser():
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog="custody",
        description="Custody - audit & access-control administration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    admin_parser = subparsers.add_parser("create-superadmin", help="Create a platform super admin")
    admin_parser.add_argument("--username", required=True)
    admin_parser.add_argument("--email", required=True)
    admin_parser.add_argument("--name", required=True)
    admin_parser.add_argument(
        "--password",
        help="Password (prompted for when omitted)",
    )

    migrate_parser = subparsers.add_parser(
        "migrate-passwords", help="Hash every remaining plaintext credential"
    )
    migrate_parser.add_argument(
        "--dry-run", action="store_true", help="Only report what would be migrated"
    )

    stats_parser = subparsers.add_parser("audit-stats", help="Print audit trail counts")
    stats_parser.add_argument(
        "--days", type=int, default=None, help="Only count the last N days"
    )

    return parser


SessionFactory = async_sessionmaker[AsyncSession]


def _audit_logger(factory: SessionFactory) -> AuditLogger:
    return AuditLogger(SqlAuditStore(factory))


async def create_superadmin(
    username: str,
    email: str,
    name: str,
    password: Optional[str] = None,
    session_factory: SessionFactory = AsyncSessionLocal,
) -> int:
    """Create a super admin account. Returns a process exit code."""
    if password is None:
        password = getpass.getpass("Password: ")
        if password != getpass.getpass("Confirm password: "):
            print("Passwords do not match", file=sys.stderr)
            return 1

    try:
        data = SuperAdminCreate(username=username, email=email, name=name, password=password)
    except pydantic.ValidationError as e:
        for err in e.errors():
            print(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}", file=sys.stderr)
        return 1

    report = validate_strength(data.password)
    if not report.is_valid:
        for message in report.errors:
            print(message, file=sys.stderr)
        return 1

    async with session_scope(session_factory) as session:
        existing = await session.execute(select(User).where(User.username == data.username))
        if existing.scalar_one_or_none():
            print(f"User {data.username!r} already exists", file=sys.stderr)
            return 1

        user = User(
            username=data.username,
            name=data.name,
            email=data.email,
            password=await PasswordService().hash(data.password),
            password_algo=HASH_ALGORITHM_BCRYPT,
            role=Role.SUPER_ADMIN,
            tenant_id=None,
            is_active=True,
            email_verified=True,
        )
        session.add(user)
        await session.flush()
        user_id = user.id

    await _audit_logger(session_factory).record(AuditEvent(
        action=AuditAction.ACCOUNT_CREATED,
        username=CLI_ACTOR,
        resource=f"user:{user_id}",
        resource_type="user",
        details={"role": Role.SUPER_ADMIN.value, "username": data.username, "source": CLI_ACTOR},
        severity=AuditSeverity.WARNING,
    ))

    logger.info("superadmin_created", user_id=user_id, username=data.username)
    print(f"Created super admin {data.username} ({user_id})")
    return 0


async def migrate_passwords(
    dry_run: bool = False, session_factory: SessionFactory = AsyncSessionLocal
) -> int:
    """Hash every credential still stored in the legacy plaintext format."""
    audit = _audit_logger(session_factory)
    migrated = 0
    skipped = 0

    async with session_scope(session_factory) as session:
        repository = SqlIdentityRepository(session)
        passwords = PasswordService(repository)

        for record in await repository.list_legacy_credentials():
            if not passwords.needs_migration(record.hashed_secret):
                # Already hashed, only the algorithm tag is stale
                if not dry_run:
                    await repository.save_credential(
                        record.identity_id, record.hashed_secret, HASH_ALGORITHM_BCRYPT
                    )
                continue

            print(f"{'would migrate' if dry_run else 'migrating'}: {record.username}")
            if dry_run:
                migrated += 1
                continue

            try:
                await passwords.migrate(record.identity_id, record.hashed_secret)
            except ValidationError as e:
                skipped += 1
                logger.warning(
                    "password_migration_skipped", user_id=record.identity_id, error=str(e)
                )
                print(f"skipped: {record.username} ({e})", file=sys.stderr)
                continue
            migrated += 1
            await audit.record(AuditEvent(
                action=AuditAction.PASSWORD_RESET,
                user_id=record.identity_id,
                username=record.username,
                resource=f"user:{record.identity_id}",
                resource_type="user",
                details={"reason": "bulk_migration", "legacyFormat": True, "source": CLI_ACTOR},
                severity=AuditSeverity.WARNING,
            ))

    logger.info(
        "password_migration_complete", migrated=migrated, skipped=skipped, dry_run=dry_run
    )
    print(f"{migrated} credential(s) {'to migrate' if dry_run else 'migrated'}")
    if skipped:
        print(f"{skipped} credential(s) skipped, reset them manually")
    return 1 if skipped else 0


async def audit_stats(
    days: Optional[int] = None, session_factory: SessionFactory = AsyncSessionLocal
) -> int:
    start = utc_now() - timedelta(days=days) if days else None
    stats = await AuditQuery(SqlAuditStore(session_factory)).get_stats(start_date=start)

    window = f"last {days} day(s)" if days else "all time"
    print(f"Audit trail ({window})")
    print(f"  total entries:     {stats.total_logs}")
    print(f"  failed attempts:   {stats.failed_attempts}")
    print(f"  evidence access:   {stats.evidence_access}")
    print(f"  critical actions:  {stats.critical_actions}")
    return 0


async def run(argv=None) -> int:
    args = create_parser().parse_args(argv)
    await init_db()

    if args.command == "create-superadmin":
        return await create_superadmin(args.username, args.email, args.name, args.password)
    if args.command == "migrate-passwords":
        return await migrate_passwords(dry_run=args.dry_run)
    if args.command == "audit-stats":
        return await audit_stats(days=args.days)
    return 2


def main(argv=None) -> int:
    """Entry point."""
    try:
        return asyncio.run(run(argv))
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
