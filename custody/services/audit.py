"""
Custody - Audit Logging Service
================================
Tamper-evident record of every security-relevant action, for chain of
custody and compliance review.

Entries are written to:
1. The ``audit_logs`` table, through a session of their own so that a
   request which later rolls back keeps its audit entry
2. Structured logs for real-time monitoring/alerting

Availability wins over durability: ``AuditLogger.record`` never raises.
If the store cannot be written, the full entry goes to the
``custody.audit.recovery`` log at critical level (for manual replay), a
metric is bumped and an alert webhook fires.

Usage:
    audit = AuditLogger(SqlAuditStore(AsyncSessionLocal))
    await audit.record_evidence_access(
        identity,
        AuditAction.EVIDENCE_VIEWED,
        evidence_id=evidence.id,
        item_id=item.id,
        request=request,
    )
"""

import asyncio
import csv
import io
import json
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum as PyEnum
from typing import Any, Callable, Optional, Protocol, Sequence

import structlog
from fastapi import Request
from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from custody.config import settings
from custody.db.models import AuditLog, as_naive_utc, utc_now
from custody.errors import AuditWriteError, ValidationError
from custody.logging_config import AUDIT_RECOVERY_LOGGER
from custody.monitoring.alerts import send_audit_failure_alert
from custody.monitoring.metrics import record_audit_event, record_audit_failure
from custody.services.permissions import Identity

logger = structlog.get_logger(__name__)
recovery_logger = structlog.get_logger(AUDIT_RECOVERY_LOGGER)


class AuditAction(str, PyEnum):
    # Authentication
    LOGIN = "login"
    LOGIN_FAILED = "login_failed"
    LOGOUT = "logout"
    PASSWORD_RESET = "password_reset"
    EMAIL_VERIFIED = "email_verified"
    ACCOUNT_CREATED = "account_created"

    # Evidence (chain of custody)
    EVIDENCE_VIEWED = "evidence_viewed"
    EVIDENCE_UPLOADED = "evidence_uploaded"
    EVIDENCE_DOWNLOADED = "evidence_downloaded"
    EVIDENCE_MODIFIED = "evidence_modified"
    EVIDENCE_DELETED = "evidence_deleted"

    # Cases and items
    ITEM_CREATED = "item_created"
    ITEM_VIEWED = "item_viewed"
    ITEM_MODIFIED = "item_modified"
    ITEM_DELETED = "item_deleted"
    CASE_CREATED = "case_created"
    CASE_VIEWED = "case_viewed"
    CASE_MODIFIED = "case_modified"
    CASE_CLOSED = "case_closed"

    # Administration
    USER_CREATED = "user_created"
    USER_MODIFIED = "user_modified"
    USER_DEACTIVATED = "user_deactivated"
    PERMISSIONS_CHANGED = "permissions_changed"
    TENANT_ACCESSED = "tenant_accessed"

    # Export
    REPORT_GENERATED = "report_generated"
    DATA_EXPORTED = "data_exported"
    AUDIT_LOG_VIEWED = "audit_log_viewed"


class AuditSeverity(str, PyEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


EVIDENCE_ACTIONS = frozenset({
    AuditAction.EVIDENCE_VIEWED,
    AuditAction.EVIDENCE_UPLOADED,
    AuditAction.EVIDENCE_DOWNLOADED,
    AuditAction.EVIDENCE_MODIFIED,
    AuditAction.EVIDENCE_DELETED,
})

MUTATION_ACTIONS = frozenset({
    AuditAction.ITEM_CREATED,
    AuditAction.ITEM_MODIFIED,
    AuditAction.ITEM_DELETED,
    AuditAction.CASE_CREATED,
    AuditAction.CASE_MODIFIED,
    AuditAction.CASE_CLOSED,
})

ADMIN_ACTIONS = frozenset({
    AuditAction.ACCOUNT_CREATED,
    AuditAction.USER_CREATED,
    AuditAction.USER_MODIFIED,
    AuditAction.USER_DEACTIVATED,
    AuditAction.PERMISSIONS_CHANGED,
    AuditAction.TENANT_ACCESSED,
})

EXPORT_ACTIONS = frozenset({
    AuditAction.REPORT_GENERATED,
    AuditAction.DATA_EXPORTED,
    AuditAction.AUDIT_LOG_VIEWED,
})

REDACT_KEYS = {
    "password", "pass", "secret", "token",
    "access_token", "refresh_token", "session",
    "authorization", "api_key", "apikey",
    "password_hash", "hashed_secret", "current_password", "new_password",
}

USER_AGENT_MAX = 500
UNKNOWN = "unknown"


def default_severity(action: AuditAction, success: bool = True) -> AuditSeverity:
    """Severity convention shared by the helpers and the access guard."""
    if not success:
        return AuditSeverity.WARNING
    if action.value.endswith("_deleted") or action in ADMIN_ACTIONS:
        return AuditSeverity.WARNING
    return AuditSeverity.INFO


def redact(obj: Any) -> Any:
    """Replace values under sensitive keys, recursively."""
    if isinstance(obj, dict):
        out = {}
        for k, v in obj.items():
            if isinstance(k, str) and k.lower() in REDACT_KEYS:
                out[k] = "***REDACTED***"
            else:
                out[k] = redact(v)
        return out
    if isinstance(obj, (list, tuple)):
        return [redact(x) for x in obj]
    return obj


def _json_safe(value: Any) -> Any:
    """Round-trip through JSON so the stored payload is plain data."""
    return json.loads(json.dumps(value, default=str))


# ============== REQUEST INFO ==============

@dataclass(frozen=True)
class ClientInfo:
    ip_address: str = UNKNOWN
    user_agent: str = UNKNOWN


def get_client_ip(request: Request) -> str:
    """Extract client IP from request, handling proxies."""
    # Check X-Forwarded-For header (set by proxies/load balancers)
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # First IP in the list is the original client
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    # Check X-Real-IP (Nginx)
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return UNKNOWN


def get_client_info(request: Optional[Request]) -> ClientInfo:
    if request is None:
        return ClientInfo()
    user_agent = request.headers.get("User-Agent") or UNKNOWN
    return ClientInfo(
        ip_address=get_client_ip(request),
        user_agent=user_agent[:USER_AGENT_MAX],
    )


# ============== ENTRY ==============

@dataclass
class AuditEvent:
    """
    Input for one audit entry.

    ``action`` and ``severity`` accept enum members or their string values;
    anything outside the closed sets raises ValidationError here, at the
    call site, so ``AuditLogger.record`` itself never has to.
    """

    action: AuditAction
    user_id: Optional[str] = None
    username: Optional[str] = None
    resource: Optional[str] = None
    resource_type: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    success: bool = True
    severity: AuditSeverity = AuditSeverity.INFO

    def __post_init__(self):
        try:
            self.action = AuditAction(self.action)
        except ValueError as e:
            raise ValidationError(f"Unknown audit action: {self.action!r}") from e
        try:
            self.severity = AuditSeverity(self.severity or AuditSeverity.INFO)
        except ValueError as e:
            raise ValidationError(f"Unknown audit severity: {self.severity!r}") from e
        if self.success is None:
            self.success = True
        if self.details is not None:
            self.details = _json_safe(redact(self.details))
        if self.user_agent:
            self.user_agent = self.user_agent[:USER_AGENT_MAX]

    @classmethod
    def for_identity(
        cls,
        identity: Optional[Identity],
        action: AuditAction,
        request: Optional[Request] = None,
        **kwargs: Any,
    ) -> "AuditEvent":
        """Build an event attributed to ``identity`` with client info from ``request``."""
        client = get_client_info(request)
        if identity is not None:
            kwargs.setdefault("user_id", identity.id)
            kwargs.setdefault("username", identity.username)
        kwargs.setdefault("ip_address", client.ip_address)
        kwargs.setdefault("user_agent", client.user_agent)
        return cls(action=action, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["action"] = self.action.value
        data["severity"] = self.severity.value
        return data


# ============== STORE ==============

@dataclass
class AuditFilters:
    user_id: Optional[str] = None
    action: Optional[AuditAction] = None
    resource: Optional[str] = None
    resource_type: Optional[str] = None
    success: Optional[bool] = None
    severity: Optional[AuditSeverity] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    search: Optional[str] = None
    limit: Optional[int] = 100
    offset: int = 0

    def __post_init__(self):
        # Query strings may carry an offset; the timestamp column is naive UTC
        self.start_date = as_naive_utc(self.start_date)
        self.end_date = as_naive_utc(self.end_date)


class AuditStore(Protocol):
    """Append-only record store for audit entries."""

    async def append(self, event: AuditEvent, timestamp: datetime) -> str: ...

    async def query(self, filters: AuditFilters) -> list[AuditLog]: ...

    async def count(self, filters: AuditFilters) -> int: ...

    async def stats(
        self, start_date: Optional[datetime], end_date: Optional[datetime]
    ) -> dict[str, int]: ...


def _where_clauses(filters: AuditFilters) -> list:
    clauses = []
    if filters.user_id:
        clauses.append(AuditLog.user_id == filters.user_id)
    if filters.action:
        clauses.append(AuditLog.action == AuditAction(filters.action).value)
    if filters.resource:
        clauses.append(AuditLog.resource == filters.resource)
    if filters.resource_type:
        clauses.append(AuditLog.resource_type == filters.resource_type)
    if filters.success is not None:
        clauses.append(AuditLog.success.is_(filters.success))
    if filters.severity:
        clauses.append(AuditLog.severity == AuditSeverity(filters.severity).value)
    if filters.start_date:
        clauses.append(AuditLog.timestamp >= filters.start_date)
    if filters.end_date:
        clauses.append(AuditLog.timestamp <= filters.end_date)
    if filters.search:
        pattern = f"%{filters.search}%"
        clauses.append(or_(
            AuditLog.action.ilike(pattern),
            AuditLog.resource.ilike(pattern),
            AuditLog.resource_type.ilike(pattern),
            AuditLog.ip_address.ilike(pattern),
            AuditLog.username.ilike(pattern),
        ))
    return clauses


class SqlAuditStore:
    """
    AuditStore over the ``audit_logs`` table.

    Every call opens its own session from ``session_factory``; appends are
    committed immediately and are never updated or deleted afterwards.
    """

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self.session_factory = session_factory

    async def append(self, event: AuditEvent, timestamp: datetime) -> str:
        row = AuditLog(
            id=str(uuid.uuid4()),
            user_id=event.user_id,
            username=event.username,
            action=event.action.value,
            resource=event.resource,
            resource_type=event.resource_type,
            details=event.details,
            ip_address=event.ip_address,
            user_agent=event.user_agent,
            success=event.success,
            severity=event.severity.value,
            timestamp=timestamp,
        )
        entry_id = row.id
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()
        return entry_id

    async def query(self, filters: AuditFilters) -> list[AuditLog]:
        stmt = (
            select(AuditLog)
            .where(*_where_clauses(filters))
            .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
            .offset(filters.offset)
        )
        if filters.limit is not None:
            stmt = stmt.limit(filters.limit)
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count(self, filters: AuditFilters) -> int:
        stmt = select(func.count(AuditLog.id)).where(*_where_clauses(filters))
        async with self.session_factory() as session:
            result = await session.execute(stmt)
            return int(result.scalar() or 0)

    async def stats(
        self, start_date: Optional[datetime], end_date: Optional[datetime]
    ) -> dict[str, int]:
        window = AuditFilters(start_date=start_date, end_date=end_date)
        stmt = select(
            func.count(AuditLog.id),
            func.sum(case((AuditLog.success.is_(False), 1), else_=0)),
            func.sum(case((AuditLog.action.startswith("evidence_", autoescape=True), 1), else_=0)),
            func.sum(case((AuditLog.severity == AuditSeverity.CRITICAL.value, 1), else_=0)),
        ).where(*_where_clauses(window))
        async with self.session_factory() as session:
            total, failed, evidence, critical = (await session.execute(stmt)).one()
        return {
            "total_logs": int(total or 0),
            "failed_attempts": int(failed or 0),
            "evidence_access": int(evidence or 0),
            "critical_actions": int(critical or 0),
        }


# ============== LOGGER ==============

class AuditLogger:
    """
    Records audit entries.

    ``record`` is awaited by callers (the entry is written before the
    response goes out) but it never raises: a failed write is reported on
    the recovery channel and the call returns None.
    """

    def __init__(
        self,
        store: AuditStore,
        timeout: Optional[float] = None,
        alert_webhook_url: Optional[str] = None,
    ):
        self.store = store
        self.timeout = timeout or settings.audit_write_timeout_seconds
        self.alert_webhook_url = alert_webhook_url

    async def record(self, event: AuditEvent) -> Optional[str]:
        """
        Append one entry. Returns the entry id, or None if the write failed.
        """
        timestamp = utc_now()
        started = time.perf_counter()
        try:
            try:
                entry_id = await asyncio.wait_for(
                    self.store.append(event, timestamp), timeout=self.timeout
                )
            except asyncio.TimeoutError as e:
                raise AuditWriteError(
                    f"audit write exceeded {self.timeout}s", entry=event.to_dict()
                ) from e
        except Exception as e:
            await self._recover(event, timestamp, e)
            return None

        record_audit_event(event.action.value, event.success, time.perf_counter() - started)
        log = getattr(logger, event.severity.value)
        log(
            "audit_event",
            audit_id=entry_id,
            user_id=event.user_id,
            username=event.username,
            action=event.action.value,
            resource=event.resource,
            resource_type=event.resource_type,
            success=event.success,
            ip_address=event.ip_address,
        )
        return entry_id

    async def _recover(self, event: AuditEvent, timestamp: datetime, error: Exception) -> None:
        entry = event.to_dict()
        entry["timestamp"] = timestamp.isoformat()
        recovery_logger.critical(
            "audit_write_failed",
            error=str(error) or type(error).__name__,
            error_type=type(error).__name__,
            entry=json.dumps(entry, default=str, sort_keys=True),
        )
        record_audit_failure(event.action.value)
        try:
            await send_audit_failure_alert(
                entry, str(error) or type(error).__name__, webhook_url=self.alert_webhook_url
            )
        except Exception:
            recovery_logger.exception("audit_alert_failed", action=event.action.value)

    # Convenience recorders. Each fixes the action/resource/severity
    # conventions for one family of events.

    async def record_auth_attempt(
        self,
        username: str,
        success: bool,
        identity: Optional[Identity] = None,
        reason: Optional[str] = None,
        legacy_format: bool = False,
        user_id: Optional[str] = None,
        request: Optional[Request] = None,
    ) -> Optional[str]:
        """Log a login attempt (``login`` or ``login_failed``)."""
        details: dict[str, Any] = {}
        if reason:
            details["reason"] = reason
        if legacy_format:
            details["legacyFormat"] = True

        subject_id = identity.id if identity else user_id
        event = AuditEvent.for_identity(
            identity,
            AuditAction.LOGIN if success else AuditAction.LOGIN_FAILED,
            request=request,
            user_id=subject_id,
            username=username,
            resource=f"user:{subject_id}" if subject_id else None,
            resource_type="user",
            details=details or None,
            success=success,
            severity=AuditSeverity.INFO if success else AuditSeverity.WARNING,
        )
        return await self.record(event)

    async def record_evidence_access(
        self,
        identity: Identity,
        action: AuditAction,
        evidence_id: Optional[str] = None,
        item_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        success: bool = True,
        request: Optional[Request] = None,
    ) -> Optional[str]:
        """Log evidence access (chain of custody)."""
        action = AuditAction(action)
        if action not in EVIDENCE_ACTIONS:
            raise ValidationError(f"{action.value} is not an evidence action")

        if evidence_id:
            resource = f"evidence:{evidence_id}"
        elif item_id:
            resource = f"item:{item_id}"
        else:
            resource = None

        event = AuditEvent.for_identity(
            identity,
            action,
            request=request,
            resource=resource,
            resource_type="evidence",
            details={"evidenceId": evidence_id, "itemId": item_id, **(details or {})},
            success=success,
            severity=(
                AuditSeverity.WARNING
                if action is AuditAction.EVIDENCE_DELETED or not success
                else AuditSeverity.INFO
            ),
        )
        return await self.record(event)

    async def record_resource_mutation(
        self,
        identity: Identity,
        action: AuditAction,
        resource_id: str,
        before: Optional[Any] = None,
        after: Optional[Any] = None,
        success: bool = True,
        request: Optional[Request] = None,
    ) -> Optional[str]:
        """Log creation, modification or deletion of an item or case."""
        action = AuditAction(action)
        if action not in MUTATION_ACTIONS:
            raise ValidationError(f"{action.value} is not an item/case mutation")

        resource_type = action.value.split("_", 1)[0]
        event = AuditEvent.for_identity(
            identity,
            action,
            request=request,
            resource=f"{resource_type}:{resource_id}",
            resource_type=resource_type,
            details={"resourceId": resource_id, "before": before, "after": after},
            success=success,
            severity=(
                AuditSeverity.WARNING
                if action.value.endswith("_deleted") or not success
                else AuditSeverity.INFO
            ),
        )
        return await self.record(event)

    async def record_admin_action(
        self,
        identity: Identity,
        action: AuditAction,
        target_identity_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        success: bool = True,
        request: Optional[Request] = None,
    ) -> Optional[str]:
        """Log an administrative action. Always ``warning``."""
        event = AuditEvent.for_identity(
            identity,
            action,
            request=request,
            resource=f"user:{target_identity_id}" if target_identity_id else None,
            resource_type="user",
            details=details,
            success=success,
            severity=AuditSeverity.WARNING,
        )
        return await self.record(event)

    async def record_export(
        self,
        identity: Identity,
        action: AuditAction,
        export_type: str,
        record_count: Optional[int] = None,
        request: Optional[Request] = None,
    ) -> Optional[str]:
        """Log a report, export or audit-log review."""
        action = AuditAction(action)
        if action not in EXPORT_ACTIONS:
            raise ValidationError(f"{action.value} is not an export action")

        event = AuditEvent.for_identity(
            identity,
            action,
            request=request,
            resource_type="export",
            details={
                "exportType": export_type,
                "recordCount": record_count,
                "timestamp": utc_now().isoformat(),
            },
            severity=AuditSeverity.INFO,
        )
        return await self.record(event)


# ============== QUERY ==============

DATE_PRESETS = ("today", "week", "month", "quarter")


def resolve_date_preset(preset: str, now: Optional[datetime] = None) -> datetime:
    """Start of the window named by ``preset`` (today, week, month, quarter)."""
    now = now or utc_now()
    if preset == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if preset == "week":
        return now - timedelta(days=7)
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if preset == "month":
        return month_start
    if preset == "quarter":
        month_index = month_start.year * 12 + (month_start.month - 1) - 3
        return month_start.replace(year=month_index // 12, month=month_index % 12 + 1)
    raise ValidationError(f"Unknown date preset: {preset!r}")


@dataclass
class AuditStats:
    total_logs: int = 0
    failed_attempts: int = 0
    evidence_access: int = 0
    critical_actions: int = 0


@dataclass
class AuditPage:
    entries: list[AuditLog] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 100

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


class AuditQuery:
    """Read side of the audit trail for compliance review."""

    def __init__(self, store: AuditStore):
        self.store = store

    async def find(
        self,
        user_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
        resource: Optional[str] = None,
        resource_type: Optional[str] = None,
        success: Optional[bool] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[AuditLog]:
        """Matching entries, newest first, at most ``limit``."""
        return await self.store.query(AuditFilters(
            user_id=user_id,
            action=action,
            resource=resource,
            resource_type=resource_type,
            success=success,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
        ))

    async def page(self, filters: AuditFilters, page: int = 1) -> AuditPage:
        limit = filters.limit or 100
        filters.limit = limit
        filters.offset = (max(page, 1) - 1) * limit
        total = await self.store.count(filters)
        entries = await self.store.query(filters)
        return AuditPage(entries=entries, total=total, page=max(page, 1), limit=limit)

    async def export(self, filters: AuditFilters) -> list[AuditLog]:
        """All matching entries, newest first, without pagination."""
        filters.limit = None
        filters.offset = 0
        return await self.store.query(filters)

    async def get_stats(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> AuditStats:
        return AuditStats(**await self.store.stats(start_date, end_date))


CSV_COLUMNS = (
    "Timestamp", "User ID", "User Name", "Action", "Resource Type", "Resource",
    "Success", "Severity", "Details", "IP Address", "User Agent",
)


def entries_to_csv(entries: Sequence[AuditLog]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(CSV_COLUMNS)
    for e in entries:
        writer.writerow([
            e.timestamp.isoformat(),
            e.user_id or "",
            e.username or "Unknown User",
            e.action,
            e.resource_type or "",
            e.resource or "",
            "true" if e.success else "false",
            e.severity,
            json.dumps(e.details, sort_keys=True) if e.details is not None else "",
            e.ip_address or "",
            e.user_agent or "",
        ])
    return buf.getvalue()
