"""
Custody - Audit Log Routes
==========================
Compliance review over the audit trail: filtered listing, aggregate
counts and CSV/JSON export. Reading the trail is itself audited.
"""

from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, Response

from custody.api.deps import (
    get_access_guard,
    get_audit_logger,
    get_audit_query,
    get_current_identity,
)
from custody.db.models import utc_now
from custody.schemas.audit import AuditLogPage, AuditLogResponse, AuditStatsResponse
from custody.services.audit import (
    AuditAction,
    AuditFilters,
    AuditLogger,
    AuditQuery,
    AuditSeverity,
    entries_to_csv,
    resolve_date_preset,
)
from custody.services.authorization import AccessGuard, Resource, ResourceAction
from custody.services.permissions import Identity

router = APIRouter(prefix="/admin/audit-logs", tags=["Audit"])

AUDIT_TRAIL = Resource("audit_log")


class AuditFilterParams:
    """Query-string filters shared by the listing and the export."""

    def __init__(
        self,
        user_id: Optional[str] = Query(None),
        action: Optional[AuditAction] = Query(None),
        resource: Optional[str] = Query(None),
        resource_type: Optional[str] = Query(None),
        success: Optional[bool] = Query(None),
        severity: Optional[AuditSeverity] = Query(None),
        start_date: Optional[datetime] = Query(None),
        end_date: Optional[datetime] = Query(None),
        date: Optional[Literal["today", "week", "month", "quarter"]] = Query(None),
        search: Optional[str] = Query(None, max_length=200),
    ):
        if date:
            start_date = resolve_date_preset(date)
        self.filters = AuditFilters(
            user_id=user_id,
            action=action,
            resource=resource,
            resource_type=resource_type,
            success=success,
            severity=severity,
            start_date=start_date,
            end_date=end_date,
            search=search or None,
        )
        self.applied = {
            k: v for k, v in {
                "userId": user_id,
                "action": action.value if action else None,
                "resource": resource,
                "resourceType": resource_type,
                "success": success,
                "date": date,
                "search": search,
            }.items() if v is not None
        }


@router.get("", response_model=AuditLogPage)
async def list_audit_logs(
    request: Request,
    params: AuditFilterParams = Depends(),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    identity: Identity = Depends(get_current_identity),
    guard: AccessGuard = Depends(get_access_guard),
    audit: AuditLogger = Depends(get_audit_logger),
    query: AuditQuery = Depends(get_audit_query),
):
    """Filtered audit entries, newest first."""
    async with guard.check(
        identity,
        ResourceAction.ADMIN,
        AUDIT_TRAIL,
        AuditAction.AUDIT_LOG_VIEWED,
        request=request,
        details={"filters": params.applied},
        record_success=False,
    ):
        params.filters.limit = limit
        result = await query.page(params.filters, page=page)

    await audit.record_export(
        identity,
        AuditAction.AUDIT_LOG_VIEWED,
        export_type="audit_logs",
        record_count=len(result.entries),
        request=request,
    )

    return AuditLogPage(
        logs=[AuditLogResponse.model_validate(e) for e in result.entries],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


@router.get("/stats", response_model=AuditStatsResponse)
async def audit_stats(
    request: Request,
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    identity: Identity = Depends(get_current_identity),
    guard: AccessGuard = Depends(get_access_guard),
    query: AuditQuery = Depends(get_audit_query),
):
    """Aggregate counts over an optional time window."""
    async with guard.check(
        identity,
        ResourceAction.ADMIN,
        AUDIT_TRAIL,
        AuditAction.AUDIT_LOG_VIEWED,
        request=request,
        details={"exportType": "audit_stats"},
    ):
        stats = await query.get_stats(start_date, end_date)

    return AuditStatsResponse(
        total_logs=stats.total_logs,
        failed_attempts=stats.failed_attempts,
        evidence_access=stats.evidence_access,
        critical_actions=stats.critical_actions,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/export")
async def export_audit_logs(
    request: Request,
    params: AuditFilterParams = Depends(),
    format: Literal["csv", "json"] = Query("csv"),
    identity: Identity = Depends(get_current_identity),
    guard: AccessGuard = Depends(get_access_guard),
    audit: AuditLogger = Depends(get_audit_logger),
    query: AuditQuery = Depends(get_audit_query),
):
    """All matching entries as a CSV attachment or a JSON document."""
    async with guard.check(
        identity,
        ResourceAction.EXPORT,
        AUDIT_TRAIL,
        AuditAction.DATA_EXPORTED,
        request=request,
        details={"format": format, "filters": params.applied},
        record_success=False,
    ):
        entries = await query.export(params.filters)

    await audit.record_export(
        identity,
        AuditAction.DATA_EXPORTED,
        export_type=f"audit_logs_{format}",
        record_count=len(entries),
        request=request,
    )

    stamp = utc_now().strftime("%Y-%m-%d")
    if format == "csv":
        return Response(
            content=entries_to_csv(entries),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="audit-logs-{stamp}.csv"'},
        )

    logs = [AuditLogResponse.model_validate(e).model_dump(mode="json") for e in entries]
    return JSONResponse(
        content={"logs": logs, "total": len(logs), "exported_at": utc_now().isoformat()},
        headers={"Content-Disposition": f'attachment; filename="audit-logs-{stamp}.json"'},
    )
