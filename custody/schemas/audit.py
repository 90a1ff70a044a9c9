"""
Custody - Audit Schemas
=======================
Response models for the compliance review endpoints.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel


class AuditLogResponse(BaseModel):
    """One audit entry."""
    id: str
    user_id: Optional[str] = None
    username: Optional[str] = None
    action: str
    resource: Optional[str] = None
    resource_type: Optional[str] = None
    details: Optional[Any] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    success: bool
    severity: str
    timestamp: datetime

    class Config:
        from_attributes = True


class AuditLogPage(BaseModel):
    """Paginated audit entries, newest first."""
    logs: List[AuditLogResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class AuditStatsResponse(BaseModel):
    total_logs: int
    failed_attempts: int
    evidence_access: int
    critical_actions: int
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
