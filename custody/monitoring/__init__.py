"""
Custody - Monitoring Module
============================
Observability components: metrics and alerts.
"""

from custody.monitoring.metrics import (
    AUDIT_EVENTS_TOTAL,
    AUDIT_WRITE_FAILURES_TOTAL,
    ACCESS_DENIALS_TOTAL,
    record_audit_event,
    record_audit_failure,
    record_access_denial,
)
from custody.monitoring.alerts import send_audit_failure_alert

__all__ = [
    "AUDIT_EVENTS_TOTAL",
    "AUDIT_WRITE_FAILURES_TOTAL",
    "ACCESS_DENIALS_TOTAL",
    "record_audit_event",
    "record_audit_failure",
    "record_access_denial",
    "send_audit_failure_alert",
]
