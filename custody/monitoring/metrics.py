"""
Custody - Prometheus Metrics
=============================
Counters for the audit trail and access decisions.
"""

from prometheus_client import Counter, Histogram, Info

APP_INFO = Info("custody_app", "Application information")
APP_INFO.info({
    "version": "1.0.0",
    "name": "Custody Audit & Access Control",
})

# Audit metrics
AUDIT_EVENTS_TOTAL = Counter(
    "custody_audit_events_total",
    "Audit entries persisted",
    ["action", "success"]
)

AUDIT_WRITE_FAILURES_TOTAL = Counter(
    "custody_audit_write_failures_total",
    "Audit entries that could not be persisted and went to the recovery log",
    ["action"]
)

AUDIT_WRITE_LATENCY = Histogram(
    "custody_audit_write_seconds",
    "Audit append latency",
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
)

# Access-control metrics
ACCESS_DENIALS_TOTAL = Counter(
    "custody_access_denials_total",
    "Authorization denials",
    ["action", "reason"]
)

LEGACY_PASSWORD_LOGINS_TOTAL = Counter(
    "custody_legacy_password_logins_total",
    "Successful logins that used a legacy plaintext credential"
)

# API metrics
API_REQUESTS = Counter(
    "custody_api_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"]
)

API_LATENCY = Histogram(
    "custody_api_latency_seconds",
    "API request latency",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)


def record_audit_event(action: str, success: bool, duration: float) -> None:
    """Record a persisted audit entry."""
    AUDIT_EVENTS_TOTAL.labels(action=action, success=str(success).lower()).inc()
    AUDIT_WRITE_LATENCY.observe(duration)


def record_audit_failure(action: str) -> None:
    """Record an audit entry that fell back to the recovery log."""
    AUDIT_WRITE_FAILURES_TOTAL.labels(action=action).inc()


def record_access_denial(action: str, reason: str) -> None:
    ACCESS_DENIALS_TOTAL.labels(action=action, reason=reason).inc()


def record_legacy_login() -> None:
    LEGACY_PASSWORD_LOGINS_TOTAL.inc()


def record_api_request(method: str, endpoint: str, status: int, duration: float) -> None:
    """Record an API request."""
    API_REQUESTS.labels(method=method, endpoint=endpoint, status=str(status)).inc()
    API_LATENCY.labels(method=method, endpoint=endpoint).observe(duration)
