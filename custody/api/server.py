#!/usr/bin/env python3
"""
Custody API Server
==================

Audit & access-control service for the chain-of-custody case manager.
Cookie sessions, tenant-scoped authorization, rate limiting and an
append-only audit trail.

Usage:
    uvicorn custody.api.server:app --reload

Endpoints:
    GET    /                                   - API status
    GET    /health                             - Basic health check
    GET    /health/deep                        - Deep health check (DB)
    GET    /metrics                            - Prometheus metrics
    POST   /api/v1/auth/login                  - Login (sets session cookie)
    POST   /api/v1/auth/logout                 - Logout
    GET    /api/v1/auth/me                     - Current identity
    POST   /api/v1/auth/password               - Change password
    POST   /api/v1/auth/password/strength      - Check password strength
    GET    /api/v1/items/{id}                  - View item
    DELETE /api/v1/items/{id}                  - Delete item
    GET    /api/v1/items/{id}/evidence/{eid}   - View evidence
    DELETE /api/v1/items/{id}/evidence/{eid}   - Delete evidence
    GET    /api/v1/tenant/users                - List tenant members
    PATCH  /api/v1/tenant/users/{id}           - Update tenant member
    DELETE /api/v1/tenant/users/{id}           - Remove tenant member
    GET    /api/v1/admin/audit-logs            - Review audit trail
    GET    /api/v1/admin/audit-logs/stats      - Audit counts
    GET    /api/v1/admin/audit-logs/export     - Export audit trail
"""

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

import custody.logging_config  # noqa: F401  configures structlog
from custody.api.limiter import limiter
from custody.api.routes.audit import router as audit_router
from custody.api.routes.auth import router as auth_router
from custody.api.routes.items import router as items_router
from custody.api.routes.tenant_users import router as tenant_users_router
from custody.config import settings
from custody.db.database import check_db_health, close_db, init_db
from custody.errors import AuthenticationError, ForbiddenError, ValidationError
from custody.monitoring.metrics import record_api_request

logger = structlog.get_logger(__name__)

VERSION = "1.0.0"


# =============================================================================
# Application Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    await init_db()
    logger.info("api_started", service="custody", version=VERSION, environment=settings.environment)

    yield

    await close_db()
    logger.info("database_closed")


# =============================================================================
# FastAPI Application
# =============================================================================

API_TAGS = [
    {"name": "Health", "description": "Health check and status endpoints"},
    {"name": "Authentication", "description": "Login, logout and password management"},
    {"name": "Items", "description": "Tenant-scoped items and evidence"},
    {"name": "Tenant Users", "description": "Tenant member management"},
    {"name": "Audit", "description": "Audit trail review and export"},
    {"name": "Monitoring", "description": "Prometheus metrics"},
]

app = FastAPI(
    title="Custody Audit & Access Control",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
    openapi_tags=API_TAGS,
)

# Add rate limiting
app.state.limiter = limiter


def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit exceptions safely."""
    detail = getattr(exc, "detail", str(exc))
    return JSONResponse(
        status_code=429,
        content={"error": "Rate limit exceeded", "detail": str(detail)}
    )


app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
app.add_middleware(SlowAPIMiddleware)

# CORS - explicit origins only; cookies need credentials
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Request-ID"],
)


# =============================================================================
# Metrics Middleware
# =============================================================================

@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Track request metrics."""
    start_time = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - start_time

    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)
    record_api_request(request.method, endpoint, response.status_code, duration)
    return response


# =============================================================================
# Health Endpoints
# =============================================================================

@app.get("/", tags=["Health"])
async def root():
    """API status."""
    return {
        "name": "Custody Audit & Access Control",
        "version": VERSION,
        "status": "running",
    }


@app.get("/health", tags=["Health"])
async def health():
    """Basic health check."""
    return {
        "status": "healthy",
        "service": "custody",
        "version": VERSION,
    }


@app.get("/health/deep", tags=["Health"])
async def health_deep():
    """
    Deep health check - verifies the database connection.
    Returns 503 if the database is unreachable.
    """
    db_health = await check_db_health()
    healthy = db_health.get("connected", False)
    checks = {
        "database": {"status": "healthy" if healthy else "unhealthy", **db_health},
    }

    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "degraded",
            "service": "custody",
            "version": VERSION,
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )


@app.get("/metrics", tags=["Monitoring"])
async def metrics():
    """Prometheus metrics endpoint."""
    return PlainTextResponse(
        generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# =============================================================================
# Include Routers
# =============================================================================

app.include_router(auth_router, prefix="/api/v1")
app.include_router(items_router, prefix="/api/v1")
app.include_router(tenant_users_router, prefix="/api/v1")
app.include_router(audit_router, prefix="/api/v1")


# =============================================================================
# Error Handlers
# =============================================================================

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(request: Request, exc: AuthenticationError):
    return JSONResponse(status_code=401, content={"error": exc.public_message})


@app.exception_handler(ForbiddenError)
async def forbidden_error_handler(request: Request, exc: ForbiddenError):
    return JSONResponse(status_code=403, content={"error": exc.public_message})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(
        "unhandled_error",
        error=str(exc),
        path=request.url.path,
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )


# =============================================================================
# Main Entry Point
# =============================================================================

def main():
    """Run the server."""
    import uvicorn
    uvicorn.run(
        "custody.api.server:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
