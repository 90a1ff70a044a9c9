"""
Custody - Audit Log API Integration Tests
=========================================
Compliance review endpoints. Reading the trail leaves its own entry.
"""

import csv
import io

import pytest
import pytest_asyncio
from httpx import AsyncClient

from custody.services.audit import AuditAction, AuditEvent, AuditSeverity, CSV_COLUMNS


@pytest_asyncio.fixture
async def seeded(audit_logger, owner_b):
    """Three entries: a failed login, an evidence view and a critical deletion."""
    await audit_logger.record(AuditEvent(
        action=AuditAction.LOGIN_FAILED,
        username="mallory",
        success=False,
        severity=AuditSeverity.WARNING,
        details={"reason": "unknown_user"},
        ip_address="198.51.100.7",
    ))
    await audit_logger.record(AuditEvent(
        action=AuditAction.EVIDENCE_VIEWED,
        user_id=owner_b.id,
        username=owner_b.username,
        resource="evidence:ev-1",
        resource_type="evidence",
    ))
    await audit_logger.record(AuditEvent(
        action=AuditAction.ITEM_DELETED,
        user_id=owner_b.id,
        username=owner_b.username,
        resource="item:item-9",
        resource_type="item",
        severity=AuditSeverity.CRITICAL,
    ))


class TestListAuditLogs:

    @pytest.mark.asyncio
    async def test_super_admin_pages_through_trail(
        self, client: AsyncClient, login_as, super_admin, seeded, audit_entries
    ):
        response = await login_as(super_admin).get("/api/v1/admin/audit-logs", params={"limit": 2})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert data["page"] == 1
        assert data["limit"] == 2
        assert data["total_pages"] == 2
        assert len(data["logs"]) == 2

        # The first view is now part of the trail
        second = await client.get("/api/v1/admin/audit-logs", params={"limit": 2, "page": 2})
        assert second.json()["total"] == 4
        assert len(second.json()["logs"]) == 2

        views = await audit_entries(action="audit_log_viewed")
        assert len(views) == 2
        assert views[0].success is True
        assert views[0].user_id == super_admin.id
        assert views[0].details["exportType"] == "audit_logs"
        assert views[0].details["recordCount"] == 2

    @pytest.mark.asyncio
    async def test_tenant_user_denied(self, client: AsyncClient, login_as, owner_a, seeded, audit_entries):
        response = await login_as(owner_a).get("/api/v1/admin/audit-logs")

        assert response.status_code == 403
        assert response.json() == {"error": "Access denied"}

        entry = (await audit_entries(action="audit_log_viewed"))[0]
        assert entry.success is False
        assert entry.severity == "warning"
        assert entry.details["reason"] == "platform_resource"

    @pytest.mark.asyncio
    async def test_requires_session(self, client: AsyncClient):
        response = await client.get("/api/v1/admin/audit-logs")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_filter_by_action(self, client: AsyncClient, login_as, super_admin, seeded):
        response = await login_as(super_admin).get(
            "/api/v1/admin/audit-logs", params={"action": "login_failed"}
        )

        data = response.json()
        assert data["total"] == 1
        assert data["logs"][0]["username"] == "mallory"
        assert data["logs"][0]["details"] == {"reason": "unknown_user"}

    @pytest.mark.asyncio
    async def test_filter_by_success_and_resource_type(
        self, client: AsyncClient, login_as, super_admin, seeded
    ):
        response = await login_as(super_admin).get(
            "/api/v1/admin/audit-logs", params={"success": "true", "resource_type": "evidence"}
        )

        data = response.json()
        assert data["total"] == 1
        assert data["logs"][0]["resource"] == "evidence:ev-1"

    @pytest.mark.asyncio
    async def test_search_matches_ip_and_username(self, client: AsyncClient, login_as, super_admin, seeded):
        login_as(super_admin)

        by_ip = await client.get("/api/v1/admin/audit-logs", params={"search": "198.51.100"})
        by_name = await client.get("/api/v1/admin/audit-logs", params={"search": "MALLORY"})

        assert by_ip.json()["total"] == 1
        assert by_name.json()["total"] == 1

    @pytest.mark.asyncio
    async def test_date_preset(self, client: AsyncClient, login_as, super_admin, seeded):
        login_as(super_admin)

        today = await client.get("/api/v1/admin/audit-logs", params={"date": "today"})
        assert today.status_code == 200
        assert today.json()["total"] == 3

        bogus = await client.get("/api/v1/admin/audit-logs", params={"date": "fortnight"})
        assert bogus.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_action_rejected(self, client: AsyncClient, login_as, super_admin):
        response = await login_as(super_admin).get(
            "/api/v1/admin/audit-logs", params={"action": "teleported"}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_limit_is_capped(self, client: AsyncClient, login_as, super_admin):
        response = await login_as(super_admin).get("/api/v1/admin/audit-logs", params={"limit": 501})
        assert response.status_code == 422


class TestAuditStats:

    @pytest.mark.asyncio
    async def test_counts(self, client: AsyncClient, login_as, super_admin, seeded, audit_entries):
        response = await login_as(super_admin).get("/api/v1/admin/audit-logs/stats")

        assert response.status_code == 200
        assert response.json() == {
            "total_logs": 3,
            "failed_attempts": 1,
            "evidence_access": 1,
            "critical_actions": 1,
            "start_date": None,
            "end_date": None,
        }
        assert len(await audit_entries(action="audit_log_viewed", success=True)) == 1

    @pytest.mark.asyncio
    async def test_tenant_user_denied(self, client: AsyncClient, login_as, owner_a):
        response = await login_as(owner_a).get("/api/v1/admin/audit-logs/stats")
        assert response.status_code == 403


class TestAuditExport:

    @pytest.mark.asyncio
    async def test_csv_export(self, client: AsyncClient, login_as, super_admin, seeded, audit_entries):
        response = await login_as(super_admin).get("/api/v1/admin/audit-logs/export")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]

        rows = list(csv.reader(io.StringIO(response.text)))
        assert tuple(rows[0]) == CSV_COLUMNS
        assert len(rows) == 4
        assert {row[3] for row in rows[1:]} == {"login_failed", "evidence_viewed", "item_deleted"}

        entry = (await audit_entries(action="data_exported"))[0]
        assert entry.success is True
        assert entry.details["exportType"] == "audit_logs_csv"
        assert entry.details["recordCount"] == 3

    @pytest.mark.asyncio
    async def test_json_export_with_filter(self, client: AsyncClient, login_as, super_admin, seeded):
        response = await login_as(super_admin).get(
            "/api/v1/admin/audit-logs/export", params={"format": "json", "success": "false"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["logs"][0]["action"] == "login_failed"
        assert "exported_at" in data

    @pytest.mark.asyncio
    async def test_unsupported_format(self, client: AsyncClient, login_as, super_admin):
        response = await login_as(super_admin).get(
            "/api/v1/admin/audit-logs/export", params={"format": "xml"}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_tenant_user_cannot_export(self, client: AsyncClient, login_as, owner_a, audit_entries):
        response = await login_as(owner_a).get("/api/v1/admin/audit-logs/export")

        assert response.status_code == 403
        entry = (await audit_entries(action="data_exported"))[0]
        assert entry.success is False


class TestUtcOffsetsInQuery:

    @pytest.mark.asyncio
    async def test_zulu_start_date(self, client: AsyncClient, login_as, super_admin, seeded):
        login_as(super_admin)
        params = {"start_date": "2000-01-01T00:00:00Z"}

        listing = await client.get("/api/v1/admin/audit-logs", params=params)
        stats = await client.get("/api/v1/admin/audit-logs/stats", params=params)
        export = await client.get("/api/v1/admin/audit-logs/export", params={**params, "format": "json"})

        assert listing.status_code == 200
        assert listing.json()["total"] == 3
        assert stats.status_code == 200
        assert stats.json()["total_logs"] == 4
        assert export.status_code == 200

    @pytest.mark.asyncio
    async def test_future_offset_window_is_empty(self, client: AsyncClient, login_as, super_admin, seeded):
        response = await login_as(super_admin).get(
            "/api/v1/admin/audit-logs/stats", params={"start_date": "2999-01-01T00:00:00+05:00"}
        )
        assert response.status_code == 200
        assert response.json()["total_logs"] == 0
