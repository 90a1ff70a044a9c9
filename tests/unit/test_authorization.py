"""
Custody - Authorization Policy Tests
====================================
Tenant isolation, role rules and the audited access guard.
"""

from datetime import datetime

import pytest

from custody.errors import ForbiddenError
from custody.services.audit import AuditAction, AuditEvent, AuditLogger
from custody.services.authorization import (
    AccessGuard,
    AuthorizationPolicy,
    Resource,
    ResourceAction,
)
from custody.services.permissions import Identity, Role


def make_identity(role: Role, tenant_id=None, id="user-1") -> Identity:
    return Identity.issue(id, f"{role.value}-{id}", role.value.title(), f"{id}@example.com", role, tenant_id)


@pytest.fixture
def policy() -> AuthorizationPolicy:
    return AuthorizationPolicy(cross_tenant_actions={"read", "export", "admin"})


class MemoryAuditStore:
    """AuditStore that keeps appended events in a list."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append(self, event: AuditEvent, timestamp: datetime) -> str:
        self.events.append(event)
        return f"entry-{len(self.events)}"


@pytest.fixture
def store() -> MemoryAuditStore:
    return MemoryAuditStore()


@pytest.fixture
def guard(policy, store) -> AccessGuard:
    return AccessGuard(policy, AuditLogger(store))


class TestTenantIsolation:

    @pytest.mark.parametrize("action", list(ResourceAction))
    def test_other_tenant_always_denied(self, policy, action):
        owner = make_identity(Role.PROPERTY_OWNER, "farm-A")
        resource = Resource("item", "item-1", tenant_id="farm-B")

        decision = policy.evaluate(owner, action, resource)
        assert decision.allowed is False
        assert policy.can_access(owner, action, resource) is False

    def test_owner_deleting_other_farm_item(self, policy):
        owner = make_identity(Role.PROPERTY_OWNER, "farm-A")
        decision = policy.evaluate(owner, ResourceAction.DELETE, Resource("item", "i", tenant_id="farm-B"))
        assert not decision
        assert decision.reason == "tenant_mismatch"

    def test_same_tenant_permitted(self, policy):
        owner = make_identity(Role.PROPERTY_OWNER, "farm-A")
        resource = Resource("item", "item-1", tenant_id="farm-A")
        for action in (ResourceAction.READ, ResourceAction.WRITE, ResourceAction.DELETE,
                       ResourceAction.UPLOAD, ResourceAction.EXPORT):
            assert policy.can_access(owner, action, resource), action

    def test_tenant_bound_officer_is_isolated(self, policy):
        officer = make_identity(Role.LAW_ENFORCEMENT, "farm-A")
        assert not policy.can_access(officer, ResourceAction.READ, Resource("item", "i", tenant_id="farm-B"))

    def test_no_identity(self, policy):
        decision = policy.evaluate(None, ResourceAction.READ, Resource("item", "i", tenant_id="farm-A"))
        assert decision.reason == "unauthenticated"
        assert not decision.allowed

    def test_platform_resource_needs_admin(self, policy):
        owner = make_identity(Role.PROPERTY_OWNER, "farm-A")
        decision = policy.evaluate(owner, ResourceAction.READ, Resource("tenant_list"))
        assert decision.reason == "platform_resource"


class TestPlatformRoles:

    def test_super_admin_reads_any_tenant(self, policy):
        admin = make_identity(Role.SUPER_ADMIN)
        decision = policy.evaluate(admin, ResourceAction.READ, Resource("item", "i", tenant_id="farm-B"))
        assert decision.allowed
        assert decision.reason == "platform_permission"

    def test_officer_exports_any_tenant(self, policy):
        officer = make_identity(Role.LAW_ENFORCEMENT)
        assert policy.can_access(officer, ResourceAction.EXPORT, Resource("item", "i", tenant_id="farm-B"))

    def test_cross_tenant_delete_not_in_allow_list(self, policy):
        admin = make_identity(Role.SUPER_ADMIN)
        decision = policy.evaluate(admin, ResourceAction.DELETE, Resource("item", "i", tenant_id="farm-B"))
        assert not decision.allowed
        assert decision.reason == "tenant_mismatch"

    def test_allow_list_is_configurable(self):
        policy = AuthorizationPolicy(cross_tenant_actions={"read", "delete"})
        admin = make_identity(Role.SUPER_ADMIN)
        assert policy.can_access(admin, ResourceAction.DELETE, Resource("item", "i", tenant_id="farm-B"))
        assert not policy.can_access(admin, ResourceAction.EXPORT, Resource("item", "i", tenant_id="farm-B"))

    def test_super_admin_administers_platform(self, policy):
        admin = make_identity(Role.SUPER_ADMIN)
        assert policy.can_access(admin, ResourceAction.ADMIN, Resource("audit_log"))


class TestRoleRules:

    def test_support_staff_cannot_upload(self, policy):
        assistant = make_identity(Role.ASSISTANT, "farm-A")
        decision = policy.evaluate(assistant, ResourceAction.UPLOAD, Resource("evidence", None, tenant_id="farm-A"))
        assert decision.reason == "missing_permission"

    def test_stakeholder_cannot_export(self, policy):
        banker = make_identity(Role.BANKER, "farm-A")
        assert not policy.can_access(banker, ResourceAction.EXPORT, Resource("item", "i", tenant_id="farm-A"))

    def test_only_property_owner_manages_users(self, policy):
        target = Resource("user", "user-9", tenant_id="farm-A")
        owner = make_identity(Role.PROPERTY_OWNER, "farm-A")
        manager = make_identity(Role.MANAGER, "farm-A")

        assert policy.can_access(owner, ResourceAction.MANAGE_USERS, target)
        assert policy.evaluate(manager, ResourceAction.MANAGE_USERS, target).reason == "not_tenant_owner"

    def test_owner_cannot_manage_own_account(self, policy):
        owner = make_identity(Role.PROPERTY_OWNER, "farm-A", id="user-1")
        decision = policy.evaluate(
            owner, ResourceAction.MANAGE_USERS, Resource("user", "user-1", tenant_id="farm-A")
        )
        assert decision.reason == "self_management"

    def test_require_access_raises(self, policy):
        owner = make_identity(Role.PROPERTY_OWNER, "farm-A")
        with pytest.raises(ForbiddenError) as exc:
            policy.require_access(owner, ResourceAction.READ, Resource("item", "i", tenant_id="farm-B"))
        assert exc.value.reason == "tenant_mismatch"
        assert str(exc.value) == "Access denied"

    def test_require_access_returns_permit(self, policy):
        owner = make_identity(Role.PROPERTY_OWNER, "farm-A")
        decision = policy.require_access(owner, ResourceAction.READ, Resource("item", "i", tenant_id="farm-A"))
        assert decision.allowed


class TestAccessGuard:
    """Every guarded outcome leaves exactly one audit entry."""

    @pytest.mark.asyncio
    async def test_denial_is_audited_once(self, guard, store):
        owner = make_identity(Role.PROPERTY_OWNER, "farm-A")
        ran = False

        with pytest.raises(ForbiddenError):
            async with guard.check(
                owner, ResourceAction.DELETE, Resource("item", "item-1", tenant_id="farm-B"),
                AuditAction.ITEM_DELETED,
            ):
                ran = True

        assert ran is False
        assert len(store.events) == 1
        event = store.events[0]
        assert event.action == AuditAction.ITEM_DELETED
        assert event.success is False
        assert event.severity.value == "warning"
        assert event.resource == "item:item-1"
        assert event.details["reason"] == "tenant_mismatch"
        assert event.user_id == owner.id

    @pytest.mark.asyncio
    async def test_success_is_audited(self, guard, store):
        owner = make_identity(Role.PROPERTY_OWNER, "farm-A")

        async with guard.check(
            owner, ResourceAction.READ, Resource("item", "item-1", tenant_id="farm-A"),
            AuditAction.ITEM_VIEWED,
        ) as details:
            details["fields"] = 3

        assert len(store.events) == 1
        assert store.events[0].success is True
        assert store.events[0].severity.value == "info"
        assert store.events[0].details == {"fields": 3}

    @pytest.mark.asyncio
    async def test_deletion_success_is_warning(self, guard, store):
        owner = make_identity(Role.PROPERTY_OWNER, "farm-A")

        async with guard.check(
            owner, ResourceAction.DELETE, Resource("item", "item-1", tenant_id="farm-A"),
            AuditAction.ITEM_DELETED,
        ):
            pass

        assert store.events[0].severity.value == "warning"

    @pytest.mark.asyncio
    async def test_failed_operation_is_audited_and_reraised(self, guard, store):
        owner = make_identity(Role.PROPERTY_OWNER, "farm-A")

        with pytest.raises(RuntimeError):
            async with guard.check(
                owner, ResourceAction.WRITE, Resource("item", "item-1", tenant_id="farm-A"),
                AuditAction.ITEM_MODIFIED,
            ):
                raise RuntimeError("disk full")

        assert len(store.events) == 1
        assert store.events[0].success is False
        assert store.events[0].severity.value == "error"
        assert store.events[0].details == {"error": "RuntimeError"}

    @pytest.mark.asyncio
    async def test_caller_records_success(self, guard, store):
        owner = make_identity(Role.PROPERTY_OWNER, "farm-A")

        async with guard.check(
            owner, ResourceAction.READ, Resource("evidence", "ev-1", tenant_id="farm-A"),
            AuditAction.EVIDENCE_VIEWED, record_success=False,
        ):
            pass

        assert store.events == []

    @pytest.mark.asyncio
    async def test_anonymous_denial_is_audited(self, guard, store):
        with pytest.raises(ForbiddenError):
            async with guard.check(
                None, ResourceAction.READ, Resource("item", "item-1", tenant_id="farm-A"),
                AuditAction.ITEM_VIEWED,
            ):
                pass

        assert store.events[0].user_id is None
        assert store.events[0].ip_address == "unknown"
