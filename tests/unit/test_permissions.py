"""
Custody - Role & Permission Tests
=================================
"""

import pytest

from custody.services.permissions import (
    PLATFORM_ROLES,
    ROLE_PERMISSIONS,
    Identity,
    Permission,
    Role,
    permissions_for,
)


def test_every_role_has_permissions():
    assert set(ROLE_PERMISSIONS) == set(Role)
    assert all(ROLE_PERMISSIONS[role] for role in Role)


def test_property_owner_permissions():
    assert permissions_for(Role.PROPERTY_OWNER) == {
        Permission.READ_OWN,
        Permission.WRITE_OWN,
        Permission.UPLOAD_EVIDENCE,
        Permission.GENERATE_REPORTS,
    }


@pytest.mark.parametrize("role", [Role.ASSISTANT, Role.SECRETARY, Role.MANAGER, Role.EXECUTIVE_ASSISTANT])
def test_support_staff_cannot_upload(role):
    assert Permission.UPLOAD_EVIDENCE not in permissions_for(role)


def test_super_admin_holds_every_admin_permission():
    perms = permissions_for(Role.SUPER_ADMIN)
    assert {Permission.ADMIN_USERS, Permission.ADMIN_SYSTEM, Permission.ADMIN_TENANTS,
            Permission.SUPER_ADMIN} <= perms


def test_platform_roles():
    assert PLATFORM_ROLES == {Role.SUPER_ADMIN, Role.LAW_ENFORCEMENT}


class TestIdentity:

    def test_issue_derives_permissions_from_role(self):
        identity = Identity.issue("u1", "broker1", "Bo Broker", "bo@example.com", Role.BROKER, "farm-A")
        assert identity.permissions == permissions_for(Role.BROKER)
        assert identity.has(Permission.READ_OWN)
        assert not identity.has(Permission.READ_ALL, Permission.ADMIN_USERS)
        assert not identity.has_admin_permission

    def test_platform_wide_requires_no_tenant(self):
        unbound = Identity.issue("u1", "cop", "Cop", "cop@example.com", Role.LAW_ENFORCEMENT)
        bound = Identity.issue("u2", "cop2", "Cop", "cop2@example.com", Role.LAW_ENFORCEMENT, "farm-A")
        owner = Identity.issue("u3", "own", "Own", "own@example.com", Role.PROPERTY_OWNER)

        assert unbound.is_platform_wide
        assert not bound.is_platform_wide
        assert not owner.is_platform_wide

    def test_claims_round_trip(self):
        identity = Identity.issue("u1", "admin", "Admin", "admin@example.com", Role.SUPER_ADMIN)
        assert Identity.from_claims(identity.to_claims()) == identity

    def test_unknown_permission_in_claims(self):
        claims = Identity.issue("u1", "a", "A", "a@example.com", Role.BANKER).to_claims()
        claims["permissions"].append("delete:everything")
        with pytest.raises(ValueError):
            Identity.from_claims(claims)

    def test_identity_is_immutable(self):
        identity = Identity.issue("u1", "a", "A", "a@example.com", Role.BANKER)
        with pytest.raises(AttributeError):
            identity.role = Role.SUPER_ADMIN
