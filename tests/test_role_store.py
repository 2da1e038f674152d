"""Tests for the in-memory role store, RbacService and default role seeding."""

from __future__ import annotations

import pytest

from conduit.errors import PermissionDeniedError, RoleNotFoundError
from conduit.security.rbac import (
    InMemoryRoleStore,
    Permission,
    RbacService,
    seed_default_roles,
)


@pytest.fixture
def store() -> InMemoryRoleStore:
    return InMemoryRoleStore()


@pytest.fixture
def rbac(store: InMemoryRoleStore) -> RbacService:
    seed_default_roles(store)
    return RbacService(store)


class TestIdempotentMutations:
    def test_create_role_twice_returns_existing(self, store: InMemoryRoleStore) -> None:
        first = store.create_role("editor", "Edits", [Permission(resource="widget", action="*")])
        second = store.create_role("editor", "Different", [])
        assert second is first
        assert [r.name for r in store.list_roles()] == ["editor"]

    def test_assign_role_twice_keeps_one_assignment(self, store: InMemoryRoleStore) -> None:
        store.create_role("editor")
        store.assign_role("u1", "editor")
        store.assign_role("u1", "editor")
        assert [r.name for r in store.get_user_roles("u1")] == ["editor"]

    def test_remove_role_is_idempotent(self, store: InMemoryRoleStore) -> None:
        store.create_role("editor")
        store.assign_role("u1", "editor")
        store.remove_role("u1", "editor")
        store.remove_role("u1", "editor")
        assert store.get_user_roles("u1") == []

    def test_add_same_rule_twice_adds_once(self, store: InMemoryRoleStore) -> None:
        store.create_role("editor")
        first = store.add_permission_to_role("editor", Permission(resource="menu", action="read"))
        second = store.add_permission_to_role("editor", Permission(resource="menu", action="read"))
        role = store.get_role("editor")
        assert role is not None
        assert len(role.permissions) == 1
        assert first.id == second.id

    def test_permission_ids_are_assigned(self, store: InMemoryRoleStore) -> None:
        role = store.create_role("editor", permissions=[Permission(resource="menu", action="read")])
        assert role.permissions[0].id


class TestUnknownRoles:
    def test_assign_unknown_role(self, store: InMemoryRoleStore) -> None:
        with pytest.raises(RoleNotFoundError, match="Role ghost not found"):
            store.assign_role("u1", "ghost")

    def test_add_permission_to_unknown_role(self, store: InMemoryRoleStore) -> None:
        with pytest.raises(RoleNotFoundError):
            store.add_permission_to_role("ghost", Permission(resource="menu", action="read"))


class TestRbacService:
    def test_admin_has_full_access(self, rbac: RbacService) -> None:
        rbac.store.assign_role("root", "admin")
        assert rbac.check_permission("root", "data_source", "delete", "ds-1")
        assert rbac.has_role("root", "admin")

    def test_user_role_grants(self, rbac: RbacService) -> None:
        rbac.store.assign_role("u1", "user")
        assert rbac.check_permission("u1", "data_source", "read")
        assert rbac.check_permission("u1", "widget", "delete")
        assert not rbac.check_permission("u1", "data_source", "update")

    def test_viewer_is_read_only(self, rbac: RbacService) -> None:
        rbac.store.assign_role("v1", "viewer")
        assert rbac.check_permission("v1", "dashboard", "read")
        assert not rbac.check_permission("v1", "dashboard", "update")
        assert not rbac.check_permission("v1", "data_source", "read")

    def test_user_without_roles_is_denied(self, rbac: RbacService) -> None:
        assert not rbac.check_permission("nobody", "dashboard", "read")

    def test_require_permission_raises_forbidden(self, rbac: RbacService) -> None:
        rbac.store.assign_role("v1", "viewer")
        with pytest.raises(PermissionDeniedError) as exc_info:
            rbac.require_permission("v1", "data_source", "delete", "ds-9")
        assert exc_info.value.user_id == "v1"
        assert str(exc_info.value) == "Forbidden: missing permission for delete on data_source/ds-9"

    def test_permissions_union_across_roles(self, rbac: RbacService) -> None:
        rbac.store.assign_role("u1", "viewer")
        rbac.store.assign_role("u1", "user")
        permissions = rbac.get_user_permissions("u1")
        ids = [p.id for p in permissions]
        assert len(ids) == len(set(ids))
        assert {"viewer", "user"} == set(rbac.get_user_role_names("u1"))

    def test_seeding_twice_does_not_duplicate(self, store: InMemoryRoleStore) -> None:
        seed_default_roles(store)
        seed_default_roles(store)
        assert sorted(r.name for r in store.list_roles()) == ["admin", "user", "viewer"]
        assert all(r.is_system for r in store.list_roles())
