"""Role-based access control with conditional permissions.

Evaluation is stateless: ``check_permission`` takes the permissions an actor
holds and answers allowed/denied for ``(resource, action, resource_id, context)``.

Matching rules:
- resource matches exactly or the permission resource is ``*``
- action matches exactly or the permission action is ``*``
- a permission scoped to a resource_id only rejects a *different* requested id
- conditions (if any) require a context, and every condition must hold
- OR across permissions, AND within one permission

Role persistence is behind the RoleStore protocol; InMemoryRoleStore is the
reference implementation used in development and tests.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Iterable, Mapping, Sequence
from enum import StrEnum
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from conduit.errors import PermissionDeniedError, RoleNotFoundError

logger = logging.getLogger(__name__)

WILDCARD = "*"


class ResourceType(StrEnum):
    """Resources known to the dashboard platform."""

    DASHBOARD = "dashboard"
    DATA_SOURCE = "data_source"
    SCHEMA = "schema"
    WIDGET = "widget"
    MENU = "menu"
    USER = "user"
    ROLE = "role"
    PLUGIN = "plugin"
    SETTINGS = "settings"
    CRUD = "crud"
    AUDIT = "audit"
    ALL = "*"


class ActionType(StrEnum):
    """Actions known to the dashboard platform."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    EXECUTE = "execute"
    MANAGE = "manage"
    EXPORT = "export"
    IMPORT = "import"
    ALL = "*"


class ConditionOperator(StrEnum):
    """Operators usable in a permission condition."""

    EQ = "eq"
    NEQ = "neq"
    IN = "in"
    NOT_IN = "notIn"
    CONTAINS = "contains"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"


class PermissionCondition(BaseModel):
    """A field predicate evaluated against the caller-supplied context."""

    model_config = ConfigDict(frozen=True)

    field: str
    operator: ConditionOperator
    value: Any = None


class Permission(BaseModel):
    """A single resource/action rule, optionally scoped and conditional.

    Accepts the camelCase ``resourceId`` key used by stored records.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str | None = None
    resource: str
    action: str
    resource_id: str | None = Field(default=None, alias="resourceId")
    conditions: tuple[PermissionCondition, ...] = ()

    def same_rule(self, other: Permission) -> bool:
        """True if both permissions express the same rule, ignoring ids."""
        return (
            self.resource == other.resource
            and self.action == other.action
            and self.resource_id == other.resource_id
            and self.conditions == other.conditions
        )


class Role(BaseModel):
    """A named bundle of permissions."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    description: str = ""
    is_system: bool = Field(default=False, alias="isSystem")
    permissions: tuple[Permission, ...] = ()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _strict_equals(left: Any, right: Any) -> bool:
    """Equality without bool/number coercion (True is not 1)."""
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    if _is_number(left) and _is_number(right):
        return left == right
    if type(left) is not type(right) and not (
        isinstance(left, str) and isinstance(right, str)
    ):
        return False
    return bool(left == right)


def _member_of(value: Any, candidates: Any) -> bool | None:
    """Membership using strict equality. None if candidates is not a list."""
    if not isinstance(candidates, (list, tuple)):
        return None
    return any(_strict_equals(value, c) for c in candidates)


def evaluate_condition(condition: PermissionCondition, context: Mapping[str, Any]) -> bool:
    """Evaluate one condition against a context mapping.

    Type mismatches evaluate to False rather than raising.
    """
    actual = context.get(condition.field)
    expected = condition.value

    match condition.operator:
        case ConditionOperator.EQ:
            return _strict_equals(actual, expected)
        case ConditionOperator.NEQ:
            return not _strict_equals(actual, expected)
        case ConditionOperator.IN:
            return _member_of(actual, expected) is True
        case ConditionOperator.NOT_IN:
            return _member_of(actual, expected) is False
        case ConditionOperator.CONTAINS:
            return isinstance(actual, str) and isinstance(expected, str) and expected in actual
        case ConditionOperator.GT:
            return _is_number(actual) and _is_number(expected) and actual > expected
        case ConditionOperator.GTE:
            return _is_number(actual) and _is_number(expected) and actual >= expected
        case ConditionOperator.LT:
            return _is_number(actual) and _is_number(expected) and actual < expected
        case ConditionOperator.LTE:
            return _is_number(actual) and _is_number(expected) and actual <= expected
    return False


def permission_matches(
    permission: Permission,
    resource: str,
    action: str,
    resource_id: str | None = None,
    context: Mapping[str, Any] | None = None,
) -> bool:
    """Check whether a single permission grants the requested operation."""
    if permission.resource not in (resource, WILDCARD):
        return False

    if permission.action not in (action, WILDCARD):
        return False

    if (
        permission.resource_id is not None
        and resource_id is not None
        and permission.resource_id != resource_id
    ):
        return False

    if permission.conditions:
        if context is None:
            return False
        return all(evaluate_condition(c, context) for c in permission.conditions)

    return True


def check_permission(
    held: Iterable[Permission],
    resource: str,
    action: str,
    resource_id: str | None = None,
    context: Mapping[str, Any] | None = None,
) -> bool:
    """Return True if any held permission grants the requested operation."""
    return any(permission_matches(p, resource, action, resource_id, context) for p in held)


def merge_permissions(roles: Iterable[Role]) -> list[Permission]:
    """Union of the permissions of all roles, de-duplicated by permission id.

    Permissions without an id are de-duplicated by rule.
    """
    by_id: dict[str, Permission] = {}
    anonymous: list[Permission] = []
    for role in roles:
        for perm in role.permissions:
            if perm.id is not None:
                by_id.setdefault(perm.id, perm)
            elif not any(perm.same_rule(p) for p in anonymous):
                anonymous.append(perm)
    return [*by_id.values(), *anonymous]


class RoleStore(Protocol):
    """Persistence contract for roles and user-role assignments.

    All mutations must be idempotent.
    """

    def create_role(
        self,
        name: str,
        description: str = "",
        permissions: Sequence[Permission] = (),
        *,
        is_system: bool = False,
    ) -> Role: ...

    def get_role(self, name: str) -> Role | None: ...

    def list_roles(self) -> list[Role]: ...

    def assign_role(self, user_id: str, role_name: str) -> None: ...

    def remove_role(self, user_id: str, role_name: str) -> None: ...

    def add_permission_to_role(self, role_name: str, permission: Permission) -> Permission: ...

    def get_user_roles(self, user_id: str) -> list[Role]: ...


class InMemoryRoleStore:
    """In-memory role store for testing and development.

    Production should use a database-backed implementation.
    """

    def __init__(self) -> None:
        self._roles: dict[str, Role] = {}
        self._user_roles: dict[str, list[str]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _with_id(permission: Permission) -> Permission:
        if permission.id is not None:
            return permission
        return permission.model_copy(update={"id": str(uuid.uuid4())})

    def create_role(
        self,
        name: str,
        description: str = "",
        permissions: Sequence[Permission] = (),
        *,
        is_system: bool = False,
    ) -> Role:
        """Create a role. Returns the existing role if the name is taken."""
        with self._lock:
            existing = self._roles.get(name)
            if existing is not None:
                return existing

            role = Role(
                name=name,
                description=description,
                is_system=is_system,
                permissions=tuple(self._with_id(p) for p in permissions),
            )
            self._roles[name] = role
        logger.info("Created role %s with %d permissions", name, len(role.permissions))
        return role

    def get_role(self, name: str) -> Role | None:
        """Look up a role by name."""
        return self._roles.get(name)

    def list_roles(self) -> list[Role]:
        """Return all roles."""
        return list(self._roles.values())

    def assign_role(self, user_id: str, role_name: str) -> None:
        """Assign a role to a user. No-op if already assigned.

        Raises:
            RoleNotFoundError: If the role does not exist.
        """
        with self._lock:
            if role_name not in self._roles:
                raise RoleNotFoundError(role_name)
            held = self._user_roles.setdefault(user_id, [])
            if role_name not in held:
                held.append(role_name)

    def remove_role(self, user_id: str, role_name: str) -> None:
        """Remove a role from a user. No-op if not assigned.

        Raises:
            RoleNotFoundError: If the role does not exist.
        """
        with self._lock:
            if role_name not in self._roles:
                raise RoleNotFoundError(role_name)
            held = self._user_roles.get(user_id, [])
            if role_name in held:
                held.remove(role_name)

    def add_permission_to_role(self, role_name: str, permission: Permission) -> Permission:
        """Add a permission to a role.

        If the role already holds the same rule, the existing permission is
        returned and nothing is added.

        Raises:
            RoleNotFoundError: If the role does not exist.
        """
        with self._lock:
            role = self._roles.get(role_name)
            if role is None:
                raise RoleNotFoundError(role_name)

            for existing in role.permissions:
                if existing.same_rule(permission):
                    return existing

            added = self._with_id(permission)
            self._roles[role_name] = role.model_copy(
                update={"permissions": (*role.permissions, added)}
            )
            return added

    def get_user_roles(self, user_id: str) -> list[Role]:
        """Return the roles held by a user."""
        with self._lock:
            names = list(self._user_roles.get(user_id, []))
            return [self._roles[n] for n in names if n in self._roles]

    def clear(self) -> None:
        """Clear all roles and assignments. For testing only."""
        with self._lock:
            self._roles.clear()
            self._user_roles.clear()


class RbacService:
    """Permission checks and role management over a RoleStore."""

    def __init__(self, store: RoleStore) -> None:
        self._store = store

    @property
    def store(self) -> RoleStore:
        return self._store

    def get_user_permissions(self, user_id: str) -> list[Permission]:
        """Union of all permissions reachable through the user's roles."""
        return merge_permissions(self._store.get_user_roles(user_id))

    def get_user_role_names(self, user_id: str) -> list[str]:
        return [r.name for r in self._store.get_user_roles(user_id)]

    def has_role(self, user_id: str, role_name: str) -> bool:
        return role_name in self.get_user_role_names(user_id)

    def check_permission(
        self,
        user_id: str,
        resource: str,
        action: str,
        resource_id: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> bool:
        """Check whether a user may perform action on resource[/resource_id]."""
        allowed = check_permission(
            self.get_user_permissions(user_id), resource, action, resource_id, context
        )
        if not allowed:
            logger.info(
                "Permission denied: user_id=%s action=%s resource=%s resource_id=%s",
                user_id,
                action,
                resource,
                resource_id,
            )
        return allowed

    def require_permission(
        self,
        user_id: str,
        resource: str,
        action: str,
        resource_id: str | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        """Raise PermissionDeniedError unless the user holds a matching permission."""
        if not self.check_permission(user_id, resource, action, resource_id, context):
            raise PermissionDeniedError(resource, action, resource_id, user_id=user_id)


def _perm(resource: str, action: str) -> Permission:
    return Permission(resource=resource, action=action)


DEFAULT_ROLES: tuple[tuple[str, str, tuple[Permission, ...]], ...] = (
    ("admin", "Administrator with full access", (_perm(WILDCARD, WILDCARD),)),
    (
        "user",
        "Regular user with limited access",
        (
            _perm(ResourceType.DASHBOARD, ActionType.READ),
            _perm(ResourceType.DASHBOARD, ActionType.CREATE),
            _perm(ResourceType.DASHBOARD, ActionType.UPDATE),
            _perm(ResourceType.DATA_SOURCE, ActionType.READ),
            _perm(ResourceType.SCHEMA, ActionType.READ),
            _perm(ResourceType.WIDGET, WILDCARD),
            _perm(ResourceType.MENU, WILDCARD),
            _perm(ResourceType.CRUD, ActionType.READ),
            _perm(ResourceType.CRUD, ActionType.CREATE),
            _perm(ResourceType.CRUD, ActionType.UPDATE),
        ),
    ),
    (
        "viewer",
        "Read-only access",
        (
            _perm(ResourceType.DASHBOARD, ActionType.READ),
            _perm(ResourceType.WIDGET, ActionType.READ),
            _perm(ResourceType.CRUD, ActionType.READ),
        ),
    ),
)


def seed_default_roles(store: RoleStore) -> list[Role]:
    """Create the built-in system roles. Safe to call repeatedly."""
    return [
        store.create_role(name, description, permissions, is_system=True)
        for name, description, permissions in DEFAULT_ROLES
    ]
