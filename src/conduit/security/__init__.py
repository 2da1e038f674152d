"""Security: credential vault and role-based access control."""

from conduit.security.rbac import (
    DEFAULT_ROLES,
    WILDCARD,
    ActionType,
    ConditionOperator,
    InMemoryRoleStore,
    Permission,
    PermissionCondition,
    RbacService,
    ResourceType,
    Role,
    RoleStore,
    check_permission,
    evaluate_condition,
    merge_permissions,
    permission_matches,
    seed_default_roles,
)
from conduit.security.vault import CredentialVault, derive_key, generate_secure_token, hash_value

__all__ = [
    "DEFAULT_ROLES",
    "WILDCARD",
    "ActionType",
    "ConditionOperator",
    "CredentialVault",
    "InMemoryRoleStore",
    "Permission",
    "PermissionCondition",
    "RbacService",
    "ResourceType",
    "Role",
    "RoleStore",
    "check_permission",
    "derive_key",
    "evaluate_condition",
    "generate_secure_token",
    "hash_value",
    "merge_permissions",
    "permission_matches",
    "seed_default_roles",
]
