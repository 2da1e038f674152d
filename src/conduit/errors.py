"""Conduit error types.

Typed exceptions shared across the vault, cache, connector and RBAC layers.

Taxonomy:
- ConfigurationError: fatal, never retried (unsupported type, missing secret,
  invalid settings)
- DecryptionError: authenticated decryption failed (tamper or wrong key)
- ConnectorError: outbound request failures raised by Connector.fetch
- PermissionDeniedError: explicit "forbidden" answer from the RBAC layer
- CacheIOError: persistence mirror failures (logged, never propagated)

Error messages never carry secret values; only identifiers and field names.
"""

from __future__ import annotations


class ConduitError(Exception):
    """Base exception for all Conduit errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(ConduitError):
    """Raised on fatal configuration problems. Not retried."""


class MissingSecretError(ConfigurationError):
    """Raised when the vault master secret is not configured."""

    def __init__(self, env_var: str) -> None:
        super().__init__(
            f"Encryption key not configured ({env_var}). "
            "Credential encryption requires a master secret."
        )
        self.env_var = env_var


class UnsupportedTypeError(ConfigurationError):
    """Raised when no connector is registered for a data-source type."""

    def __init__(self, data_source_type: str, data_source_id: str | None = None) -> None:
        message = f"Unsupported data source type: {data_source_type}"
        if data_source_id:
            message += f" (data_source_id={data_source_id})"
        super().__init__(message)
        self.data_source_type = data_source_type
        self.data_source_id = data_source_id


class SettingsError(ConfigurationError):
    """Raised when an environment setting is present but invalid."""


class DecryptionError(ConduitError):
    """Raised when a ciphertext cannot be authenticated or decoded."""


class ConnectorError(ConduitError):
    """Base exception for connector I/O failures."""


class ConnectorHTTPError(ConnectorError):
    """Raised when the remote API answers with a non-2xx status.

    The response body has already been read; ``body`` holds the parsed
    payload so callers can surface server-provided detail.
    """

    def __init__(self, status_code: int, reason: str, body: object = None) -> None:
        super().__init__(f"HTTP {status_code}: {reason}")
        self.status_code = status_code
        self.reason = reason
        self.body = body


class ConnectorTimeoutError(ConnectorError):
    """Raised when a request exceeds its timeout and is aborted."""


class ConnectorRequestError(ConnectorError):
    """Raised on transport-level failures (DNS, refused, reset)."""


class ConnectorConstructionError(ConnectorError):
    """Raised when a connector cannot be built for a data source.

    Attributes:
        data_source_id: The data source that failed.
        field: The credential field involved, if any.
    """

    def __init__(self, data_source_id: str, reason: str, *, field: str | None = None) -> None:
        message = f"Cannot build connector for data_source_id={data_source_id}: {reason}"
        if field:
            message += f" (field={field})"
        super().__init__(message)
        self.data_source_id = data_source_id
        self.field = field


class PermissionDeniedError(ConduitError):
    """Raised when an actor lacks permission for an action.

    Distinct from "not found": the RBAC layer only answers allowed/denied.
    """

    def __init__(
        self,
        resource: str,
        action: str,
        resource_id: str | None = None,
        *,
        user_id: str | None = None,
    ) -> None:
        target = f"{resource}/{resource_id}" if resource_id else resource
        super().__init__(f"Forbidden: missing permission for {action} on {target}")
        self.resource = resource
        self.action = action
        self.resource_id = resource_id
        self.user_id = user_id


class RoleNotFoundError(ConduitError):
    """Raised when a role name does not exist in the role store."""

    def __init__(self, role_name: str) -> None:
        super().__init__(f"Role {role_name} not found")
        self.role_name = role_name


class CacheIOError(ConduitError):
    """Raised by cache persistence mirrors. Never escapes GenericCache."""
