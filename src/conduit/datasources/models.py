"""Data source domain models.

AuthConfig is a tagged union keyed by ``type``: each variant carries only the
fields it needs, and the header strategy is an exhaustive match over variants.

Secret fields (api_key, password, token, client_secret) are persisted only in
encrypted form. An in-memory AuthConfig may hold either form; the owner of the
DataSourceRecord tracks which via ``credentials_encrypted``.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class DataSourceType(StrEnum):
    """Supported data-source kinds."""

    REST = "rest"
    GRAPHQL = "graphql"
    POSTGRES = "postgres"
    MYSQL = "mysql"
    SQLITE = "sqlite"
    MONGODB = "mongodb"


class HealthStatus(StrEnum):
    """Health status of a data source."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class HttpMethod(StrEnum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class _AuthBase(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    SECRET_FIELDS: ClassVar[tuple[str, ...]] = ()

    def secret_values(self) -> dict[str, str]:
        """Return populated secret fields by name."""
        values: dict[str, str] = {}
        for name in self.SECRET_FIELDS:
            value = getattr(self, name)
            if value:
                values[name] = value
        return values

    def map_secrets(self, transform: Callable[[str, str], str]) -> _AuthBase:
        """Return a copy with every populated secret replaced by transform(name, value)."""
        updates = {name: transform(name, value) for name, value in self.secret_values().items()}
        if not updates:
            return self
        return self.model_copy(update=updates)


class NoAuth(_AuthBase):
    type: Literal["none"] = "none"


class ApiKeyAuth(_AuthBase):
    SECRET_FIELDS: ClassVar[tuple[str, ...]] = ("api_key",)

    type: Literal["api_key"] = "api_key"
    api_key: str | None = Field(default=None, alias="apiKey")
    api_key_header: str | None = Field(default=None, alias="apiKeyHeader")
    api_key_prefix: str | None = Field(default=None, alias="apiKeyPrefix")


class BasicAuth(_AuthBase):
    SECRET_FIELDS: ClassVar[tuple[str, ...]] = ("password",)

    type: Literal["basic"] = "basic"
    username: str | None = None
    password: str | None = None


class BearerAuth(_AuthBase):
    SECRET_FIELDS: ClassVar[tuple[str, ...]] = ("token",)

    type: Literal["bearer"] = "bearer"
    token: str | None = None


class OAuth2Auth(_AuthBase):
    """OAuth2 client configuration.

    Only an already-issued access token is used for outbound headers;
    token acquisition from ``token_url`` is the caller's concern.
    """

    SECRET_FIELDS: ClassVar[tuple[str, ...]] = ("token", "client_secret")

    type: Literal["oauth2"] = "oauth2"
    token: str | None = None
    token_url: str | None = Field(default=None, alias="tokenUrl")
    client_id: str | None = Field(default=None, alias="clientId")
    client_secret: str | None = Field(default=None, alias="clientSecret")
    scopes: tuple[str, ...] = ()


class CustomHeaderAuth(_AuthBase):
    type: Literal["custom_header"] = "custom_header"
    custom_headers: dict[str, str] = Field(default_factory=dict, alias="customHeaders")


AuthConfig = Annotated[
    NoAuth | ApiKeyAuth | BasicAuth | BearerAuth | OAuth2Auth | CustomHeaderAuth,
    Field(discriminator="type"),
]

_auth_adapter: TypeAdapter[AuthConfig] = TypeAdapter(AuthConfig)


def parse_auth_config(raw: Mapping[str, Any] | None) -> AuthConfig:
    """Parse a stored auth mapping (snake_case or camelCase keys).

    A missing mapping or missing ``type`` yields NoAuth.
    """
    if not raw or not raw.get("type"):
        return NoAuth()
    return _auth_adapter.validate_python(dict(raw))


class DataSourceRecord(BaseModel):
    """A data-source definition, received by value from the persistence layer."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str = ""
    type: DataSourceType = DataSourceType.REST
    base_url: str | None = Field(default=None, alias="baseUrl")
    host: str | None = None
    port: int | None = None
    database: str | None = None
    auth: AuthConfig = Field(default_factory=NoAuth)
    health_check_endpoint: str | None = Field(default=None, alias="healthCheckEndpoint")
    health_status: HealthStatus = Field(default=HealthStatus.UNKNOWN, alias="healthStatus")
    last_health_check: datetime | None = Field(default=None, alias="lastHealthCheck")
    credentials_encrypted: bool = Field(default=True, alias="credentialsEncrypted")


class ConnectionResult(BaseModel):
    """Outcome of a connectivity check (never raised, always returned)."""

    data_source_id: str
    is_connected: bool
    latency_ms: int
    last_error: str | None = None
    last_checked: datetime

    @property
    def health_status(self) -> HealthStatus:
        return HealthStatus.HEALTHY if self.is_connected else HealthStatus.UNHEALTHY


class FetchOptions(BaseModel):
    """Per-request options for Connector.fetch."""

    method: HttpMethod = HttpMethod.GET
    headers: dict[str, str] = Field(default_factory=dict)
    params: dict[str, str | int | float | bool | None] = Field(default_factory=dict)
    body: Any = None
    timeout_seconds: float | None = None


class FetchResult(BaseModel):
    """Response of a successful fetch."""

    data: Any
    status: int
    headers: dict[str, str] = Field(default_factory=dict)
    latency_ms: int


class TestConnectionResult(BaseModel):
    """Outcome of ConnectorManager.test_connection on unsaved settings."""

    __test__ = False

    success: bool
    latency_ms: int
    error: str | None = None
    sample_data: Any = None


class ConnectionCandidate(BaseModel):
    """Unsaved connection settings with already-decrypted credentials."""

    model_config = ConfigDict(populate_by_name=True)

    type: DataSourceType = DataSourceType.REST
    base_url: str = Field(alias="baseUrl")
    auth: AuthConfig = Field(default_factory=NoAuth)
    health_check_endpoint: str | None = Field(default=None, alias="healthCheckEndpoint")
