"""Data sources: auth models, connectors, the connector manager and service."""

from conduit.datasources.auth import get_auth_headers
from conduit.datasources.manager import TEST_CONNECTION_ID, ConnectorManager
from conduit.datasources.models import (
    ApiKeyAuth,
    AuthConfig,
    BasicAuth,
    BearerAuth,
    ConnectionCandidate,
    ConnectionResult,
    CustomHeaderAuth,
    DataSourceRecord,
    DataSourceType,
    FetchOptions,
    FetchResult,
    HealthStatus,
    HttpMethod,
    NoAuth,
    OAuth2Auth,
    TestConnectionResult,
    parse_auth_config,
)
from conduit.datasources.service import Actor, DataSourceService

__all__ = [
    "TEST_CONNECTION_ID",
    "Actor",
    "ApiKeyAuth",
    "AuthConfig",
    "BasicAuth",
    "BearerAuth",
    "ConnectionCandidate",
    "ConnectionResult",
    "ConnectorManager",
    "CustomHeaderAuth",
    "DataSourceRecord",
    "DataSourceService",
    "DataSourceType",
    "FetchOptions",
    "FetchResult",
    "HealthStatus",
    "HttpMethod",
    "NoAuth",
    "OAuth2Auth",
    "TestConnectionResult",
    "get_auth_headers",
    "parse_auth_config",
]
