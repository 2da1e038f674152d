"""Connector factory registry.

Maps a data-source type to the factory that builds its connector. Fail-closed:
a type with no registered factory raises UnsupportedTypeError.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

import httpx

from conduit.config import DEFAULT_CONNECTOR_TIMEOUT_SECONDS, DEFAULT_HEALTH_TIMEOUT_SECONDS
from conduit.datasources.connectors.base import Connector
from conduit.datasources.connectors.graphql import GraphQLConnector
from conduit.datasources.connectors.rest import RestConnector
from conduit.datasources.models import AuthConfig, DataSourceRecord, DataSourceType
from conduit.errors import UnsupportedTypeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectorOptions:
    """Construction options passed to every connector factory.

    Attributes:
        default_timeout: Fetch timeout in seconds.
        health_timeout: Connection-test timeout in seconds.
        transport: Optional httpx transport (testing, proxies).
    """

    default_timeout: float = DEFAULT_CONNECTOR_TIMEOUT_SECONDS
    health_timeout: float = DEFAULT_HEALTH_TIMEOUT_SECONDS
    transport: httpx.AsyncBaseTransport | None = field(default=None, repr=False)


ConnectorFactory = Callable[[DataSourceRecord, AuthConfig, ConnectorOptions], Connector]


def _rest_factory(
    data_source: DataSourceRecord, auth: AuthConfig, options: ConnectorOptions
) -> Connector:
    return RestConnector(
        data_source,
        auth,
        transport=options.transport,
        default_timeout=options.default_timeout,
        health_timeout=options.health_timeout,
    )


def _graphql_factory(
    data_source: DataSourceRecord, auth: AuthConfig, options: ConnectorOptions
) -> Connector:
    return GraphQLConnector(
        data_source,
        auth,
        transport=options.transport,
        default_timeout=options.default_timeout,
        health_timeout=options.health_timeout,
    )


@dataclass
class ConnectorRegistry:
    """Registry of connector factories keyed by data-source type."""

    _factories: dict[DataSourceType, ConnectorFactory] = field(default_factory=dict)

    def register(
        self,
        data_source_type: DataSourceType,
        factory: ConnectorFactory,
        *,
        replace: bool = False,
    ) -> None:
        """Register a factory for a data-source type.

        Raises:
            ValueError: If the type already has a factory and replace is False.
        """
        if data_source_type in self._factories and not replace:
            raise ValueError(f"Connector factory already registered for {data_source_type}")
        self._factories[data_source_type] = factory
        logger.debug("Registered connector factory for %s", data_source_type)

    def create(
        self,
        data_source: DataSourceRecord,
        auth: AuthConfig,
        options: ConnectorOptions | None = None,
    ) -> Connector:
        """Build a connector for a data source.

        Raises:
            UnsupportedTypeError: If no factory is registered for the type.
        """
        factory = self._factories.get(data_source.type)
        if factory is None:
            raise UnsupportedTypeError(data_source.type.value, data_source.id)
        return factory(data_source, auth, options or ConnectorOptions())

    def supports(self, data_source_type: DataSourceType) -> bool:
        return data_source_type in self._factories

    @property
    def supported_types(self) -> frozenset[DataSourceType]:
        return frozenset(self._factories)


def default_registry() -> ConnectorRegistry:
    """Return a registry with the built-in REST and GraphQL connectors."""
    registry = ConnectorRegistry()
    registry.register(DataSourceType.REST, _rest_factory)
    registry.register(DataSourceType.GRAPHQL, _graphql_factory)
    return registry
