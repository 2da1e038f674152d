"""Data-source connectors and their factory registry."""

from conduit.datasources.connectors.base import BaseConnector, Connector, build_url, sanitize_url
from conduit.datasources.connectors.graphql import GraphQLConnector
from conduit.datasources.connectors.registry import (
    ConnectorFactory,
    ConnectorOptions,
    ConnectorRegistry,
    default_registry,
)
from conduit.datasources.connectors.rest import RestConnector

__all__ = [
    "BaseConnector",
    "Connector",
    "ConnectorFactory",
    "ConnectorOptions",
    "ConnectorRegistry",
    "GraphQLConnector",
    "RestConnector",
    "build_url",
    "default_registry",
    "sanitize_url",
]
