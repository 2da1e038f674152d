"""GraphQL connector.

GraphQL sources are plain HTTP endpoints, so the connector reuses the REST
transport and adds a ``query`` helper that POSTs the standard GraphQL
envelope.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from conduit.datasources.connectors.rest import RestConnector
from conduit.datasources.models import FetchOptions, FetchResult, HttpMethod

logger = logging.getLogger(__name__)


class GraphQLConnector(RestConnector):
    """Connector for GraphQL APIs."""

    async def query(
        self,
        query: str,
        variables: Mapping[str, Any] | None = None,
        *,
        endpoint: str = "",
        operation_name: str | None = None,
    ) -> FetchResult:
        """POST a GraphQL query.

        GraphQL-level errors are returned in ``result.data["errors"]``; only
        transport and HTTP failures raise.

        Args:
            query: GraphQL document.
            variables: Query variables.
            endpoint: Path relative to the base URL (default: the base URL).
            operation_name: Operation to run when the document has several.

        Returns:
            FetchResult whose data is the GraphQL response envelope.
        """
        body: dict[str, Any] = {"query": query, "variables": dict(variables or {})}
        if operation_name:
            body["operationName"] = operation_name

        result = await self.fetch(endpoint, FetchOptions(method=HttpMethod.POST, body=body))
        if isinstance(result.data, dict) and result.data.get("errors"):
            logger.info(
                "GraphQL query returned %d errors for data_source_id=%s",
                len(result.data["errors"]),
                self.data_source_id,
            )
        return result
