"""REST API connector.

Issues HTTP requests against a data source base URL with the configured
authentication headers. Timeouts are httpx per-request timeouts, so a timed-out
request releases its connection; cancelling the awaiting task aborts the
request as well.

Every request runs in an OpenTelemetry span carrying only the sanitized URL,
method and status. Header values are never recorded.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import UTC, datetime
from typing import Any

import httpx
from opentelemetry import trace

from conduit.config import DEFAULT_CONNECTOR_TIMEOUT_SECONDS, DEFAULT_HEALTH_TIMEOUT_SECONDS
from conduit.datasources.connectors.base import BaseConnector, QueryParams, sanitize_url
from conduit.datasources.models import (
    AuthConfig,
    ConnectionResult,
    DataSourceRecord,
    FetchOptions,
    FetchResult,
    HttpMethod,
)
from conduit.errors import (
    ConnectorError,
    ConnectorHTTPError,
    ConnectorRequestError,
    ConnectorTimeoutError,
)

logger = logging.getLogger(__name__)

_tracer = trace.get_tracer("conduit.connectors")

JSON_CONTENT_TYPE = "application/json"


def _has_header(headers: dict[str, str], name: str) -> bool:
    lowered = name.lower()
    return any(key.lower() == lowered for key in headers)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


class RestConnector(BaseConnector):
    """Connector for JSON-over-HTTP APIs.

    The underlying httpx.AsyncClient is created lazily and owned by the
    connector unless one is injected, in which case aclose() leaves it open.
    """

    def __init__(
        self,
        data_source: DataSourceRecord,
        auth: AuthConfig,
        *,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        default_timeout: float = DEFAULT_CONNECTOR_TIMEOUT_SECONDS,
        health_timeout: float = DEFAULT_HEALTH_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the REST connector.

        Args:
            data_source: Data source definition.
            auth: Auth configuration with decrypted secrets.
            client: Optional shared httpx.AsyncClient (not closed by aclose).
            transport: Optional transport for an owned client (testing).
            default_timeout: Fetch timeout in seconds when options give none.
            health_timeout: Timeout in seconds for test_connection.
        """
        super().__init__(data_source, auth)
        self._client = client
        self._owns_client = client is None
        self._transport = transport
        self._default_timeout = default_timeout
        self._health_timeout = health_timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        """Close the owned HTTP client, if any."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def test_connection(self) -> ConnectionResult:
        """Request the health-check endpoint (or the base URL).

        Never raises for network failures; the outcome is reported in the
        returned ConnectionResult.
        """
        url = self.build_url(self.data_source.health_check_endpoint or "")
        headers = {**self.auth_headers(), "Accept": JSON_CONTENT_TYPE}

        with _tracer.start_as_current_span(
            "connector.test_connection",
            attributes={
                "conduit.data_source_id": self.data_source_id,
                "http.method": "GET",
                "http.url": sanitize_url(url),
            },
        ) as span:
            start = time.monotonic()
            error: str | None = None
            try:
                response = await self._get_client().get(
                    url, headers=headers, timeout=self._health_timeout
                )
                span.set_attribute("http.status_code", response.status_code)
                if not response.is_success:
                    error = f"HTTP {response.status_code}: {response.reason_phrase}"
            except httpx.TimeoutException as e:
                error = "Connection timed out"
                span.record_exception(e)
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                error = str(e) or type(e).__name__
                span.record_exception(e)

            latency_ms = _elapsed_ms(start)
            if error is not None:
                span.set_status(trace.StatusCode.ERROR, error)
                logger.info(
                    "Connection test failed for data_source_id=%s: %s",
                    self.data_source_id,
                    error,
                )

        return ConnectionResult(
            data_source_id=self.data_source_id,
            is_connected=error is None,
            latency_ms=latency_ms,
            last_error=error,
            last_checked=datetime.now(UTC),
        )

    async def fetch(self, endpoint: str, options: FetchOptions | None = None) -> FetchResult:
        """Request an endpoint and parse the response.

        Args:
            endpoint: Path relative to the base URL.
            options: Method, headers, params, body and timeout.

        Returns:
            FetchResult with parsed JSON, or ``{"text": ..., "_raw": True}`` for
            non-JSON responses.

        Raises:
            ConnectorHTTPError: Non-2xx status (raised after the body is read).
            ConnectorTimeoutError: The request exceeded its timeout.
            ConnectorRequestError: Transport-level failure.
            ConnectorError: The response claimed JSON but did not parse.
        """
        opts = options or FetchOptions()
        url = self.build_url(endpoint, opts.params)
        timeout = self._default_timeout if opts.timeout_seconds is None else opts.timeout_seconds

        headers = {**self.auth_headers(), "Accept": JSON_CONTENT_TYPE, **opts.headers}
        content: bytes | None = None
        if opts.body is not None:
            content = json.dumps(opts.body).encode("utf-8")
            if not _has_header(headers, "Content-Type"):
                headers["Content-Type"] = JSON_CONTENT_TYPE

        with _tracer.start_as_current_span(
            "connector.fetch",
            attributes={
                "conduit.data_source_id": self.data_source_id,
                "http.method": opts.method.value,
                "http.url": sanitize_url(url),
            },
        ) as span:
            start = time.monotonic()
            try:
                response = await self._get_client().request(
                    opts.method.value,
                    url,
                    headers=headers,
                    content=content,
                    timeout=timeout,
                )
            except httpx.TimeoutException as e:
                span.record_exception(e)
                span.set_status(trace.StatusCode.ERROR, "Request timed out")
                raise ConnectorTimeoutError("Request timed out") from e
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                span.record_exception(e)
                span.set_status(trace.StatusCode.ERROR, type(e).__name__)
                raise ConnectorRequestError(str(e) or type(e).__name__) from e

            latency_ms = _elapsed_ms(start)
            span.set_attribute("http.status_code", response.status_code)
            data = self._parse_body(response)

            if not response.is_success:
                span.set_status(trace.StatusCode.ERROR, f"HTTP {response.status_code}")
                raise ConnectorHTTPError(response.status_code, response.reason_phrase, body=data)

        return FetchResult(
            data=data,
            status=response.status_code,
            headers=dict(response.headers),
            latency_ms=latency_ms,
        )

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        content_type = response.headers.get("content-type", "")
        if JSON_CONTENT_TYPE in content_type:
            try:
                return response.json()
            except ValueError as e:
                if not response.is_success:
                    return {"text": response.text, "_raw": True}
                raise ConnectorError(f"Invalid JSON response: {e}") from e
        return {"text": response.text, "_raw": True}

    async def get(self, endpoint: str, params: QueryParams | None = None) -> FetchResult:
        return await self.fetch(
            endpoint, FetchOptions(method=HttpMethod.GET, params=dict(params or {}))
        )

    async def post(
        self, endpoint: str, body: Any = None, params: QueryParams | None = None
    ) -> FetchResult:
        return await self.fetch(
            endpoint, FetchOptions(method=HttpMethod.POST, body=body, params=dict(params or {}))
        )

    async def put(
        self, endpoint: str, body: Any = None, params: QueryParams | None = None
    ) -> FetchResult:
        return await self.fetch(
            endpoint, FetchOptions(method=HttpMethod.PUT, body=body, params=dict(params or {}))
        )

    async def patch(
        self, endpoint: str, body: Any = None, params: QueryParams | None = None
    ) -> FetchResult:
        return await self.fetch(
            endpoint, FetchOptions(method=HttpMethod.PATCH, body=body, params=dict(params or {}))
        )

    async def delete(self, endpoint: str, params: QueryParams | None = None) -> FetchResult:
        return await self.fetch(
            endpoint, FetchOptions(method=HttpMethod.DELETE, params=dict(params or {}))
        )
