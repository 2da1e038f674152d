"""Connector contract and shared base class.

A Connector wraps one data source: it knows its id and type, tests
connectivity without raising, and fetches endpoints raising typed
ConnectorError subclasses.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol, runtime_checkable
from urllib.parse import urlencode, urlsplit, urlunsplit

from conduit.datasources.auth import get_auth_headers
from conduit.datasources.models import (
    AuthConfig,
    ConnectionResult,
    DataSourceRecord,
    DataSourceType,
    FetchOptions,
    FetchResult,
)

QueryParams = Mapping[str, str | int | float | bool | None]


@runtime_checkable
class Connector(Protocol):
    """Protocol implemented by every data-source connector."""

    @property
    def data_source_id(self) -> str: ...

    @property
    def data_source_type(self) -> DataSourceType: ...

    async def test_connection(self) -> ConnectionResult: ...

    async def fetch(self, endpoint: str, options: FetchOptions | None = None) -> FetchResult: ...

    async def aclose(self) -> None: ...


def _format_param(value: str | int | float | bool) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_url(base_url: str, endpoint: str, params: QueryParams | None = None) -> str:
    """Join a base URL and endpoint and append URL-encoded query params.

    Trailing slashes are stripped from the base, a leading slash is ensured on
    the endpoint, ``None`` params are skipped, and ``&`` is used when the URL
    already carries a query string.

    Args:
        base_url: Data source base URL.
        endpoint: Endpoint path (may be empty).
        params: Optional query parameters.

    Returns:
        The full request URL.
    """
    base = base_url.rstrip("/")
    path = endpoint if endpoint.startswith("/") else f"/{endpoint}"
    url = f"{base}{path}"

    if params:
        query = urlencode(
            [(key, _format_param(value)) for key, value in params.items() if value is not None]
        )
        if query:
            url += ("&" if "?" in url else "?") + query

    return url


def sanitize_url(url: str) -> str:
    """Strip userinfo, query and fragment from a URL for spans and logs.

    Returns:
        ``scheme://host[:port]/path``, or ``"unknown"`` if the URL has no host.
    """
    try:
        parts = urlsplit(url)
        host = parts.hostname or ""
        if not host:
            return "unknown"
        port = f":{parts.port}" if parts.port else ""
        return urlunsplit((parts.scheme, f"{host}{port}", parts.path, "", ""))
    except ValueError:
        return "unknown"


class BaseConnector:
    """Holds the data source and its (plaintext) auth configuration."""

    def __init__(self, data_source: DataSourceRecord, auth: AuthConfig) -> None:
        """Initialize the connector.

        Args:
            data_source: Data source definition.
            auth: Auth configuration with decrypted secrets.
        """
        self._data_source = data_source
        self._auth = auth

    @property
    def data_source(self) -> DataSourceRecord:
        return self._data_source

    @property
    def data_source_id(self) -> str:
        return self._data_source.id

    @property
    def data_source_type(self) -> DataSourceType:
        return self._data_source.type

    def auth_headers(self) -> dict[str, str]:
        return get_auth_headers(self._auth)

    def build_url(self, endpoint: str, params: QueryParams | None = None) -> str:
        return build_url(self._data_source.base_url or "", endpoint, params)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(data_source_id={self.data_source_id!r}, "
            f"type={self.data_source_type.value!r})"
        )
