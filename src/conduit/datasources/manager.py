"""Connector lifecycle management.

ConnectorManager owns the per-process connector map and health map:
- One connector per data-source id, built (and its credentials decrypted)
  on first use and reused afterwards
- remove_connector must be called whenever a stored data source changes, or
  the stale connector keeps using old credentials
- Health results are stored in a dedicated map, overwritten on every check
  and never expired by TTL

Decryption policy: a secret that fails to decrypt is kept as stored (it may
be legacy plaintext) and logged by field name; with strict_decryption the
manager refuses to build the connector instead.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Iterable

import httpx

from conduit.config import DEFAULT_SAMPLE_TIMEOUT_SECONDS, Settings
from conduit.datasources.connectors.base import Connector
from conduit.datasources.connectors.registry import (
    ConnectorOptions,
    ConnectorRegistry,
    default_registry,
)
from conduit.datasources.models import (
    AuthConfig,
    ConnectionCandidate,
    ConnectionResult,
    DataSourceRecord,
    FetchOptions,
    FetchResult,
    TestConnectionResult,
)
from conduit.errors import (
    ConduitError,
    ConnectorConstructionError,
    ConnectorError,
    DecryptionError,
    UnsupportedTypeError,
)
from conduit.security.vault import CredentialVault

logger = logging.getLogger(__name__)

TEST_CONNECTION_ID = "test-connection"


class ConnectorManager:
    """Builds, caches and health-checks connectors for data sources."""

    def __init__(
        self,
        vault: CredentialVault | None = None,
        registry: ConnectorRegistry | None = None,
        *,
        options: ConnectorOptions | None = None,
        strict_decryption: bool = False,
        sample_timeout: float = DEFAULT_SAMPLE_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the manager.

        Args:
            vault: Vault for decrypting stored credentials. Built from
                CONDUIT_ENCRYPTION_KEY on first use if omitted.
            registry: Connector factories. Defaults to REST + GraphQL.
            options: Options passed to every connector factory.
            strict_decryption: Refuse to build a connector whose credentials
                fail to decrypt.
            sample_timeout: Timeout in seconds for the sample fetch made by
                test_connection.
        """
        self._vault = vault
        self._registry = registry or default_registry()
        self._options = options or ConnectorOptions()
        self._strict_decryption = strict_decryption
        self._sample_timeout = sample_timeout
        self._connectors: dict[str, Connector] = {}
        self._health: dict[str, ConnectionResult] = {}
        self._lock = threading.Lock()
        self._closing: set[asyncio.Task[None]] = set()
        self._pending_close: list[Connector] = []

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        vault: CredentialVault | None = None,
        registry: ConnectorRegistry | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ConnectorManager:
        """Build a manager configured from Settings."""
        return cls(
            vault,
            registry,
            options=ConnectorOptions(
                default_timeout=settings.connector_timeout,
                health_timeout=settings.health_timeout,
                transport=transport,
            ),
            strict_decryption=settings.strict_decryption,
            sample_timeout=settings.sample_timeout,
        )

    @property
    def registry(self) -> ConnectorRegistry:
        return self._registry

    def _get_vault(self) -> CredentialVault:
        if self._vault is None:
            self._vault = CredentialVault.from_env()
        return self._vault

    def _decrypt_auth(self, data_source: DataSourceRecord) -> AuthConfig:
        auth = data_source.auth
        if not auth.secret_values():
            return auth

        vault = self._get_vault()

        def _decrypt(name: str, value: str) -> str:
            try:
                return vault.decrypt(value)
            except DecryptionError as e:
                if self._strict_decryption:
                    raise ConnectorConstructionError(
                        data_source.id, "credential could not be decrypted", field=name
                    ) from e
                logger.warning(
                    "Credential field %s of data_source_id=%s is not decryptable; "
                    "using stored value",
                    name,
                    data_source.id,
                )
                return value

        return auth.map_secrets(_decrypt)  # type: ignore[return-value]

    def encrypt_credentials(self, data_source: DataSourceRecord) -> DataSourceRecord:
        """Return a copy of a plaintext record with every secret encrypted.

        Raises:
            MissingSecretError: If no vault is configured.
        """
        auth = data_source.auth
        if auth.secret_values():
            vault = self._get_vault()
            auth = auth.map_secrets(  # type: ignore[assignment]
                lambda _name, value: vault.encrypt(value)
            )
        return data_source.model_copy(update={"auth": auth, "credentials_encrypted": True})

    def create_connector(
        self,
        data_source: DataSourceRecord,
        decrypt_credentials: bool = True,
    ) -> Connector:
        """Build a new (uncached) connector for a data source.

        Args:
            data_source: Data source definition.
            decrypt_credentials: Decrypt secret auth fields before use. Ignored
                when the record says its credentials are plaintext.

        Raises:
            UnsupportedTypeError: If the type has no connector.
            ConnectorConstructionError: If strict decryption fails.
            MissingSecretError: If decryption is needed and no vault is configured.
        """
        if not self._registry.supports(data_source.type):
            raise UnsupportedTypeError(data_source.type.value, data_source.id)

        auth: AuthConfig = data_source.auth
        if decrypt_credentials and data_source.credentials_encrypted:
            auth = self._decrypt_auth(data_source)
        return self._registry.create(data_source, auth, self._options)

    def get_connector(self, data_source: DataSourceRecord) -> Connector:
        """Return the cached connector for a data source, building it once."""
        with self._lock:
            connector = self._connectors.get(data_source.id)
            if connector is None:
                connector = self.create_connector(data_source)
                self._connectors[data_source.id] = connector
                logger.debug("Created connector for data_source_id=%s", data_source.id)
            return connector

    def remove_connector(self, data_source_id: str) -> bool:
        """Drop the cached connector and health entry for a data source.

        The connector's HTTP client is closed in the background when an event
        loop is running, otherwise by the next aclose().

        Returns:
            True if a connector was cached.
        """
        with self._lock:
            connector = self._connectors.pop(data_source_id, None)
            self._health.pop(data_source_id, None)
        if connector is None:
            return False
        self._schedule_close([connector])
        logger.debug("Removed connector for data_source_id=%s", data_source_id)
        return True

    def _schedule_close(self, connectors: Iterable[Connector]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        for connector in connectors:
            if loop is None:
                with self._lock:
                    self._pending_close.append(connector)
                logger.debug(
                    "No running event loop; connector for data_source_id=%s closes on aclose()",
                    connector.data_source_id,
                )
                continue
            task = loop.create_task(connector.aclose())
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)

    async def test_connection(self, candidate: ConnectionCandidate) -> TestConnectionResult:
        """Test unsaved connection settings (credentials already plaintext).

        On success, one sample fetch of the base endpoint is attempted; its
        failure does not change the outcome.
        """
        start = time.monotonic()
        data_source = DataSourceRecord(
            id=TEST_CONNECTION_ID,
            name="Test Connection",
            type=candidate.type,
            base_url=candidate.base_url,
            auth=candidate.auth,
            health_check_endpoint=candidate.health_check_endpoint,
            credentials_encrypted=False,
        )

        try:
            connector = self.create_connector(data_source, decrypt_credentials=False)
        except ConduitError as e:
            return TestConnectionResult(
                success=False,
                latency_ms=int((time.monotonic() - start) * 1000),
                error=e.message,
            )

        try:
            result = await connector.test_connection()
            if not result.is_connected:
                return TestConnectionResult(
                    success=False, latency_ms=result.latency_ms, error=result.last_error
                )

            try:
                sample = await connector.fetch(
                    "", FetchOptions(timeout_seconds=self._sample_timeout)
                )
            except ConnectorError as e:
                logger.info("Sample fetch failed after successful connection test: %s", e)
                return TestConnectionResult(success=True, latency_ms=result.latency_ms)

            return TestConnectionResult(
                success=True, latency_ms=result.latency_ms, sample_data=sample.data
            )
        finally:
            await connector.aclose()

    async def check_health(self, data_source: DataSourceRecord) -> ConnectionResult:
        """Test a data source through its cached connector and record the result."""
        connector = self.get_connector(data_source)
        result = await connector.test_connection()
        with self._lock:
            self._health[data_source.id] = result
        return result

    def get_health_status(self, data_source_id: str) -> ConnectionResult | None:
        with self._lock:
            return self._health.get(data_source_id)

    async def fetch(
        self,
        data_source: DataSourceRecord,
        endpoint: str,
        options: FetchOptions | None = None,
    ) -> FetchResult:
        """Fetch an endpoint through the data source's cached connector."""
        return await self.get_connector(data_source).fetch(endpoint, options)

    def clear(self) -> None:
        """Drop every cached connector and health entry."""
        with self._lock:
            connectors = list(self._connectors.values())
            self._connectors.clear()
            self._health.clear()
        self._schedule_close(connectors)

    async def aclose(self) -> None:
        """Close every cached connector and every removed one not yet closed."""
        with self._lock:
            connectors = [*self._connectors.values(), *self._pending_close]
            self._connectors.clear()
            self._health.clear()
            self._pending_close.clear()
        for connector in connectors:
            await connector.aclose()
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)
