"""Tests for ConnectorManager: decryption policy, singleton caching, health and
connection testing.

Uses httpx.MockTransport for deterministic testing with no live network calls.
"""

from __future__ import annotations

import asyncio
import logging

import httpx
import pytest

from conduit.config import Settings
from conduit.datasources.connectors.registry import ConnectorOptions, default_registry
from conduit.datasources.connectors.rest import RestConnector
from conduit.datasources.manager import TEST_CONNECTION_ID, ConnectorManager
from conduit.datasources.models import (
    ApiKeyAuth,
    BasicAuth,
    ConnectionCandidate,
    DataSourceRecord,
    DataSourceType,
)
from conduit.errors import ConnectorConstructionError, UnsupportedTypeError
from conduit.security.vault import CredentialVault


class CountingVault(CredentialVault):
    """Vault that counts decrypt calls."""

    def __init__(self, master_secret: str) -> None:
        super().__init__(master_secret)
        self.decrypt_calls = 0

    def decrypt(self, ciphertext: str) -> str:
        self.decrypt_calls += 1
        return super().decrypt(ciphertext)


def _ok_transport(seen: list[httpx.Request] | None = None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(200, json={"items": [1, 2, 3]})

    return httpx.MockTransport(handler)


def _manager(
    vault: CredentialVault,
    transport: httpx.AsyncBaseTransport | None = None,
    **kwargs: object,
) -> ConnectorManager:
    return ConnectorManager(
        vault,
        options=ConnectorOptions(transport=transport or _ok_transport()),
        **kwargs,  # type: ignore[arg-type]
    )


def _encrypted_source(vault: CredentialVault, ds_id: str = "ds-1") -> DataSourceRecord:
    return DataSourceRecord(
        id=ds_id,
        name="Orders API",
        base_url="https://api.test",
        auth=ApiKeyAuth(api_key=vault.encrypt("K")),
    )


class ClosingTracker(RestConnector):
    """RestConnector that counts aclose calls."""

    def __init__(self, *args: object, **kwargs: object) -> None:
        super().__init__(*args, **kwargs)  # type: ignore[arg-type]
        self.close_calls = 0

    async def aclose(self) -> None:
        self.close_calls += 1
        await super().aclose()


def _tracking_manager(vault: CredentialVault) -> ConnectorManager:
    registry = default_registry()
    registry.register(
        DataSourceType.REST,
        lambda ds, auth, options: ClosingTracker(ds, auth, transport=options.transport),
        replace=True,
    )
    return ConnectorManager(vault, registry, options=ConnectorOptions(transport=_ok_transport()))


class TestCreateConnector:
    def test_decrypts_secrets(self, vault: CredentialVault) -> None:
        connector = _manager(vault).create_connector(_encrypted_source(vault))
        assert isinstance(connector, RestConnector)
        assert connector.auth_headers() == {"X-API-Key": "K"}

    def test_skips_decryption_when_asked(self, vault: CredentialVault) -> None:
        ds = _encrypted_source(vault)
        connector = _manager(vault).create_connector(ds, decrypt_credentials=False)
        assert isinstance(connector, RestConnector)
        stored_key = ds.auth.api_key  # type: ignore[union-attr]
        assert connector.auth_headers() == {"X-API-Key": stored_key}

    def test_plaintext_record_is_not_decrypted(self, vault: CredentialVault) -> None:
        counting = CountingVault("test-master-secret-do-not-use-in-production")
        ds = DataSourceRecord(
            id="ds",
            base_url="https://api.test",
            auth=ApiKeyAuth(api_key="plain"),
            credentials_encrypted=False,
        )
        connector = _manager(counting).create_connector(ds)
        assert isinstance(connector, RestConnector)
        assert connector.auth_headers() == {"X-API-Key": "plain"}
        assert counting.decrypt_calls == 0

    def test_undecryptable_field_falls_back_to_stored_value(
        self, vault: CredentialVault, caplog: pytest.LogCaptureFixture
    ) -> None:
        ds = DataSourceRecord(
            id="legacy",
            base_url="https://api.test",
            auth=BasicAuth(username="u", password="legacy-plaintext"),
        )
        with caplog.at_level(logging.WARNING, logger="conduit.datasources.manager"):
            connector = _manager(vault).create_connector(ds)

        assert isinstance(connector, RestConnector)
        assert connector.auth_headers()["Authorization"].startswith("Basic ")
        assert "password" in caplog.text
        assert "legacy" in caplog.text
        assert "legacy-plaintext" not in caplog.text

    def test_strict_decryption_refuses_to_build(self, vault: CredentialVault) -> None:
        ds = DataSourceRecord(
            id="legacy",
            base_url="https://api.test",
            auth=BasicAuth(username="u", password="legacy-plaintext"),
        )
        with pytest.raises(ConnectorConstructionError) as exc_info:
            _manager(vault, strict_decryption=True).create_connector(ds)

        assert exc_info.value.data_source_id == "legacy"
        assert exc_info.value.field == "password"
        assert "legacy-plaintext" not in str(exc_info.value)

    def test_unsupported_type(self, vault: CredentialVault) -> None:
        with pytest.raises(UnsupportedTypeError):
            _manager(vault).create_connector(
                DataSourceRecord(id="db", type=DataSourceType.MYSQL, host="db.local")
            )


class TestEncryptCredentials:
    def test_encrypts_every_secret(self, vault: CredentialVault) -> None:
        plaintext = DataSourceRecord(
            id="ds-1",
            auth=BasicAuth(username="svc", password="pw"),
            credentials_encrypted=False,
        )

        stored = _manager(vault).encrypt_credentials(plaintext)

        assert stored.credentials_encrypted is True
        assert stored.auth.secret_values()["password"] != "pw"
        assert vault.decrypt(stored.auth.secret_values()["password"]) == "pw"
        assert stored.auth.username == "svc"  # type: ignore[union-attr]
        assert plaintext.auth.password == "pw"  # type: ignore[union-attr]

    def test_record_without_secrets_is_only_marked(self, vault: CredentialVault) -> None:
        plaintext = DataSourceRecord(id="ds-1", credentials_encrypted=False)
        stored = _manager(vault).encrypt_credentials(plaintext)
        assert stored.credentials_encrypted is True
        assert stored.auth == plaintext.auth

    def test_encrypted_record_round_trips_through_connector(self, vault: CredentialVault) -> None:
        manager = _manager(vault)
        stored = manager.encrypt_credentials(
            DataSourceRecord(
                id="ds-1",
                base_url="https://api.test",
                auth=ApiKeyAuth(api_key="K"),
                credentials_encrypted=False,
            )
        )
        connector = manager.get_connector(stored)
        assert isinstance(connector, RestConnector)
        assert connector.auth_headers() == {"X-API-Key": "K"}


class TestConnectorCache:
    def test_same_id_returns_same_instance(self, vault: CredentialVault) -> None:
        manager = _manager(vault)
        ds = _encrypted_source(vault)
        assert manager.get_connector(ds) is manager.get_connector(ds)

    @pytest.mark.asyncio
    async def test_concurrent_gets_share_one_instance(self, vault: CredentialVault) -> None:
        manager = _manager(vault)
        ds = _encrypted_source(vault)

        async def get() -> object:
            await asyncio.sleep(0)
            return manager.get_connector(ds)

        first, second = await asyncio.gather(get(), get())
        assert first is second

    @pytest.mark.asyncio
    async def test_remove_connector_forces_rebuild(self, vault: CredentialVault) -> None:
        manager = _manager(vault)
        ds = _encrypted_source(vault)
        before = manager.get_connector(ds)

        assert manager.remove_connector(ds.id) is True
        assert manager.remove_connector(ds.id) is False
        assert manager.get_connector(ds) is not before
        await manager.aclose()

    def test_removal_without_event_loop_closes_on_aclose(self, vault: CredentialVault) -> None:
        manager = _tracking_manager(vault)
        ds = _encrypted_source(vault)
        connector = manager.get_connector(ds)
        assert isinstance(connector, ClosingTracker)

        manager.remove_connector(ds.id)
        assert connector.close_calls == 0

        asyncio.run(manager.aclose())
        assert connector.close_calls == 1

        asyncio.run(manager.aclose())
        assert connector.close_calls == 1

    @pytest.mark.asyncio
    async def test_removal_inside_event_loop_closes_in_background(
        self, vault: CredentialVault
    ) -> None:
        manager = _tracking_manager(vault)
        ds = _encrypted_source(vault)
        connector = manager.get_connector(ds)

        manager.remove_connector(ds.id)
        await manager.aclose()

        assert isinstance(connector, ClosingTracker)
        assert connector.close_calls == 1

    @pytest.mark.asyncio
    async def test_fetch_decrypts_once_and_sends_plaintext_key(self) -> None:
        vault = CountingVault("test-master-secret-do-not-use-in-production")
        seen: list[httpx.Request] = []
        manager = _manager(vault, _ok_transport(seen))
        ds = _encrypted_source(vault)

        first = await manager.fetch(ds, "/orders")
        second = await manager.fetch(ds, "/orders")

        assert first.data == {"items": [1, 2, 3]}
        assert second.status == 200
        assert vault.decrypt_calls == 1
        assert [r.headers["X-API-Key"] for r in seen] == ["K", "K"]
        await manager.aclose()


class TestHealth:
    @pytest.mark.asyncio
    async def test_check_health_records_result(self, vault: CredentialVault) -> None:
        manager = _manager(vault)
        ds = _encrypted_source(vault)
        assert manager.get_health_status(ds.id) is None

        result = await manager.check_health(ds)

        assert result.is_connected is True
        assert manager.get_health_status(ds.id) is result
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_remove_connector_drops_health(self, vault: CredentialVault) -> None:
        manager = _manager(vault)
        ds = _encrypted_source(vault)
        await manager.check_health(ds)

        manager.remove_connector(ds.id)

        assert manager.get_health_status(ds.id) is None
        await manager.aclose()

    @pytest.mark.asyncio
    async def test_clear_drops_everything(self, vault: CredentialVault) -> None:
        manager = _manager(vault)
        ds = _encrypted_source(vault)
        connector = manager.get_connector(ds)
        await manager.check_health(ds)

        manager.clear()

        assert manager.get_health_status(ds.id) is None
        assert manager.get_connector(ds) is not connector
        await manager.aclose()


class TestTestConnection:
    @pytest.mark.asyncio
    async def test_success_includes_sample_data(self, vault: CredentialVault) -> None:
        seen: list[httpx.Request] = []
        manager = _manager(vault, _ok_transport(seen))
        candidate = ConnectionCandidate(
            base_url="https://api.test", auth=ApiKeyAuth(api_key="plain-key")
        )

        result = await manager.test_connection(candidate)

        assert result.success is True
        assert result.sample_data == {"items": [1, 2, 3]}
        assert all(r.headers["X-API-Key"] == "plain-key" for r in seen)
        assert manager.get_health_status(TEST_CONNECTION_ID) is None

    @pytest.mark.asyncio
    async def test_failed_sample_fetch_keeps_success(self, vault: CredentialVault) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/health":
                return httpx.Response(200, json={"ok": True})
            return httpx.Response(500, json={"error": "boom"})

        manager = _manager(vault, httpx.MockTransport(handler))
        candidate = ConnectionCandidate(
            base_url="https://api.test", health_check_endpoint="/health"
        )

        result = await manager.test_connection(candidate)

        assert result.success is True
        assert result.sample_data is None
        assert result.error is None

    @pytest.mark.asyncio
    async def test_failure_reports_error(self, vault: CredentialVault) -> None:
        manager = _manager(vault, httpx.MockTransport(lambda request: httpx.Response(401)))
        result = await manager.test_connection(ConnectionCandidate(base_url="https://api.test"))
        assert result.success is False
        assert result.error == "HTTP 401: Unauthorized"

    @pytest.mark.asyncio
    async def test_unsupported_type_reports_error(self, vault: CredentialVault) -> None:
        result = await _manager(vault).test_connection(
            ConnectionCandidate(type=DataSourceType.MONGODB, base_url="mongodb://db")
        )
        assert result.success is False
        assert result.error is not None
        assert "mongodb" in result.error


class TestFromSettings:
    def test_applies_settings(self, vault: CredentialVault) -> None:
        ds = _encrypted_source(vault)
        ds = ds.model_copy(update={"auth": BasicAuth(username="u", password="not-encrypted")})
        manager = ConnectorManager.from_settings(Settings(strict_decryption=True), vault)
        with pytest.raises(ConnectorConstructionError):
            manager.create_connector(ds)
