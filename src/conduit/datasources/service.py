"""Data-source operations with access control, caching and auditing.

DataSourceService is the seam a host's route layer calls. Every operation
checks permission first, so a denied actor never causes decryption or
network I/O. Configuration changes drop the cached connector and every
cached fetch result for the data source before the change is audited.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from conduit.audit.logger import AuditLogger
from conduit.cache.fingerprint import data_source_tag, fetch_fingerprint
from conduit.cache.store import GenericCache
from conduit.datasources.manager import ConnectorManager
from conduit.datasources.models import (
    ConnectionCandidate,
    ConnectionResult,
    DataSourceRecord,
    FetchOptions,
    FetchResult,
    HttpMethod,
    TestConnectionResult,
)
from conduit.security.rbac import ActionType, RbacService, ResourceType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """The identity performing an operation.

    Attributes:
        user_id: Acting user.
        ip_address: Client address, recorded in audit events.
        user_agent: Client user agent, recorded in audit events.
        context: Attributes evaluated by permission conditions. None means no
            context, so conditional permissions do not match; an empty mapping
            is evaluated as is.
    """

    user_id: str
    ip_address: str | None = None
    user_agent: str | None = None
    context: Mapping[str, Any] | None = None


def _audit_details(data_source: DataSourceRecord) -> dict[str, Any]:
    return {
        "name": data_source.name,
        "type": data_source.type.value,
        "base_url": data_source.base_url,
        "auth_type": data_source.auth.type,
    }


class DataSourceService:
    """Permission-checked, cached and audited data-source operations."""

    def __init__(
        self,
        manager: ConnectorManager,
        rbac: RbacService,
        audit: AuditLogger,
        cache: GenericCache,
    ) -> None:
        self._manager = manager
        self._rbac = rbac
        self._audit = audit
        self._cache = cache

    def _require(self, actor: Actor, action: ActionType, resource_id: str | None = None) -> None:
        self._rbac.require_permission(
            actor.user_id,
            ResourceType.DATA_SOURCE,
            action,
            resource_id,
            actor.context,
        )

    async def fetch(
        self,
        actor: Actor,
        data_source: DataSourceRecord,
        endpoint: str,
        options: FetchOptions | None = None,
        *,
        use_cache: bool = True,
        ttl: float | None = None,
    ) -> FetchResult:
        """Fetch through the data source's connector.

        GET results are cached under a request fingerprint and tagged with
        the data source, so update/delete invalidate them.

        Raises:
            PermissionDeniedError: If the actor may not read the data source.
            ConnectorError: On request failure (nothing is cached).
        """
        self._require(actor, ActionType.READ, data_source.id)
        opts = options or FetchOptions()

        cacheable = use_cache and opts.method == HttpMethod.GET
        key = ""
        if cacheable:
            key = fetch_fingerprint(
                data_source_id=data_source.id,
                method=opts.method.value,
                endpoint=endpoint,
                params=opts.params,
                body=opts.body,
                headers=opts.headers,
            )
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug("Fetch cache hit for data_source_id=%s", data_source.id)
                return FetchResult.model_validate(cached)

        result = await self._manager.fetch(data_source, endpoint, opts)

        if cacheable:
            self._cache.set(
                key,
                result.model_dump(mode="json"),
                ttl=ttl,
                tags=[data_source_tag(data_source.id)],
            )
        return result

    async def test_connection(
        self, actor: Actor, candidate: ConnectionCandidate
    ) -> TestConnectionResult:
        """Test unsaved connection settings.

        Raises:
            PermissionDeniedError: If the actor may not execute on data sources.
        """
        self._require(actor, ActionType.EXECUTE)
        return await self._manager.test_connection(candidate)

    async def check_health(self, actor: Actor, data_source: DataSourceRecord) -> ConnectionResult:
        """Check and record a data source's health.

        Raises:
            PermissionDeniedError: If the actor may not read the data source.
        """
        self._require(actor, ActionType.READ, data_source.id)
        return await self._manager.check_health(data_source)

    def _forget(self, data_source_id: str) -> int:
        self._manager.remove_connector(data_source_id)
        return self._cache.invalidate_by_tag(data_source_tag(data_source_id))

    def _audit_change(
        self,
        actor: Actor,
        action: ActionType,
        data_source_id: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self._audit.log(
            user_id=actor.user_id,
            action=action.value,
            resource=ResourceType.DATA_SOURCE.value,
            resource_id=data_source_id,
            details=details,
            ip_address=actor.ip_address,
            user_agent=actor.user_agent,
        )

    def create_data_source(self, actor: Actor, data_source: DataSourceRecord) -> DataSourceRecord:
        """Prepare a new data source for storage.

        The record's credentials are taken as plaintext and encrypted.

        Returns:
            The record to persist, with encrypted credentials.

        Raises:
            PermissionDeniedError: If the actor may not create data sources.
            MissingSecretError: If no vault is configured.
            AuditSinkError: If the audit event cannot be written.
        """
        self._require(actor, ActionType.CREATE)
        stored = self._manager.encrypt_credentials(data_source)
        logger.info("Data source %s created", stored.id)
        self._audit_change(actor, ActionType.CREATE, stored.id, _audit_details(stored))
        return stored

    def update_data_source(self, actor: Actor, data_source: DataSourceRecord) -> DataSourceRecord:
        """Apply a configuration change to in-process state.

        Credentials of a record marked ``credentials_encrypted=False`` are
        encrypted; already encrypted records are returned unchanged.

        Returns:
            The record to persist.

        Raises:
            PermissionDeniedError: If the actor may not update the data source.
            AuditSinkError: If the audit event cannot be written.
        """
        self._require(actor, ActionType.UPDATE, data_source.id)
        stored = data_source
        if not data_source.credentials_encrypted:
            stored = self._manager.encrypt_credentials(data_source)
        invalidated = self._forget(stored.id)
        logger.info("Data source %s updated; %d cached results invalidated", stored.id, invalidated)
        self._audit_change(actor, ActionType.UPDATE, stored.id, _audit_details(stored))
        return stored

    def delete_data_source(self, actor: Actor, data_source_id: str) -> None:
        """Drop all in-process state for a deleted data source.

        Raises:
            PermissionDeniedError: If the actor may not delete the data source.
            AuditSinkError: If the audit event cannot be written.
        """
        self._require(actor, ActionType.DELETE, data_source_id)
        invalidated = self._forget(data_source_id)
        logger.info(
            "Data source %s deleted; %d cached results invalidated", data_source_id, invalidated
        )
        self._audit_change(actor, ActionType.DELETE, data_source_id)
