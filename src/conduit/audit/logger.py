"""Audit logger for credentialed-resource events.

Builds audit events and emits them to an AuditSink:

    {event_id, occurred_at, user_id, action, resource,
     resource_id?, details?, ip_address?, user_agent?}

Details are scrubbed of secret-bearing keys before emission, at any depth.
Emission is fail-closed: sink errors propagate as AuditSinkError.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from conduit.audit.events import AuditEvent
from conduit.audit.query import AuditQuery, query_sink
from conduit.audit.sink import AuditSink, AuditSinkError, get_audit_sink

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

SECRET_DETAIL_KEYS = frozenset(
    {"api_key", "apikey", "password", "token", "client_secret", "clientsecret", "secret"}
)


def scrub_details(value: Any) -> Any:
    """Return a copy of value with secret-bearing keys redacted."""
    if isinstance(value, Mapping):
        return {
            key: REDACTED if str(key).lower() in SECRET_DETAIL_KEYS else scrub_details(item)
            for key, item in value.items()
        }
    if isinstance(value, list | tuple):
        return [scrub_details(item) for item in value]
    return value


class AuditLogger:
    """Emits and queries audit events."""

    def __init__(self, sink: AuditSink | None = None) -> None:
        """Initialize the logger.

        Args:
            sink: Destination sink. Defaults to get_audit_sink().
        """
        self._sink = sink if sink is not None else get_audit_sink()

    @property
    def sink(self) -> AuditSink:
        return self._sink

    def log(
        self,
        *,
        user_id: str,
        action: str,
        resource: str,
        resource_id: str | None = None,
        details: Mapping[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> dict[str, Any]:
        """Emit an audit event.

        Returns:
            The emitted event record.

        Raises:
            AuditSinkError: If the event is incomplete or the sink fails.
        """
        try:
            event = AuditEvent(
                user_id=user_id,
                action=action,
                resource=resource,
                resource_id=resource_id,
                details=scrub_details(details) if details else None,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        except ValidationError as e:
            raise AuditSinkError(
                f"Incomplete audit event for {action} on {resource}: "
                f"{e.error_count()} invalid field(s)"
            ) from e

        self._sink.emit(event)
        logger.debug(
            "Audit event %s: %s %s/%s by user_id=%s",
            event.event_id,
            action,
            resource,
            resource_id or "-",
            user_id,
        )
        return event.to_record()

    def login(
        self, user_id: str, ip_address: str | None = None, user_agent: str | None = None
    ) -> dict[str, Any]:
        return self.log(
            user_id=user_id,
            action="login",
            resource="user",
            details={"event": "user_login"},
            ip_address=ip_address,
            user_agent=user_agent,
        )

    def logout(self, user_id: str) -> dict[str, Any]:
        return self.log(
            user_id=user_id, action="logout", resource="user", details={"event": "user_logout"}
        )

    def create(
        self,
        user_id: str,
        resource: str,
        resource_id: str,
        details: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        return self.log(
            user_id=user_id,
            action="create",
            resource=resource,
            resource_id=resource_id,
            details=details,
        )

    def update(
        self,
        user_id: str,
        resource: str,
        resource_id: str,
        details: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        return self.log(
            user_id=user_id,
            action="update",
            resource=resource,
            resource_id=resource_id,
            details=details,
        )

    def delete(
        self,
        user_id: str,
        resource: str,
        resource_id: str,
        details: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        return self.log(
            user_id=user_id,
            action="delete",
            resource=resource,
            resource_id=resource_id,
            details=details,
        )

    def access(
        self,
        user_id: str,
        resource: str,
        resource_id: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        return self.log(
            user_id=user_id,
            action="access",
            resource=resource,
            resource_id=resource_id,
            details=details,
        )

    def query_events(self, query: AuditQuery | None = None, **filters: Any) -> list[dict[str, Any]]:
        """Return matching events, newest first.

        Accepts either an AuditQuery or its fields as keyword arguments.
        """
        return query_sink(self._sink, query or AuditQuery(**filters))

    def get_user_logs(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        return self.query_events(user_id=user_id, limit=limit)

    def get_resource_logs(
        self, resource: str, resource_id: str | None = None, limit: int = 50
    ) -> list[dict[str, Any]]:
        return self.query_events(resource=resource, resource_id=resource_id, limit=limit)

    def get_recent_activity(self, limit: int = 20) -> list[dict[str, Any]]:
        return self.query_events(limit=limit)

    def get_user_activity_summary(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, int]:
        """Count a user's events per action within an optional time window."""
        events = query_sink(
            self._sink,
            AuditQuery(user_id=user_id, start=start, end=end, limit=2**31 - 1),
        )
        return dict(Counter(str(event.get("action", "")) for event in events))
