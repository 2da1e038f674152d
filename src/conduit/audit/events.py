"""Typed audit event.

Every event records who (user_id) did what (action) to which resource, with
optional resource id, scrubbed details and client information. Events are
immutable once built; ``to_record`` gives the JSON form sinks persist, with
unset optional fields omitted.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _new_event_id() -> str:
    return str(uuid.uuid4())


class AuditEvent(BaseModel):
    """A single audit record."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    event_id: str = Field(default_factory=_new_event_id, min_length=1)
    occurred_at: str = Field(default_factory=_now_iso, min_length=1)
    user_id: str = Field(min_length=1)
    action: str = Field(min_length=1)
    resource: str = Field(min_length=1)
    resource_id: str | None = None
    details: dict[str, Any] | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    def to_record(self) -> dict[str, Any]:
        """Return the JSON-compatible mapping of this event.

        Raises:
            ValueError: If details hold values that cannot be serialized.
        """
        record = self.model_dump(mode="json")
        return {key: value for key, value in record.items() if value is not None}
