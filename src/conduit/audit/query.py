"""Audit event queries.

Filters events from the in-memory or JSONL sinks and returns them newest
first. Unreadable lines and missing files yield no events rather than errors.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from conduit.audit.events import AuditEvent
from conduit.audit.sink import AuditSink, InMemoryAuditSink, JsonlFileAuditSink

logger = logging.getLogger(__name__)

DEFAULT_QUERY_LIMIT = 100


@dataclass(frozen=True)
class AuditQuery:
    """Audit event filter.

    Attributes:
        user_id: Only events by this user.
        resource: Only events on this resource type.
        action: Only events with this action.
        resource_id: Only events on this resource id.
        start: Only events at or after this time (naive means UTC).
        end: Only events at or before this time (naive means UTC).
        limit: Maximum events returned.
        offset: Events skipped (after ordering).
    """

    user_id: str | None = None
    resource: str | None = None
    action: str | None = None
    resource_id: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    limit: int = DEFAULT_QUERY_LIMIT
    offset: int = 0

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError(f"limit must be positive, got {self.limit}")
        if self.offset < 0:
            raise ValueError(f"offset must be non-negative, got {self.offset}")


def parse_occurred_at(value: str) -> datetime | None:
    """Parse an event timestamp ("Z" suffix accepted)."""
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


def _matches(event: dict[str, Any], query: AuditQuery) -> bool:
    for key in ("user_id", "resource", "action", "resource_id"):
        expected = getattr(query, key)
        if expected is not None and event.get(key) != expected:
            return False

    if query.start is None and query.end is None:
        return True

    occurred_at = parse_occurred_at(str(event.get("occurred_at", "")))
    if occurred_at is None:
        return False
    occurred_at = _as_utc(occurred_at)
    if query.start is not None and occurred_at < _as_utc(query.start):
        return False
    return not (query.end is not None and occurred_at > _as_utc(query.end))


def query_events(events: Iterable[dict[str, Any]], query: AuditQuery) -> list[dict[str, Any]]:
    """Filter, order newest first, and page a sequence of events."""
    matched = [event for event in events if _matches(event, query)]
    matched.sort(
        key=lambda ev: (ev.get("occurred_at", ""), ev.get("event_id", "")),
        reverse=True,
    )
    return matched[query.offset : query.offset + query.limit]


def read_jsonl_events(file_path: Path) -> Iterator[dict[str, Any]]:
    """Yield event records from a JSONL audit log.

    Lines that are not valid JSON or not a complete audit event are skipped.
    """
    if not file_path.exists():
        return
    try:
        with open(file_path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = AuditEvent.model_validate_json(line)
                except ValidationError:
                    continue
                yield event.to_record()
    except OSError as e:
        logger.warning("Failed to read audit log file %s: %s", file_path, e)


def query_sink(sink: AuditSink, query: AuditQuery) -> list[dict[str, Any]]:
    """Query the events held by a sink.

    Raises:
        TypeError: If the sink type does not support reading back.
    """
    if isinstance(sink, InMemoryAuditSink):
        return query_events(sink.events, query)
    if isinstance(sink, JsonlFileAuditSink):
        return query_events(read_jsonl_events(sink.file_path), query)
    raise TypeError(f"Audit sink {type(sink).__name__} does not support queries")
