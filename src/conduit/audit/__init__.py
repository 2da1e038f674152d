"""Audit logging: event sinks, the audit logger and event queries."""

from conduit.audit.events import AuditEvent
from conduit.audit.logger import AuditLogger, scrub_details
from conduit.audit.query import AuditQuery, query_events, query_sink
from conduit.audit.sink import (
    AuditSink,
    AuditSinkError,
    InMemoryAuditSink,
    JsonlFileAuditSink,
    get_audit_sink,
)

__all__ = [
    "AuditEvent",
    "AuditLogger",
    "AuditQuery",
    "AuditSink",
    "AuditSinkError",
    "InMemoryAuditSink",
    "JsonlFileAuditSink",
    "get_audit_sink",
    "query_events",
    "query_sink",
    "scrub_details",
]
