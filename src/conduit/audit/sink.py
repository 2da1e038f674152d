"""Audit sinks.

A sink persists AuditEvents and fails closed: when an event cannot be
serialized or stored, AuditSinkError is raised and the audited operation must
not be reported as done.

Environment:
    CONDUIT_AUDIT_LOG_PATH: JSONL file used by the default sink.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from conduit.audit.events import AuditEvent
from conduit.errors import ConduitError

logger = logging.getLogger(__name__)

AUDIT_LOG_PATH_ENV = "CONDUIT_AUDIT_LOG_PATH"
DEFAULT_AUDIT_LOG_PATH = "./var/audit/audit_events.jsonl"


class AuditSinkError(ConduitError):
    """Raised when an audit event cannot be recorded."""


@runtime_checkable
class AuditSink(Protocol):
    def emit(self, event: AuditEvent) -> None:
        """Record an event.

        Raises:
            AuditSinkError: If the event was not recorded.
        """
        ...


def encode_event(event: AuditEvent) -> str:
    """Serialize an event to one compact JSON line (without newline).

    Raises:
        AuditSinkError: If the event details are not JSON-serializable.
    """
    try:
        return json.dumps(event.to_record(), sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise AuditSinkError(f"Audit event {event.event_id} is not serializable: {e}") from e


def audit_log_path() -> Path:
    """Return the JSONL audit log path from the environment."""
    return Path(os.environ.get(AUDIT_LOG_PATH_ENV) or DEFAULT_AUDIT_LOG_PATH)


class JsonlFileAuditSink:
    """Appends events to a JSONL file, one event per line."""

    def __init__(self, file_path: str | Path | None = None) -> None:
        self._file_path = Path(file_path) if file_path is not None else audit_log_path()
        self._lock = threading.Lock()

    @property
    def file_path(self) -> Path:
        return self._file_path

    def emit(self, event: AuditEvent) -> None:
        line = encode_event(event) + "\n"
        with self._lock:
            try:
                self._file_path.parent.mkdir(parents=True, exist_ok=True)
                with open(self._file_path, mode="a", encoding="utf-8") as f:
                    f.write(line)
            except OSError as e:
                raise AuditSinkError(
                    f"Audit event {event.event_id} not written to {self._file_path}: {e}"
                ) from e


class InMemoryAuditSink:
    """Keeps event records in memory, in emission order."""

    def __init__(self) -> None:
        self._records: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def emit(self, event: AuditEvent) -> None:
        record = json.loads(encode_event(event))
        with self._lock:
            self._records.append(record)

    @property
    def events(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._records)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()


def get_audit_sink() -> AuditSink:
    """Return the default sink (JSONL file at CONDUIT_AUDIT_LOG_PATH)."""
    return JsonlFileAuditSink()
