"""Tests for audit sinks, the audit logger and event queries."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from conduit.audit.events import AuditEvent
from conduit.audit.logger import REDACTED, AuditLogger, scrub_details
from conduit.audit.query import AuditQuery, query_events, query_sink
from conduit.audit.sink import (
    AUDIT_LOG_PATH_ENV,
    AuditSink,
    AuditSinkError,
    InMemoryAuditSink,
    JsonlFileAuditSink,
)


class _BrokenSink:
    def emit(self, event: AuditEvent) -> None:
        raise AuditSinkError("disk unavailable")


def _sample(**overrides: object) -> AuditEvent:
    fields: dict[str, object] = {
        "event_id": "e-1",
        "occurred_at": "2026-01-01T00:00:00.000000Z",
        "user_id": "u1",
        "action": "create",
        "resource": "data_source",
        **overrides,
    }
    return AuditEvent.model_validate(fields)


class TestAuditEvent:
    def test_defaults_and_record(self) -> None:
        event = AuditEvent(user_id="u1", action="read", resource="widget")

        record = event.to_record()
        assert len(record["event_id"]) == 36
        assert record["occurred_at"].endswith("Z")
        assert set(record) == {"event_id", "occurred_at", "user_id", "action", "resource"}

    @pytest.mark.parametrize("missing", ["user_id", "action", "resource"])
    def test_required_fields(self, missing: str) -> None:
        fields = {"user_id": "u1", "action": "read", "resource": "widget"}
        fields[missing] = ""
        with pytest.raises(ValidationError):
            AuditEvent.model_validate(fields)

    def test_unknown_fields_rejected(self) -> None:
        with pytest.raises(ValidationError):
            _sample(password="p")


class TestSinks:
    def test_jsonl_sink_appends_sorted_lines(self, tmp_path: Path) -> None:
        sink = JsonlFileAuditSink(tmp_path / "nested" / "audit.jsonl")
        sink.emit(_sample())
        sink.emit(_sample(event_id="e-2", resource_id="ds-1"))

        lines = sink.file_path.read_text(encoding="utf-8").splitlines()
        assert lines[0] == (
            '{"action":"create","event_id":"e-1","occurred_at":"2026-01-01T00:00:00.000000Z",'
            '"resource":"data_source","user_id":"u1"}'
        )
        assert json.loads(lines[1])["resource_id"] == "ds-1"

    def test_jsonl_sink_path_from_env(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv(AUDIT_LOG_PATH_ENV, str(tmp_path / "env.jsonl"))
        assert JsonlFileAuditSink().file_path == tmp_path / "env.jsonl"

    def test_unserializable_details_fail_closed(self, tmp_path: Path) -> None:
        event = _sample(details={"x": object()})
        with pytest.raises(AuditSinkError):
            JsonlFileAuditSink(tmp_path / "a.jsonl").emit(event)
        with pytest.raises(AuditSinkError):
            InMemoryAuditSink().emit(event)
        assert not (tmp_path / "a.jsonl").exists()

    def test_unwritable_path_fails_closed(self, tmp_path: Path) -> None:
        with pytest.raises(AuditSinkError):
            JsonlFileAuditSink(tmp_path).emit(_sample())

    def test_in_memory_sink_keeps_records(self) -> None:
        sink = InMemoryAuditSink()
        sink.emit(_sample())
        assert sink.events == [_sample().to_record()]
        sink.clear()
        assert sink.events == []

    def test_sinks_satisfy_protocol(self, tmp_path: Path) -> None:
        assert isinstance(InMemoryAuditSink(), AuditSink)
        assert isinstance(JsonlFileAuditSink(tmp_path / "a.jsonl"), AuditSink)


class TestScrubbing:
    def test_secret_keys_are_redacted_at_any_depth(self) -> None:
        details = {
            "name": "Orders",
            "apiKey": "k",
            "auth": {"password": "p", "username": "u", "clientSecret": "c"},
            "history": [{"token": "t"}],
        }
        scrubbed = scrub_details(details)
        assert scrubbed["name"] == "Orders"
        assert scrubbed["apiKey"] == REDACTED
        assert scrubbed["auth"] == {
            "password": REDACTED,
            "username": "u",
            "clientSecret": REDACTED,
        }
        assert scrubbed["history"] == [{"token": REDACTED}]
        assert details["apiKey"] == "k"


class TestAuditLogger:
    def test_log_builds_event(self) -> None:
        sink = InMemoryAuditSink()
        event = AuditLogger(sink).log(
            user_id="u1",
            action="create",
            resource="data_source",
            resource_id="ds-1",
            details={"name": "Orders", "api_key": "k"},
            ip_address="10.0.0.1",
            user_agent="pytest",
        )

        assert sink.events == [event]
        assert event["details"] == {"name": "Orders", "api_key": REDACTED}
        assert event["ip_address"] == "10.0.0.1"
        assert event["occurred_at"].endswith("Z")
        assert len(event["event_id"]) == 36

    def test_optional_fields_are_omitted(self) -> None:
        event = AuditLogger(InMemoryAuditSink()).logout("u1")
        assert "resource_id" not in event
        assert "ip_address" not in event
        assert event["details"] == {"event": "user_logout"}

    @pytest.mark.parametrize("helper", ["create", "update", "delete", "access"])
    def test_helpers_set_action(self, helper: str) -> None:
        logger = AuditLogger(InMemoryAuditSink())
        event = getattr(logger, helper)("u1", "widget", "w-1")
        assert event["action"] == helper
        assert event["resource"] == "widget"
        assert event["resource_id"] == "w-1"

    def test_login_records_client(self) -> None:
        event = AuditLogger(InMemoryAuditSink()).login("u1", "10.0.0.2", "browser")
        assert (event["action"], event["resource"]) == ("login", "user")
        assert event["user_agent"] == "browser"

    def test_incomplete_event_is_rejected_before_emission(self) -> None:
        sink = InMemoryAuditSink()
        with pytest.raises(AuditSinkError):
            AuditLogger(sink).log(user_id="", action="delete", resource="data_source")
        assert sink.events == []

    def test_sink_failure_propagates(self) -> None:
        with pytest.raises(AuditSinkError):
            AuditLogger(_BrokenSink()).create("u1", "data_source", "ds-1")


def _event(event_id: str, minutes: int, **fields: str) -> dict[str, object]:
    occurred = datetime(2026, 1, 1, tzinfo=UTC) + timedelta(minutes=minutes)
    return {
        "event_id": event_id,
        "occurred_at": occurred.isoformat().replace("+00:00", "Z"),
        "user_id": "u1",
        "action": "read",
        "resource": "data_source",
        **fields,
    }


class TestQueries:
    def test_newest_first_with_limit_and_offset(self) -> None:
        events = [_event("e1", 1), _event("e2", 2), _event("e3", 3)]
        assert [e["event_id"] for e in query_events(events, AuditQuery())] == ["e3", "e2", "e1"]
        page = query_events(events, AuditQuery(limit=1, offset=1))
        assert [e["event_id"] for e in page] == ["e2"]

    def test_field_filters(self) -> None:
        events = [
            _event("e1", 1, user_id="u2"),
            _event("e2", 2, action="delete"),
            _event("e3", 3, resource_id="ds-1"),
        ]
        assert [e["event_id"] for e in query_events(events, AuditQuery(user_id="u2"))] == ["e1"]
        assert [e["event_id"] for e in query_events(events, AuditQuery(action="delete"))] == [
            "e2"
        ]
        assert [e["event_id"] for e in query_events(events, AuditQuery(resource_id="ds-1"))] == [
            "e3"
        ]

    def test_time_window(self) -> None:
        events = [_event("e1", 1), _event("e2", 5), _event("e3", 10)]
        base = datetime(2026, 1, 1, tzinfo=UTC)
        query = AuditQuery(start=base + timedelta(minutes=2), end=base + timedelta(minutes=9))
        assert [e["event_id"] for e in query_events(events, query)] == ["e2"]

    def test_invalid_paging_rejected(self) -> None:
        with pytest.raises(ValueError):
            AuditQuery(limit=0)
        with pytest.raises(ValueError):
            AuditQuery(offset=-1)

    def test_jsonl_query_skips_bad_lines(self, tmp_path: Path) -> None:
        incomplete = {"event_id": "e3", "occurred_at": "2026-01-01T00:09:00Z", "action": "read"}
        lines = [
            json.dumps(_event("e1", 1)),
            "not json",
            "",
            json.dumps(incomplete),
            json.dumps(_event("e2", 2)),
        ]
        path = tmp_path / "audit.jsonl"
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")

        events = query_sink(JsonlFileAuditSink(path), AuditQuery())
        assert [e["event_id"] for e in events] == ["e2", "e1"]

    def test_missing_jsonl_file_yields_nothing(self, tmp_path: Path) -> None:
        assert query_sink(JsonlFileAuditSink(tmp_path / "none.jsonl"), AuditQuery()) == []

    def test_unqueryable_sink(self) -> None:
        with pytest.raises(TypeError):
            query_sink(_BrokenSink(), AuditQuery())  # type: ignore[arg-type]

    def test_logger_queries_and_summary(self) -> None:
        logger = AuditLogger(InMemoryAuditSink())
        logger.create("u1", "widget", "w1")
        logger.update("u1", "widget", "w1")
        logger.update("u1", "widget", "w1")
        logger.access("u2", "dashboard")

        assert len(logger.get_user_logs("u1")) == 3
        assert len(logger.get_resource_logs("widget", "w1")) == 3
        assert len(logger.get_recent_activity(limit=2)) == 2
        assert logger.get_user_activity_summary("u1") == {"create": 1, "update": 2}
