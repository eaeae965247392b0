"""Tests for server and audit event models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from conftest import local_time
from storage.models import (
    AuditEvent,
    ErrorDetail,
    EventType,
    EventUser,
    LogLevel,
    ProcessSource,
    ServerEvent,
    ServerEventIn,
    SeverityLevel,
    partition_key,
)


def make_input(**overrides):
    fields = dict(source=ProcessSource.API_ROUTER, level=LogLevel.INFO, message="hello")
    fields.update(overrides)
    return ServerEventIn(**fields)


class TestPartitionKey:
    def test_same_day_same_key(self):
        morning = local_time(2024, 1, 1, 0, 0)
        night = local_time(2024, 1, 1, 23, 59)
        assert partition_key(morning) == partition_key(night) == "2024-01-01"

    def test_next_day_differs(self):
        assert partition_key(local_time(2024, 1, 2, 0, 0)) == "2024-01-02"

    def test_naive_taken_as_local(self):
        assert partition_key(datetime(2024, 5, 17, 8, 30)) == "2024-05-17"

    def test_utc_converted_to_local_day(self):
        ts = local_time(2024, 6, 30, 23, 30).astimezone(timezone.utc)
        assert partition_key(ts) == "2024-06-30"


class TestServerEvent:
    def test_id_assigned_when_missing(self):
        event = ServerEvent.from_input(make_input())
        assert event.id
        assert len({ServerEvent.from_input(make_input()).id for _ in range(100)}) == 100

    def test_existing_id_kept(self):
        assert ServerEvent.from_input(make_input(id="abc")).id == "abc"

    def test_timestamp_defaults_to_now(self):
        before = datetime.now(timezone.utc)
        event = ServerEvent.from_input(make_input())
        after = datetime.now(timezone.utc)
        assert before <= event.timestamp <= after

    def test_supplied_timestamp_kept(self):
        ts = local_time(2024, 1, 1, 9, 15)
        event = ServerEvent.from_input(make_input(timestamp=ts))
        assert event.timestamp == ts
        assert event.timestamp.tzinfo == timezone.utc
        assert event.partition_key == "2024-01-01"

    def test_from_mapping(self):
        event = ServerEvent.from_input({
            "source": "IMAGE_PROCESSOR",
            "level": "WARN",
            "message": "resize slow",
            "context": {"ms": 900},
        })
        assert event.source is ProcessSource.IMAGE_PROCESSOR
        assert event.level is LogLevel.WARN
        assert event.context == {"ms": 900}

    def test_from_mapping_rejects_unknown_level(self):
        with pytest.raises(ValidationError):
            ServerEvent.from_input({"source": "API_ROUTER", "level": "DEBUG", "message": "x"})

    def test_immutable(self):
        event = ServerEvent.from_input(make_input())
        with pytest.raises(ValidationError):
            event.message = "changed"

    def test_empty_id_rejected(self):
        with pytest.raises(ValidationError):
            ServerEvent(id="", timestamp=datetime.now(timezone.utc),
                        source=ProcessSource.API_ROUTER, level=LogLevel.INFO, message="x")

    def test_to_record_omits_unset_fields(self):
        ts = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        record = ServerEvent.from_input(make_input(id="abc", timestamp=ts)).to_record()
        assert record == {
            "id": "abc",
            "timestamp": "2024-01-01T12:00:00Z",
            "source": "API_ROUTER",
            "level": "INFO",
            "message": "hello",
        }

    def test_to_record_with_error(self):
        try:
            raise KeyError("slug")
        except KeyError as e:
            detail = ErrorDetail.from_exception(e)

        record = ServerEvent.from_input(make_input(level=LogLevel.ERROR, error=detail)).to_record()
        assert record["error"]["name"] == "KeyError"
        assert record["error"]["message"] == "'slug'"
        assert "Traceback" in record["error"]["stack"]


class TestAuditEvent:
    def test_defaults(self):
        event = AuditEvent(event_type=EventType.OTHER, title="x")
        assert event.severity is SeverityLevel.INFO
        assert datetime.now(timezone.utc) - event.timestamp < timedelta(seconds=5)

    def test_accepts_camel_case(self):
        event = AuditEvent.model_validate({
            "eventType": "post_created",
            "title": "New post",
            "relatedContent": {"type": "blog", "id": "hello"},
            "ipAddress": "10.0.0.1",
        })
        assert event.event_type is EventType.POST_CREATED
        assert event.related_content.id == "hello"
        assert event.ip_address == "10.0.0.1"

    def test_record_uses_camel_case(self):
        event = AuditEvent(
            event_type=EventType.USER_LOGIN,
            title="User logged in: ada",
            user=EventUser(name="ada"),
            user_agent="pytest",
        )
        record = event.to_record()
        assert record["eventType"] == "user_login"
        assert record["userAgent"] == "pytest"
        assert record["severity"] == "info"
        assert record["user"] == {"name": "ada"}
        assert "ipAddress" not in record

    def test_display_name(self):
        assert EventUser(name="ada", email="a@x").display_name == "ada"
        assert EventUser(email="a@x").display_name == "a@x"
        assert EventUser().display_name == "system"
