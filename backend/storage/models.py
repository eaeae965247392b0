# backend/storage/models.py
import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as process-local time"""
    return value.astimezone(timezone.utc)


def partition_key(timestamp: datetime) -> str:
    """Calendar day of a timestamp in process-local time, as YYYY-MM-DD"""
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone()
    return timestamp.strftime("%Y-%m-%d")


# ============================================
# SERVER EVENTS
# ============================================

class ProcessSource(str, Enum):
    AUTH_SERVER = "AUTH_SERVER"
    API_ROUTER = "API_ROUTER"
    DATABASE_CONNECTOR = "DATABASE_CONNECTOR"
    SYSTEM_MONITOR = "SYSTEM_MONITOR"
    IMAGE_PROCESSOR = "IMAGE_PROCESSOR"


class LogLevel(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    FATAL = "FATAL"


class ErrorDetail(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    message: str
    stack: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorDetail":
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return cls(name=type(exc).__name__, message=str(exc), stack=stack)


class ServerEventIn(BaseModel):
    """What producers submit: id and timestamp may be left out"""

    id: Optional[str] = None
    timestamp: Optional[datetime] = None
    source: ProcessSource
    level: LogLevel
    message: str
    context: Optional[Dict[str, Any]] = None
    error: Optional[ErrorDetail] = None


class ServerEvent(BaseModel):
    """A server event as persisted. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    timestamp: datetime
    source: ProcessSource
    level: LogLevel
    message: str
    context: Optional[Dict[str, Any]] = None
    error: Optional[ErrorDetail] = None

    @field_validator("timestamp")
    @classmethod
    def _normalise_timestamp(cls, value: datetime) -> datetime:
        return to_utc(value)

    @classmethod
    def from_input(
        cls,
        event: Union["ServerEvent", ServerEventIn, Mapping[str, Any]],
        now: Optional[datetime] = None,
    ) -> "ServerEvent":
        """Build a complete event, filling in a fresh id and the current time"""
        if isinstance(event, ServerEvent):
            return event
        if not isinstance(event, ServerEventIn):
            event = ServerEventIn.model_validate(event)
        data = event.model_dump()
        data["id"] = event.id or uuid.uuid4().hex
        data["timestamp"] = event.timestamp or now or utc_now()
        return cls.model_validate(data)

    @property
    def partition_key(self) -> str:
        return partition_key(self.timestamp)

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


# ============================================
# AUDIT EVENTS
# ============================================

class EventType(str, Enum):
    POST_CREATED = "post_created"
    POST_UPDATED = "post_updated"
    POST_DELETED = "post_deleted"
    COMMENT_ADDED = "comment_added"
    COMMENT_EDITED = "comment_edited"
    COMMENT_DELETED = "comment_deleted"
    MIND_IDEA_CREATED = "mind_idea_created"
    MIND_IDEA_UPDATED = "mind_idea_updated"
    MIND_THOUGHT_ADDED = "mind_thought_added"
    MIND_THOUGHT_EDITED = "mind_thought_edited"
    USER_LOGIN = "user_login"
    USER_LOGOUT = "user_logout"
    MEDIA_UPLOADED = "media_uploaded"
    MEDIA_DELETED = "media_deleted"
    SYSTEM_UPDATE = "system_update"
    OTHER = "other"


class SeverityLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ContentType(str, Enum):
    BLOG = "blog"
    MIND = "mind"
    COMMENT = "comment"
    MEDIA = "media"
    OTHER = "other"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EventUser(CamelModel):
    id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.email or "system"


class RelatedContent(CamelModel):
    type: Optional[ContentType] = None
    id: Optional[str] = None
    title: Optional[str] = None
    url: Optional[str] = None


class ChangeDetails(CamelModel):
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    summary: Optional[str] = None


class AuditEvent(CamelModel):
    timestamp: datetime = Field(default_factory=utc_now)
    event_type: EventType
    title: str
    description: Optional[str] = None
    user: Optional[EventUser] = None
    related_content: Optional[RelatedContent] = None
    changes: Optional[ChangeDetails] = None
    metadata: Optional[Dict[str, Any]] = None
    tags: Optional[List[str]] = None
    severity: SeverityLevel = SeverityLevel.INFO
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def _normalise_timestamp(cls, value: datetime) -> datetime:
        return to_utc(value)

    @property
    def partition_key(self) -> str:
        return partition_key(self.timestamp)

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
