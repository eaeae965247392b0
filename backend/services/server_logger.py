# backend/services/server_logger.py
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from services.event_queue import EventQueue
from storage.models import ErrorDetail, LogLevel, ProcessSource, ServerEvent, ServerEventIn

echo_logger = logging.getLogger("server_events")

RED = "\x1b[31m"
YELLOW = "\x1b[33m"
CYAN = "\x1b[36m"
RESET = "\x1b[0m"

ECHO_COLORS = {
    LogLevel.INFO: CYAN,
    LogLevel.WARN: YELLOW,
    LogLevel.ERROR: RED,
    LogLevel.FATAL: RED,
}

ECHO_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.FATAL: logging.CRITICAL,
}


class ServerEventLogger:
    """Entry point for route handlers that want to record a server event"""

    def __init__(self, queue: EventQueue, echo: bool = False):
        self.queue = queue
        self.echo = echo

    def log_event(self, event: ServerEventIn) -> Optional[ServerEvent]:
        record = self.queue.enqueue(event)
        if self.echo:
            self._echo(event)
        return record

    def log(
        self,
        source: ProcessSource,
        level: LogLevel,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        error: Optional[ErrorDetail] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[ServerEvent]:
        return self.log_event(ServerEventIn(
            source=source,
            level=level,
            message=message,
            context=context,
            error=error,
            timestamp=timestamp,
        ))

    def log_exception(
        self,
        source: ProcessSource,
        message: str,
        exc: BaseException,
        context: Optional[Dict[str, Any]] = None,
        level: LogLevel = LogLevel.ERROR,
    ) -> Optional[ServerEvent]:
        return self.log(source, level, message, context=context, error=ErrorDetail.from_exception(exc))

    def _echo(self, event: ServerEventIn):
        color = ECHO_COLORS[event.level]
        echo_logger.log(
            ECHO_LEVELS[event.level],
            f"{color}[{event.source.value}] {event.level.value}: {event.message}{RESET}"
        )
