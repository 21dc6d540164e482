"""
Logging Context - Session-scoped Log Correlation

Every log line emitted while handling an event carries the session id and
connection id of that event. Values live in context variables, so they follow
each asyncio task independently.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

_session_id: ContextVar[str] = ContextVar("session_id", default="")
_connection_id: ContextVar[str] = ContextVar("connection_id", default="")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [session=%(session_id)s conn=%(connection_id)s] %(message)s"


class SessionContextFilter(logging.Filter):
    """Adds session_id and connection_id to every LogRecord."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = _session_id.get() or "N/A"
        record.connection_id = _connection_id.get() or "N/A"
        return True


class LoggingContext:
    """Accessors for the per-task logging context."""

    @staticmethod
    def get_session_id() -> str:
        return _session_id.get()

    @staticmethod
    def get_connection_id() -> str:
        return _connection_id.get()

    @staticmethod
    @contextmanager
    def bind(session_id: Optional[str] = None, connection_id: Optional[str] = None) -> Iterator[None]:
        """Bind ids for the duration of a block, restoring the previous values after."""
        session_token = _session_id.set(session_id) if session_id is not None else None
        connection_token = _connection_id.set(connection_id) if connection_id is not None else None
        try:
            yield
        finally:
            if session_token is not None:
                _session_id.reset(session_token)
            if connection_token is not None:
                _connection_id.reset(connection_token)


def setup_logging(log_level: str = "INFO") -> None:
    """Configure stdout logging with the session context on every line."""
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(SessionContextFilter())
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[handler],
    )
