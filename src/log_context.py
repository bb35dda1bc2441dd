"""
Logging helpers - per-invocation log ids and elapsed-time logging.

Every Reconciler operation runs under its own log id so interleaved
concurrent reconciliations can be told apart in the logs.
"""

import contextvars
import logging
import time
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(log_id)s] %(message)s"

_log_id: contextvars.ContextVar[str] = contextvars.ContextVar("log_id", default="-")

logger = logging.getLogger(__name__)


def get_log_id() -> str:
    """Return the log id of the current invocation ('-' outside one)."""
    return _log_id.get()


def new_log_id() -> str:
    return uuid.uuid4().hex[:16]


class LogIdFilter(logging.Filter):
    """Stamps the current log id on every record as ``record.log_id``."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.log_id = _log_id.get()
        return True


def configure_logging(level: str = "INFO") -> None:
    """
    Install the engine's log format on the root logger.

    Args:
        level: Log level name (e.g. 'INFO', 'DEBUG').
    """
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, LogIdFilter) for f in handler.filters):
            handler.addFilter(LogIdFilter())


@contextmanager
def log_context(log_id: Optional[str] = None) -> Iterator[str]:
    """Run the block under ``log_id`` (a fresh one when omitted)."""
    token = _log_id.set(log_id or new_log_id())
    try:
        yield _log_id.get()
    finally:
        _log_id.reset(token)


@contextmanager
def log_elapsed(operation: str) -> Iterator[None]:
    """Log how long ``operation`` took, whether it succeeded or raised."""
    start = time.monotonic()
    try:
        yield
    finally:
        logger.debug(f"[ELAPSED] {operation} took {time.monotonic() - start:.3f}s")
