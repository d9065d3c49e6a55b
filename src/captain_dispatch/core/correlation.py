"""Request-scoped correlation IDs for log records."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

current_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


class CorrelationFilter(logging.Filter):
    """Logging filter that adds the active correlation ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        correlation_id = current_correlation_id.get()
        if correlation_id:
            record.correlation_id = correlation_id
        return True


@contextmanager
def with_correlation(correlation_id: str) -> Iterator[None]:
    """Set the correlation ID for a block of code.

    Usage:
        with with_correlation(request_id):
            logger.info("Dispatching ride")  # carries correlation_id
    """
    token = current_correlation_id.set(correlation_id)
    try:
        yield
    finally:
        current_correlation_id.reset(token)


def get_current_correlation_id() -> str | None:
    return current_correlation_id.get()
