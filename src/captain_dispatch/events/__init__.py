"""Realtime change feed and after-commit side effects."""

from .feed import ChangeFeed
from .outbox import defer, install_outbox
from .publisher import RedisPublisher

__all__ = ["ChangeFeed", "RedisPublisher", "defer", "install_outbox"]
