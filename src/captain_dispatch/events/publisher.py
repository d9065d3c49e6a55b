import json
import logging
import time
from typing import Any

import redis
from redis.exceptions import ConnectionError, TimeoutError

from ..core.correlation import get_current_correlation_id
from ..metrics.prometheus_exporter import observe_latency, record_error
from .channels import ALL_CHANNELS

logger = logging.getLogger(__name__)


class RedisPublisher:
    """Synchronous Redis publisher for the realtime change feed.

    Uses the sync Redis client so it can be called from request worker
    threads and from the background sweep alike.
    """

    def __init__(self, config: dict[str, Any], client: redis.Redis | None = None):
        self.config = config
        self._client = client or redis.Redis(
            host=config["host"],
            port=config["port"],
            db=config["db"],
            password=config.get("password") or None,
            decode_responses=True,
        )

    def publish_sync(self, channel: str, message: dict[str, Any]) -> None:
        if channel not in ALL_CHANNELS:
            raise ValueError(
                f"Channel '{channel}' is not a valid channel. Valid channels: {ALL_CHANNELS}"
            )

        correlation_id = get_current_correlation_id()
        if correlation_id:
            message = {**message, "correlation_id": correlation_id}

        start_time = time.perf_counter()
        try:
            self._client.publish(channel, json.dumps(message))
            observe_latency("redis", (time.perf_counter() - start_time) * 1000)
        except (ConnectionError, TimeoutError) as e:
            record_error("redis", "connection_error")
            logger.error(f"Failed to publish to channel {channel}: {e}")

    def close(self) -> None:
        self._client.close()
