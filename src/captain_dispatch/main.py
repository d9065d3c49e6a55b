"""
Captain Dispatch - service entry point

Initializes the database, wires the dispatch service to its external
clients and serves the HTTP API. The maintenance loop (offer expiry,
deferred re-dispatch, unmatched retries) runs inside the API lifespan.
"""

import logging
import os

import uvicorn

from .api.app import create_app
from .db.database import init_database
from .dispatch_logging import setup_logging
from .events.publisher import RedisPublisher
from .geo.osrm_client import OSRMClient
from .service import DispatchService
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)


def create_redis_publisher(settings: Settings) -> RedisPublisher | None:
    """Create Redis publisher with settings."""
    if not settings.redis.enabled:
        logger.info("Redis change feed disabled")
        return None
    redis_config = {
        "host": settings.redis.host,
        "port": settings.redis.port,
        "db": settings.redis.db,
        "password": settings.redis.password or None,
    }
    return RedisPublisher(redis_config)


def build_service(settings: Settings) -> DispatchService:
    session_factory = init_database(settings.database.url, echo=settings.database.echo)

    osrm_client = OSRMClient(
        settings.osrm.base_url,
        timeout=settings.osrm.timeout_seconds,
        max_retries=settings.osrm.max_retries,
    )
    logger.info(f"OSRM client configured: {settings.osrm.base_url}")

    return DispatchService(
        session_factory,
        settings,
        publisher=create_redis_publisher(settings),
        osrm_client=osrm_client,
    )


def main() -> None:
    """Main entry point - initializes and runs the dispatch service."""
    settings = get_settings()

    # LOG_FORMAT env var takes precedence, then settings.dispatch.log_format
    log_format = os.environ.get("LOG_FORMAT") or settings.dispatch.log_format
    setup_logging(
        level=settings.dispatch.log_level,
        json_output=log_format == "json",
        environment=settings.dispatch.environment,
    )

    logger.info("Starting captain dispatch service...")
    service = build_service(settings)
    app = create_app(service, settings)

    uvicorn.run(
        app,
        host=settings.api.host,
        port=settings.api.port,
        log_level=settings.dispatch.log_level.lower(),
    )


if __name__ == "__main__":
    main()
