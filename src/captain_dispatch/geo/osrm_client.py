import logging
import time

import polyline
import requests
from pydantic import BaseModel

from ..core.exceptions import NetworkError, ServiceUnavailableError, ValidationError
from ..core.retry import RetryConfig, with_retry_sync
from ..metrics.prometheus_exporter import observe_latency, record_error

logger = logging.getLogger(__name__)


class RouteResponse(BaseModel):
    distance_meters: float
    duration_seconds: float
    geometry: list[tuple[float, float]]
    osrm_code: str

    @property
    def distance_km(self) -> float:
        return self.distance_meters / 1000.0

    @property
    def duration_minutes(self) -> float:
        return self.duration_seconds / 60.0


class NoRouteFoundError(ValidationError):
    """No route found between coordinates. Inherits from ValidationError (non-retryable)."""

    pass


class OSRMServiceError(ServiceUnavailableError):
    """OSRM service error (5xx). Inherits from ServiceUnavailableError (retryable)."""

    pass


class OSRMTimeoutError(NetworkError):
    """OSRM request timeout. Inherits from NetworkError (retryable)."""

    pass


def decode_polyline(encoded: str, precision: int = 5) -> list[tuple[float, float]]:
    """Decode polyline string to list of (lat, lon) tuples."""
    coords = polyline.decode(encoded, precision)
    return [(lat, lon) for lat, lon in coords]


class OSRMClient:
    """Directions provider client for trip distance and duration."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        max_retries: int = 2,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_config = RetryConfig(max_attempts=max_retries + 1, base_delay=0.2, max_delay=2.0)
        self._http = session or requests.Session()

    def route(
        self, origin: tuple[float, float], destination: tuple[float, float]
    ) -> RouteResponse:
        """Fetch a route, retrying timeouts and 5xx responses with backoff."""
        return with_retry_sync(
            lambda: self.get_route_sync(origin, destination),
            config=self.retry_config,
            operation_name="osrm.route",
        )

    def get_route_sync(
        self, origin: tuple[float, float], destination: tuple[float, float]
    ) -> RouteResponse:
        origin_lat, origin_lon = origin
        dest_lat, dest_lon = destination

        url = (
            f"{self.base_url}/route/v1/driving/"
            f"{origin_lon},{origin_lat};{dest_lon},{dest_lat}"
        )
        params = {"overview": "full", "geometries": "polyline"}

        start_time = time.perf_counter()
        try:
            response = self._http.get(url, params=params, timeout=self.timeout)

            if response.status_code >= 500:
                record_error("osrm", f"server_error_{response.status_code}")
                raise OSRMServiceError(f"OSRM server error: {response.status_code}")

            data = response.json()

            if data.get("code") == "NoRoute" or not data.get("routes"):
                record_error("osrm", "no_route")
                raise NoRouteFoundError("No route found between coordinates")

            route = data["routes"][0]
            result = RouteResponse(
                distance_meters=float(route["distance"]),
                duration_seconds=float(route["duration"]),
                geometry=decode_polyline(route["geometry"]),
                osrm_code=data["code"],
            )

            observe_latency("osrm", (time.perf_counter() - start_time) * 1000)
            return result

        except requests.Timeout as e:
            record_error("osrm", "timeout")
            raise OSRMTimeoutError(f"Request timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            record_error("osrm", "network_error")
            raise OSRMServiceError(f"Network error: {e}") from e
        except ValueError as e:
            # Non-JSON body from a misbehaving proxy
            record_error("osrm", "invalid_response")
            raise OSRMServiceError(f"Invalid OSRM response: {e}") from e
