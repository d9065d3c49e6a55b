"""Great-circle distance calculations for proximity ranking and fare fallback."""

from math import atan2, cos, radians, sin, sqrt

EARTH_RADIUS_KM = 6371.0


def haversine_distance_km(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
) -> float:
    """Calculate the great-circle distance between two points in kilometers.

    Args:
        lat1: Latitude of first point in degrees
        lon1: Longitude of first point in degrees
        lat2: Latitude of second point in degrees
        lon2: Longitude of second point in degrees

    Returns:
        Distance between the two points in kilometers
    """
    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])
    dlat = lat2 - lat1
    dlon = lon2 - lon1

    a = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlon / 2) ** 2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def road_distance_km(
    origin: tuple[float, float],
    destination: tuple[float, float],
    road_factor: float = 1.3,
) -> float:
    """Approximate road distance as great-circle distance times a detour factor."""
    return haversine_distance_km(*origin, *destination) * road_factor


def eta_minutes(distance_km: float, speed_kmh: float) -> float:
    if speed_kmh <= 0:
        raise ValueError("Speed must be positive")
    return distance_km / speed_kmh * 60.0
