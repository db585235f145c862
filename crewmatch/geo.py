"""Great-circle distance and the fixed-speed ETA estimate used as fallback."""

import math

from .models import GeoPoint

EARTH_RADIUS_METERS = 6371000.0
DEFAULT_AVERAGE_SPEED_KMH = 50.0


def haversine_meters(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle distance between two points in meters. Never fails."""
    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    dlat = math.radians(b.lat - a.lat)
    dlng = math.radians(b.lng - a.lng)

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    # Clamp guards against rounding just above 1.0 for antipodal points
    c = 2 * math.atan2(math.sqrt(min(1.0, h)), math.sqrt(max(0.0, 1 - h)))
    return EARTH_RADIUS_METERS * c


def eta_from_distance(distance_meters: float, average_speed_kmh: float = DEFAULT_AVERAGE_SPEED_KMH) -> float:
    """Travel minutes at a fixed average speed, rounded up to the whole minute."""
    if distance_meters <= 0:
        return 0.0
    hours = (distance_meters / 1000.0) / average_speed_kmh
    return float(math.ceil(hours * 60))


def haversine_eta(a: GeoPoint, b: GeoPoint, average_speed_kmh: float = DEFAULT_AVERAGE_SPEED_KMH) -> float:
    return eta_from_distance(haversine_meters(a, b), average_speed_kmh)
