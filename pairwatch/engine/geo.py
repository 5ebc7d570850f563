import math

EARTH_RADIUS_KM = 6371.0
# Sub-millimetre slack on the inclusive geofence boundary.
BOUNDARY_TOLERANCE_M = 1e-6


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two GPS coordinates (Haversine), in km."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_lat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    return distance_km(lat1, lon1, lat2, lon2) * 1000


def is_within_geofence(
    latitude: float,
    longitude: float,
    site_latitude: float,
    site_longitude: float,
    radius_meters: float,
) -> bool:
    # Inclusive boundary, with slack for float rounding.
    distance = distance_m(latitude, longitude, site_latitude, site_longitude)
    return distance <= radius_meters + BOUNDARY_TOLERANCE_M
