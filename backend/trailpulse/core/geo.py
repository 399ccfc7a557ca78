"""Great-circle helpers.

Angles passed around in degrees unless the name says otherwise. Points are
(lat, lng) tuples here; GeoJSON `[lng, lat]` ordering is handled by callers.
"""

import math

from trailpulse.core.constants import EARTH_RADIUS_KM, ROUTE_EPSILON_DEG


def deg2rad(deg: float) -> float:
    return deg * (math.pi / 180)


def rad2deg(rad: float) -> float:
    return rad * (180 / math.pi)


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Return great-circle distance in km between two WGS84 points."""
    phi1, phi2 = deg2rad(lat1), deg2rad(lat2)
    dphi = deg2rad(lat2 - lat1)
    dlambda = deg2rad(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    return haversine_km(lat1, lng1, lat2, lng2) * 1000.0


def destination_point(lat: float, lng: float, bearing_rad: float, distance_km: float) -> tuple[float, float]:
    """Project a point `distance_km` away along `bearing_rad` (0 = north).

    newLat = asin(sin(lat)·cos(δ) + cos(lat)·sin(δ)·cos(θ))
    newLng = lng + atan2(sin(θ)·sin(δ)·cos(lat), cos(δ) − sin(lat)·sin(newLat))
    with δ = distance / R.
    """
    delta = distance_km / EARTH_RADIUS_KM
    phi = deg2rad(lat)
    new_phi = math.asin(
        math.sin(phi) * math.cos(delta)
        + math.cos(phi) * math.sin(delta) * math.cos(bearing_rad)
    )
    new_lambda = deg2rad(lng) + math.atan2(
        math.sin(bearing_rad) * math.sin(delta) * math.cos(phi),
        math.cos(delta) - math.sin(phi) * math.sin(new_phi),
    )
    return rad2deg(new_phi), rad2deg(new_lambda)


def initial_bearing(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Forward azimuth (radians) from point 1 to point 2."""
    phi1, phi2 = deg2rad(lat1), deg2rad(lat2)
    dlambda = deg2rad(lng2 - lng1)
    y = math.sin(dlambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlambda)
    return math.atan2(y, x)


def path_length_km(points: list[tuple[float, float]]) -> float:
    """Sum of segment distances over (lat, lng) points."""
    total = 0.0
    for i in range(1, len(points)):
        total += haversine_km(points[i - 1][0], points[i - 1][1], points[i][0], points[i][1])
    return total


def offset_coordinate(coord: list[float], epsilon: float = ROUTE_EPSILON_DEG) -> list[float]:
    """Shift a coordinate by `epsilon` degrees on both axes."""
    return [coord[0] + epsilon, coord[1] + epsilon]


def is_valid_lat_lng(lat: float, lng: float) -> bool:
    return -90 <= lat <= 90 and -180 <= lng <= 180
