"""Suggest a running route from a start point, a shape and a distance target.

The preferred path snaps synthesized waypoints to the road network through
OSRM (foot profile) and keeps the alternative closest to the target. Any
upstream problem (HTTP error, timeout, unusable payload) falls back to a
local random walk built on the same bearing projection.
"""

import math
import random

import httpx
from loguru import logger

from trailpulse.core.config import settings
from trailpulse.core.constants import (
    DEFAULT_ROUTE_TARGET_KM,
    FALLBACK_ELEVATION_FACTORS,
    FALLBACK_POINT_COUNTS,
    ROAD_ELEVATION_FACTOR,
    ROUTE_SHAPE_MAX_KM,
)
from trailpulse.core.errors import InvalidInput, UpstreamUnavailable
from trailpulse.core.geo import destination_point, initial_bearing, is_valid_lat_lng, path_length_km

# Points are (lat, lng) tuples throughout this module.
LatLng = tuple[float, float]


def clamp_distance(shape: str, target_km: float) -> float:
    return min(target_km, ROUTE_SHAPE_MAX_KM[shape])


# --------- Waypoints for road snapping --------- #

def loop_waypoints(lat: float, lng: float, target_km: float, rng: random.Random, num_points: int = 4) -> list[LatLng]:
    """Jittered circle of circumference ~target around the start, closed."""
    radius = target_km / (2 * math.pi)
    waypoints = [(lat, lng)]
    for i in range(1, num_points + 1):
        angle = (2 * math.pi * i / num_points) + (rng.random() * 0.2 - 0.1)
        point_distance = radius * (0.8 + rng.random() * 0.4)
        waypoints.append(destination_point(lat, lng, angle, point_distance))
    waypoints.append((lat, lng))
    return waypoints


def long_waypoints(lat: float, lng: float, target_km: float, rng: random.Random, segments: int = 3) -> list[LatLng]:
    """Chain of random-bearing legs of ~target/segments each."""
    segment_km = target_km / segments
    waypoints = [(lat, lng)]
    current = (lat, lng)
    for _ in range(segments):
        angle = rng.random() * 2 * math.pi
        distance = segment_km * (0.7 + rng.random() * 0.6)
        current = destination_point(current[0], current[1], angle, distance)
        waypoints.append(current)
    return waypoints


def short_waypoints(lat: float, lng: float, target_km: float, rng: random.Random) -> list[LatLng]:
    """Destination at 80% of target plus a deviated midpoint."""
    angle = rng.random() * 2 * math.pi
    distance = target_km * 0.8
    destination = destination_point(lat, lng, angle, distance)

    mid_angle = angle + (rng.random() * math.pi / 2 - math.pi / 4)
    midpoint = destination_point(lat, lng, mid_angle, distance * 0.5)
    return [(lat, lng), midpoint, destination]


WAYPOINT_BUILDERS = {
    "loop": loop_waypoints,
    "long": long_waypoints,
    "short": short_waypoints,
}


def select_closest_route(routes: list[dict], target_km: float) -> dict:
    """Alternative whose distance (meters in OSRM payloads) is nearest the target.

    Ties keep the earliest alternative.
    """
    return min(routes, key=lambda r: abs(r["distance"] / 1000 - target_km))


def _format_route(coordinates: list[list[float]], title: str, description: str, distance_km: float, elevation: float, source: str) -> dict:
    return {
        "title": title,
        "description": description,
        "distance": distance_km,
        "elevation_gain": elevation,
        "start_point": {"type": "Point", "coordinates": coordinates[0]},
        "end_point": {"type": "Point", "coordinates": coordinates[-1]},
        "path": {"type": "LineString", "coordinates": coordinates},
        "source": source,
    }


async def fetch_road_route(
    client: httpx.AsyncClient,
    waypoints: list[LatLng],
    target_km: float,
    shape: str,
) -> dict:
    coordinates = ";".join(f"{lng},{lat}" for lat, lng in waypoints)
    url = f"{settings.routing_base_url.rstrip('/')}/{settings.routing_profile}/{coordinates}"
    params = {"overview": "full", "alternatives": "true", "geometries": "geojson"}
    logger.debug(f"Requesting road route: {url}")

    try:
        resp = await client.get(url, params=params, timeout=settings.routing_timeout_s)
        resp.raise_for_status()
        payload = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        raise UpstreamUnavailable(f"Road routing request failed: {e!r}") from e

    if not isinstance(payload, dict):
        raise UpstreamUnavailable("Invalid response from road routing")
    routes = payload.get("routes")
    if payload.get("code") != "Ok" or not routes:
        raise UpstreamUnavailable(f"Invalid response from road routing: code={payload.get('code')}")

    try:
        best = select_closest_route(routes, target_km)
        route_coords = [[float(c[0]), float(c[1])] for c in best["geometry"]["coordinates"]]
        actual_km = float(best["distance"]) / 1000
    except (KeyError, TypeError, ValueError, IndexError) as e:
        raise UpstreamUnavailable(f"Malformed road routing payload: {e!r}") from e
    if len(route_coords) < 2:
        raise UpstreamUnavailable("Road routing returned an empty geometry")

    return _format_route(
        route_coords,
        title=f"{shape.capitalize()} Route",
        description=f"Generated {shape} route with distance {actual_km:.2f}km",
        distance_km=round(actual_km, 2),
        elevation=round(actual_km * ROAD_ELEVATION_FACTOR),
        source="road",
    )


# --------- Procedural fallback --------- #

def generate_route_points(
    lat: float,
    lng: float,
    target_km: float,
    num_points: int,
    is_loop: bool,
    rng: random.Random,
) -> list[LatLng]:
    """Single-pass random walk of `num_points` points.

    Loops return to the start; open routes end with a step that continues
    the bearing of the last leg.
    """
    avg_step_km = target_km / (num_points - 1)
    points = [(lat, lng)]
    for _ in range(1, num_points - 1):
        angle = rng.random() * 2 * math.pi
        step_km = avg_step_km * (0.5 + rng.random())
        prev = points[-1]
        points.append(destination_point(prev[0], prev[1], angle, step_km))

    if is_loop:
        points.append((lat, lng))
    else:
        last, before = points[-1], points[-2]
        bearing = initial_bearing(before[0], before[1], last[0], last[1])
        points.append(destination_point(last[0], last[1], bearing, avg_step_km))
    return points


def generate_procedural_route(lat: float, lng: float, shape: str, target_km: float, rng: random.Random) -> dict:
    points = generate_route_points(
        lat, lng, target_km, FALLBACK_POINT_COUNTS[shape], shape == "loop", rng
    )
    distance_km = round(path_length_km(points), 2)
    elevation = round(distance_km * FALLBACK_ELEVATION_FACTORS[shape])
    title = f"{shape.capitalize()} Route"
    return _format_route(
        [[p_lng, p_lat] for p_lat, p_lng in points],
        title=title,
        description=f"Generated {title.lower()} with distance {distance_km}km",
        distance_km=distance_km,
        elevation=elevation,
        source="procedural",
    )


# --------- Entry point --------- #

async def generate_route(
    start_lat: float,
    start_lng: float,
    shape: str,
    target_km: float | None = None,
    client: httpx.AsyncClient | None = None,
    rng: random.Random | None = None,
) -> dict:
    """Build a route suggestion. Only invalid input raises."""
    if not is_valid_lat_lng(start_lat, start_lng):
        raise InvalidInput(
            "Invalid coordinates. Latitude must be between -90 and 90, "
            "longitude between -180 and 180"
        )
    shape = (shape or "").lower()
    if shape not in ROUTE_SHAPE_MAX_KM:
        raise InvalidInput("Invalid route type. Must be one of: short, long, loop")
    if target_km is None:
        target_km = DEFAULT_ROUTE_TARGET_KM
    if not math.isfinite(target_km) or target_km <= 0:
        raise InvalidInput("Target distance must be a positive number of km")

    rng = rng or random.Random()
    target = clamp_distance(shape, target_km)
    waypoints = WAYPOINT_BUILDERS[shape](start_lat, start_lng, target, rng)

    owns_client = client is None
    client = client or httpx.AsyncClient()
    try:
        return await fetch_road_route(client, waypoints, target, shape)
    except UpstreamUnavailable as e:
        logger.warning(f"Road route generation failed, using procedural fallback: {e}")
    finally:
        if owns_client:
            await client.aclose()

    return generate_procedural_route(start_lat, start_lng, shape, target, rng)
