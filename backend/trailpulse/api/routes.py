from typing import Optional

from fastapi import APIRouter, Depends, Query
from loguru import logger
from sqlalchemy.orm import Session

from trailpulse.core.auth import get_current_user
from trailpulse.core.constants import (
    DUPLICATE_ROUTE_DISTANCE_TOLERANCE,
    DUPLICATE_ROUTE_RADIUS_M,
    NEARBY_ROUTES_DEFAULT_KM,
    NEARBY_ROUTES_LIMIT,
)
from trailpulse.core.errors import Forbidden, InvalidInput, NotFound
from trailpulse.core.geo import haversine_km, haversine_m, is_valid_lat_lng
from trailpulse.db import get_db
from trailpulse.models.route import Route
from trailpulse.models.user import User
from trailpulse.schemas.route import GeneratedRoute, RouteCreate, RouteGenerateRequest, RouteRead, RouteSaved
from trailpulse.services import route_synthesizer
from trailpulse.services.activity_derivation import check_coordinate, check_finite

router = APIRouter(prefix="/routes", tags=["routes"])


@router.post("/generate", response_model=GeneratedRoute)
async def generate_route(
    payload: RouteGenerateRequest,
    user: User = Depends(get_current_user),
):
    """Suggest a route; falls back to a procedural path when OSRM is unavailable."""
    route = await route_synthesizer.generate_route(
        payload.latitude,
        payload.longitude,
        payload.type.value,
        payload.max_distance,
    )
    logger.info(f"Generated {payload.type.value} route ({route['source']}, {route['distance']} km) for user {user.id}")
    return route


def _start_end(route: Route) -> tuple[list[float], list[float]]:
    return route.start_point["coordinates"], route.end_point["coordinates"]


def find_duplicate(db: Session, user_id: int, start: list[float], end: list[float], distance_km: float) -> Route | None:
    """A completed route of the same user starting and ending within 50 m,
    with a distance within +/-10%."""
    candidates = (
        db.query(Route)
        .filter(Route.user_id == user_id, Route.completed.is_(True))
        .order_by(Route.id.asc())
        .all()
    )
    for candidate in candidates:
        c_start, c_end = _start_end(candidate)
        if haversine_m(start[1], start[0], c_start[1], c_start[0]) > DUPLICATE_ROUTE_RADIUS_M:
            continue
        if haversine_m(end[1], end[0], c_end[1], c_end[0]) > DUPLICATE_ROUTE_RADIUS_M:
            continue
        if abs(candidate.distance - distance_km) <= distance_km * DUPLICATE_ROUTE_DISTANCE_TOLERANCE:
            return candidate
    return None


@router.post("/", response_model=RouteSaved)
def save_route(
    payload: RouteCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    coords = [check_coordinate(c, "path coordinates") for c in payload.path.coordinates]
    if len(coords) < 2:
        raise InvalidInput("A route path needs at least two coordinates")
    if check_finite("distance", payload.distance) <= 0:
        raise InvalidInput("Route distance must be a positive number of km")
    check_finite("elevation_gain", payload.elevation_gain)

    start = check_coordinate(payload.start_point.coordinates, "start point") if payload.start_point else coords[0]
    end = check_coordinate(payload.end_point.coordinates, "end point") if payload.end_point else coords[-1]

    if payload.completed:
        duplicate = find_duplicate(db, user.id, start, end, payload.distance)
        if duplicate:
            duplicate.usage_count = (duplicate.usage_count or 0) + 1
            db.commit()
            db.refresh(duplicate)
            logger.info(f"Route for user {user.id} matches existing route {duplicate.id}")
            return RouteSaved(duplicate=True, route=RouteRead.model_validate(duplicate))

    route = Route(
        user_id=user.id,
        title=payload.title,
        description=payload.description,
        distance=payload.distance,
        elevation_gain=payload.elevation_gain,
        start_point={"type": "Point", "coordinates": start},
        end_point={"type": "Point", "coordinates": end},
        path={"type": "LineString", "coordinates": coords},
        is_public=payload.is_public,
        completed=payload.completed,
    )
    db.add(route)
    db.commit()
    db.refresh(route)
    logger.info(f"Saved route {route.id} for user {user.id}")
    return RouteSaved(duplicate=False, route=RouteRead.model_validate(route))


@router.get("/", response_model=list[RouteRead])
def list_my_routes(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return (
        db.query(Route)
        .filter(Route.user_id == user.id)
        .order_by(Route.created_at.desc(), Route.id.desc())
        .all()
    )


@router.get("/nearby", response_model=list[RouteRead])
def nearby_routes(
    longitude: float = Query(...),
    latitude: float = Query(...),
    max_distance: Optional[float] = Query(None, gt=0, description="Search radius in km"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Public routes starting within the radius, nearest first."""
    if not is_valid_lat_lng(latitude, longitude):
        raise InvalidInput("Invalid coordinates")
    radius_km = max_distance or NEARBY_ROUTES_DEFAULT_KM

    # Distances are computed here rather than with a geospatial index.
    scored = []
    for route in db.query(Route).filter(Route.is_public.is_(True)).all():
        lng, lat = route.start_point["coordinates"]
        d = haversine_km(latitude, longitude, lat, lng)
        if d <= radius_km:
            scored.append((d, route.id, route))
    scored.sort(key=lambda item: (item[0], item[1]))
    return [route for _, _, route in scored[:NEARBY_ROUTES_LIMIT]]


@router.get("/{route_id}", response_model=RouteRead)
def get_route(
    route_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    route = db.get(Route, route_id)
    if not route:
        raise NotFound("Route not found")
    if route.user_id != user.id and not route.is_public:
        raise Forbidden("You do not have permission to view this route")
    return route
