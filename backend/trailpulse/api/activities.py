from typing import Optional

import gpxpy
import gpxpy.gpx
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from loguru import logger
from sqlalchemy import func
from sqlalchemy.orm import Session

from trailpulse.core.auth import get_current_user
from trailpulse.core.errors import Forbidden, InvalidInput, NotFound
from trailpulse.core.time_utils import format_pace, parse_client_timestamp, seconds_to_hhmmss, utcnow
from trailpulse.db import get_db
from trailpulse.models.activity import Activity
from trailpulse.models.user import User
from trailpulse.schemas.activity import ActivityRead, ActivityStats, ActivitySummary, ActivityType

router = APIRouter(prefix="/activities", tags=["activities"])


def activity_read(activity: Activity) -> ActivityRead:
    """ORM row -> response, with pace and duration formatted for display."""
    read = ActivityRead.model_validate(activity)
    read.pace = format_pace(activity.average_pace)
    read.duration = seconds_to_hhmmss(int(activity.duration_seconds))
    return read


def _load_visible(db: Session, activity_id: int, user: User) -> Activity:
    activity = db.get(Activity, activity_id)
    if not activity:
        raise NotFound("Activity not found")
    # TODO: let followers see 'followers' activities once the follow graph is stored
    if activity.user_id != user.id and activity.privacy != "public":
        raise Forbidden("You do not have permission to view this activity")
    return activity


def _load_owned(db: Session, activity_id: int, user: User) -> Activity:
    activity = db.get(Activity, activity_id)
    if not activity:
        raise NotFound("Activity not found")
    if activity.user_id != user.id:
        raise Forbidden("You can only modify your own activities")
    return activity


@router.get("/", response_model=list[ActivitySummary])
def list_activities(
    limit: int = Query(10, ge=1, le=100),
    skip: int = Query(0, ge=0),
    type: Optional[ActivityType] = Query(None),
    simulated: Optional[bool] = Query(None),
    include_archived: bool = Query(False),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """List the current user's activities, most recent first."""
    query = db.query(Activity).filter(Activity.user_id == user.id)

    if type is not None:
        query = query.filter(Activity.type == type.value)
    if simulated is not None:
        query = query.filter(Activity.simulated.is_(simulated))
    if not include_archived:
        query = query.filter(Activity.archived.is_(False))

    return query.order_by(Activity.start_time.desc()).offset(skip).limit(limit).all()


@router.get("/stats", response_model=ActivityStats)
def get_activity_stats(
    start_date: Optional[str] = Query(None, description="ISO-8601, inclusive"),
    end_date: Optional[str] = Query(None, description="ISO-8601, exclusive"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    # Archived activities never count towards statistics
    query = db.query(Activity).filter(Activity.user_id == user.id, Activity.archived.is_(False))
    try:
        start = parse_client_timestamp(start_date)
        end = parse_client_timestamp(end_date)
    except ValueError as e:
        raise InvalidInput(str(e))
    if start:
        query = query.filter(Activity.start_time >= start)
    if end:
        query = query.filter(Activity.start_time < end)

    count, distance, duration, calories = query.with_entities(
        func.count(Activity.id),
        func.sum(Activity.distance_m),
        func.sum(Activity.duration_seconds),
        func.sum(Activity.calories),
    ).one()

    rows = (
        query.with_entities(Activity.type, func.sum(Activity.distance_m))
        .group_by(Activity.type)
        .all()
    )
    by_type: dict[str, float] = {t.value: 0.0 for t in ActivityType}
    for t, s in rows:
        by_type[str(t)] = float(s or 0.0)

    return ActivityStats(
        count=count or 0,
        total_distance_m=float(distance or 0.0),
        total_duration_seconds=float(duration or 0.0),
        total_calories=int(calories or 0),
        by_type=by_type,
    )


@router.get("/{activity_id}", response_model=ActivityRead)
def get_activity(
    activity_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return activity_read(_load_visible(db, activity_id, user))


@router.post("/{activity_id}/archive", response_model=ActivityRead)
def archive_activity(
    activity_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    activity = _load_owned(db, activity_id, user)
    if not activity.archived:
        activity.archived = True
        activity.archived_at = utcnow()
        db.commit()
        db.refresh(activity)
        logger.info(f"Archived activity {activity.id} for user {user.id}")
    return activity_read(activity)


@router.post("/{activity_id}/restore", response_model=ActivityRead)
def restore_activity(
    activity_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    activity = _load_owned(db, activity_id, user)
    if activity.archived:
        activity.archived = False
        activity.archived_at = None
        db.commit()
        db.refresh(activity)
        logger.info(f"Restored activity {activity.id} for user {user.id}")
    return activity_read(activity)


def _same_point(coords, lng: float, lat: float) -> bool:
    return bool(coords) and len(coords) == 2 and coords[0] == lng and coords[1] == lat


def build_gpx(activity: Activity) -> str:
    """Serialize the stored route as a GPX 1.1 track.

    Timestamps/elevation are taken from the location history sample recorded
    at the same coordinate, so vertices that came from a client-drawn route
    (or were merged away by dedupe) never borrow another point's time.
    """
    gpx = gpxpy.gpx.GPX()
    gpx.creator = "TrailPulse"
    track = gpxpy.gpx.GPXTrack(name=activity.title)
    track.type = activity.type
    gpx.tracks.append(track)
    segment = gpxpy.gpx.GPXTrackSegment()
    track.segments.append(segment)

    history = activity.location_history or []
    cursor = 0
    for lng, lat in activity.route["coordinates"]:
        sample = {}
        # Matched in recording order; a loop revisiting a point takes the next sample
        for j in range(cursor, len(history)):
            if _same_point(history[j].get("coordinates"), lng, lat):
                sample = history[j]
                cursor = j + 1
                break
        point = gpxpy.gpx.GPXTrackPoint(
            latitude=lat,
            longitude=lng,
            elevation=sample.get("elevation"),
            time=parse_client_timestamp(sample.get("timestamp")),
        )
        segment.points.append(point)
    return gpx.to_xml()


@router.get("/{activity_id}/gpx")
def export_activity_gpx(
    activity_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    activity = _load_visible(db, activity_id, user)
    return Response(
        content=build_gpx(activity),
        media_type="application/gpx+xml",
        headers={"Content-Disposition": f'attachment; filename="activity-{activity.id}.gpx"'},
    )
