"""Server-side lifecycle of a user's tracked session.

NoSession -> Active -> Stopped. `start` is restart-tolerant (a retried start
resets the active record in place), `reset` is bulk and idempotent, and
`stop` claims the Active -> Stopped transition with a conditional update so
two racing stops cannot both produce an Activity.
"""

from loguru import logger
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from trailpulse.core.errors import InvalidInput, NoActiveSession
from trailpulse.core.geo import is_valid_lat_lng
from trailpulse.core.time_utils import elapsed_seconds, parse_client_timestamp, to_epoch_ms, utcnow
from trailpulse.models.active_session import ActiveSession
from trailpulse.models.activity import Activity
from trailpulse.models.user import User
from trailpulse.services import challenge_progress
from trailpulse.services.activity_derivation import (
    AthleteProfile,
    SessionSnapshot,
    StopInputs,
    check_coordinate,
    check_finite,
    derive_activity,
    normalize_activity_type,
)


def point(coordinates: list[float]) -> dict:
    return {"type": "Point", "coordinates": coordinates}


def validate_lng_lat(coordinates) -> list[float]:
    """Shape and range check for a [lng, lat] pair."""
    coords = check_coordinate(coordinates, "location coordinates")
    lng, lat = coords
    if not is_valid_lat_lng(lat, lng):
        raise InvalidInput(
            "Coordinates out of bounds. Latitude must be between -90 and 90, "
            "longitude between -180 and 180"
        )
    return coords


def find_active(db: Session, user_id: int) -> ActiveSession | None:
    return (
        db.query(ActiveSession)
        .filter(ActiveSession.user_id == user_id, ActiveSession.is_active.is_(True))
        .first()
    )


def get_active_session(db: Session, user: User) -> ActiveSession:
    session = find_active(db, user.id)
    if not session:
        raise NoActiveSession()
    return session


def _reset_in_place(session: ActiveSession, coords: list[float], activity_type: str | None):
    now = utcnow()
    session.start_time = now
    session.current_location = point(coords)
    session.current_speed = 0.0
    session.current_distance = 0.0
    session.current_duration = 0.0
    session.last_updated = now
    if activity_type:
        session.activity_type = activity_type


def start_session(
    db: Session,
    user: User,
    initial_location,
    activity_type: str | None = None,
) -> tuple[ActiveSession, bool]:
    """Open (or restart) the user's session. Returns (session, was_reset)."""
    coords = validate_lng_lat(initial_location)
    if activity_type:
        activity_type = normalize_activity_type(activity_type)

    existing = find_active(db, user.id)
    if existing:
        logger.info(f"Resetting active session {existing.id} for user {user.id}")
        _reset_in_place(existing, coords, activity_type)
        db.commit()
        db.refresh(existing)
        return existing, True

    now = utcnow()
    session = ActiveSession(
        user_id=user.id,
        is_active=True,
        activity_type=activity_type,
        start_time=now,
        current_location=point(coords),
        current_speed=0.0,
        current_distance=0.0,
        current_duration=0.0,
        last_updated=now,
    )
    db.add(session)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent start created the active row first; restart that one.
        db.rollback()
        existing = find_active(db, user.id)
        if not existing:
            raise
        logger.info(f"Start race for user {user.id}; resetting session {existing.id}")
        _reset_in_place(existing, coords, activity_type)
        db.commit()
        db.refresh(existing)
        return existing, True

    db.refresh(session)
    logger.info(f"Started session {session.id} for user {user.id} at {now.isoformat()}")
    return session, False


def update_session(
    db: Session,
    user: User,
    location,
    speed: float | None = None,
    distance: float | None = None,
    duration: float | None = None,
    heart_rate: float | None = None,
    elevation: float | None = None,
    timestamp=None,
) -> ActiveSession:
    """Overwrite the live metrics of the active session (last write wins)."""
    coords = check_coordinate(location, "location coordinates")
    for label, value in (
        ("speed", speed),
        ("distance", distance),
        ("duration", duration),
        ("heart_rate", heart_rate),
        ("elevation", elevation),
    ):
        check_finite(label, value)

    session = find_active(db, user.id)
    if not session:
        raise NoActiveSession()

    if duration is None:
        try:
            sample_time = parse_client_timestamp(timestamp)
        except ValueError as e:
            raise InvalidInput(str(e))
        duration = elapsed_seconds(session.start_time, sample_time)

    session.current_location = point(coords)
    if speed is not None:
        session.current_speed = speed
    if distance is not None:
        session.current_distance = distance
    session.current_duration = duration
    if heart_rate is not None:
        session.current_heart_rate = heart_rate
    if elevation is not None:
        session.current_elevation = elevation

    session.last_updated = utcnow()
    db.commit()
    db.refresh(session)
    return session


def session_clock(session: ActiveSession) -> tuple[int, int]:
    """(elapsed seconds since start, server time in epoch ms)."""
    now = utcnow()
    return elapsed_seconds(session.start_time, now), to_epoch_ms(now)


def _profile(user: User) -> AthleteProfile:
    return AthleteProfile(weight=user.weight, height=user.height, age=user.age)


def _snapshot(session: ActiveSession) -> SessionSnapshot:
    return SessionSnapshot(
        start_time=session.start_time,
        location=list(session.current_location["coordinates"]),
        distance=session.current_distance or 0.0,
        duration=session.current_duration or 0.0,
        speed=session.current_speed or 0.0,
        elevation=session.current_elevation,
        heart_rate=session.current_heart_rate,
        activity_type=session.activity_type,
    )


def _add_total_distance(db: Session, user_id: int, distance_m: float) -> None:
    try:
        db.query(User).filter(User.id == user_id).update(
            {User.total_distance: User.total_distance + distance_m},
            synchronize_session=False,
        )
        db.commit()
        logger.info(f"Added {distance_m:.1f} m to total distance of user {user_id}")
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"Failed to update total distance for user {user_id}")


def stop_session(db: Session, user: User, inputs: StopInputs) -> tuple[ActiveSession, Activity]:
    """Close the active session and persist the derived Activity."""
    session = find_active(db, user.id)
    if not session:
        raise NoActiveSession()

    logger.info(
        f"Stopping session {session.id} for user {user.id}: "
        f"distance={inputs.total_distance} duration={inputs.total_duration} simulated={inputs.simulated}"
    )

    now = utcnow()
    derived = derive_activity(inputs, _snapshot(session), _profile(user), now)

    activity = Activity(
        user_id=user.id,
        type=derived.type,
        title=derived.title,
        start_time=derived.start_time,
        end_time=derived.end_time,
        duration_seconds=derived.duration_seconds,
        distance_m=derived.distance_m,
        elevation_gain=derived.elevation_gain,
        average_speed=derived.average_speed,
        max_speed=derived.max_speed,
        average_pace=derived.average_pace,
        calories=derived.calories,
        steps=derived.steps,
        simulated=derived.simulated,
        route=derived.route,
        location_history=derived.location_history,
    )
    db.add(activity)
    db.flush()

    # Conditional Active -> Stopped; losing a concurrent stop rolls back the insert.
    claimed = (
        db.query(ActiveSession)
        .filter(ActiveSession.id == session.id, ActiveSession.is_active.is_(True))
        .update(
            {ActiveSession.is_active: False, ActiveSession.last_updated: now},
            synchronize_session=False,
        )
    )
    if claimed != 1:
        db.rollback()
        logger.warning(f"Session {session.id} was stopped concurrently; discarding duplicate activity")
        raise NoActiveSession()

    db.commit()
    db.refresh(activity)
    db.refresh(session)
    logger.info(
        f"Session {session.id} closed into activity {activity.id} "
        f"({activity.distance_m:.1f} m, {activity.duration_seconds:.0f} s)"
    )

    _add_total_distance(db, user.id, activity.distance_m)
    challenge_progress.apply(db, user.id, activity)

    return session, activity


def reset_sessions(db: Session, user: User) -> int:
    """Mark every active session of the user stopped. Zero is success."""
    count = (
        db.query(ActiveSession)
        .filter(ActiveSession.user_id == user.id, ActiveSession.is_active.is_(True))
        .update(
            {ActiveSession.is_active: False, ActiveSession.last_updated: utcnow()},
            synchronize_session=False,
        )
    )
    db.commit()
    logger.info(f"Reset {count} active sessions for user {user.id}")
    return count


def touch_session(db: Session, user_id: int) -> bool:
    """Bump `last_updated` of the active session, if any. Used on socket disconnect."""
    count = (
        db.query(ActiveSession)
        .filter(ActiveSession.user_id == user_id, ActiveSession.is_active.is_(True))
        .update({ActiveSession.last_updated: utcnow()}, synchronize_session=False)
    )
    db.commit()
    return count > 0
