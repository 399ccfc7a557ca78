from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from trailpulse.api.activities import activity_read
from trailpulse.core.auth import get_current_user
from trailpulse.core.time_utils import to_epoch_ms
from trailpulse.db import get_db
from trailpulse.models.user import User
from trailpulse.schemas.activity import SessionStopped
from trailpulse.schemas.session import (
    SessionRead,
    SessionReset,
    SessionStart,
    SessionStarted,
    SessionStop,
    SessionUpdate,
    SessionUpdated,
)
from trailpulse.services import session_tracker
from trailpulse.services.activity_derivation import StopInputs

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("/start", response_model=SessionStarted)
def start_session(
    payload: SessionStart,
    response: Response,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    session, was_reset = session_tracker.start_session(
        db, user, payload.initial_location.coordinates, payload.activity_type
    )
    response.status_code = 200 if was_reset else 201
    return SessionStarted(
        session=SessionRead.model_validate(session),
        precise_start_time=to_epoch_ms(session.start_time),
        reset=was_reset,
    )


@router.put("/update", response_model=SessionUpdated)
def update_session(
    payload: SessionUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    session = session_tracker.update_session(
        db,
        user,
        payload.location.coordinates,
        speed=payload.speed,
        distance=payload.distance,
        duration=payload.duration,
        heart_rate=payload.heart_rate,
        elevation=payload.elevation,
        timestamp=payload.timestamp,
    )
    elapsed, server_time = session_tracker.session_clock(session)
    return SessionUpdated(
        session=SessionRead.model_validate(session),
        elapsed_time=elapsed,
        server_time=server_time,
    )


@router.post("/stop", response_model=SessionStopped)
def stop_session(
    payload: SessionStop,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    inputs = StopInputs(
        final_location=payload.final_location.coordinates if payload.final_location else None,
        location_history=(
            [sample.model_dump() for sample in payload.location_history]
            if payload.location_history
            else None
        ),
        total_distance=payload.total_distance,
        total_duration=payload.total_duration,
        title=payload.title,
        activity_type=payload.activity_type,
        elevation_gain=payload.elevation_gain,
        average_speed=payload.average_speed,
        max_speed=payload.max_speed,
        route=payload.route.coordinates if payload.route else None,
        simulated=payload.simulated,
    )
    session, activity = session_tracker.stop_session(db, user, inputs)
    return SessionStopped(
        session=SessionRead.model_validate(session),
        activity=activity_read(activity),
    )


@router.get("/active", response_model=SessionRead)
def get_active_session(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return session_tracker.get_active_session(db, user)


@router.post("/reset", response_model=SessionReset)
def reset_sessions(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    count = session_tracker.reset_sessions(db, user)
    if count == 0:
        return SessionReset(count=0, message="No active sessions found to reset")
    return SessionReset(count=count, message=f"Successfully reset {count} active sessions")
