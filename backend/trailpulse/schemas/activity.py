from datetime import datetime
from typing import Optional
from enum import Enum

from pydantic import BaseModel, ConfigDict

from trailpulse.schemas.session import SessionRead


class ActivityType(str, Enum):
    run = "run"
    jog = "jog"
    walk = "walk"
    cycling = "cycling"
    hiking = "hiking"
    other = "other"


class ActivitySummary(BaseModel):
    """List view; omits the raw location history."""

    id: int
    user_id: int
    type: ActivityType
    title: str
    description: Optional[str] = None
    start_time: datetime
    end_time: datetime
    duration_seconds: float
    distance_m: float
    elevation_gain: float
    average_speed: Optional[float] = None
    route: dict
    privacy: str
    simulated: bool
    archived: bool

    model_config = ConfigDict(from_attributes=True)


class ActivityRead(ActivitySummary):
    max_speed: Optional[float] = None
    average_pace: Optional[float] = None
    pace: Optional[str] = None  # e.g. "5:30/km"
    duration: Optional[str] = None  # "HH:MM:SS"
    calories: Optional[int] = None
    steps: int
    location_history: list[dict]
    archived_at: Optional[datetime] = None


class SessionStopped(BaseModel):
    session: SessionRead
    activity: ActivityRead


class ActivityStats(BaseModel):
    count: int
    total_distance_m: float
    total_duration_seconds: float
    total_calories: int
    by_type: dict[str, float]
