from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class GeoPoint(BaseModel):
    """GeoJSON-style point. `coordinates` is [longitude, latitude].

    Shape and range are checked by the tracker, not here, so that bad input
    surfaces as a descriptive InvalidInput rather than a schema error.
    """

    type: str = "Point"
    coordinates: list[Any]


class LineGeometry(BaseModel):
    type: str = "LineString"
    coordinates: list[Any]


class LocationSample(BaseModel):
    timestamp: Optional[datetime] = None
    coordinates: list[Any]
    speed: Optional[float] = None
    elevation: Optional[float] = None
    heart_rate: Optional[float] = None


class SessionStart(BaseModel):
    initial_location: GeoPoint
    activity_type: Optional[str] = None


class SessionUpdate(BaseModel):
    location: GeoPoint
    speed: Optional[float] = None
    distance: Optional[float] = None
    duration: Optional[float] = None
    heart_rate: Optional[float] = None
    elevation: Optional[float] = None
    # epoch milliseconds or ISO-8601
    timestamp: Optional[int | float | str] = None


class SessionStop(BaseModel):
    final_location: Optional[GeoPoint] = None
    location_history: Optional[list[LocationSample]] = None
    total_distance: Optional[float] = None
    total_duration: Optional[float] = None
    title: Optional[str] = None
    activity_type: Optional[str] = None
    elevation_gain: Optional[float] = None
    average_speed: Optional[float] = None
    max_speed: Optional[float] = None
    route: Optional[LineGeometry] = None
    simulated: bool = False


class SessionRead(BaseModel):
    id: int
    user_id: int
    is_active: bool
    activity_type: Optional[str] = None
    start_time: datetime
    current_location: dict
    current_speed: float
    current_distance: float
    current_duration: float
    current_elevation: Optional[float] = None
    current_heart_rate: Optional[float] = None
    last_updated: datetime

    model_config = ConfigDict(from_attributes=True)


class SessionStarted(BaseModel):
    session: SessionRead
    precise_start_time: int  # epoch ms, for client clock sync
    reset: bool


class SessionUpdated(BaseModel):
    session: SessionRead
    elapsed_time: int  # seconds since start, server clock
    server_time: int  # epoch ms


class SessionReset(BaseModel):
    count: int
    message: str
