from datetime import datetime
from typing import Optional
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from trailpulse.schemas.session import GeoPoint, LineGeometry


class RouteShape(str, Enum):
    short = "short"
    long = "long"
    loop = "loop"


class RouteGenerateRequest(BaseModel):
    latitude: float
    longitude: float
    type: RouteShape
    max_distance: Optional[float] = Field(None, description="Target distance in km")


class GeneratedRoute(BaseModel):
    title: str
    description: str
    distance: float  # km, 2 decimals
    elevation_gain: float
    start_point: dict
    end_point: dict
    path: dict
    source: str  # road | procedural


class RouteCreate(BaseModel):
    title: str
    description: Optional[str] = None
    distance: float
    elevation_gain: float = 0
    start_point: Optional[GeoPoint] = None
    end_point: Optional[GeoPoint] = None
    path: LineGeometry
    is_public: bool = True
    completed: bool = False


class RouteRead(BaseModel):
    id: int
    user_id: int
    title: str
    description: Optional[str] = None
    distance: float
    elevation_gain: float
    start_point: dict
    end_point: dict
    path: dict
    is_public: bool
    usage_count: int
    completed: bool
    is_verified: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RouteSaved(BaseModel):
    duplicate: bool
    route: RouteRead
