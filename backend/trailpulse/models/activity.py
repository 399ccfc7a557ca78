from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, ForeignKey
from sqlalchemy.sql import func
from trailpulse.db import Base, JSONDocument


class Activity(Base):
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # run, jog, walk, cycling, hiking, other
    type = Column(String(20), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=True)

    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)

    duration_seconds = Column(Float, nullable=False)
    distance_m = Column(Float, nullable=False)  # canonical unit: meters

    elevation_gain = Column(Float, nullable=False, default=0.0)  # meters
    average_speed = Column(Float, nullable=True)
    max_speed = Column(Float, nullable=True)
    average_pace = Column(Float, nullable=True)  # seconds per km
    calories = Column(Integer, nullable=True)
    steps = Column(Integer, nullable=False, default=0)

    simulated = Column(Boolean, nullable=False, default=False)

    # GeoJSON LineString with >= 2 distinct consecutive vertices
    route = Column(JSONDocument, nullable=False)
    # [{timestamp, coordinates: [lng, lat], speed, elevation, heart_rate}]
    location_history = Column(JSONDocument, nullable=False, default=list)

    privacy = Column(String(10), nullable=False, server_default="public")  # public, followers, private

    archived = Column(Boolean, nullable=False, default=False)
    archived_at = Column(DateTime, nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
