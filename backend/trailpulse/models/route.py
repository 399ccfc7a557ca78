from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, ForeignKey
from sqlalchemy.sql import func
from trailpulse.db import Base, JSONDocument


class Route(Base):
    __tablename__ = "routes"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(String, nullable=False)
    description = Column(String, nullable=True)

    distance = Column(Float, nullable=False)  # km
    elevation_gain = Column(Float, nullable=False, default=0.0)

    # GeoJSON Points / LineString, [lng, lat]
    start_point = Column(JSONDocument, nullable=False)
    end_point = Column(JSONDocument, nullable=False)
    path = Column(JSONDocument, nullable=False)

    is_public = Column(Boolean, nullable=False, default=True)
    usage_count = Column(Integer, nullable=False, default=0)
    completed = Column(Boolean, nullable=False, default=False)

    is_verified = Column(Boolean, nullable=False, default=False)
    verified_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    verification_date = Column(DateTime, nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
