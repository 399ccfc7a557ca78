from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, ForeignKey, Index, text
from trailpulse.core.time_utils import utcnow
from trailpulse.db import Base, JSONDocument


class ActiveSession(Base):
    __tablename__ = "active_sessions"
    __table_args__ = (
        # At most one active session per user, enforced by the store
        Index(
            "uq_active_sessions_user_active",
            "user_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    is_active = Column(Boolean, nullable=False, default=True)
    activity_type = Column(String(20), nullable=True)

    start_time = Column(DateTime, nullable=False, default=utcnow)

    # GeoJSON Point, [lng, lat]
    current_location = Column(JSONDocument, nullable=False)

    # Latest reported/derived metrics (replaced, not accumulated)
    current_speed = Column(Float, nullable=False, default=0.0)
    current_distance = Column(Float, nullable=False, default=0.0)
    current_duration = Column(Float, nullable=False, default=0.0)
    current_elevation = Column(Float, nullable=True)
    current_heart_rate = Column(Float, nullable=True)

    last_updated = Column(DateTime, nullable=False, default=utcnow)
