from sqlalchemy import Column, Integer, String, DateTime, Float
from sqlalchemy.sql import func
from trailpulse.db import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    username = Column(String, nullable=False, unique=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    email = Column(String, nullable=False, unique=True)

    role = Column(String(10), nullable=False, server_default="USER")  # USER, ADMIN

    # Profile fields feeding calorie/step estimation; optional
    weight = Column(Float, nullable=True)  # kg
    height = Column(Float, nullable=True)  # cm
    age = Column(Integer, nullable=True)

    # Lifetime distance in meters, bumped at every session stop
    total_distance = Column(Float, nullable=False, default=0.0)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
