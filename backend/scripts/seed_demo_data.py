"""Seed a demo user, a running challenge and a couple of public routes.

Prints a bearer token for the demo user so the API and /ws/live can be
exercised right away:

    python backend/scripts/seed_demo_data.py
"""

from datetime import timedelta

from trailpulse.core.auth import create_access_token
from trailpulse.core.time_utils import utcnow
from trailpulse.db import Base, SessionLocal, engine
from trailpulse.models.user import User
from trailpulse.models.active_session import ActiveSession  # noqa: F401  (import ensures table is registered)
from trailpulse.models.activity import Activity  # noqa: F401
from trailpulse.models.route import Route
from trailpulse.models.challenge import Challenge, ChallengeParticipant

DEMO_USERNAME = "demo"
DEMO_EMAIL = "demo@trailpulse.local"

# (title, [lng, lat] path, km)
DEMO_ROUTES = [
    (
        "Riverside loop",
        [[-0.1276, 51.5072], [-0.1201, 51.5101], [-0.1150, 51.5060], [-0.1230, 51.5030], [-0.1276, 51.5072]],
        3.1,
    ),
    (
        "Park out-and-back",
        [[-0.1657, 51.5073], [-0.1580, 51.5098], [-0.1502, 51.5120]],
        1.2,
    ),
]


def get_or_create_demo_user(db) -> User:
    user = db.query(User).filter(User.username == DEMO_USERNAME).first()
    if user:
        return user
    user = User(
        username=DEMO_USERNAME,
        first_name="Demo",
        last_name="Runner",
        email=DEMO_EMAIL,
        weight=68.0,
        height=175.0,
        age=34,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def seed_routes(db, user: User) -> int:
    """Insert the demo routes that don't exist yet (matched on title)."""
    added = 0
    for title, path, distance_km in DEMO_ROUTES:
        exists = db.query(Route).filter(Route.user_id == user.id, Route.title == title).first()
        if exists:
            continue
        db.add(
            Route(
                user_id=user.id,
                title=title,
                description="Demo route",
                distance=distance_km,
                elevation_gain=round(distance_km * 10),
                start_point={"type": "Point", "coordinates": path[0]},
                end_point={"type": "Point", "coordinates": path[-1]},
                path={"type": "LineString", "coordinates": path},
                is_public=True,
            )
        )
        added += 1
    db.commit()
    return added


def seed_challenge(db, user: User) -> Challenge:
    """A 30-day, 50 km distance challenge that starts today, joined by `user`."""
    now = utcnow()
    challenge = Challenge(
        title="50 km in 30 days",
        description="Log 50 km of activities within a month.",
        type="distance",
        goal=50.0,
        start_date=now - timedelta(minutes=1),
        end_date=now + timedelta(days=30),
        created_by=user.id,
    )
    challenge.participants.append(ChallengeParticipant(user_id=user.id, progress=0.0, completed=False))
    db.add(challenge)
    db.commit()
    db.refresh(challenge)
    return challenge


def main():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        user = get_or_create_demo_user(db)
        routes_added = seed_routes(db, user)
        challenge = seed_challenge(db, user)
        print(f"Demo user: id={user.id} username={user.username}")
        print(f"Seeded {routes_added} demo routes and challenge {challenge.id}")
        print(f"Bearer token: {create_access_token(user.id)}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
