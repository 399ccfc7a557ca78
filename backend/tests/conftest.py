import os

# Use in-memory sqlite for tests; must be set before trailpulse is imported
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ.setdefault("AUTH_SECRET_KEY", "test-secret")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from trailpulse.main import app  # noqa: E402
from trailpulse.api.live import live_server  # noqa: E402
from trailpulse.core.auth import create_access_token  # noqa: E402
from trailpulse.db import Base, SessionLocal, engine  # noqa: E402
from trailpulse.models.user import User  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    live_server.registry.clear()
    yield
    live_server.registry.clear()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_user(db):
    def _make(username="runner", **profile):
        user = User(username=username, email=f"{username}@example.com", **profile)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def user(make_user):
    return make_user("runner", weight=70.0, height=170.0, age=30)


@pytest.fixture
def headers_for():
    def _headers(user) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _headers


@pytest.fixture
def auth_headers(user, headers_for):
    return headers_for(user)
