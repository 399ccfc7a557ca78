from datetime import timedelta

import pytest

from trailpulse.core.errors import NoActiveSession
from trailpulse.core.time_utils import to_epoch_ms, utcnow
from trailpulse.models.active_session import ActiveSession
from trailpulse.models.activity import Activity
from trailpulse.models.user import User
from trailpulse.services import session_tracker
from trailpulse.services.activity_derivation import StopInputs

LONDON = [-0.1276, 51.5072]


def start(client, headers, coords=LONDON, **extra):
    payload = {"initial_location": {"type": "Point", "coordinates": coords}, **extra}
    return client.post("/sessions/start", json=payload, headers=headers)


def test_start_creates_session(client, auth_headers):
    r = start(client, auth_headers, activity_type="walk")
    assert r.status_code == 201, r.text
    body = r.json()
    assert body["reset"] is False
    assert body["session"]["is_active"] is True
    assert body["session"]["activity_type"] == "walk"
    assert body["session"]["current_location"]["coordinates"] == LONDON
    assert isinstance(body["precise_start_time"], int)


def test_second_start_resets_in_place(client, auth_headers, db):
    first = start(client, auth_headers).json()
    second = start(client, auth_headers, coords=[2.3522, 48.8566])

    assert second.status_code == 200
    body = second.json()
    assert body["reset"] is True
    assert body["session"]["id"] == first["session"]["id"]
    assert body["session"]["current_location"]["coordinates"] == [2.3522, 48.8566]

    active = db.query(ActiveSession).filter(ActiveSession.is_active.is_(True)).all()
    assert len(active) == 1


def test_start_rejects_bad_coordinates(client, auth_headers):
    assert start(client, auth_headers, coords=[1.0]).status_code == 422
    assert start(client, auth_headers, coords=["a", 2]).status_code == 422
    assert start(client, auth_headers, coords=[200.0, 10.0]).status_code == 422


def test_update_is_last_write_wins(client, auth_headers):
    start(client, auth_headers)
    loc = {"type": "Point", "coordinates": LONDON}

    r1 = client.put("/sessions/update", json={"location": loc, "distance": 500}, headers=auth_headers)
    r2 = client.put("/sessions/update", json={"location": loc, "distance": 200}, headers=auth_headers)
    assert r1.status_code == 200 and r2.status_code == 200
    assert r2.json()["session"]["current_distance"] == 200

    active = client.get("/sessions/active", headers=auth_headers).json()
    assert active["current_distance"] == 200


def test_update_derives_duration_from_timestamp(client, auth_headers):
    started = start(client, auth_headers).json()
    sample_ms = started["precise_start_time"] + 90_500
    r = client.put(
        "/sessions/update",
        json={"location": {"coordinates": LONDON}, "timestamp": sample_ms},
        headers=auth_headers,
    )
    assert r.status_code == 200, r.text
    assert r.json()["session"]["current_duration"] in (90, 91)
    assert r.json()["server_time"] >= started["precise_start_time"]


def test_update_without_session_is_404(client, auth_headers):
    r = client.put("/sessions/update", json={"location": {"coordinates": LONDON}}, headers=auth_headers)
    assert r.status_code == 404
    assert r.json()["detail"] == "No active session found"


def test_active_without_session_is_404(client, auth_headers):
    assert client.get("/sessions/active", headers=auth_headers).status_code == 404


def test_stop_without_session_is_404(client, auth_headers):
    assert client.post("/sessions/stop", json={}, headers=auth_headers).status_code == 404


def test_stop_persists_activity_and_closes_session(client, auth_headers, db, user):
    start(client, auth_headers, activity_type="run")
    r = client.post(
        "/sessions/stop",
        json={
            "total_distance": 10,
            "total_duration": 3600,
            "route": {"type": "LineString", "coordinates": [LONDON, LONDON, [-0.12, 51.51]]},
        },
        headers=auth_headers,
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["session"]["is_active"] is False

    activity = body["activity"]
    assert activity["distance_m"] == 10000
    assert activity["calories"] == 630
    assert activity["pace"] == "6:00/km"
    assert activity["route"]["coordinates"] == [LONDON, [-0.12, 51.51]]

    assert client.get("/sessions/active", headers=auth_headers).status_code == 404
    db.expire_all()
    assert db.get(User, user.id).total_distance == 10000


def test_stop_with_nothing_reported_still_has_valid_route(client, auth_headers):
    start(client, auth_headers)
    r = client.post("/sessions/stop", json={}, headers=auth_headers)
    assert r.status_code == 200, r.text
    coords = r.json()["activity"]["route"]["coordinates"]
    assert len(coords) >= 2
    assert coords[0] != coords[1]


def test_second_stop_fails(client, auth_headers):
    start(client, auth_headers)
    assert client.post("/sessions/stop", json={}, headers=auth_headers).status_code == 200
    assert client.post("/sessions/stop", json={}, headers=auth_headers).status_code == 404


def test_losing_stop_race_discards_activity(db, user, monkeypatch):
    session, _ = session_tracker.start_session(db, user, LONDON)

    # Another worker closes the session between our read and our transition.
    real_find = session_tracker.find_active

    def find_then_close(db_, user_id):
        found = real_find(db_, user_id)
        db_.query(ActiveSession).filter(ActiveSession.id == session.id).update(
            {ActiveSession.is_active: False}, synchronize_session=False
        )
        return found

    monkeypatch.setattr(session_tracker, "find_active", find_then_close)
    with pytest.raises(NoActiveSession):
        session_tracker.stop_session(db, user, StopInputs(total_distance=5, total_duration=600))

    assert db.query(Activity).count() == 0


def test_reset_with_nothing_active(client, auth_headers):
    r = client.post("/sessions/reset", headers=auth_headers)
    assert r.status_code == 200
    assert r.json()["count"] == 0


def test_reset_closes_active_session(client, auth_headers):
    start(client, auth_headers)
    r = client.post("/sessions/reset", headers=auth_headers)
    assert r.json()["count"] == 1
    assert client.get("/sessions/active", headers=auth_headers).status_code == 404


def test_sessions_are_per_user(client, make_user, headers_for):
    alice, bob = make_user("alice"), make_user("bob")
    start(client, headers_for(alice))
    assert client.get("/sessions/active", headers=headers_for(bob)).status_code == 404
    assert client.get("/sessions/active", headers=headers_for(alice)).status_code == 200


def test_epoch_ms_helper_matches_start_time(client, auth_headers, db):
    body = start(client, auth_headers).json()
    session = db.get(ActiveSession, body["session"]["id"])
    assert body["precise_start_time"] == to_epoch_ms(session.start_time)
    assert utcnow() - session.start_time < timedelta(seconds=5)


def test_stop_rejects_non_finite_totals(client, auth_headers, db):
    start(client, auth_headers)
    # 1e309 overflows to inf when the JSON body is decoded
    r = client.post(
        "/sessions/stop",
        content='{"total_distance": 1e309, "total_duration": 600}',
        headers={**auth_headers, "Content-Type": "application/json"},
    )
    assert r.status_code == 422
    assert "total_distance" in r.json()["detail"]

    assert db.query(Activity).count() == 0
    assert client.get("/sessions/active", headers=auth_headers).status_code == 200


def test_update_rejects_non_finite_location(client, auth_headers):
    start(client, auth_headers)
    r = client.put(
        "/sessions/update",
        content='{"location": {"coordinates": [1e309, 51.5]}}',
        headers={**auth_headers, "Content-Type": "application/json"},
    )
    assert r.status_code == 422

    r = client.put(
        "/sessions/update",
        content='{"location": {"coordinates": [-0.1276, 51.5072]}, "speed": 1e309}',
        headers={**auth_headers, "Content-Type": "application/json"},
    )
    assert r.status_code == 422

    active = client.get("/sessions/active", headers=auth_headers).json()
    assert active["current_location"]["coordinates"] == LONDON
    assert active["current_speed"] == 0
