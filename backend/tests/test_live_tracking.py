import pytest
from starlette.websockets import WebSocketDisconnect

from trailpulse.core.auth import create_access_token
from trailpulse.core.config import settings
from trailpulse.models.active_session import ActiveSession
from trailpulse.models.activity import Activity
from trailpulse.api.live import live_server
from trailpulse.core.time_utils import utcnow
from trailpulse.realtime.live_tracking import LiveTrackingServer, TrackingRegistry, TrackingState

START = [51.5072, -0.1276]  # [lat, lng]
NORTH = [51.5082, -0.1276]  # ~111 m north of START


@pytest.fixture(autouse=True)
def slow_time_sync(monkeypatch):
    # Keep time_sync frames out of the way unless a test asks for them
    monkeypatch.setattr(settings, "live_time_sync_interval_s", 60.0)


@pytest.fixture
def live_url(user):
    return f"/ws/live?token={create_access_token(user.id)}"


def event(ws, name, data=None):
    ws.send_json({"event": name, "data": data or {}})
    return ws.receive_json()


def active_sessions(db, user):
    db.expire_all()
    return db.query(ActiveSession).filter_by(user_id=user.id, is_active=True).all()


def test_rejects_missing_token(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/live"):
            pass
    assert exc.value.code == 1008


def test_rejects_unknown_user(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(f"/ws/live?token={create_access_token(424242)}"):
            pass
    assert exc.value.code == 1008


def test_accepts_authorization_header(client, auth_headers):
    with client.websocket_connect("/ws/live", headers=auth_headers) as ws:
        msg = ws.receive_json()
    assert msg["event"] == "connection_confirmed"
    assert msg["data"]["resumed"] is False


def test_full_tracking_lifecycle(client, live_url, db, user):
    with client.websocket_connect(live_url) as ws:
        assert ws.receive_json()["event"] == "connection_confirmed"

        started = event(ws, "start_tracking", {"initial_position": START})
        assert started["event"] == "tracking_started"
        assert isinstance(started["data"]["timestamp"], int)
        assert started["data"]["server_time"] >= started["data"]["timestamp"]

        sessions = active_sessions(db, user)
        assert len(sessions) == 1
        assert sessions[0].current_location["coordinates"] == [START[1], START[0]]

        ack = event(ws, "location_update", {"position": NORTH})
        assert ack["event"] == "location_update_ack"
        assert ack["data"]["distance"] == pytest.approx(0.111, abs=0.002)
        assert ack["data"]["position"] == NORTH
        assert ack["data"]["elapsed_ms"] >= 0

        persisted = active_sessions(db, user)[0]
        assert persisted.current_distance == pytest.approx(ack["data"]["distance"])
        assert persisted.current_location["coordinates"] == [NORTH[1], NORTH[0]]

        ended = event(ws, "end_tracking")
        assert ended["event"] == "tracking_ended"
        assert ended["data"]["distance"] == pytest.approx(ack["data"]["distance"])

    assert active_sessions(db, user) == []
    assert live_server.registry.get(user.id) is None
    assert len(live_server.registry) == 0
    # Live tracking never derives an activity on its own
    assert db.query(Activity).count() == 0


def test_start_reuses_existing_persisted_session(client, live_url, auth_headers, db, user):
    r = client.post(
        "/sessions/start",
        json={"initial_location": {"coordinates": [START[1], START[0]]}},
        headers=auth_headers,
    )
    session_id = r.json()["session"]["id"]

    with client.websocket_connect(live_url) as ws:
        ws.receive_json()
        assert event(ws, "start_tracking", {"initial_position": START})["event"] == "tracking_started"

    sessions = active_sessions(db, user)
    assert [s.id for s in sessions] == [session_id]


def test_disconnect_keeps_entry_and_session(client, live_url, db, user):
    with client.websocket_connect(live_url) as ws:
        ws.receive_json()
        event(ws, "start_tracking", {"initial_position": START})
        event(ws, "location_update", {"position": NORTH})

    assert live_server.registry.get(user.id) is not None
    assert len(active_sessions(db, user)) == 1


def test_reconnect_resumes(client, live_url, user):
    with client.websocket_connect(live_url) as ws:
        ws.receive_json()
        event(ws, "start_tracking", {"initial_position": START})
        first_ack = event(ws, "location_update", {"position": NORTH})

    with client.websocket_connect(live_url) as ws:
        confirmed = ws.receive_json()
        assert confirmed["event"] == "connection_confirmed"
        assert confirmed["data"]["resumed"] is True
        assert confirmed["data"]["stats"]["distance"] == pytest.approx(first_ack["data"]["distance"])

        # Accumulators continue from where the first connection left off
        ack = event(ws, "location_update", {"position": START})
        assert ack["data"]["distance"] == pytest.approx(2 * first_ack["data"]["distance"], rel=1e-3)


def test_time_sync_is_pushed(client, live_url, monkeypatch):
    monkeypatch.setattr(settings, "live_time_sync_interval_s", 0.05)
    with client.websocket_connect(live_url) as ws:
        ws.receive_json()
        event(ws, "start_tracking", {"initial_position": START})
        msg = ws.receive_json()
        assert msg["event"] == "time_sync"
        assert "server_time" in msg["data"]
        assert msg["data"]["elapsed_ms"] >= 0


@pytest.mark.parametrize(
    "frame",
    [
        {"event": "location_update", "data": {"position": NORTH}},
        {"event": "end_tracking"},
        {"event": "dance"},
        {"event": "start_tracking", "data": {"initial_position": [51.5]}},
        {"event": "start_tracking", "data": {"initial_position": ["51.5", "-0.1"]}},
        {"data": {}},
        {"event": "start_tracking", "data": "nope"},
    ],
)
def test_errors_reported_as_tracking_error(client, live_url, frame):
    with client.websocket_connect(live_url) as ws:
        ws.receive_json()
        ws.send_json(frame)
        msg = ws.receive_json()
    assert msg["event"] == "tracking_error"
    assert msg["data"]["message"]


def test_malformed_json_frame(client, live_url):
    with client.websocket_connect(live_url) as ws:
        ws.receive_json()
        ws.send_text("{not json")
        msg = ws.receive_json()
    assert msg["event"] == "tracking_error"


class _BrokenPipeConnection:
    user_id = 1

    def __init__(self):
        self.attempts = 0

    async def send(self, event, data):
        self.attempts += 1
        raise ConnectionResetError("peer went away")


@pytest.mark.asyncio
async def test_time_sync_stops_quietly_when_socket_is_gone():
    registry = TrackingRegistry()
    registry.put(TrackingState(user_id=1, start_time=utcnow(), last_position=START))
    server = LiveTrackingServer(registry=registry, time_sync_interval=0)
    conn = _BrokenPipeConnection()

    # Returns instead of leaking the OSError out of the background task
    assert await server._time_sync_loop(conn) is None
    assert conn.attempts == 1
