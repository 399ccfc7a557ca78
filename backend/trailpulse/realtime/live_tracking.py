"""Live tracking over a WebSocket.

Each authenticated user has at most one in-memory tracking entry, keyed by
user id, that survives reconnects. The entry mirrors the persisted active
session: start creates it, every location update writes the running stats
back, end closes it. While a connection is attached the server pushes a
`time_sync` frame every few seconds so clients can correct clock drift.

The registry lives in this process only. Running more than one instance
behind a load balancer needs it moved to a shared store.
"""

import asyncio
import json
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime

from fastapi import WebSocket, WebSocketDisconnect, status
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from trailpulse.core.auth import user_from_token
from trailpulse.core.config import settings
from trailpulse.core.errors import InvalidInput, NoActiveSession, TrailPulseError, Unauthorized
from trailpulse.core.geo import haversine_km
from trailpulse.core.time_utils import parse_client_timestamp, to_epoch_ms, utcnow
from trailpulse.db import SessionLocal
from trailpulse.models.user import User
from trailpulse.services import session_tracker
from trailpulse.services.activity_derivation import check_coordinate


@dataclass
class TrackingState:
    user_id: int
    start_time: datetime  # naive UTC
    last_position: list[float]  # [lat, lng]
    distance: float = 0.0  # km
    duration: float = 0.0  # seconds
    speed: float = 0.0  # km/h
    last_update: datetime = field(default_factory=utcnow)

    def elapsed_ms(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        return int((now - self.start_time).total_seconds() * 1000)

    def stats(self) -> dict:
        return {
            "distance": self.distance,
            "duration": self.duration,
            "speed": self.speed,
            "position": list(self.last_position),
            "start_time": to_epoch_ms(self.start_time),
        }


class TrackingRegistry:
    """Lock-guarded map user id -> TrackingState.

    Readers get copies so a state is never observed half-updated.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: dict[int, TrackingState] = {}

    def get(self, user_id: int) -> TrackingState | None:
        with self._lock:
            state = self._entries.get(user_id)
            return replace(state) if state else None

    def put(self, state: TrackingState) -> None:
        with self._lock:
            self._entries[state.user_id] = state

    def pop(self, user_id: int) -> TrackingState | None:
        with self._lock:
            return self._entries.pop(user_id, None)

    def record_position(self, user_id: int, position: list[float], now: datetime) -> TrackingState | None:
        """Advance the accumulators with a new [lat, lng] fix."""
        with self._lock:
            state = self._entries.get(user_id)
            if state is None:
                return None
            prev_lat, prev_lng = state.last_position
            state.distance += haversine_km(prev_lat, prev_lng, position[0], position[1])
            state.duration = (now - state.start_time).total_seconds()
            state.speed = state.distance / state.duration * 3600 if state.duration > 0 else 0.0
            state.last_position = list(position)
            state.last_update = now
            return replace(state)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class _Connection:
    """One accepted socket. Sends are serialized; at most one time-sync task."""

    def __init__(self, websocket: WebSocket, user_id: int):
        self.websocket = websocket
        self.user_id = user_id
        self.send_lock = asyncio.Lock()
        self.time_sync_task: asyncio.Task | None = None

    async def send(self, event: str, data: dict) -> None:
        async with self.send_lock:
            await self.websocket.send_json({"event": event, "data": data})

    def cancel_time_sync(self) -> None:
        if self.time_sync_task and not self.time_sync_task.done():
            self.time_sync_task.cancel()
        self.time_sync_task = None


def _token_from(websocket: WebSocket) -> str | None:
    token = websocket.query_params.get("token")
    if token:
        return token
    header = websocket.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


class LiveTrackingServer:
    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        registry: TrackingRegistry | None = None,
        time_sync_interval: float | None = None,
    ):
        self.session_factory = session_factory
        self.registry = registry if registry is not None else TrackingRegistry()
        self._time_sync_interval = time_sync_interval

    @property
    def time_sync_interval(self) -> float:
        if self._time_sync_interval is not None:
            return self._time_sync_interval
        return settings.live_time_sync_interval_s

    # --------- store access (runs in the threadpool) --------- #

    def _run_db(self, fn, *args):
        db: Session = self.session_factory()
        try:
            return fn(db, *args)
        finally:
            db.close()

    @staticmethod
    def _authenticate(db: Session, token: str | None) -> int:
        return user_from_token(db, token).id

    @staticmethod
    def _ensure_session(db: Session, user_id: int, lng_lat: list[float]) -> None:
        user = db.get(User, user_id)
        if session_tracker.find_active(db, user_id):
            return
        session_tracker.start_session(db, user, lng_lat)

    @staticmethod
    def _persist_snapshot(db: Session, user_id: int, state: TrackingState) -> None:
        lat, lng = state.last_position
        user = db.get(User, user_id)
        session_tracker.update_session(
            db,
            user,
            [lng, lat],
            speed=state.speed,
            distance=state.distance,
            duration=state.duration,
        )

    @staticmethod
    def _close_session(db: Session, user_id: int) -> int:
        return session_tracker.reset_sessions(db, db.get(User, user_id))

    @staticmethod
    def _touch_session(db: Session, user_id: int) -> None:
        try:
            session_tracker.touch_session(db, user_id)
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Failed to touch live session of user {user_id}")

    # --------- connection lifecycle --------- #

    async def handle(self, websocket: WebSocket) -> None:
        try:
            user_id = await run_in_threadpool(self._run_db, self._authenticate, _token_from(websocket))
        except Unauthorized as e:
            logger.warning(f"Rejected live tracking handshake: {e.message}")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()
        conn = _Connection(websocket, user_id)
        logger.info(f"Live tracking connected: user {user_id}")

        try:
            await self._confirm(conn)
            while True:
                try:
                    raw = await websocket.receive_text()
                except WebSocketDisconnect:
                    break
                await self._dispatch(conn, raw)
        finally:
            conn.cancel_time_sync()
            if self.registry.get(user_id) is not None:
                await run_in_threadpool(self._run_db, self._touch_session, user_id)
            logger.info(f"Live tracking disconnected: user {user_id}")

    async def _confirm(self, conn: _Connection) -> None:
        state = self.registry.get(conn.user_id)
        data = {"user_id": conn.user_id, "server_time": to_epoch_ms(utcnow()), "resumed": state is not None}
        if state is not None:
            data["stats"] = state.stats()
            data["elapsed_ms"] = state.elapsed_ms()
            self._start_time_sync(conn)
            logger.info(f"Resumed live tracking for user {conn.user_id}")
        await conn.send("connection_confirmed", data)

    async def _dispatch(self, conn: _Connection, raw: str) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            await conn.send("tracking_error", {"message": "Malformed message: expected JSON"})
            return
        if not isinstance(message, dict) or not isinstance(message.get("event"), str):
            await conn.send("tracking_error", {"message": "Malformed message: missing event"})
            return

        handler = self._handlers.get(message["event"])
        if handler is None:
            await conn.send("tracking_error", {"message": f"Unknown event '{message['event']}'"})
            return

        data = message.get("data") or {}
        if not isinstance(data, dict):
            await conn.send("tracking_error", {"message": "Event data must be an object"})
            return

        try:
            await handler(self, conn, data)
        except TrailPulseError as e:
            logger.info(f"Live tracking error for user {conn.user_id}: {e.message}")
            await conn.send("tracking_error", {"message": e.message})

    # --------- events --------- #

    async def _on_start_tracking(self, conn: _Connection, data: dict) -> None:
        position = check_coordinate(data.get("initial_position"), "initial position", "[latitude, longitude]")
        try:
            start_time = parse_client_timestamp(data.get("start_time")) or utcnow()
        except ValueError as e:
            raise InvalidInput(str(e))

        lat, lng = position
        await run_in_threadpool(self._run_db, self._ensure_session, conn.user_id, [lng, lat])

        self.registry.put(TrackingState(user_id=conn.user_id, start_time=start_time, last_position=position))
        self._start_time_sync(conn)
        logger.info(f"Live tracking started for user {conn.user_id}")
        await conn.send(
            "tracking_started",
            {"timestamp": to_epoch_ms(start_time), "server_time": to_epoch_ms(utcnow())},
        )

    async def _on_location_update(self, conn: _Connection, data: dict) -> None:
        position = check_coordinate(data.get("position"), "position", "[latitude, longitude]")
        now = utcnow()
        state = self.registry.record_position(conn.user_id, position, now)
        if state is None:
            raise NoActiveSession("Tracking not started")

        try:
            await run_in_threadpool(self._run_db, self._persist_snapshot, conn.user_id, state)
        except NoActiveSession:
            # The session was closed over HTTP; the socket keeps its mirror.
            logger.warning(f"No persisted session for live user {conn.user_id}; snapshot not saved")

        await conn.send("location_update_ack", {**state.stats(), "elapsed_ms": state.elapsed_ms(now)})

    async def _on_end_tracking(self, conn: _Connection, data: dict) -> None:
        state = self.registry.get(conn.user_id)
        if state is None:
            raise NoActiveSession("Tracking not started")

        await run_in_threadpool(self._run_db, self._close_session, conn.user_id)
        self.registry.pop(conn.user_id)
        conn.cancel_time_sync()
        logger.info(f"Live tracking ended for user {conn.user_id}: {state.distance:.3f} km")
        await conn.send("tracking_ended", {**state.stats(), "elapsed_ms": state.elapsed_ms()})

    _handlers = {
        "start_tracking": _on_start_tracking,
        "location_update": _on_location_update,
        "end_tracking": _on_end_tracking,
    }

    # --------- time sync --------- #

    def _start_time_sync(self, conn: _Connection) -> None:
        conn.cancel_time_sync()
        conn.time_sync_task = asyncio.create_task(self._time_sync_loop(conn))

    async def _time_sync_loop(self, conn: _Connection) -> None:
        while True:
            await asyncio.sleep(self.time_sync_interval)
            state = self.registry.get(conn.user_id)
            if state is None:
                return
            try:
                await conn.send(
                    "time_sync",
                    {"server_time": to_epoch_ms(utcnow()), "elapsed_ms": state.elapsed_ms()},
                )
            except (WebSocketDisconnect, RuntimeError, OSError):
                return
