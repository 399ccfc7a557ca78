from fastapi import APIRouter, WebSocket

from trailpulse.realtime.live_tracking import LiveTrackingServer

router = APIRouter(tags=["live"])

live_server = LiveTrackingServer()


@router.websocket("/ws/live")
async def live_tracking(websocket: WebSocket):
    await live_server.handle(websocket)
