"""Error taxonomy shared by the services, the HTTP layer and the live socket.

Services raise these instead of `HTTPException` so the same code paths can
be driven from a WebSocket. `main.py` renders them as `{"detail": ...}` with
the status carried on the class.
"""


class TrailPulseError(Exception):
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidInput(TrailPulseError):
    """Malformed or out-of-range client data. Never retried."""

    status_code = 422


class NotFound(TrailPulseError):
    status_code = 404


class NoActiveSession(NotFound):
    def __init__(self, message: str = "No active session found"):
        super().__init__(message)


class Unauthorized(TrailPulseError):
    status_code = 401


class Forbidden(TrailPulseError):
    status_code = 403


class UpstreamUnavailable(TrailPulseError):
    """Road-routing failure or timeout. Recovered by the procedural fallback."""

    status_code = 502
