from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from trailpulse.api.sessions import router as sessions_router
from trailpulse.api.activities import router as activities_router
from trailpulse.api.routes import router as routes_router
from trailpulse.api.challenges import router as challenges_router
from trailpulse.api.live import router as live_router
from trailpulse.db import Base, engine
from trailpulse.models.user import User  # noqa: F401  (import ensures table is registered)
from trailpulse.models.active_session import ActiveSession  # noqa: F401
from trailpulse.models.activity import Activity  # noqa: F401
from trailpulse.models.route import Route  # noqa: F401
from trailpulse.models.challenge import Challenge, ChallengeParticipant  # noqa: F401
from trailpulse.core.config import settings
from trailpulse.core.errors import TrailPulseError, Unauthorized
from trailpulse.core.logger import setup_logger


setup_logger(settings.log_level, settings.log_file)

app = FastAPI(title="TrailPulse")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Create DB tables on startup
Base.metadata.create_all(bind=engine)


@app.exception_handler(TrailPulseError)
async def trailpulse_error_handler(request: Request, exc: TrailPulseError):
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message}, headers=headers)


app.include_router(sessions_router)
app.include_router(activities_router)
app.include_router(routes_router)
app.include_router(challenges_router)
app.include_router(live_router)


@app.get("/")
def root():
    return {"message": "TrailPulse backend is running"}
