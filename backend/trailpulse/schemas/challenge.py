from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ParticipantRead(BaseModel):
    user_id: int
    progress: float
    completed: bool
    completed_date: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ChallengeRead(BaseModel):
    id: int
    title: str
    description: str
    type: str
    goal: float
    start_date: datetime
    end_date: datetime
    participants: list[ParticipantRead]

    model_config = ConfigDict(from_attributes=True)


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: int
    username: Optional[str] = None
    progress: float
    completed: bool
    completed_date: Optional[datetime] = None


class Leaderboard(BaseModel):
    challenge_id: int
    title: str
    type: str
    goal: float
    leaderboard: list[LeaderboardEntry]
