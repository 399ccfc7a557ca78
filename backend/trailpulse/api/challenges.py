from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from loguru import logger
from sqlalchemy.orm import Session

from trailpulse.core.auth import get_current_user
from trailpulse.core.errors import InvalidInput, NotFound
from trailpulse.core.time_utils import utcnow
from trailpulse.db import get_db
from trailpulse.models.challenge import Challenge, ChallengeParticipant
from trailpulse.models.user import User
from trailpulse.schemas.challenge import ChallengeRead, Leaderboard, LeaderboardEntry

router = APIRouter(prefix="/challenges", tags=["challenges"])


def _get_challenge(db: Session, challenge_id: int) -> Challenge:
    challenge = db.get(Challenge, challenge_id)
    if not challenge:
        raise NotFound("Challenge not found")
    return challenge


def _participant(db: Session, challenge_id: int, user_id: int) -> ChallengeParticipant | None:
    return (
        db.query(ChallengeParticipant)
        .filter(
            ChallengeParticipant.challenge_id == challenge_id,
            ChallengeParticipant.user_id == user_id,
        )
        .first()
    )


@router.get("/mine", response_model=list[ChallengeRead])
def my_challenges(
    status: Optional[Literal["active", "completed", "upcoming"]] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Challenges the user takes part in; `completed` means the window has closed."""
    now = utcnow()
    query = (
        db.query(Challenge)
        .join(ChallengeParticipant, ChallengeParticipant.challenge_id == Challenge.id)
        .filter(ChallengeParticipant.user_id == user.id)
    )

    if status == "active":
        query = query.filter(Challenge.start_date <= now, Challenge.end_date >= now)
    elif status == "completed":
        query = query.filter(Challenge.end_date < now)
    elif status == "upcoming":
        query = query.filter(Challenge.start_date > now)

    return query.order_by(Challenge.start_date.desc()).all()


@router.post("/{challenge_id}/join", response_model=ChallengeRead)
def join_challenge(
    challenge_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    challenge = _get_challenge(db, challenge_id)

    now = utcnow()
    if now < challenge.start_date:
        raise InvalidInput("Challenge has not started yet")
    if now > challenge.end_date:
        raise InvalidInput("Challenge has already ended")
    if _participant(db, challenge.id, user.id):
        raise InvalidInput("You are already participating in this challenge")

    db.add(ChallengeParticipant(challenge_id=challenge.id, user_id=user.id, progress=0.0, completed=False))
    db.commit()
    db.refresh(challenge)
    logger.info(f"User {user.id} joined challenge {challenge.id}")
    return challenge


@router.post("/{challenge_id}/leave")
def leave_challenge(
    challenge_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    challenge = _get_challenge(db, challenge_id)
    participant = _participant(db, challenge.id, user.id)
    if not participant:
        raise InvalidInput("You are not participating in this challenge")

    db.delete(participant)
    db.commit()
    logger.info(f"User {user.id} left challenge {challenge.id}")
    return {"message": "Successfully left the challenge"}


@router.get("/{challenge_id}/leaderboard", response_model=Leaderboard)
def challenge_leaderboard(
    challenge_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    challenge = _get_challenge(db, challenge_id)

    rows = (
        db.query(ChallengeParticipant, User.username)
        .join(User, User.id == ChallengeParticipant.user_id)
        .filter(ChallengeParticipant.challenge_id == challenge.id)
        .order_by(ChallengeParticipant.progress.desc(), ChallengeParticipant.id.asc())
        .all()
    )
    entries = [
        LeaderboardEntry(
            rank=i,
            user_id=participant.user_id,
            username=username,
            progress=participant.progress,
            completed=participant.completed,
            completed_date=participant.completed_date,
        )
        for i, (participant, username) in enumerate(rows, start=1)
    ]
    return Leaderboard(
        challenge_id=challenge.id,
        title=challenge.title,
        type=challenge.type,
        goal=challenge.goal,
        leaderboard=entries,
    )
