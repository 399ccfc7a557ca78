"""Credit a finished activity to the user's running challenges.

Best effort: every challenge is committed on its own, and no failure here
ever reaches the caller (the stop that produced the activity already
succeeded).
"""

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from trailpulse.core.time_utils import utcnow
from trailpulse.models.activity import Activity
from trailpulse.models.challenge import Challenge, ChallengeParticipant


def progress_increment(challenge_type: str, activity: Activity) -> float:
    """Amount an activity adds, in the unit of the challenge type."""
    if challenge_type == "distance":
        return (activity.distance_m or 0) / 1000  # km
    if challenge_type == "time":
        return activity.duration_seconds or 0
    if challenge_type == "elevation":
        return activity.elevation_gain or 0
    if challenge_type == "frequency":
        return 1
    return 0


def apply(db: Session, user_id: int, activity: Activity) -> int:
    """Returns how many challenges were updated."""
    now = utcnow()
    try:
        rows = (
            db.query(ChallengeParticipant, Challenge)
            .join(Challenge, ChallengeParticipant.challenge_id == Challenge.id)
            .filter(ChallengeParticipant.user_id == user_id)
            .filter(Challenge.start_date <= now)
            .filter(Challenge.end_date >= now)
            .all()
        )
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"Failed to load challenges for user {user_id}")
        return 0

    if not rows:
        logger.info(f"No active challenges found for user {user_id}")
        return 0

    logger.info(f"Updating {len(rows)} challenges for user {user_id} from activity {activity.id}")
    updated = 0
    for participant, challenge in rows:
        # Plain values first; a rollback below expires the ORM instances.
        challenge_id = challenge.id
        increment = progress_increment(challenge.type, activity)
        new_progress = (participant.progress or 0) + increment
        newly_completed = new_progress >= challenge.goal and not participant.completed

        participant.progress = new_progress
        if new_progress >= challenge.goal:
            participant.completed = True
        if newly_completed:
            participant.completed_date = now

        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception(f"Error saving challenge {challenge_id} progress for user {user_id}")
            continue

        updated += 1
        logger.info(
            f"Challenge {challenge_id} progress for user {user_id}: "
            f"+{increment:g}, total {new_progress:g}/{challenge.goal:g}"
        )
        if newly_completed:
            logger.info(f"User {user_id} completed challenge {challenge_id}")

    return updated
