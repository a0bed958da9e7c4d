# backend/logic/points.py
"""
Writes to a learner's XP total and the points ledger.

XP changes are applied as `xp = xp + :change` in SQL so that concurrent
submissions for the same user do not overwrite each other, and every change
is appended to `points_history` in the same transaction.
"""

import logging
from datetime import datetime

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

import config
from errors import ConflictError, ValidationError
from logic.clock import as_utc
from logic.progression import calculate_progression
from logic.streak import track_streak
from models.points_history import PointsHistoryEntry
from models.user_progress import UserProgress

logger = logging.getLogger(__name__)

STREAK_WRITE_ATTEMPTS = 2


def get_or_create_progress(db: Session, user_id: str) -> UserProgress:
    progress = db.get(UserProgress, user_id)
    if progress is not None:
        return progress
    progress = UserProgress(user_id=user_id, xp=0, level=0, streak=0)
    db.add(progress)
    try:
        db.flush()
    except IntegrityError:
        # another request created the row first
        db.rollback()
        progress = db.get(UserProgress, user_id)
    return progress


def _apply_points(db: Session, user_id: str, points: int, source_type: str, description: str, source_id=None):
    threshold = config.LEVEL_THRESHOLD
    new_xp = UserProgress.xp + points
    applied = db.execute(
        update(UserProgress)
        .where(UserProgress.user_id == user_id, new_xp >= 0)
        .values(xp=new_xp, level=new_xp // threshold)
        .returning(UserProgress.xp)
        .execution_options(synchronize_session=False)
    ).first()
    if applied is None:
        db.rollback()
        raise ValidationError("Not enough points")

    points_after = applied[0]
    entry = PointsHistoryEntry(
        user_id=user_id,
        points_change=points,
        points_before=points_after - points,
        points_after=points_after,
        source_type=source_type,
        source_id=source_id,
        description=description,
    )
    db.add(entry)
    return points_after


def add_points(db: Session, user_id: str, points: int, source_type: str, description: str = None, source_id=None):
    """Add (or deduct, when negative) points and record them in the ledger."""
    get_or_create_progress(db, user_id)
    points_after = _apply_points(db, user_id, points, source_type, description, source_id)
    db.commit()
    logger.info("💰 %+d points for user %s (%s): %d total", points, user_id, source_type, points_after)
    progress = db.get(UserProgress, user_id)
    db.refresh(progress)
    return progress


def _write_streak(db: Session, progress: UserProgress, today):
    """
    Store the streak for activity on `today`.

    The write only lands if the row still holds the streak and date it was
    computed from; otherwise the row is re-read and the streak recomputed once.
    """
    for _ in range(STREAK_WRITE_ATTEMPTS):
        read_streak, read_date = progress.streak, progress.last_active_date
        streak = track_streak(read_streak, read_date, today)
        last_active_date = today if read_date is None else max(today, read_date)

        written = db.execute(
            update(UserProgress)
            .where(
                UserProgress.user_id == progress.user_id,
                UserProgress.streak == read_streak,
                UserProgress.last_active_date.is_not_distinct_from(read_date),
            )
            .values(streak=streak.streak, last_active_date=last_active_date)
            .execution_options(synchronize_session=False)
        )
        if written.rowcount == 1:
            return streak
        db.refresh(progress)

    db.rollback()
    logger.warning("Streak for user %s kept changing underneath us", progress.user_id)
    raise ConflictError()


def record_exercise(
    db: Session,
    user_id: str,
    correct_answers: int,
    total_answers: int,
    now: datetime,
    unit_id: str = None,
):
    """Score a finished exercise set and persist XP, level, streak and ledger entry."""
    progress = get_or_create_progress(db, user_id)
    result = calculate_progression(correct_answers, total_answers, progress.xp)

    if result.xp_gained:
        points_after = _apply_points(
            db, user_id, result.xp_gained, "lesson", "Lesson completion XP", source_id=unit_id
        )
        # the stored total wins over our read if another submission landed first
        result = result.model_copy(
            update={"new_xp": points_after, "new_level": points_after // config.LEVEL_THRESHOLD}
        )

    _write_streak(db, progress, as_utc(now).date())
    db.commit()
    db.refresh(progress)

    logger.info(
        "User %s scored %d/%d: +%d XP, level %d, streak %d",
        user_id, correct_answers, total_answers, result.xp_gained, progress.level, progress.streak,
    )
    return result, progress


def points_history(db: Session, user_id: str, limit: int = 20, offset: int = 0):
    if limit < 1 or offset < 0:
        raise ValidationError("Invalid pagination parameters")

    base = db.query(PointsHistoryEntry).filter(PointsHistoryEntry.user_id == user_id)
    total = base.with_entities(func.count(PointsHistoryEntry.id)).scalar() or 0
    history = (
        base.order_by(PointsHistoryEntry.created_at.desc(), PointsHistoryEntry.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    total_earned = sum(h.points_change for h in history if h.points_change > 0)
    return history, total, total_earned
