# backend/logic/streak.py
from datetime import date, datetime
from typing import NamedTuple, Optional

import config


class StreakUpdate(NamedTuple):
    streak: int
    is_new_day: bool


def _as_date(value):
    if isinstance(value, datetime):
        return value.date()
    return value


def track_streak(
    current_streak: int,
    last_active_date: Optional[date],
    today: date,
    reset_on_gap: bool = None,
) -> StreakUpdate:
    """
    Work out the streak after activity on `today`.

    By default any new calendar day extends the streak, however long the
    learner was away. With `reset_on_gap` only the day right after
    `last_active_date` extends it and a longer gap starts over at 1.
    A `today` earlier than `last_active_date` never changes the streak.
    """
    if reset_on_gap is None:
        reset_on_gap = config.STREAK_RESET_ON_GAP

    today = _as_date(today)
    last_active_date = _as_date(last_active_date)
    current_streak = max(current_streak or 0, 0)

    if last_active_date is None:
        return StreakUpdate(streak=1, is_new_day=True)

    gap = (today - last_active_date).days
    if gap <= 0:
        # same day, or a request dated before the last recorded activity
        return StreakUpdate(streak=current_streak, is_new_day=False)
    if not reset_on_gap or gap == 1:
        return StreakUpdate(streak=current_streak + 1, is_new_day=True)
    return StreakUpdate(streak=1, is_new_day=True)
