# backend/logic/progression.py
"""
XP and level rules for a completed exercise set.

10 XP per correct answer plus a 50 XP completion bonus, one level per
LEVEL_THRESHOLD XP.
"""

from typing import List

from pydantic import BaseModel

import config
from errors import ValidationError

XP_PER_CORRECT_ANSWER = 10
COMPLETION_BONUS_XP = 50
PERFECT_SCORE = "Perfect Score!"


class ProgressionResult(BaseModel):
    base_xp: int
    bonus_xp: int
    xp_gained: int
    new_xp: int
    new_level: int
    achievements: List[str]


def level_for_xp(xp: int, level_threshold: int = None) -> int:
    threshold = config.LEVEL_THRESHOLD if level_threshold is None else level_threshold
    if threshold <= 0:
        raise ValidationError("Level threshold must be positive")
    return xp // threshold


def calculate_progression(
    correct_answers: int,
    total_answers: int,
    current_xp: int = 0,
    level_threshold: int = None,
    bonus_requires_perfect: bool = None,
) -> ProgressionResult:
    if correct_answers < 0 or total_answers < 0:
        raise ValidationError("Answer counts cannot be negative")
    if correct_answers > total_answers:
        raise ValidationError("Correct answers cannot exceed total answers")
    if current_xp < 0:
        raise ValidationError("Current XP cannot be negative")

    if bonus_requires_perfect is None:
        bonus_requires_perfect = config.BONUS_REQUIRES_PERFECT

    attempted = total_answers > 0
    perfect = attempted and correct_answers == total_answers

    base_xp = correct_answers * XP_PER_CORRECT_ANSWER
    if bonus_requires_perfect:
        bonus_xp = COMPLETION_BONUS_XP if perfect else 0
    else:
        bonus_xp = COMPLETION_BONUS_XP if attempted else 0
    xp_gained = base_xp + bonus_xp

    new_xp = current_xp + xp_gained
    return ProgressionResult(
        base_xp=base_xp,
        bonus_xp=bonus_xp,
        xp_gained=xp_gained,
        new_xp=new_xp,
        new_level=level_for_xp(new_xp, level_threshold),
        achievements=[PERFECT_SCORE] if perfect else [],
    )
