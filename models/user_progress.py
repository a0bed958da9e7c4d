# backend/models/user_progress.py

from sqlalchemy import Column, String, Integer, Date, DateTime, ForeignKey, CheckConstraint, func
from db import Base

class UserProgress(Base):
    __tablename__ = "user_progress"
    __table_args__ = (
        CheckConstraint("xp >= 0", name="ck_user_progress_xp_non_negative"),
        CheckConstraint("streak >= 0", name="ck_user_progress_streak_non_negative"),
    )

    user_id = Column(String, ForeignKey("users.id"), primary_key=True, index=True)
    xp = Column(Integer, nullable=False, default=0)
    # always written in the same statement as xp
    level = Column(Integer, nullable=False, default=0)
    streak = Column(Integer, nullable=False, default=0)
    last_active_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_updated = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
