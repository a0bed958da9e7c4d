# backend/models/points_history.py
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, func
from db import Base

class PointsHistoryEntry(Base):
    __tablename__ = "points_history"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    points_change = Column(Integer, nullable=False)
    points_before = Column(Integer, nullable=False)
    points_after = Column(Integer, nullable=False)
    source_type = Column(String, nullable=False)
    source_id = Column(String, nullable=True)
    description = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
