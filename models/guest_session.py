# backend/models/guest_session.py
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, CheckConstraint, func
from db import Base


class GuestAccessCode(Base):
    __tablename__ = "guest_access_codes"
    __table_args__ = (
        CheckConstraint("duration_hours > 0", name="ck_guest_access_codes_duration"),
    )

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    campaign_name = Column(String, nullable=True)
    access_tier = Column(String, nullable=False, default="premium")
    duration_hours = Column(Integer, nullable=False, default=24)
    max_uses = Column(Integer, nullable=True)  # NULL = unlimited
    uses = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    destination_path = Column(String, nullable=True)
    welcome_message = Column(String, nullable=True)
    created_by = Column(String, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class GuestSession(Base):
    __tablename__ = "guest_sessions"
    __table_args__ = (
        CheckConstraint("expires_at > started_at", name="ck_guest_sessions_window"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), index=True, nullable=False)
    access_code_id = Column(Integer, ForeignKey("guest_access_codes.id"), nullable=True)
    access_tier = Column(String, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    converted_at = Column(DateTime(timezone=True), nullable=True)
    converted_to_email = Column(String, nullable=True)
