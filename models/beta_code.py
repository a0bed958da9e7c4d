# backend/models/beta_code.py
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, func
from db import Base

class BetaInvitationCode(Base):
    __tablename__ = "beta_invitation_codes"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, unique=True, index=True, nullable=False)
    organization = Column(String, index=True, nullable=False)
    is_used = Column(Boolean, nullable=False, default=False)
    used_by = Column(String, ForeignKey("users.id"), nullable=True)
    used_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(String, nullable=True)
    created_by = Column(String, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
