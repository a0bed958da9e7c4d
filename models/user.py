# backend/models/user.py
import uuid

from sqlalchemy import Column, String, Boolean, DateTime, func
from db import Base

ROLE_USER = "user"
ROLE_GUEST = "guest"
ROLE_BETA_TESTER = "beta_tester"
ROLE_ADMIN = "platform_admin"


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    role = Column(String, nullable=False, default=ROLE_USER)
    is_supporter = Column(Boolean, nullable=False, default=False)
    is_premium = Column(Boolean, nullable=False, default=False)
    premium_until = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
