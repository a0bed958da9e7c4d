# backend/logic/guest_sessions.py
"""
Guest trial access.

A guest code activation creates a temporary `guest` user and a session
that runs for the code's `duration_hours`. A guest claims the account once,
under a real email; the session is then converted and no longer active.

Admins create the QR campaign codes and can pause them or change their use limit.
"""

import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import AlreadyUsedError, ForbiddenError, NotFoundError, ValidationError
from logic.beta_codes import normalize_code, require_admin
from logic.clock import as_utc
from models.guest_session import GuestAccessCode, GuestSession
from models.user import ROLE_GUEST, ROLE_USER, User

logger = logging.getLogger(__name__)

GUEST_EMAIL_DOMAIN = "habitat.guest"
GUEST_NAME = "Guest Explorer"
ACCESS_TIERS = ("basic", "premium", "full")
DEFAULT_DURATION_HOURS = 72
CODE_ATTEMPTS = 5
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class GuestSessionStatus(BaseModel):
    started_at: datetime
    expires_at: datetime
    remaining_ms: int
    percent_remaining: float
    expired: bool
    active: bool


def session_status(
    started_at: datetime,
    expires_at: datetime,
    now: datetime,
    converted_at: Optional[datetime] = None,
) -> GuestSessionStatus:
    started_at, expires_at, now = as_utc(started_at), as_utc(expires_at), as_utc(now)

    total = expires_at - started_at
    if total <= timedelta(0):
        raise ValidationError("Guest session must expire after it starts")

    remaining = max(timedelta(0), expires_at - now)
    expired = remaining <= timedelta(0)
    return GuestSessionStatus(
        started_at=started_at,
        expires_at=expires_at,
        remaining_ms=int(remaining.total_seconds() * 1000),
        percent_remaining=remaining / total * 100,
        expired=expired,
        active=not expired and converted_at is None,
    )


def activate_guest_code(db: Session, code: str, now: datetime):
    """Consume one use of a guest code and open a trial session for a new guest user."""
    normalized = normalize_code(code)
    access_code = (
        db.query(GuestAccessCode)
        .filter(GuestAccessCode.code == normalized, GuestAccessCode.is_active.is_(True))
        .first()
    )
    if access_code is None:
        raise NotFoundError("Invalid code")

    claimed = db.execute(
        update(GuestAccessCode)
        .where(
            GuestAccessCode.id == access_code.id,
            or_(GuestAccessCode.max_uses.is_(None), GuestAccessCode.uses < GuestAccessCode.max_uses),
        )
        .values(uses=GuestAccessCode.uses + 1)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        db.rollback()
        logger.warning("Guest code %s has no uses left", normalized)
        raise AlreadyUsedError("This code has reached its usage limit")

    now = as_utc(now)
    expires_at = now + timedelta(hours=access_code.duration_hours)
    guest = User(
        email=f"guest_{secrets.token_hex(6)}@{GUEST_EMAIL_DOMAIN}",
        name=GUEST_NAME,
        role=ROLE_GUEST,
        is_premium=access_code.access_tier in ("premium", "full"),
        premium_until=expires_at,
    )
    db.add(guest)
    db.flush()

    guest_session = GuestSession(
        user_id=guest.id,
        access_code_id=access_code.id,
        access_tier=access_code.access_tier,
        started_at=now,
        expires_at=expires_at,
    )
    db.add(guest_session)
    db.commit()
    db.refresh(guest_session)

    logger.info("Guest %s activated code %s until %s", guest.email, normalized, expires_at.isoformat())
    return guest, guest_session, access_code


def current_guest_session(db: Session, user_id: str):
    return (
        db.query(GuestSession)
        .filter(GuestSession.user_id == user_id, GuestSession.converted_at.is_(None))
        .order_by(GuestSession.started_at.desc(), GuestSession.id.desc())
        .first()
    )


def _normalize_email(email) -> str:
    if not isinstance(email, str) or not EMAIL_PATTERN.match(email.strip()):
        raise ValidationError("Invalid email format")
    return email.strip().lower()


def claim_guest_account(db: Session, user: User, email: str, now: datetime, name: str = None):
    """Turn a guest into a regular account under a real email, closing the trial session."""
    if user.role != ROLE_GUEST:
        raise ForbiddenError("Only guest users can claim accounts")

    email = _normalize_email(email)
    if db.query(User.id).filter(User.email == email).first() is not None:
        raise AlreadyUsedError("Email already in use")

    guest_session = current_guest_session(db, user.id)
    if guest_session is None:
        raise NotFoundError("No active guest session")

    converted = db.execute(
        update(GuestSession)
        .where(GuestSession.id == guest_session.id, GuestSession.converted_at.is_(None))
        .values(converted_at=as_utc(now), converted_to_email=email)
        .execution_options(synchronize_session=False)
    )
    if converted.rowcount != 1:
        db.rollback()
        raise AlreadyUsedError("Guest session was already converted")

    # premium access stays until premium_until
    user.email = email
    user.name = (name or "").strip() or "Explorer"
    user.role = ROLE_USER
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise AlreadyUsedError("Email already in use")

    db.refresh(guest_session)
    logger.info("Guest session %s claimed as %s", guest_session.id, email)
    return guest_session


# --------- Admin: QR campaigns ---------

def generate_guest_code(
    db: Session,
    admin: User,
    name: str,
    now: datetime,
    access_tier: str = "premium",
    duration_hours: int = DEFAULT_DURATION_HOURS,
    max_uses: Optional[int] = None,
    campaign_name: str = None,
    destination_path: str = "/dashboard",
    welcome_message: str = None,
) -> GuestAccessCode:
    require_admin(admin)
    if not name or not name.strip():
        raise ValidationError("Name is required")
    if access_tier not in ACCESS_TIERS:
        raise ValidationError("Invalid access tier")
    if duration_hours is None or duration_hours <= 0:
        raise ValidationError("Duration must be at least one hour")
    if max_uses is not None and max_uses < 1:
        raise ValidationError("Max uses must be positive")

    for _ in range(CODE_ATTEMPTS):
        code = f"QR-{secrets.token_hex(4).upper()}"
        if db.query(GuestAccessCode.id).filter(GuestAccessCode.code == code).first() is None:
            break
    else:
        raise ValidationError("Failed to create code, please retry")

    access_code = GuestAccessCode(
        code=code,
        name=name.strip(),
        campaign_name=campaign_name,
        access_tier=access_tier,
        duration_hours=duration_hours,
        max_uses=max_uses,
        destination_path=destination_path,
        welcome_message=welcome_message,
        created_by=admin.id,
        created_at=as_utc(now),
    )
    db.add(access_code)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ValidationError("Failed to create code, please retry")

    db.refresh(access_code)
    logger.info("Guest code %s created for campaign %s", code, campaign_name or name)
    return access_code


def list_guest_codes(db: Session, admin: User, now: datetime):
    """All guest codes, newest first, with per-code session stats and a summary."""
    require_admin(admin)
    now = as_utc(now)

    codes = (
        db.query(GuestAccessCode)
        .order_by(GuestAccessCode.created_at.desc(), GuestAccessCode.id.desc())
        .all()
    )
    stats = {c.id: {"total_sessions": 0, "active_sessions": 0, "converted": 0, "expired": 0} for c in codes}
    for s in db.query(GuestSession).filter(GuestSession.access_code_id.isnot(None)).all():
        stat = stats.get(s.access_code_id)
        if stat is None:
            continue
        stat["total_sessions"] += 1
        if s.converted_at is not None:
            stat["converted"] += 1
        elif as_utc(s.expires_at) <= now:
            stat["expired"] += 1
        else:
            stat["active_sessions"] += 1

    summary = {
        "total_campaigns": len(codes),
        "active_campaigns": sum(1 for c in codes if c.is_active),
        "total_activations": sum(s["total_sessions"] for s in stats.values()),
        "total_conversions": sum(s["converted"] for s in stats.values()),
    }
    return [(c, stats[c.id]) for c in codes], summary


def update_guest_code(db: Session, admin: User, code_id: int, is_active: bool = None, max_uses: int = None):
    require_admin(admin)
    access_code = db.get(GuestAccessCode, code_id)
    if access_code is None:
        raise NotFoundError("Campaign not found")
    if max_uses is not None and max_uses < 1:
        raise ValidationError("Max uses must be positive")

    if is_active is not None:
        access_code.is_active = is_active
    if max_uses is not None:
        access_code.max_uses = max_uses
    db.commit()
    db.refresh(access_code)
    logger.info("Guest code %s updated (active=%s, max_uses=%s)", access_code.code, access_code.is_active, access_code.max_uses)
    return access_code
