# backend/logic/beta_codes.py
"""
Beta invitation codes.

Codes are generated in batches by a platform admin and can be redeemed
exactly once. Redemption upgrades the redeeming user to `beta_tester`.
"""

import logging
import secrets
import string
from datetime import datetime
from typing import List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import AlreadyUsedError, ExpiredError, ForbiddenError, NotFoundError, ValidationError
from logic.clock import as_utc
from models.beta_code import BetaInvitationCode
from models.user import ROLE_ADMIN, ROLE_BETA_TESTER, ROLE_GUEST, ROLE_USER, User

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8
MAX_BATCH_SIZE = 100
UPGRADABLE_ROLES = (ROLE_USER, ROLE_GUEST)


def normalize_code(code) -> str:
    if not isinstance(code, str) or not code.strip():
        raise ValidationError("Invalid code format")
    return code.strip().upper()


def _find_code(db: Session, normalized: str):
    return db.query(BetaInvitationCode).filter(BetaInvitationCode.code == normalized).first()


def _check_redeemable(invitation: Optional[BetaInvitationCode], now: datetime):
    if invitation is None:
        raise NotFoundError("Invalid code")
    if invitation.is_used:
        raise AlreadyUsedError()
    if invitation.expires_at is not None and as_utc(invitation.expires_at) < as_utc(now):
        raise ExpiredError()


def validate_code(db: Session, code: str, now: datetime) -> BetaInvitationCode:
    """Check a code without consuming it; raises the same errors `redeem_code` would."""
    invitation = _find_code(db, normalize_code(code))
    _check_redeemable(invitation, now)
    return invitation


def redeem_code(db: Session, code: str, user_email: str, now: datetime) -> BetaInvitationCode:
    normalized = normalize_code(code)
    user = db.query(User).filter(User.email == user_email).first()
    if user is None:
        raise NotFoundError("User not found")

    invitation = _find_code(db, normalized)
    try:
        _check_redeemable(invitation, now)
    except (AlreadyUsedError, ExpiredError) as exc:
        logger.warning("Rejected beta code %s for %s: %s", normalized, user_email, exc.message)
        raise

    # compare-and-swap: only one request can flip is_used
    claimed = db.execute(
        update(BetaInvitationCode)
        .where(BetaInvitationCode.id == invitation.id, BetaInvitationCode.is_used.is_(False))
        .values(is_used=True, used_by=user.id, used_at=as_utc(now))
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        db.rollback()
        logger.warning("Beta code %s was claimed concurrently", normalized)
        raise AlreadyUsedError()

    # only learner tiers are upgraded
    if user.role in UPGRADABLE_ROLES:
        user.role = ROLE_BETA_TESTER
    db.commit()
    db.refresh(invitation)
    logger.info("Beta code %s redeemed by %s (%s)", normalized, user_email, invitation.organization)
    return invitation


def require_admin(user: User):
    if user is None or user.role != ROLE_ADMIN:
        raise ForbiddenError()


def _random_code() -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def generate_codes(
    db: Session,
    admin: User,
    organization: str,
    quantity: int,
    now: datetime,
    expiration_months: Optional[int] = None,
    notes: Optional[str] = None,
) -> List[BetaInvitationCode]:
    require_admin(admin)
    if not organization or not organization.strip():
        raise ValidationError("Organization is required")
    if quantity < 1 or quantity > MAX_BATCH_SIZE:
        raise ValidationError(f"Quantity must be between 1 and {MAX_BATCH_SIZE}")

    expires_at = None
    if expiration_months and expiration_months > 0:
        expires_at = as_utc(now) + relativedelta(months=expiration_months)

    existing = {row.code for row in db.query(BetaInvitationCode.code).all()}
    codes = []
    while len(codes) < quantity:
        candidate = _random_code()
        if candidate in existing:
            continue
        existing.add(candidate)
        codes.append(
            BetaInvitationCode(
                code=candidate,
                organization=organization.strip(),
                expires_at=expires_at,
                notes=notes,
                created_by=admin.id,
            )
        )

    db.add_all(codes)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.error("Code collision while generating batch for %s", organization)
        raise ValidationError("Failed to generate codes, please retry")

    logger.info("Generated %d beta codes for %s", len(codes), organization)
    return codes


def list_codes(db: Session, admin: User, organization: str = None, is_used: bool = None):
    require_admin(admin)

    query = db.query(BetaInvitationCode).order_by(
        BetaInvitationCode.created_at.desc(), BetaInvitationCode.id.desc()
    )
    if organization:
        query = query.filter(BetaInvitationCode.organization == organization)
    if is_used is not None:
        query = query.filter(BetaInvitationCode.is_used.is_(is_used))
    codes = query.all()

    used = sum(1 for c in codes if c.is_used)
    stats = {
        "total": len(codes),
        "used": used,
        "unused": len(codes) - used,
        "organizations": sorted({c.organization for c in codes}),
    }
    return codes, stats
