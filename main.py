#backend/main.py
import logging
from datetime import date, datetime
from typing import Optional

from fastapi import FastAPI, Depends, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

import config
from db import get_db
from errors import HabitatError, UnauthorizedError, NotFoundError, UpstreamError
from logic import beta_codes, guest_sessions, payments, points
from logic.clock import as_utc, get_clock
from logic.progression import ProgressionResult
from models.user import User, ROLE_GUEST
from models.user_progress import UserProgress

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# --------- App Setup ---------
app = FastAPI(title="Habitat English Progress API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HabitatError)
async def habitat_error_handler(request: Request, exc: HabitatError):
    if isinstance(exc, UpstreamError):
        logger.error("Upstream failure on %s: %r", request.url.path, exc)
        return JSONResponse(status_code=exc.status_code, content={"error": UpstreamError.message})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


# --------- Identity Dependency ---------
def get_current_user(
    x_user_email: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> User:
    # The identity provider in front of us sets this header once the session is verified
    if not x_user_email:
        raise UnauthorizedError()
    user = db.query(User).filter(User.email == x_user_email).first()
    if user is None:
        raise NotFoundError("User not found")
    return user


# --------- Pydantic Models ---------
class ExerciseInput(BaseModel):
    correct_answers: int = Field(..., examples=[8])
    total_answers: int = Field(..., examples=[10])
    unit_id: Optional[str] = Field(None, examples=["unit_03"])


class ProgressOutput(BaseModel):
    xp: int
    level: int
    streak: int
    last_active_date: Optional[date] = None


class ExerciseOutput(BaseModel):
    success: bool = True
    result: ProgressionResult
    progress: ProgressOutput


class CodeInput(BaseModel):
    code: str = Field(..., examples=["ABC123"])


class GenerateCodesInput(BaseModel):
    organization: str = Field(..., examples=["Escola Verde"])
    quantity: int = Field(..., examples=[20])
    expiration_months: Optional[int] = Field(None, examples=[6])
    notes: Optional[str] = None


class BetaCodeOutput(BaseModel):
    code: str
    organization: str
    is_used: bool
    used_by: Optional[str] = None
    used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    notes: Optional[str] = None


class ClaimInput(BaseModel):
    email: str = Field(..., examples=["rosa@example.org"])
    name: Optional[str] = Field(None, examples=["Rosa"])


class GenerateGuestCodeInput(BaseModel):
    name: str = Field(..., examples=["Beach stand"])
    campaign_name: Optional[str] = Field(None, examples=["Summer Fair"])
    access_tier: str = Field("premium", examples=["premium"])
    duration_hours: int = Field(guest_sessions.DEFAULT_DURATION_HOURS, examples=[72])
    max_uses: Optional[int] = Field(None, examples=[100])
    destination_path: str = "/dashboard"
    welcome_message: Optional[str] = None


class UpdateGuestCodeInput(BaseModel):
    is_active: Optional[bool] = None
    max_uses: Optional[int] = None


class GuestCodeOutput(BaseModel):
    id: int
    code: str
    name: Optional[str] = None
    campaign_name: Optional[str] = None
    access_tier: str
    duration_hours: int
    max_uses: Optional[int] = None
    uses: int
    is_active: bool
    destination_path: Optional[str] = None
    welcome_message: Optional[str] = None
    created_at: Optional[datetime] = None


class AwardPointsInput(BaseModel):
    user_email: str = Field(..., examples=["ana@example.org"])
    points: int = Field(..., examples=[25])
    source_type: str = Field(..., examples=["observation"])
    description: Optional[str] = None
    source_id: Optional[str] = None


class PointsHistoryItem(BaseModel):
    points_change: int
    points_before: int
    points_after: int
    source_type: str
    source_id: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None


def _progress_output(progress: Optional[UserProgress]) -> ProgressOutput:
    if progress is None:
        return ProgressOutput(xp=0, level=0, streak=0)
    return ProgressOutput(
        xp=progress.xp,
        level=progress.level,
        streak=progress.streak,
        last_active_date=progress.last_active_date,
    )


def _guest_code_output(access_code) -> GuestCodeOutput:
    return GuestCodeOutput(
        id=access_code.id,
        code=access_code.code,
        name=access_code.name,
        campaign_name=access_code.campaign_name,
        access_tier=access_code.access_tier,
        duration_hours=access_code.duration_hours,
        max_uses=access_code.max_uses,
        uses=access_code.uses,
        is_active=access_code.is_active,
        destination_path=access_code.destination_path,
        welcome_message=access_code.welcome_message,
        created_at=as_utc(access_code.created_at),
    )


def _code_output(invitation) -> BetaCodeOutput:
    return BetaCodeOutput(
        code=invitation.code,
        organization=invitation.organization,
        is_used=invitation.is_used,
        used_by=invitation.used_by,
        used_at=as_utc(invitation.used_at),
        expires_at=as_utc(invitation.expires_at),
        notes=invitation.notes,
    )


# --------- Progress Endpoints ---------
@app.post("/update-progress", response_model=ExerciseOutput)
def update_progress(
    data: ExerciseInput,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    result, progress = points.record_exercise(
        db, user.id, data.correct_answers, data.total_answers, clock(), unit_id=data.unit_id
    )
    return {"success": True, "result": result, "progress": _progress_output(progress)}


@app.get("/progress", response_model=ProgressOutput)
def get_progress(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _progress_output(db.get(UserProgress, user.id))


@app.get("/user/points-history")
def get_points_history(
    limit: int = 20,
    offset: int = 0,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    history, total, total_earned = points.points_history(db, user.id, limit=limit, offset=offset)
    return {
        "success": True,
        "history": [
            PointsHistoryItem(
                points_change=h.points_change,
                points_before=h.points_before,
                points_after=h.points_after,
                source_type=h.source_type,
                source_id=h.source_id,
                description=h.description,
                created_at=as_utc(h.created_at),
            ).model_dump(mode="json")
            for h in history
        ],
        "total": total,
        "limit": limit,
        "offset": offset,
        "summary": {"totalEarned": total_earned, "entryCount": total},
    }


# --------- Beta Codes ---------
@app.post("/beta-code/validate")
def validate_beta_code(
    data: CodeInput,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """
    Check a beta code without redeeming it (for UI feedback).
    """
    try:
        invitation = beta_codes.validate_code(db, data.code, clock())
    except HabitatError as exc:
        if exc.status_code >= 500:
            raise
        return {"valid": False, "error": exc.message}
    return {"valid": True, "organization": invitation.organization}


@app.post("/beta-code/redeem")
def redeem_beta_code(
    data: CodeInput,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    invitation = beta_codes.redeem_code(db, data.code, user.email, clock())
    return {
        "success": True,
        "message": "Welcome to the beta program!",
        "organization": invitation.organization,
    }


# --------- Admin: Beta Codes ---------
@app.post("/admin/beta-codes")
def generate_beta_codes(
    data: GenerateCodesInput,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    codes = beta_codes.generate_codes(
        db,
        user,
        data.organization,
        data.quantity,
        clock(),
        expiration_months=data.expiration_months,
        notes=data.notes,
    )
    return {"success": True, "codes": [c.code for c in codes], "count": len(codes)}


@app.get("/admin/beta-codes")
def list_beta_codes(
    organization: Optional[str] = None,
    is_used: Optional[bool] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    codes, stats = beta_codes.list_codes(db, user, organization=organization, is_used=is_used)
    return {
        "codes": [_code_output(c).model_dump(mode="json") for c in codes],
        "stats": stats,
    }


# --------- Guest Access ---------
@app.post("/guest-access/activate")
def activate_guest_access(
    data: CodeInput,
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    guest, guest_session, access_code = guest_sessions.activate_guest_code(db, data.code, clock())
    return {
        "success": True,
        "guest_email": guest.email,
        "destination_path": access_code.destination_path or "/dashboard",
        "expires_at": as_utc(guest_session.expires_at).isoformat(),
        "duration_hours": access_code.duration_hours,
        "welcome_message": access_code.welcome_message,
        "campaign_name": access_code.campaign_name,
    }


@app.get("/guest-access/status")
def guest_access_status(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    if user.role != ROLE_GUEST:
        return {"is_guest": False}

    guest_session = guest_sessions.current_guest_session(db, user.id)
    if guest_session is None:
        return {"is_guest": True, "expired": True, "stats": {}}

    status = guest_sessions.session_status(
        guest_session.started_at, guest_session.expires_at, clock(), guest_session.converted_at
    )
    progress = db.get(UserProgress, user.id)
    return {
        "is_guest": True,
        **status.model_dump(mode="json"),
        "stats": {"points": progress.xp if progress else 0},
    }


@app.post("/guest-access/claim")
def claim_guest_access(
    data: ClaimInput,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    """
    Keep a guest's progress under a real account. The caller's identity
    becomes `email` from here on.
    """
    guest_session = guest_sessions.claim_guest_account(db, user, data.email, clock(), name=data.name)
    return {
        "success": True,
        "email": guest_session.converted_to_email,
        "converted_at": as_utc(guest_session.converted_at).isoformat(),
    }


# --------- Admin: Guest Campaigns ---------
@app.post("/admin/guest-codes")
def create_guest_campaign(
    data: GenerateGuestCodeInput,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    access_code = guest_sessions.generate_guest_code(
        db,
        user,
        data.name,
        clock(),
        access_tier=data.access_tier,
        duration_hours=data.duration_hours,
        max_uses=data.max_uses,
        campaign_name=data.campaign_name,
        destination_path=data.destination_path,
        welcome_message=data.welcome_message,
    )
    return {"success": True, "campaign": _guest_code_output(access_code).model_dump(mode="json")}


@app.get("/admin/guest-codes")
def list_guest_campaigns(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock=Depends(get_clock),
):
    codes, summary = guest_sessions.list_guest_codes(db, user, clock())
    return {
        "campaigns": [
            {**_guest_code_output(c).model_dump(mode="json"), "stats": stats}
            for c, stats in codes
        ],
        "summary": summary,
    }


@app.patch("/admin/guest-codes/{code_id}")
def update_guest_campaign(
    code_id: int,
    data: UpdateGuestCodeInput,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    access_code = guest_sessions.update_guest_code(
        db, user, code_id, is_active=data.is_active, max_uses=data.max_uses
    )
    return {"success": True, "campaign": _guest_code_output(access_code).model_dump(mode="json")}


# --------- Admin: Points ---------
@app.post("/admin/points")
def award_points(
    data: AwardPointsInput,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Manual ledger adjustment (event participation, corrections). Negative
    points deduct, but never below zero.
    """
    beta_codes.require_admin(user)
    target = db.query(User).filter(User.email == data.user_email).first()
    if target is None:
        raise NotFoundError("User not found")

    progress = points.add_points(
        db, target.id, data.points, data.source_type, data.description, source_id=data.source_id
    )
    return {"success": True, "progress": _progress_output(progress)}


# --------- Payments ---------
@app.post("/stripe/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    # Must read the raw body for signature validation
    payload = await request.body()
    event = payments.construct_event(
        payload, request.headers.get("stripe-signature"), config.STRIPE_WEBHOOK_SECRET
    )
    payments.handle_event(db, event)
    return {"received": True}
