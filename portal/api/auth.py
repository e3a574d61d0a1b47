from datetime import timedelta
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.deps import AGENT_ROLES, Principal, get_current_user
from portal.core.errors import ValidationError
from portal.core.security import create_jwt, verify_password
from portal.db.session import get_db
from portal.models.user import User
from portal.schemas.auth import LoginIn, TimezoneIn, TokenOut
from portal.services.agent_scope import agent_for_user, assigned_company_ids
from portal.services.request_status import is_valid_timezone
from portal.services.user_directory import (
    display_name,
    ensure_bootstrap_admin_for_login,
    get_active_user_by_email,
    get_active_user_by_login_code,
    normalize_code,
    normalize_email,
    serialize_user,
)

router = APIRouter()

INVALID_CREDENTIALS = "Invalid credentials"


def _require_user_or_404(db: Session, user_id: UUID) -> User:
    row = db.get(User, user_id)
    if row is None or not row.is_active:
        raise HTTPException(status_code=404, detail="User not found")
    return row


def _authenticate(db: Session, payload: LoginIn) -> User | None:
    email = normalize_email(payload.email)
    code = normalize_code(payload.login_code)
    password = str(payload.password or "")

    if email and password:
        user = ensure_bootstrap_admin_for_login(db, email, password)
        if user is None:
            user = get_active_user_by_email(db, email)
        if user is not None and verify_password(password, user.password_hash):
            return user
        return None
    if email and code:
        user = get_active_user_by_email(db, email)
        if user is not None and user.login_code == code:
            return user
        return None
    if code:
        user = get_active_user_by_login_code(db, code)
        if user is None:
            return None
        if payload.is_agent and (user.role not in AGENT_ROLES or agent_for_user(db, user.id) is None):
            return None
        return user
    return None


def _profile(db: Session, user: User) -> dict:
    data = serialize_user(user)
    if user.role in AGENT_ROLES:
        data["assigned_company_ids"] = [str(value) for value in assigned_company_ids(agent_for_user(db, user.id))]
    return data


@router.post("/login", response_model=TokenOut)
def login(payload: LoginIn, db: Session = Depends(get_db)):
    user = _authenticate(db, payload)
    if user is None:
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)

    token = create_jwt(
        {
            "sub": str(user.id),
            "email": user.email,
            "role": user.role,
            "company_id": str(user.company_id) if user.company_id else None,
            "name": display_name(user),
        },
        settings.JWT_SECRET,
        timedelta(minutes=settings.JWT_TTL_MINUTES),
    )
    return TokenOut(access_token=token, user=_profile(db, user))


@router.get("/me")
def me(current: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    return _profile(db, _require_user_or_404(db, current.user_id))


@router.put("/timezone")
def set_timezone(payload: TimezoneIn, current: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    zone = str(payload.timezone or "").strip()
    if not is_valid_timezone(zone):
        raise ValidationError(f"Unknown timezone: {zone}")
    user = _require_user_or_404(db, current.user_id)
    user.timezone = zone
    user.responsible = current.responsible
    db.add(user)
    db.commit()
    db.refresh(user)
    return _profile(db, user)
