from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.deps import ROLE_SUPER_ADMIN
from portal.core.security import generate_login_code, hash_password
from portal.models.company import Company
from portal.models.user import User
from portal.services.identifiers import generate_company_code

logger = logging.getLogger(__name__)

_CODE_ATTEMPTS = 10


def normalize_email(raw: str | None) -> str:
    return str(raw or "").strip().lower()


def normalize_code(raw: str | None) -> str:
    return str(raw or "").strip().upper()


def get_active_user_by_email(db: Session, email: str) -> User | None:
    normalized = normalize_email(email)
    if not normalized:
        return None
    return db.query(User).filter(func.lower(User.email) == normalized, User.is_active.is_(True)).first()


def get_active_user_by_login_code(db: Session, login_code: str) -> User | None:
    normalized = normalize_code(login_code)
    if not normalized:
        return None
    return db.query(User).filter(User.login_code == normalized, User.is_active.is_(True)).first()


def unique_login_code(db: Session) -> str:
    for _ in range(_CODE_ATTEMPTS):
        code = generate_login_code()
        if db.query(User.id).filter(User.login_code == code).first() is None:
            return code
    raise RuntimeError("Could not allocate a unique login code")


def unique_company_code(db: Session) -> str:
    for _ in range(_CODE_ATTEMPTS):
        code = generate_company_code()
        if db.query(Company.id).filter(Company.company_code == code).first() is None:
            return code
    raise RuntimeError("Could not allocate a unique company code")


def ensure_bootstrap_admin_for_login(db: Session, email: str, password: str) -> User | None:
    """Create the first super admin from configured credentials.

    Only applies while no super admin exists at all.
    """
    if not settings.BOOTSTRAP_ADMIN_ENABLED:
        return None
    bootstrap_email = normalize_email(settings.BOOTSTRAP_ADMIN_EMAIL)
    if normalize_email(email) != bootstrap_email:
        return None
    if str(password or "") != str(settings.BOOTSTRAP_ADMIN_PASSWORD or ""):
        return None
    if db.query(User.id).filter(User.role == ROLE_SUPER_ADMIN).first() is not None:
        return None

    user = User(
        first_name=str(settings.BOOTSTRAP_ADMIN_FIRST_NAME or "System"),
        last_name=str(settings.BOOTSTRAP_ADMIN_LAST_NAME or ""),
        email=bootstrap_email,
        password_hash=hash_password(str(settings.BOOTSTRAP_ADMIN_PASSWORD or "")),
        role=ROLE_SUPER_ADMIN,
        is_active=True,
        timezone=settings.DEFAULT_TIMEZONE,
        responsible="bootstrap",
    )
    try:
        db.add(user)
        db.commit()
    except IntegrityError:
        db.rollback()
        return get_active_user_by_email(db, bootstrap_email)
    db.refresh(user)
    logger.info("Bootstrapped super admin %s", bootstrap_email)
    return user


def display_name(user: User | None) -> str | None:
    if user is None:
        return None
    return user.full_name or user.email


def users_by_id(db: Session, ids: list[uuid.UUID | None]) -> dict[uuid.UUID, User]:
    wanted = {value for value in ids if value is not None}
    if not wanted:
        return {}
    return {row.id: row for row in db.query(User).filter(User.id.in_(wanted)).all()}


def serialize_user_ref(user: User | None) -> dict[str, Any] | None:
    if user is None:
        return None
    return {
        "id": str(user.id),
        "name": display_name(user),
        "email": user.email,
        "role": user.role,
    }


def serialize_user(user: User, *, include_login_code: bool = False) -> dict[str, Any]:
    data = {
        "id": str(user.id),
        "first_name": user.first_name,
        "last_name": user.last_name,
        "name": display_name(user),
        "email": user.email,
        "role": user.role,
        "company_id": str(user.company_id) if user.company_id else None,
        "is_active": bool(user.is_active),
        "timezone": user.timezone,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }
    if include_login_code:
        data["login_code"] = user.login_code
    return data


def serialize_company(row: Company) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "name": row.name,
        "company_code": row.company_code,
        "primary_contact": row.primary_contact,
        "email": row.email,
        "phone": row.phone,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }
