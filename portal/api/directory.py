from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.deps import (
    AGENT_ROLES,
    ALL_ROLES,
    CUSTOMER_ROLES,
    ROLE_AGENT,
    ROLE_AGENT_MANAGER,
    ROLE_CUSTOMER_ADMIN,
    ROLE_SUPER_ADMIN,
    Principal,
    require_role,
)
from portal.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from portal.core.security import hash_password
from portal.db.session import get_db
from portal.models.agent import Agent
from portal.models.company import Company
from portal.models.user import User
from portal.schemas.directory import AgentCompanies, CompanyCreate, CompanyPatch, SuperAdminCreate, UserCreate
from portal.services import activity_log
from portal.services.agent_scope import agent_for_user, agent_users_for_company, assigned_company_ids
from portal.services.notifications import EVENT_USER_DEMOTED, EVENT_USER_PROMOTED, dispatch_email, notify_users
from portal.services.request_status import is_valid_timezone
from portal.services.user_directory import (
    normalize_code,
    normalize_email,
    serialize_company,
    serialize_user,
    serialize_user_ref,
    unique_company_code,
    unique_login_code,
)

from portal.api.requests_modules.common import optional_uuid_or_400, uuid_or_400
from portal.api.requests_modules.permissions import can_view_company, visible_company_ids

router = APIRouter()

COMPANY_NOT_FOUND = "Company not found"
USER_NOT_FOUND = "User not found"


def _company_or_404(db: Session, user: Principal, company_id: str | UUID) -> Company:
    company_uuid = company_id if isinstance(company_id, UUID) else uuid_or_400(company_id, "company_id")
    row = db.get(Company, company_uuid)
    if row is None or not can_view_company(db, user, row.id):
        raise NotFoundError(COMPANY_NOT_FOUND)
    return row


def _existing_company_ids_or_400(db: Session, company_ids: list[UUID]) -> list[UUID]:
    wanted: list[UUID] = []
    for value in company_ids:
        if value not in wanted:
            wanted.append(value)
    if not wanted:
        return []
    found = {row_id for (row_id,) in db.query(Company.id).filter(Company.id.in_(wanted)).all()}
    missing = [str(value) for value in wanted if value not in found]
    if missing:
        raise ValidationError(f"Unknown company ids: {', '.join(missing)}")
    return wanted


def _agent_user_or_404(db: Session, user_id: str) -> tuple[User, Agent | None]:
    user_uuid = uuid_or_400(user_id, "user_id")
    row = db.get(User, user_uuid)
    if row is None:
        raise NotFoundError(USER_NOT_FOUND)
    return row, agent_for_user(db, row.id)


def _serialize_agent(user: User, agent: Agent | None, actor: Principal) -> dict[str, Any]:
    data = serialize_user(user)
    data["agent_id"] = str(agent.id) if agent is not None else None
    data["assigned_company_ids"] = [str(value) for value in assigned_company_ids(agent)]
    data["can_promote"] = actor.is_admin and user.role == ROLE_AGENT
    data["can_demote"] = actor.is_admin and user.role == ROLE_AGENT_MANAGER
    return data


@router.get("/companies")
def list_companies(db: Session = Depends(get_db), user: Principal = Depends(require_role(*ALL_ROLES))):
    query = db.query(Company)
    company_ids = visible_company_ids(db, user)
    if company_ids is not None:
        if not company_ids:
            return {"rows": [], "total": 0}
        query = query.filter(Company.id.in_(company_ids))
    rows = query.order_by(Company.name.asc()).all()
    return {"rows": [serialize_company(row) for row in rows], "total": len(rows)}


@router.post("/companies", status_code=201)
def create_company(
    payload: CompanyCreate,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(ROLE_SUPER_ADMIN)),
):
    name = payload.name.strip()
    if not name:
        raise ValidationError("Company name is required")
    code = normalize_code(payload.company_code) or unique_company_code(db)
    if db.query(Company.id).filter(Company.company_code == code).first() is not None:
        raise ConflictError(f"Company code {code} is already in use")
    row = Company(
        name=name,
        company_code=code,
        primary_contact=payload.primary_contact,
        email=normalize_email(payload.email) or None,
        phone=payload.phone,
        responsible=user.responsible,
    )
    try:
        db.add(row)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Company code {code} is already in use")
    db.refresh(row)
    activity_log.record_activity(
        db,
        activity_type=activity_log.COMPANY_UPDATED,
        description=f"Company {row.name} created",
        user_id=user.user_id,
        company_id=row.id,
        details={"action": "created", "companyCode": row.company_code},
        responsible=user.responsible,
    )
    return serialize_company(row)


@router.put("/companies/{company_id}")
def update_company(
    company_id: str,
    payload: CompanyPatch,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(ROLE_SUPER_ADMIN, ROLE_CUSTOMER_ADMIN)),
):
    row = _company_or_404(db, user, company_id)
    changes = payload.model_dump(exclude_unset=True)
    if "name" in changes:
        name = str(changes["name"] or "").strip()
        if not name:
            raise ValidationError("Company name is required")
        changes["name"] = name
    if "email" in changes:
        changes["email"] = normalize_email(changes["email"]) or None
    for key, value in changes.items():
        setattr(row, key, value)
    row.updated_at = datetime.now(timezone.utc)
    row.responsible = user.responsible
    db.add(row)
    db.commit()
    db.refresh(row)
    activity_log.record_activity(
        db,
        activity_type=activity_log.COMPANY_UPDATED,
        description=f"Company {row.name} updated",
        user_id=user.user_id,
        company_id=row.id,
        details={"action": "updated", "changedFields": sorted(changes)},
        responsible=user.responsible,
    )
    return serialize_company(row)


@router.post("/users", status_code=201)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(ROLE_SUPER_ADMIN, ROLE_CUSTOMER_ADMIN)),
):
    role = str(payload.role or "").strip().lower()
    if role not in ALL_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(ALL_ROLES)}")
    company_id = payload.company_id
    if not user.is_admin:
        if role not in CUSTOMER_ROLES:
            raise PermissionDeniedError("Company admins can only create customer users")
        if company_id is not None and company_id != user.company_id:
            raise PermissionDeniedError("Company admins can only create users in their own company")
        company_id = user.company_id
    if role in CUSTOMER_ROLES:
        if company_id is None:
            raise ValidationError('"company_id" is required for customer users')
        _existing_company_ids_or_400(db, [company_id])
    else:
        company_id = None

    email = normalize_email(payload.email)
    if "@" not in email:
        raise ValidationError("A valid email is required")
    if db.query(User.id).filter(User.email == email).first() is not None:
        raise ConflictError(f"User {email} already exists")
    zone = str(payload.timezone or "").strip() or settings.DEFAULT_TIMEZONE
    if not is_valid_timezone(zone):
        raise ValidationError(f"Unknown timezone: {zone}")
    agent_companies = _existing_company_ids_or_400(db, payload.assigned_company_ids) if role in AGENT_ROLES else []

    row = User(
        first_name=payload.first_name.strip(),
        last_name=str(payload.last_name or "").strip(),
        email=email,
        login_code=unique_login_code(db) if role != ROLE_SUPER_ADMIN else None,
        password_hash=hash_password(payload.password) if payload.password else None,
        role=role,
        company_id=company_id,
        is_active=True,
        timezone=zone,
        responsible=user.responsible,
    )
    try:
        db.add(row)
        db.flush()
        if role in AGENT_ROLES:
            db.add(
                Agent(
                    user_id=row.id,
                    assigned_company_ids=[str(value) for value in agent_companies],
                    is_active=True,
                    responsible=user.responsible,
                )
            )
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"User {email} already exists")
    db.refresh(row)
    activity_log.record_activity(
        db,
        activity_type=activity_log.USER_CREATED,
        description=f"User {email} created with role {role}",
        user_id=user.user_id,
        company_id=company_id,
        details={"userId": str(row.id), "role": role},
        responsible=user.responsible,
    )
    return serialize_user(row, include_login_code=True)


@router.get("/assignees")
def list_assignees(
    company_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(*ALL_ROLES)),
):
    company_uuid = optional_uuid_or_400(company_id, "company_id") or user.company_id
    if company_uuid is None:
        raise ValidationError('"company_id" is required')
    company = _company_or_404(db, user, company_uuid)
    rows = agent_users_for_company(db, company.id)
    admins = (
        db.query(User)
        .filter(User.role == ROLE_SUPER_ADMIN, User.is_active.is_(True))
        .order_by(User.first_name.asc(), User.last_name.asc())
        .all()
    )
    return {"rows": [serialize_user_ref(row) for row in [*rows, *admins]], "total": len(rows) + len(admins)}


@router.get("/agents")
def list_agents(db: Session = Depends(get_db), user: Principal = Depends(require_role(ROLE_SUPER_ADMIN))):
    pairs = (
        db.query(User, Agent)
        .outerjoin(Agent, Agent.user_id == User.id)
        .filter(User.role.in_(AGENT_ROLES))
        .order_by(User.first_name.asc(), User.last_name.asc())
        .all()
    )
    return {"rows": [_serialize_agent(row, agent, user) for row, agent in pairs], "total": len(pairs)}


def _change_agent_role(db: Session, actor: Principal, user_id: str, *, from_role: str, to_role: str) -> dict[str, Any]:
    row, agent = _agent_user_or_404(db, user_id)
    if row.role not in AGENT_ROLES:
        raise ValidationError("Only agents can be promoted or demoted")
    if row.role != from_role:
        raise ConflictError(f"User is already {row.role}")
    previous_role = row.role
    row.role = to_role
    row.updated_at = datetime.now(timezone.utc)
    row.responsible = actor.responsible
    db.add(row)
    db.commit()
    db.refresh(row)

    promoted = to_role == ROLE_AGENT_MANAGER
    activity_log.record_activity(
        db,
        activity_type=activity_log.USER_UPDATED,
        description=f"{row.email} {'promoted' if promoted else 'demoted'} to {to_role}",
        user_id=actor.user_id,
        details={"userId": str(row.id), "previousRole": previous_role, "newRole": to_role},
        responsible=actor.responsible,
    )
    notify_users(
        db,
        user_ids=[row.id],
        event_type=EVENT_USER_PROMOTED if promoted else EVENT_USER_DEMOTED,
        title="Your role has changed",
        message=f"Your role changed from {previous_role} to {to_role}.",
        actor_id=actor.user_id,
        actor_name=actor.name or actor.email,
    )
    return _serialize_agent(row, agent, actor)


@router.post("/agents/{user_id}/promote")
def promote_agent(user_id: str, db: Session = Depends(get_db), user: Principal = Depends(require_role(ROLE_SUPER_ADMIN))):
    return _change_agent_role(db, user, user_id, from_role=ROLE_AGENT, to_role=ROLE_AGENT_MANAGER)


@router.post("/agents/{user_id}/demote")
def demote_agent(user_id: str, db: Session = Depends(get_db), user: Principal = Depends(require_role(ROLE_SUPER_ADMIN))):
    return _change_agent_role(db, user, user_id, from_role=ROLE_AGENT_MANAGER, to_role=ROLE_AGENT)


@router.put("/agents/{user_id}/companies")
def set_agent_companies(
    user_id: str,
    payload: AgentCompanies,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(ROLE_SUPER_ADMIN)),
):
    row, agent = _agent_user_or_404(db, user_id)
    if row.role not in AGENT_ROLES:
        raise ValidationError("Companies can only be assigned to agents")
    company_ids = _existing_company_ids_or_400(db, payload.company_ids)
    if agent is None:
        agent = Agent(user_id=row.id, is_active=True)
    agent.assigned_company_ids = [str(value) for value in company_ids]
    agent.updated_at = datetime.now(timezone.utc)
    agent.responsible = user.responsible
    db.add(agent)
    db.commit()
    db.refresh(agent)
    activity_log.record_activity(
        db,
        activity_type=activity_log.USER_UPDATED,
        description=f"Assigned companies updated for {row.email}",
        user_id=user.user_id,
        details={"userId": str(row.id), "assignedCompanyIds": agent.assigned_company_ids},
        responsible=user.responsible,
    )
    return _serialize_agent(row, agent, user)


def _send_code_email(row: User, previous_code: str | None) -> bool:
    body = f"Hello {row.first_name},\n\nYour login code for {settings.APP_NAME} has been reset.\n\nNew login code: {row.login_code}\n"
    if previous_code:
        body += f"Previous login code (no longer valid): {previous_code}\n"
    return dispatch_email(email=row.email, subject="Your login code has been reset", body=body)


@router.post("/users/{user_id}/reset-code")
def reset_login_code(user_id: str, db: Session = Depends(get_db), user: Principal = Depends(require_role(ROLE_SUPER_ADMIN))):
    row = db.get(User, uuid_or_400(user_id, "user_id"))
    if row is None:
        raise NotFoundError(USER_NOT_FOUND)
    if row.role == ROLE_SUPER_ADMIN:
        raise ValidationError("Super admins sign in with a password, not a login code")
    previous_code = row.login_code
    row.login_code = unique_login_code(db)
    row.updated_at = datetime.now(timezone.utc)
    row.responsible = user.responsible
    try:
        db.add(row)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Could not allocate a unique login code, try again")
    db.refresh(row)
    activity_log.record_activity(
        db,
        activity_type=activity_log.USER_UPDATED,
        description=f"Login code reset for {row.email}",
        user_id=user.user_id,
        company_id=row.company_id,
        details={"userId": str(row.id), "action": "login_code_reset"},
        responsible=user.responsible,
    )
    emailed = _send_code_email(row, previous_code)
    return {
        "user_id": str(row.id),
        "login_code": row.login_code,
        "previous_login_code": previous_code,
        "email_sent": emailed,
    }


@router.post("/companies/{company_id}/reset-code")
def reset_company_code(company_id: str, db: Session = Depends(get_db), user: Principal = Depends(require_role(ROLE_SUPER_ADMIN))):
    company = _company_or_404(db, user, company_id)
    previous_code = company.company_code
    company.company_code = unique_company_code(db)
    company.updated_at = datetime.now(timezone.utc)
    company.responsible = user.responsible
    members = db.query(User).filter(User.company_id == company.id).order_by(User.email.asc()).all()
    try:
        db.add(company)
        for member in members:
            member.login_code = unique_login_code(db)
            member.updated_at = company.updated_at
            member.responsible = user.responsible
            # each new code must be visible to the next uniqueness check
            db.flush()
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Could not allocate unique codes, try again")
    db.refresh(company)
    activity_log.record_activity(
        db,
        activity_type=activity_log.COMPANY_UPDATED,
        description=f"Codes reset for company {company.name}",
        user_id=user.user_id,
        company_id=company.id,
        details={"action": "codes_reset", "previousCompanyCode": previous_code, "resetUsers": len(members)},
        responsible=user.responsible,
    )
    if company.email:
        dispatch_email(
            email=company.email,
            subject="Your company code has been reset",
            body=f"The company code for {company.name} is now {company.company_code}. "
            f"{len(members)} user login code(s) were reset as well.",
        )
    for member in members:
        _send_code_email(member, None)
    return {
        "company": serialize_company(company),
        "previous_company_code": previous_code,
        "users": [serialize_user(member, include_login_code=True) for member in members],
    }


@router.get("/super-admins")
def list_super_admins(db: Session = Depends(get_db), user: Principal = Depends(require_role(ROLE_SUPER_ADMIN))):
    rows = (
        db.query(User)
        .filter(User.role == ROLE_SUPER_ADMIN, User.is_active.is_(True))
        .order_by(User.first_name.asc(), User.last_name.asc())
        .all()
    )
    return {"rows": [serialize_user(row) for row in rows], "total": len(rows)}


@router.post("/super-admins", status_code=201)
def create_super_admin(
    payload: SuperAdminCreate,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(ROLE_SUPER_ADMIN)),
):
    email = normalize_email(payload.email)
    if "@" not in email:
        raise ValidationError("A valid email is required")
    if db.query(User.id).filter(User.email == email).first() is not None:
        raise ConflictError(f"User {email} already exists")
    zone = str(payload.timezone or "").strip() or settings.DEFAULT_TIMEZONE
    if not is_valid_timezone(zone):
        raise ValidationError(f"Unknown timezone: {zone}")
    row = User(
        first_name=payload.first_name.strip(),
        last_name=str(payload.last_name or "").strip(),
        email=email,
        login_code=None,
        password_hash=hash_password(payload.password),
        role=ROLE_SUPER_ADMIN,
        company_id=None,
        is_active=True,
        timezone=zone,
        responsible=user.responsible,
    )
    try:
        db.add(row)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"User {email} already exists")
    db.refresh(row)
    activity_log.record_activity(
        db,
        activity_type=activity_log.USER_CREATED,
        description=f"Super admin {email} created",
        user_id=user.user_id,
        details={"userId": str(row.id), "role": ROLE_SUPER_ADMIN},
        responsible=user.responsible,
    )
    return serialize_user(row)


@router.delete("/super-admins/{user_id}")
def remove_super_admin(user_id: str, db: Session = Depends(get_db), user: Principal = Depends(require_role(ROLE_SUPER_ADMIN))):
    target_id = uuid_or_400(user_id, "user_id")
    if target_id == user.user_id:
        raise ValidationError("You cannot remove your own account")
    row = db.get(User, target_id)
    if row is None or not row.is_active:
        raise NotFoundError(USER_NOT_FOUND)
    if row.role != ROLE_SUPER_ADMIN:
        raise ValidationError("User is not a super admin")
    row.is_active = False
    row.updated_at = datetime.now(timezone.utc)
    row.responsible = user.responsible
    db.add(row)
    db.commit()
    activity_log.record_activity(
        db,
        activity_type=activity_log.USER_UPDATED,
        description=f"Super admin {row.email} removed",
        user_id=user.user_id,
        details={"userId": str(row.id), "action": "deactivated"},
        responsible=user.responsible,
    )
    return {"status": "removed", "id": str(row.id)}
