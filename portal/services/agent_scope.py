from __future__ import annotations

import uuid

from sqlalchemy.orm import Session

from portal.core.deps import AGENT_ROLES, ROLE_AGENT_MANAGER, ROLE_SUPER_ADMIN
from portal.models.agent import Agent
from portal.models.user import User

ASSIGNABLE_ROLES = (*AGENT_ROLES, ROLE_SUPER_ADMIN)


def _as_uuid_or_none(value: object) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def agent_for_user(db: Session, user_id: uuid.UUID) -> Agent | None:
    return db.query(Agent).filter(Agent.user_id == user_id).first()


def assigned_company_ids(agent: Agent | None) -> list[uuid.UUID]:
    if agent is None or not agent.is_active:
        return []
    out: list[uuid.UUID] = []
    for raw in agent.assigned_company_ids or []:
        company_uuid = _as_uuid_or_none(raw)
        if company_uuid is not None and company_uuid not in out:
            out.append(company_uuid)
    return out


def company_ids_for_agent(db: Session, user_id: uuid.UUID) -> list[uuid.UUID]:
    return assigned_company_ids(agent_for_user(db, user_id))


def agent_services_company(db: Session, user_id: uuid.UUID, company_id: uuid.UUID | None) -> bool:
    if company_id is None:
        return False
    return company_id in company_ids_for_agent(db, user_id)


def agent_users_for_company(db: Session, company_id: uuid.UUID, *, managers_only: bool = False) -> list[User]:
    roles = (ROLE_AGENT_MANAGER,) if managers_only else AGENT_ROLES
    rows = (
        db.query(User, Agent)
        .join(Agent, Agent.user_id == User.id)
        .filter(User.role.in_(roles), User.is_active.is_(True), Agent.is_active.is_(True))
        .order_by(User.first_name.asc(), User.last_name.asc())
        .all()
    )
    return [user for user, agent in rows if company_id in assigned_company_ids(agent)]


def is_assignment_eligible(user: User | None) -> bool:
    return user is not None and bool(user.is_active) and user.role in ASSIGNABLE_ROLES
