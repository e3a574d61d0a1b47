from __future__ import annotations

from uuid import UUID

from sqlalchemy import false
from sqlalchemy.orm import Query, Session

from portal.core.deps import Principal
from portal.core.errors import NotFoundError
from portal.models.service_request import ServiceRequest
from portal.services.agent_scope import company_ids_for_agent

from .common import uuid_or_400

REQUEST_NOT_FOUND = "Service request not found"


def visible_company_ids(db: Session, user: Principal) -> list[UUID] | None:
    """Companies whose requests the caller may see; ``None`` means every company."""
    if user.is_admin:
        return None
    if user.is_agent:
        return company_ids_for_agent(db, user.user_id)
    if user.is_customer and user.company_id is not None:
        return [user.company_id]
    return []


def scope_requests_query(db: Session, user: Principal, query: Query) -> Query:
    company_ids = visible_company_ids(db, user)
    if company_ids is None:
        return query
    if not company_ids:
        return query.filter(false())
    return query.filter(ServiceRequest.company_id.in_(company_ids))


def can_view_request(db: Session, user: Principal, row: ServiceRequest) -> bool:
    company_ids = visible_company_ids(db, user)
    return company_ids is None or row.company_id in company_ids


def can_view_company(db: Session, user: Principal, company_id: UUID | None) -> bool:
    company_ids = visible_company_ids(db, user)
    return company_ids is None or (company_id is not None and company_id in company_ids)


def request_for_user_or_404(db: Session, user: Principal, request_id: str | UUID) -> ServiceRequest:
    request_uuid = request_id if isinstance(request_id, UUID) else uuid_or_400(request_id, "request_id")
    row = db.get(ServiceRequest, request_uuid)
    # Hidden rows read exactly like missing ones.
    if row is None or not can_view_request(db, user, row):
        raise NotFoundError(REQUEST_NOT_FOUND)
    return row
