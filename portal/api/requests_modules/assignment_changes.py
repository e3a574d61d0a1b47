from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from portal.core.deps import Principal
from portal.core.errors import ConflictError, NotFoundError, ValidationError
from portal.models.assignment_change_request import AssignmentChangeRequest
from portal.models.service_request import ServiceRequest
from portal.models.user import User
from portal.schemas.requests import AssignmentChangeCreate, AssignmentChangeReview
from portal.services import activity_log
from portal.services.agent_scope import agent_users_for_company, is_assignment_eligible
from portal.services.notifications import (
    EVENT_ASSIGNMENT_CHANGE_REQUESTED,
    EVENT_ASSIGNMENT_CHANGE_REVIEWED,
    EVENT_REQUEST_ASSIGNED,
    notify_users,
)
from portal.services.user_directory import display_name, users_by_id

from .common import optional_uuid_or_400, uuid_or_400
from .permissions import can_view_request, request_for_user_or_404, scope_requests_query

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
CHANGE_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)


def serialize_assignment_change(
    row: AssignmentChangeRequest,
    users: dict[UUID, User] | None = None,
    request: ServiceRequest | None = None,
) -> dict[str, Any]:
    users = users or {}
    return {
        "id": str(row.id),
        "request_id": str(row.request_id),
        "service_queue_id": request.service_queue_id if request is not None else None,
        "requested_by_id": str(row.requested_by_id),
        "requested_by_name": display_name(users.get(row.requested_by_id)),
        "current_assignee_id": str(row.current_assignee_id) if row.current_assignee_id else None,
        "current_assignee_name": display_name(users.get(row.current_assignee_id)),
        "requested_assignee_id": str(row.requested_assignee_id) if row.requested_assignee_id else None,
        "requested_assignee_name": display_name(users.get(row.requested_assignee_id)),
        "reason": row.reason,
        "status": row.status,
        "reviewed_by_id": str(row.reviewed_by_id) if row.reviewed_by_id else None,
        "review_comment": row.review_comment,
        "reviewed_at": row.reviewed_at.isoformat() if row.reviewed_at else None,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


def _users_for(db: Session, rows: list[AssignmentChangeRequest]) -> dict[UUID, User]:
    ids: list[UUID | None] = []
    for row in rows:
        ids.extend([row.requested_by_id, row.current_assignee_id, row.requested_assignee_id])
    return users_by_id(db, ids)


def _eligible_assignee_or_400(db: Session, assignee_id: UUID | None) -> UUID | None:
    if assignee_id is None:
        return None
    if not is_assignment_eligible(db.get(User, assignee_id)):
        raise ValidationError("Requested assignee must be an active agent, agent manager or super admin")
    return assignee_id


def request_assignment_change_service(
    request_id: str,
    payload: AssignmentChangeCreate,
    db: Session,
    user: Principal,
) -> dict[str, Any]:
    req = request_for_user_or_404(db, user, request_id)
    reason = str(payload.reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required")
    requested_assignee_id = _eligible_assignee_or_400(db, payload.requested_assignee_id)

    pending = (
        db.query(AssignmentChangeRequest.id)
        .filter(AssignmentChangeRequest.request_id == req.id, AssignmentChangeRequest.status == STATUS_PENDING)
        .first()
    )
    if pending is not None:
        raise ConflictError("A pending assignment change already exists for this request")

    row = AssignmentChangeRequest(
        request_id=req.id,
        requested_by_id=user.user_id,
        current_assignee_id=req.assigned_to_id,
        requested_assignee_id=requested_assignee_id,
        reason=reason,
        status=STATUS_PENDING,
        responsible=user.responsible,
    )
    db.add(row)
    db.commit()
    db.refresh(row)

    activity_log.record_activity(
        db,
        activity_type=activity_log.ASSIGNMENT_CHANGE_REQUESTED,
        description=f"Assignment change requested for {req.service_queue_id}",
        user_id=user.user_id,
        company_id=req.company_id,
        request_id=req.id,
        details={
            "changeRequestId": str(row.id),
            "reason": reason,
            "currentAssigneeId": str(row.current_assignee_id) if row.current_assignee_id else None,
            "requestedAssigneeId": str(requested_assignee_id) if requested_assignee_id else None,
        },
        responsible=user.responsible,
    )
    managers = agent_users_for_company(db, req.company_id, managers_only=True)
    notify_users(
        db,
        user_ids=[manager.id for manager in managers],
        event_type=EVENT_ASSIGNMENT_CHANGE_REQUESTED,
        title=f"Assignment change requested for {req.service_queue_id}",
        message=f"{user.name or user.email} asked to be reassigned: {reason}",
        request=req,
        actor_id=user.user_id,
        actor_name=user.name or user.email,
    )
    return serialize_assignment_change(row, _users_for(db, [row]), req)


def list_assignment_changes_service(
    db: Session,
    user: Principal,
    *,
    request_id: str | None = None,
    status: str | None = None,
) -> dict[str, Any]:
    query = db.query(AssignmentChangeRequest, ServiceRequest).join(
        ServiceRequest, ServiceRequest.id == AssignmentChangeRequest.request_id
    )
    query = scope_requests_query(db, user, query)
    request_uuid = optional_uuid_or_400(request_id, "request_id")
    if request_uuid is not None:
        query = query.filter(AssignmentChangeRequest.request_id == request_uuid)
    status_value = str(status or "").strip().lower()
    if status_value and status_value not in CHANGE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(CHANGE_STATUSES)}")
    if user.is_manager or user.is_admin:
        if not status_value and request_uuid is None:
            status_value = STATUS_PENDING
    else:
        query = query.filter(AssignmentChangeRequest.requested_by_id == user.user_id)
    if status_value:
        query = query.filter(AssignmentChangeRequest.status == status_value)

    pairs = query.order_by(AssignmentChangeRequest.created_at.desc(), AssignmentChangeRequest.id.desc()).all()
    users = _users_for(db, [row for row, _ in pairs])
    return {
        "rows": [serialize_assignment_change(row, users, req) for row, req in pairs],
        "total": len(pairs),
    }


def review_assignment_change_service(
    change_request_id: str,
    payload: AssignmentChangeReview,
    db: Session,
    user: Principal,
) -> dict[str, Any]:
    change_uuid = uuid_or_400(change_request_id, "change_request_id")
    row = db.get(AssignmentChangeRequest, change_uuid)
    req = db.get(ServiceRequest, row.request_id) if row is not None else None
    if row is None or req is None or not can_view_request(db, user, req):
        raise NotFoundError("Assignment change request not found")
    if row.status != STATUS_PENDING:
        raise ConflictError(f"Assignment change request was already {row.status}")

    approve = payload.action == "approve"
    comment = str(payload.review_comment or "").strip() or None
    previous_assignee = req.assigned_to_id
    new_assignee = previous_assignee
    if approve:
        override = _eligible_assignee_or_400(db, payload.assignee_id)
        new_assignee = row.requested_assignee_id or override or previous_assignee

    now = datetime.now(timezone.utc)
    next_status = STATUS_APPROVED if approve else STATUS_REJECTED
    stmt = (
        update(AssignmentChangeRequest)
        .where(AssignmentChangeRequest.id == change_uuid, AssignmentChangeRequest.status == STATUS_PENDING)
        .values(
            status=next_status,
            reviewed_by_id=user.user_id,
            review_comment=comment,
            reviewed_at=now,
            updated_at=now,
            responsible=user.responsible,
        )
    )
    try:
        updated_rows = db.execute(stmt).rowcount or 0
        if updated_rows == 0:
            db.rollback()
            raise ConflictError("Assignment change request was already reviewed")
        if approve and new_assignee != previous_assignee:
            req.assigned_to_id = new_assignee
            req.modified_by_id = user.user_id
            req.updated_at = now
            req.responsible = user.responsible
            db.add(req)
        db.commit()
    except ConflictError:
        raise
    except Exception:
        db.rollback()
        raise
    db.refresh(row)
    db.refresh(req)

    activity_log.record_activity(
        db,
        activity_type=activity_log.ASSIGNMENT_CHANGE_APPROVED if approve else activity_log.ASSIGNMENT_CHANGE_REJECTED,
        description=f"Assignment change for {req.service_queue_id} {next_status}",
        user_id=user.user_id,
        company_id=req.company_id,
        request_id=req.id,
        details={
            "changeRequestId": str(row.id),
            "reviewComment": comment,
            "fromAssigneeId": str(previous_assignee) if previous_assignee else None,
            "toAssigneeId": str(req.assigned_to_id) if req.assigned_to_id else None,
        },
        responsible=user.responsible,
    )
    notify_users(
        db,
        user_ids=[row.requested_by_id],
        event_type=EVENT_ASSIGNMENT_CHANGE_REVIEWED,
        title=f"Assignment change for {req.service_queue_id} {next_status}",
        message=comment or f"Your assignment change request was {next_status}.",
        request=req,
        actor_id=user.user_id,
        actor_name=user.name or user.email,
    )
    if approve and req.assigned_to_id is not None and req.assigned_to_id != previous_assignee:
        notify_users(
            db,
            user_ids=[req.assigned_to_id],
            event_type=EVENT_REQUEST_ASSIGNED,
            title=f"Service request {req.service_queue_id} assigned to you",
            message=f"{user.name or user.email} approved a reassignment of {req.service_queue_id} to you.",
            request=req,
            actor_id=user.user_id,
            actor_name=user.name or user.email,
        )
    return serialize_assignment_change(row, _users_for(db, [row]), req)
