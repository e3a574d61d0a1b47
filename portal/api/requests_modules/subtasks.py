from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from portal.core.deps import AGENT_ROLES, Principal
from portal.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from portal.models.service_request import ServiceRequest
from portal.models.sub_task import SubTask
from portal.models.user import User
from portal.schemas.requests import SubTaskCreate, SubTaskPatch
from portal.services.agent_scope import agent_services_company
from portal.services.identifiers import generate_task_id
from portal.services.notifications import EVENT_SUBTASK_ASSIGNED, EVENT_SUBTASK_COMPLETED, notify_users
from portal.services.request_status import STATUS_CLOSED, STATUS_NEW
from portal.services.user_directory import display_name, users_by_id

from .common import uuid_or_400
from .permissions import can_view_request, request_for_user_or_404

SUBTASK_MANAGER_FIELDS = ("task_description", "assigned_to_id", "due_date")


def serialize_subtask(row: SubTask, users: dict[UUID, User] | None = None) -> dict[str, Any]:
    users = users or {}
    return {
        "id": str(row.id),
        "task_id": row.task_id,
        "request_id": str(row.request_id),
        "task_description": row.task_description,
        "assigned_to_id": str(row.assigned_to_id),
        "assigned_to_name": display_name(users.get(row.assigned_to_id)),
        "assigned_by_id": str(row.assigned_by_id),
        "assigned_by_name": display_name(users.get(row.assigned_by_id)),
        "due_date": row.due_date.isoformat() if row.due_date else None,
        "task_status": row.task_status,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


def _subtask_assignee_or_400(db: Session, req: ServiceRequest, assignee_id: UUID) -> User:
    assignee = db.get(User, assignee_id)
    if (
        assignee is None
        or not assignee.is_active
        or assignee.role not in AGENT_ROLES
        or not agent_services_company(db, assignee.id, req.company_id)
    ):
        raise ValidationError("Sub-tasks can only be assigned to an active agent servicing this company")
    return assignee


def _unique_task_id(db: Session) -> str:
    candidate = generate_task_id()
    while db.query(SubTask.id).filter(SubTask.task_id == candidate).first() is not None:
        candidate = generate_task_id()
    return candidate


def _notify_subtask_assignee(db: Session, row: SubTask, req: ServiceRequest, user: Principal) -> None:
    notify_users(
        db,
        user_ids=[row.assigned_to_id],
        event_type=EVENT_SUBTASK_ASSIGNED,
        title=f"New sub-task {row.task_id} on {req.service_queue_id}",
        message=row.task_description,
        request=req,
        actor_id=user.user_id,
        actor_name=user.name or user.email,
    )


def create_subtask_service(request_id: str, payload: SubTaskCreate, db: Session, user: Principal) -> dict[str, Any]:
    req = request_for_user_or_404(db, user, request_id)
    description = str(payload.task_description or "").strip()
    if not description:
        raise ValidationError("Sub-task description is required")
    assignee = _subtask_assignee_or_400(db, req, payload.assigned_to_id)

    # No guard on the parent's status: closed requests still accept sub-tasks.
    row = SubTask(
        task_id=_unique_task_id(db),
        request_id=req.id,
        task_description=description,
        assigned_to_id=assignee.id,
        assigned_by_id=user.user_id,
        due_date=payload.due_date,
        task_status=STATUS_NEW,
        responsible=user.responsible,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    _notify_subtask_assignee(db, row, req, user)
    return serialize_subtask(row, users_by_id(db, [row.assigned_to_id, row.assigned_by_id]))


def list_subtasks_service(request_id: str, db: Session, user: Principal) -> dict[str, Any]:
    req = request_for_user_or_404(db, user, request_id)
    rows = (
        db.query(SubTask)
        .filter(SubTask.request_id == req.id)
        .order_by(SubTask.created_at.desc(), SubTask.id.desc())
        .all()
    )
    users = users_by_id(db, [row.assigned_to_id for row in rows] + [row.assigned_by_id for row in rows])
    return {"rows": [serialize_subtask(row, users) for row in rows], "total": len(rows)}


def update_subtask_service(subtask_id: str, payload: SubTaskPatch, db: Session, user: Principal) -> dict[str, Any]:
    row = db.get(SubTask, uuid_or_400(subtask_id, "subtask_id"))
    req = db.get(ServiceRequest, row.request_id) if row is not None else None
    if row is None or req is None or not can_view_request(db, user, req):
        raise NotFoundError("Sub-task not found")

    is_manager = user.is_manager or user.is_admin
    if not is_manager and row.assigned_to_id != user.user_id:
        raise PermissionDeniedError("Only the assignee or a manager can update this sub-task")

    changes = payload.model_dump(exclude_unset=True)
    ignored: list[str] = []
    if not is_manager:
        ignored = sorted(key for key in changes if key in SUBTASK_MANAGER_FIELDS)
        changes = {key: value for key, value in changes.items() if key not in SUBTASK_MANAGER_FIELDS}
    if "task_status" in changes and changes["task_status"] is None:
        raise ValidationError('"task_status" cannot be empty')
    if "task_description" in changes:
        description = str(changes["task_description"] or "").strip()
        if not description:
            raise ValidationError("Sub-task description is required")
        changes["task_description"] = description
    if "assigned_to_id" in changes:
        if changes["assigned_to_id"] is None:
            raise ValidationError('"assigned_to_id" cannot be empty')
        changes["assigned_to_id"] = _subtask_assignee_or_400(db, req, changes["assigned_to_id"]).id

    old_status = row.task_status
    old_assignee = row.assigned_to_id
    for key, value in changes.items():
        setattr(row, key, value)
    row.responsible = user.responsible
    db.add(row)
    db.commit()
    db.refresh(row)

    if row.assigned_to_id != old_assignee:
        _notify_subtask_assignee(db, row, req, user)
    if row.task_status == STATUS_CLOSED and old_status != STATUS_CLOSED:
        notify_users(
            db,
            user_ids=[row.assigned_by_id],
            event_type=EVENT_SUBTASK_COMPLETED,
            title=f"Sub-task {row.task_id} completed",
            message=f"{user.name or user.email} closed sub-task {row.task_id} on {req.service_queue_id}.",
            request=req,
            actor_id=user.user_id,
            actor_name=user.name or user.email,
        )
    result = serialize_subtask(row, users_by_id(db, [row.assigned_to_id, row.assigned_by_id]))
    result["ignored_fields"] = ignored
    return result
