from __future__ import annotations

import logging
from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from portal.core.deps import Principal
from portal.core.errors import ConflictError, PermissionDeniedError, ValidationError
from portal.models.company import Company
from portal.models.request_attachment import RequestAttachment
from portal.models.request_note import RequestNote
from portal.models.service_request import ServiceRequest
from portal.models.sub_task import SubTask
from portal.models.user import User
from portal.schemas.requests import ServiceRequestCreate, ServiceRequestPatch
from portal.services import activity_log
from portal.services.agent_scope import agent_services_company, agent_users_for_company, is_assignment_eligible
from portal.services.field_gating import (
    CREATE_CAPABILITIES,
    FIELD_ASSIGNED_TO,
    FIELD_ATTACHMENTS,
    FIELD_DUE_DATE,
    FIELD_DUE_TIME,
    split_permitted_fields,
)
from portal.services.identifiers import generate_service_queue_id
from portal.services.notifications import (
    EVENT_REQUEST_ASSIGNED,
    EVENT_REQUEST_CREATED,
    EVENT_STATUS_CHANGED,
    notify_users,
)
from portal.services.request_status import (
    STATUS_CLOSED,
    STATUS_NEW,
    TASK_STATUSES,
    apply_status_transition,
    as_utc,
    effective_status,
    ensure_can_close_or_400,
    is_overdue,
    parse_due_time,
    serialize_status_fields,
)
from portal.services.user_directory import (
    display_name,
    serialize_company,
    serialize_user_ref,
    users_by_id,
)

from .attachments import (
    discard_stored_files,
    log_attachment_uploads,
    serialize_attachment,
    store_files,
    validate_incoming_files_or_400,
)
from .common import IncomingFile, model_or_400
from .permissions import request_for_user_or_404, scope_requests_query
from .subtasks import serialize_subtask

logger = logging.getLogger(__name__)

_QUEUE_ID_ATTEMPTS = 5
_REQUIRED_TEXT_FIELDS = {
    "insured": "Insured name is required",
    "service_request_narrative": "Service request narrative is required",
}


def viewer_timezone(db: Session, user: Principal) -> str | None:
    row = db.get(User, user.user_id)
    return row.timezone if row is not None else None


def _due_time_or_400(value: str | None) -> str | None:
    text = str(value or "").strip()
    if not text:
        return None
    if parse_due_time(text) is None:
        raise ValidationError('"due_time" must be in HH:MM format')
    return text


def _assignee_or_400(db: Session, assignee_id: UUID | None) -> User | None:
    if assignee_id is None:
        return None
    assignee = db.get(User, assignee_id)
    if not is_assignment_eligible(assignee):
        raise ValidationError("Requests can only be assigned to an active agent, agent manager or super admin")
    return assignee


def _existing_user_or_400(db: Session, user_id: UUID | None, field_name: str) -> User:
    if user_id is None:
        raise ValidationError(f'"{field_name}" is required')
    row = db.get(User, user_id)
    if row is None:
        raise ValidationError(f'"{field_name}" does not reference a known user')
    return row


def _unique_service_queue_id(db: Session) -> str:
    for _ in range(_QUEUE_ID_ATTEMPTS):
        candidate = generate_service_queue_id()
        if db.query(ServiceRequest.id).filter(ServiceRequest.service_queue_id == candidate).first() is None:
            return candidate
    raise ConflictError("Could not allocate a service queue id, please retry")


def _company_for_create_or_400(db: Session, user: Principal, payload: ServiceRequestCreate, assigned_by: User) -> UUID:
    if user.is_customer:
        if user.company_id is None:
            raise ValidationError("Customer account is not linked to a company")
        return user.company_id
    company_id = payload.company_id or assigned_by.company_id
    if company_id is None:
        raise ValidationError('"company_id" is required')
    if db.get(Company, company_id) is None:
        raise ValidationError('"company_id" does not reference a known company')
    if user.is_agent and not agent_services_company(db, user.user_id, company_id):
        raise PermissionDeniedError("You are not assigned to this company")
    return company_id


def serialize_request(row: ServiceRequest, *, tz_name: str | None = None, users: dict[UUID, User] | None = None) -> dict[str, Any]:
    users = users or {}
    data = {
        "id": str(row.id),
        "service_queue_id": row.service_queue_id,
        "insured": row.insured,
        "service_request_narrative": row.service_request_narrative,
        "service_queue_category": row.service_queue_category,
        "company_id": str(row.company_id),
        "task_status": row.task_status,
        "assigned_to_id": str(row.assigned_to_id) if row.assigned_to_id else None,
        "assigned_by_id": str(row.assigned_by_id) if row.assigned_by_id else None,
        "modified_by_id": str(row.modified_by_id) if row.modified_by_id else None,
        "assigned_to": serialize_user_ref(users.get(row.assigned_to_id)),
        "assigned_by": serialize_user_ref(users.get(row.assigned_by_id)),
        "due_date": row.due_date.isoformat() if row.due_date else None,
        "due_time": row.due_time,
        "in_progress_at": as_utc(row.in_progress_at).isoformat() if row.in_progress_at else None,
        "closed_at": as_utc(row.closed_at).isoformat() if row.closed_at else None,
        "time_spent": row.time_spent,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }
    data.update(serialize_status_fields(row, tz_name))
    return data


def _notify_request_created(db: Session, row: ServiceRequest, user: Principal) -> None:
    managers = agent_users_for_company(db, row.company_id, managers_only=True)
    notify_users(
        db,
        user_ids=[manager.id for manager in managers if manager.id != row.assigned_to_id],
        event_type=EVENT_REQUEST_CREATED,
        title=f"New service request {row.service_queue_id}",
        message=f"{user.name or user.email} submitted a request for {row.insured}.",
        request=row,
        actor_id=user.user_id,
        actor_name=user.name or user.email,
    )
    if row.assigned_to_id is not None:
        _notify_assigned(db, row, user)


def _notify_assigned(db: Session, row: ServiceRequest, user: Principal) -> None:
    notify_users(
        db,
        user_ids=[row.assigned_to_id],
        event_type=EVENT_REQUEST_ASSIGNED,
        title=f"Service request {row.service_queue_id} assigned to you",
        message=f"{user.name or user.email} assigned {row.service_queue_id} ({row.insured}) to you.",
        request=row,
        actor_id=user.user_id,
        actor_name=user.name or user.email,
    )


def create_request_service(fields: dict[str, Any], files: list[IncomingFile], db: Session, user: Principal) -> dict[str, Any]:
    payload = model_or_400(ServiceRequestCreate, fields)
    gated = {key: getattr(payload, key) for key in (FIELD_ASSIGNED_TO, FIELD_DUE_DATE, FIELD_DUE_TIME) if key in payload.model_fields_set}
    permitted, ignored = split_permitted_fields(user.role, gated, CREATE_CAPABILITIES)

    for field_name, message in _REQUIRED_TEXT_FIELDS.items():
        if not str(getattr(payload, field_name) or "").strip():
            raise ValidationError(message)
    if "assigned_by_id" in payload.model_fields_set and payload.assigned_by_id is None:
        raise ValidationError('"assigned_by_id" is required')
    assigned_by = _existing_user_or_400(db, payload.assigned_by_id or user.user_id, "assigned_by_id")
    company_id = _company_for_create_or_400(db, user, payload, assigned_by)
    assignee = _assignee_or_400(db, permitted.get(FIELD_ASSIGNED_TO))
    due_time = _due_time_or_400(permitted.get(FIELD_DUE_TIME))
    validate_incoming_files_or_400(files)

    now = datetime.now(timezone.utc)
    row = ServiceRequest(
        id=uuid4(),
        service_queue_id=_unique_service_queue_id(db),
        insured=str(payload.insured).strip(),
        service_request_narrative=str(payload.service_request_narrative).strip(),
        service_queue_category=payload.service_queue_category or "other",
        company_id=company_id,
        task_status=STATUS_NEW,
        assigned_to_id=assignee.id if assignee else None,
        assigned_by_id=assigned_by.id,
        modified_by_id=user.user_id,
        due_date=permitted.get(FIELD_DUE_DATE),
        due_time=due_time,
        created_at=now,
        updated_at=now,
        responsible=user.responsible,
    )
    attachments = store_files(row.id, files, user) if files else []
    try:
        db.add(row)
        db.add_all(attachments)
        db.commit()
        db.refresh(row)
    except IntegrityError as exc:
        db.rollback()
        discard_stored_files(attachments)
        raise ConflictError("A service request with this queue id already exists") from exc
    except SQLAlchemyError:
        db.rollback()
        discard_stored_files(attachments)
        raise

    activity_log.record_activity(
        db,
        activity_type=activity_log.REQUEST_CREATED,
        description=f"Service request {row.service_queue_id} created for {row.insured}",
        user_id=user.user_id,
        company_id=row.company_id,
        request_id=row.id,
        details={
            "serviceQueueId": row.service_queue_id,
            "category": row.service_queue_category,
            "assignedToId": str(row.assigned_to_id) if row.assigned_to_id else None,
            "attachments": len(attachments),
        },
        responsible=user.responsible,
    )
    log_attachment_uploads(db, row, attachments, user)
    _notify_request_created(db, row, user)

    users = users_by_id(db, [row.assigned_to_id, row.assigned_by_id])
    result = serialize_request(row, tz_name=viewer_timezone(db, user), users=users)
    result["attachments"] = [serialize_attachment(item) for item in attachments]
    result["ignored_fields"] = ignored
    return result


def _validated_changes_or_400(db: Session, permitted: dict[str, Any]) -> dict[str, Any]:
    changes = dict(permitted)
    for field_name, message in _REQUIRED_TEXT_FIELDS.items():
        if field_name in changes:
            text = str(changes[field_name] or "").strip()
            if not text:
                raise ValidationError(message)
            changes[field_name] = text
    if "service_queue_category" in changes and changes["service_queue_category"] is None:
        raise ValidationError('"service_queue_category" cannot be empty')
    if "task_status" in changes and changes["task_status"] not in TASK_STATUSES:
        raise ValidationError(f'"task_status" must be one of: {", ".join(TASK_STATUSES)}')
    if "assigned_by_id" in changes:
        changes["assigned_by_id"] = _existing_user_or_400(db, changes["assigned_by_id"], "assigned_by_id").id
    if FIELD_ASSIGNED_TO in changes:
        assignee = _assignee_or_400(db, changes[FIELD_ASSIGNED_TO])
        changes[FIELD_ASSIGNED_TO] = assignee.id if assignee else None
    if FIELD_DUE_TIME in changes:
        changes[FIELD_DUE_TIME] = _due_time_or_400(changes[FIELD_DUE_TIME])
    if "closed_at" in changes and changes["closed_at"] is not None:
        changes["closed_at"] = as_utc(changes["closed_at"])
    return changes


def update_request_service(
    request_id: str,
    fields: dict[str, Any],
    files: list[IncomingFile],
    db: Session,
    user: Principal,
) -> dict[str, Any]:
    row = request_for_user_or_404(db, user, request_id)
    payload = model_or_400(ServiceRequestPatch, fields)
    requested = payload.model_dump(exclude_unset=True)
    if files:
        requested[FIELD_ATTACHMENTS] = files
    permitted, ignored = split_permitted_fields(user.role, requested)
    if ignored:
        logger.info("Dropped fields %s from %s update of %s", ignored, user.role, row.service_queue_id)
    incoming_files = permitted.pop(FIELD_ATTACHMENTS, [])
    changes = _validated_changes_or_400(db, permitted)
    validate_incoming_files_or_400(incoming_files)

    old_status = str(row.task_status or STATUS_NEW)
    old_assignee = row.assigned_to_id
    next_status = changes.get("task_status", old_status)
    status_changed = next_status != old_status
    if status_changed and next_status == STATUS_CLOSED and row.closed_at is None:
        ensure_can_close_or_400(
            db,
            row,
            assigned_to_id=changes.get(FIELD_ASSIGNED_TO, row.assigned_to_id),
            in_progress_at=row.in_progress_at,
        )

    attachments = store_files(row.id, incoming_files, user) if incoming_files else []
    now = datetime.now(timezone.utc)
    changed_fields = sorted(key for key, value in changes.items() if getattr(row, key) != value)
    for key, value in changes.items():
        if key != "closed_at":
            setattr(row, key, value)
    if status_changed:
        apply_status_transition(row, from_status=old_status, to_status=next_status, now=now)
    if "closed_at" in changes:
        # Explicit override from a manager; may disagree with task_status.
        row.closed_at = changes["closed_at"]
    row.modified_by_id = user.user_id
    row.updated_at = now
    row.responsible = user.responsible
    try:
        db.add(row)
        db.add_all(attachments)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        discard_stored_files(attachments)
        raise
    db.refresh(row)

    if status_changed:
        activity_log.record_activity(
            db,
            activity_type=activity_log.STATUS_CHANGED,
            description=f"Status of {row.service_queue_id} changed from {old_status} to {next_status}",
            user_id=user.user_id,
            company_id=row.company_id,
            request_id=row.id,
            details={"fromStatus": old_status, "toStatus": next_status},
            responsible=user.responsible,
        )
    log_attachment_uploads(db, row, attachments, user)
    assignee_changed = row.assigned_to_id != old_assignee
    if assignee_changed:
        activity_log.record_activity(
            db,
            activity_type=activity_log.REQUEST_ASSIGNED,
            description=f"{row.service_queue_id} reassigned",
            user_id=user.user_id,
            company_id=row.company_id,
            request_id=row.id,
            details={
                "fromAssigneeId": str(old_assignee) if old_assignee else None,
                "toAssigneeId": str(row.assigned_to_id) if row.assigned_to_id else None,
            },
            responsible=user.responsible,
        )
    activity_log.record_activity(
        db,
        activity_type=activity_log.REQUEST_UPDATED,
        description=f"Service request {row.service_queue_id} updated",
        user_id=user.user_id,
        company_id=row.company_id,
        request_id=row.id,
        details={"changedFields": changed_fields, "ignoredFields": ignored, "attachments": len(attachments)},
        responsible=user.responsible,
    )

    if assignee_changed and row.assigned_to_id is not None:
        _notify_assigned(db, row, user)
    if status_changed:
        notify_users(
            db,
            user_ids=[row.assigned_to_id, row.assigned_by_id],
            event_type=EVENT_STATUS_CHANGED,
            title=f"{row.service_queue_id} is now {effective_status(row)}",
            message=f"{user.name or user.email} changed the status from {old_status} to {next_status}.",
            request=row,
            actor_id=user.user_id,
            actor_name=user.name or user.email,
        )

    users = users_by_id(db, [row.assigned_to_id, row.assigned_by_id])
    result = serialize_request(row, tz_name=viewer_timezone(db, user), users=users)
    result["ignored_fields"] = ignored
    result["attachments"] = [serialize_attachment(item) for item in attachments]
    return result


def serialize_note(row: RequestNote, users: dict[UUID, User] | None = None) -> dict[str, Any]:
    author = (users or {}).get(row.author_id)
    return {
        "id": str(row.id),
        "request_id": str(row.request_id),
        "author_id": str(row.author_id),
        "author_name": display_name(author),
        "note_content": row.note_content,
        "is_internal": bool(row.is_internal),
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


def get_request_service(request_id: str, db: Session, user: Principal) -> dict[str, Any]:
    row = request_for_user_or_404(db, user, request_id)
    notes = (
        db.query(RequestNote)
        .filter(RequestNote.request_id == row.id)
        .order_by(RequestNote.created_at.desc(), RequestNote.id.desc())
        .all()
    )
    attachments = (
        db.query(RequestAttachment)
        .filter(RequestAttachment.request_id == row.id)
        .order_by(RequestAttachment.created_at.desc())
        .all()
    )
    subtasks = (
        db.query(SubTask)
        .filter(SubTask.request_id == row.id)
        .order_by(SubTask.created_at.desc(), SubTask.id.desc())
        .all()
    )
    users = users_by_id(
        db,
        [row.assigned_to_id, row.assigned_by_id, row.modified_by_id]
        + [note.author_id for note in notes]
        + [task.assigned_to_id for task in subtasks],
    )
    company = db.get(Company, row.company_id)
    result = serialize_request(row, tz_name=viewer_timezone(db, user), users=users)
    result["modified_by"] = serialize_user_ref(users.get(row.modified_by_id))
    result["company"] = serialize_company(company) if company else None
    result["notes"] = [serialize_note(note, users) for note in notes]
    result["attachments"] = [serialize_attachment(item) for item in attachments]
    result["subtasks"] = [serialize_subtask(task, users) for task in subtasks]
    return result


def _effective_status_filter(status: str):
    if status == STATUS_CLOSED:
        return or_(ServiceRequest.closed_at.is_not(None), ServiceRequest.task_status == STATUS_CLOSED)
    return and_(ServiceRequest.closed_at.is_(None), ServiceRequest.task_status == status)


def _parse_date_or_400(raw: str | None, field_name: str) -> date | None:
    text = str(raw or "").strip()
    if not text:
        return None
    try:
        return date.fromisoformat(text)
    except ValueError as exc:
        raise ValidationError(f'"{field_name}" must be an ISO date') from exc


def list_requests_service(
    db: Session,
    user: Principal,
    *,
    status: str | None = None,
    insured: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    assigned_to_id: str | None = None,
    mine: bool = False,
    overdue: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> dict[str, Any]:
    query = scope_requests_query(db, user, db.query(ServiceRequest))
    status_value = str(status or "").strip().lower()
    if status_value:
        if status_value not in TASK_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(TASK_STATUSES)}")
        query = query.filter(_effective_status_filter(status_value))
    insured_value = str(insured or "").strip()
    if insured_value:
        query = query.filter(ServiceRequest.insured.ilike(f"%{insured_value}%"))
    start = _parse_date_or_400(date_from, "date_from")
    if start is not None:
        query = query.filter(ServiceRequest.created_at >= datetime.combine(start, datetime.min.time(), tzinfo=timezone.utc))
    end = _parse_date_or_400(date_to, "date_to")
    if end is not None:
        query = query.filter(
            ServiceRequest.created_at < datetime.combine(end + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc)
        )
    if str(assigned_to_id or "").strip():
        try:
            assignee_uuid = UUID(str(assigned_to_id).strip())
        except ValueError as exc:
            raise ValidationError('Invalid "assigned_to_id"') from exc
        query = query.filter(ServiceRequest.assigned_to_id == assignee_uuid)
    if mine:
        query = query.filter(ServiceRequest.assigned_to_id == user.user_id)

    tz_name = viewer_timezone(db, user)
    query = query.order_by(ServiceRequest.created_at.desc(), ServiceRequest.id.desc())
    if overdue:
        matching = [row for row in query.all() if is_overdue(row, tz_name)]
        total = len(matching)
        rows = matching[int(offset): int(offset) + int(limit)]
    else:
        total = query.count()
        rows = query.offset(int(offset)).limit(int(limit)).all()
    users = users_by_id(db, [row.assigned_to_id for row in rows] + [row.assigned_by_id for row in rows])
    return {
        "rows": [serialize_request(row, tz_name=tz_name, users=users) for row in rows],
        "total": int(total),
    }


def request_stats_service(db: Session, user: Principal) -> dict[str, Any]:
    rows = scope_requests_query(db, user, db.query(ServiceRequest)).all()
    tz_name = viewer_timezone(db, user)
    by_status = Counter(effective_status(row) for row in rows)
    return {
        "total": len(rows),
        "by_status": {status: int(by_status.get(status, 0)) for status in TASK_STATUSES},
        "overdue": sum(1 for row in rows if is_overdue(row, tz_name)),
        "assigned_to_me": sum(1 for row in rows if row.assigned_to_id == user.user_id),
    }
