from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request as FastapiRequest
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from portal.core.deps import (
    ALL_ROLES,
    ROLE_AGENT,
    ROLE_AGENT_MANAGER,
    ROLE_CUSTOMER_ADMIN,
    ROLE_SUPER_ADMIN,
    Principal,
    require_role,
)
from portal.db.session import get_db
from portal.schemas.requests import (
    AssignmentChangeCreate,
    AssignmentChangeReview,
    NoteCreate,
    SubTaskCreate,
    SubTaskPatch,
)

from .activity import company_activity_service, request_activity_service
from .assignment_changes import (
    list_assignment_changes_service,
    request_assignment_change_service,
    review_assignment_change_service,
)
from .attachments import (
    delete_attachment_service,
    download_attachment_service,
    list_attachments_service,
    upload_attachments_service,
)
from .common import read_request_payload
from .notes import add_note_service, list_notes_service
from .service import (
    create_request_service,
    get_request_service,
    list_requests_service,
    request_stats_service,
    update_request_service,
)
from .subtasks import create_subtask_service, list_subtasks_service, update_subtask_service

router = APIRouter()

STAFF_ROLES = (ROLE_AGENT, ROLE_AGENT_MANAGER, ROLE_SUPER_ADMIN)


@router.post("/requests", status_code=201)
async def create_request(
    http_request: FastapiRequest,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(*ALL_ROLES)),
):
    fields, files = await read_request_payload(http_request)
    return await run_in_threadpool(create_request_service, fields, files, db, user)


@router.get("/requests")
def list_requests(
    status: str | None = Query(default=None),
    insured: str | None = Query(default=None),
    date_from: str | None = Query(default=None),
    date_to: str | None = Query(default=None),
    assigned_to_id: str | None = Query(default=None),
    mine: bool = Query(default=False),
    overdue: bool = Query(default=False),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(*ALL_ROLES)),
):
    return list_requests_service(
        db,
        user,
        status=status,
        insured=insured,
        date_from=date_from,
        date_to=date_to,
        assigned_to_id=assigned_to_id,
        mine=mine,
        overdue=overdue,
        limit=limit,
        offset=offset,
    )


@router.get("/requests/stats")
def request_stats(db: Session = Depends(get_db), user: Principal = Depends(require_role(*ALL_ROLES))):
    return request_stats_service(db, user)


@router.get("/requests/{request_id}")
def get_request(request_id: str, db: Session = Depends(get_db), user: Principal = Depends(require_role(*ALL_ROLES))):
    return get_request_service(request_id, db, user)


@router.put("/requests/{request_id}")
async def update_request(
    request_id: str,
    http_request: FastapiRequest,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(*ALL_ROLES)),
):
    fields, files = await read_request_payload(http_request)
    return await run_in_threadpool(update_request_service, request_id, fields, files, db, user)


@router.get("/requests/{request_id}/subtasks")
def list_subtasks(request_id: str, db: Session = Depends(get_db), user: Principal = Depends(require_role(*STAFF_ROLES))):
    return list_subtasks_service(request_id, db, user)


@router.post("/requests/{request_id}/subtasks", status_code=201)
def create_subtask(
    request_id: str,
    payload: SubTaskCreate,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(ROLE_AGENT_MANAGER)),
):
    return create_subtask_service(request_id, payload, db, user)


@router.put("/subtasks/{subtask_id}")
def update_subtask(
    subtask_id: str,
    payload: SubTaskPatch,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(*STAFF_ROLES)),
):
    return update_subtask_service(subtask_id, payload, db, user)


@router.post("/requests/{request_id}/assignment-changes", status_code=201)
def request_assignment_change(
    request_id: str,
    payload: AssignmentChangeCreate,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(ROLE_AGENT)),
):
    return request_assignment_change_service(request_id, payload, db, user)


@router.get("/assignment-changes")
def list_assignment_changes(
    request_id: str | None = Query(default=None),
    status: str | None = Query(default=None),
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(*STAFF_ROLES)),
):
    return list_assignment_changes_service(db, user, request_id=request_id, status=status)


@router.post("/assignment-changes/{change_request_id}/review")
def review_assignment_change(
    change_request_id: str,
    payload: AssignmentChangeReview,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(ROLE_AGENT_MANAGER)),
):
    return review_assignment_change_service(change_request_id, payload, db, user)


@router.get("/requests/{request_id}/notes")
def list_notes(request_id: str, db: Session = Depends(get_db), user: Principal = Depends(require_role(*ALL_ROLES))):
    return list_notes_service(request_id, db, user)


@router.post("/requests/{request_id}/notes", status_code=201)
def add_note(
    request_id: str,
    payload: NoteCreate,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(*ALL_ROLES)),
):
    return add_note_service(request_id, payload, db, user)


@router.get("/requests/{request_id}/activity")
def request_activity(request_id: str, db: Session = Depends(get_db), user: Principal = Depends(require_role(*ALL_ROLES))):
    return request_activity_service(request_id, db, user)


@router.get("/activity")
def company_activity(
    company_id: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(ROLE_SUPER_ADMIN, ROLE_CUSTOMER_ADMIN)),
):
    return company_activity_service(company_id, db, user, limit=limit)


@router.post("/requests/{request_id}/attachments", status_code=201)
async def upload_attachments(
    request_id: str,
    http_request: FastapiRequest,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(*ALL_ROLES)),
):
    _, files = await read_request_payload(http_request)
    return await run_in_threadpool(upload_attachments_service, request_id, files, db, user)


@router.get("/requests/{request_id}/attachments")
def list_attachments(request_id: str, db: Session = Depends(get_db), user: Principal = Depends(require_role(*ALL_ROLES))):
    return list_attachments_service(request_id, db, user)


@router.get("/attachments/{attachment_id}/download")
def download_attachment(attachment_id: str, db: Session = Depends(get_db), user: Principal = Depends(require_role(*ALL_ROLES))):
    return download_attachment_service(attachment_id, db, user)


@router.delete("/attachments/{attachment_id}")
def delete_attachment(attachment_id: str, db: Session = Depends(get_db), user: Principal = Depends(require_role(*ALL_ROLES))):
    return delete_attachment_service(attachment_id, db, user)
