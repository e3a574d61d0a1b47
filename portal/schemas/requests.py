from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from portal.services.request_status import SERVICE_QUEUE_CATEGORIES, TASK_STATUSES


def _status_or_error(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    normalized = str(value).strip().lower()
    if normalized not in TASK_STATUSES:
        raise ValueError(f"task_status must be one of: {', '.join(TASK_STATUSES)}")
    return normalized


def _category_or_error(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    normalized = str(value).strip().lower()
    if normalized not in SERVICE_QUEUE_CATEGORIES:
        raise ValueError(f"service_queue_category must be one of: {', '.join(SERVICE_QUEUE_CATEGORIES)}")
    return normalized


class ServiceRequestCreate(BaseModel):
    insured: Optional[str] = None
    service_request_narrative: Optional[str] = None
    service_queue_category: Optional[str] = None
    company_id: Optional[UUID] = None
    assigned_by_id: Optional[UUID] = None
    assigned_to_id: Optional[UUID] = None
    due_date: Optional[date] = None
    due_time: Optional[str] = Field(default=None, max_length=10)

    validate_category = field_validator("service_queue_category")(_category_or_error)


class ServiceRequestPatch(BaseModel):
    insured: Optional[str] = None
    service_request_narrative: Optional[str] = None
    service_queue_category: Optional[str] = None
    assigned_by_id: Optional[UUID] = None
    assigned_to_id: Optional[UUID] = None
    task_status: Optional[str] = None
    due_date: Optional[date] = None
    due_time: Optional[str] = Field(default=None, max_length=10)
    time_spent: Optional[int] = Field(default=None, ge=0)
    closed_at: Optional[datetime] = None

    validate_category = field_validator("service_queue_category")(_category_or_error)
    validate_status = field_validator("task_status")(_status_or_error)


class NoteCreate(BaseModel):
    note_content: str = ""
    recipient_email: Optional[str] = None
    is_internal: bool = False


class SubTaskCreate(BaseModel):
    task_description: str = ""
    assigned_to_id: UUID
    due_date: Optional[date] = None


class SubTaskPatch(BaseModel):
    task_status: Optional[str] = None
    task_description: Optional[str] = None
    assigned_to_id: Optional[UUID] = None
    due_date: Optional[date] = None

    validate_status = field_validator("task_status")(_status_or_error)


class AssignmentChangeCreate(BaseModel):
    reason: str = ""
    requested_assignee_id: Optional[UUID] = None


class AssignmentChangeReview(BaseModel):
    action: str
    review_comment: Optional[str] = None
    assignee_id: Optional[UUID] = None

    @field_validator("action")
    @classmethod
    def _action(cls, value: str) -> str:
        normalized = str(value or "").strip().lower()
        if normalized not in {"approve", "reject"}:
            raise ValueError("action must be approve or reject")
        return normalized
