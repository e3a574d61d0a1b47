from __future__ import annotations

import logging
import re
import uuid
from datetime import date, datetime, time, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.errors import ValidationError
from portal.models.request_note import RequestNote
from portal.models.service_request import ServiceRequest

logger = logging.getLogger(__name__)

STATUS_NEW = "new"
STATUS_OPEN = "open"
STATUS_IN_PROGRESS = "in_progress"
STATUS_CLOSED = "closed"
TASK_STATUSES = (STATUS_NEW, STATUS_OPEN, STATUS_IN_PROGRESS, STATUS_CLOSED)

SERVICE_QUEUE_CATEGORIES = (
    "policy_inquiry",
    "claims_processing",
    "account_update",
    "technical_support",
    "billing_inquiry",
    "insured_service_cancel_non_renewal",
    "other",
)

_DUE_TIME_RE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")
NO_TIME_SPENT = "\u2014"


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def resolve_timezone(name: str | None) -> ZoneInfo:
    candidate = str(name or "").strip() or settings.DEFAULT_TIMEZONE
    try:
        return ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError):
        logger.debug("Unknown timezone %r, falling back to %s", candidate, settings.DEFAULT_TIMEZONE)
        return ZoneInfo(settings.DEFAULT_TIMEZONE)


def is_valid_timezone(name: str | None) -> bool:
    candidate = str(name or "").strip()
    if not candidate:
        return False
    try:
        ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def parse_due_time(value: str | None) -> time | None:
    match = _DUE_TIME_RE.match(str(value or ""))
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return time(hours, minutes)


def effective_status(row: ServiceRequest) -> str:
    """A request with a completion timestamp reads as closed whatever ``task_status`` says."""
    if row.closed_at is not None:
        return STATUS_CLOSED
    return str(row.task_status or STATUS_NEW)


def due_deadline(due_date: date | None, due_time: str | None, tz_name: str | None) -> datetime | None:
    if due_date is None:
        return None
    tz = resolve_timezone(tz_name)
    parsed_time = parse_due_time(due_time)
    if parsed_time is None:
        # Whole due day counts.
        return datetime.combine(due_date + timedelta(days=1), time(0, 0), tzinfo=tz)
    return datetime.combine(due_date, parsed_time, tzinfo=tz)


def is_overdue(row: ServiceRequest, tz_name: str | None = None, now: datetime | None = None) -> bool:
    if row.due_date is None or effective_status(row) == STATUS_CLOSED:
        return False
    deadline = due_deadline(row.due_date, row.due_time, tz_name)
    current = as_utc(now) or datetime.now(timezone.utc)
    return current > deadline


def is_due_soon(row: ServiceRequest, hours: int, tz_name: str | None = None, now: datetime | None = None) -> bool:
    if row.due_date is None or effective_status(row) == STATUS_CLOSED:
        return False
    deadline = due_deadline(row.due_date, row.due_time, tz_name)
    current = as_utc(now) or datetime.now(timezone.utc)
    return current <= deadline <= current + timedelta(hours=int(hours))


def format_minutes(minutes: int) -> str:
    total = max(int(minutes or 0), 0)
    if total == 0:
        return "0 min"
    hours, mins = divmod(total, 60)
    if hours == 0:
        return f"{mins} min"
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h {mins}m"


def format_elapsed(started_at: datetime | None, finished_at: datetime | None) -> str:
    start = as_utc(started_at)
    end = as_utc(finished_at)
    if start is None or end is None:
        return NO_TIME_SPENT
    total_minutes = max(int((end - start).total_seconds() // 60), 0)
    days, rest = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(rest, 60)
    if days > 0:
        return f"{days}d {hours}h {minutes}m"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def time_spent_display(row: ServiceRequest) -> str:
    # Manual minutes and the computed span are independent; manual wins when entered.
    if row.time_spent:
        return format_minutes(row.time_spent)
    return format_elapsed(row.in_progress_at, row.closed_at)


def ensure_can_close_or_400(
    db: Session,
    row: ServiceRequest,
    *,
    assigned_to_id: uuid.UUID | None,
    in_progress_at: datetime | None,
) -> None:
    if assigned_to_id is None:
        raise ValidationError("Cannot close a request without an assignee")
    if in_progress_at is None:
        raise ValidationError("Cannot close a request that was never started")
    has_note = db.query(RequestNote.id).filter(RequestNote.request_id == row.id).first() is not None
    if not has_note:
        raise ValidationError("Add at least one note before closing the request")


def apply_status_transition(row: ServiceRequest, *, from_status: str, to_status: str, now: datetime) -> dict[str, Any]:
    """Stamp lifecycle timestamps for a ``task_status`` change and return what was touched."""
    touched: dict[str, Any] = {}
    if to_status == STATUS_IN_PROGRESS and row.in_progress_at is None:
        row.in_progress_at = now
        touched["in_progress_at"] = now.isoformat()
    if to_status == STATUS_CLOSED and row.closed_at is None:
        row.closed_at = now
        touched["closed_at"] = now.isoformat()
    if from_status == STATUS_CLOSED and to_status != STATUS_CLOSED and row.closed_at is not None:
        row.closed_at = None
        touched["closed_at"] = None
    return touched


def serialize_status_fields(row: ServiceRequest, tz_name: str | None = None, now: datetime | None = None) -> dict[str, Any]:
    return {
        "effective_status": effective_status(row),
        "is_overdue": is_overdue(row, tz_name, now),
        "time_spent_display": time_spent_display(row),
    }
