from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.db.session import SessionLocal
from portal.models.service_request import ServiceRequest
from portal.models.user import User
from portal.services.notifications import EVENT_REQUEST_DUE_SOON, EVENT_REQUEST_OVERDUE, notify_users
from portal.services.request_status import STATUS_CLOSED, is_due_soon, is_overdue
from portal.workers.celery_app import celery_app


def _open_requests_with_due_date(db: Session) -> list[ServiceRequest]:
    return (
        db.query(ServiceRequest)
        .filter(
            ServiceRequest.due_date.isnot(None),
            ServiceRequest.assigned_to_id.isnot(None),
            ServiceRequest.closed_at.is_(None),
            ServiceRequest.task_status != STATUS_CLOSED,
        )
        .order_by(ServiceRequest.due_date.asc())
        .all()
    )


def emit_due_date_reminders(db: Session, *, now: datetime | None = None) -> dict[str, int]:
    current = now or datetime.now(timezone.utc)
    overdue_created = 0
    due_soon_created = 0
    for req in _open_requests_with_due_date(db):
        assignee = db.get(User, req.assigned_to_id)
        if assignee is None or not assignee.is_active:
            continue
        tz_name = assignee.timezone or settings.DEFAULT_TIMEZONE
        due_text = req.due_date.isoformat()
        if is_overdue(req, tz_name, current):
            result = notify_users(
                db,
                user_ids=[req.assigned_to_id, req.assigned_by_id],
                event_type=EVENT_REQUEST_OVERDUE,
                title=f"Service request {req.service_queue_id} is overdue",
                message=f"{req.service_queue_id} ({req.insured}) was due {due_text}.",
                request=req,
                actor_name="Due date reminder",
                dedupe_prefix=f"overdue:{req.id}:{due_text}",
            )
            overdue_created += int(result.get("internal_created", 0))
        elif is_due_soon(req, settings.DUE_SOON_HOURS, tz_name, current):
            result = notify_users(
                db,
                user_ids=[req.assigned_to_id],
                event_type=EVENT_REQUEST_DUE_SOON,
                title=f"Service request {req.service_queue_id} is due soon",
                message=f"{req.service_queue_id} ({req.insured}) is due {due_text}.",
                request=req,
                actor_name="Due date reminder",
                dedupe_prefix=f"due_soon:{req.id}:{due_text}",
            )
            due_soon_created += int(result.get("internal_created", 0))
    return {"overdue_notified": overdue_created, "due_soon_notified": due_soon_created}


@celery_app.task(name="portal.workers.tasks.due_dates.due_date_reminders")
def due_date_reminders():
    db = SessionLocal()
    try:
        return emit_due_date_reminders(db)
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
