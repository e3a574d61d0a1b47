from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.models.notification import Notification
from portal.models.service_request import ServiceRequest
from portal.models.user import User
from portal.services.email_service import MOCK_PROVIDERS, send_email_message

logger = logging.getLogger(__name__)

EVENT_REQUEST_CREATED = "request_created"
EVENT_REQUEST_ASSIGNED = "request_assigned"
EVENT_STATUS_CHANGED = "status_changed"
EVENT_NOTE_ADDED = "note_added"
EVENT_ASSIGNMENT_CHANGE_REQUESTED = "assignment_change_requested"
EVENT_ASSIGNMENT_CHANGE_REVIEWED = "assignment_change_reviewed"
EVENT_SUBTASK_ASSIGNED = "subtask_assigned"
EVENT_SUBTASK_COMPLETED = "subtask_completed"
EVENT_USER_PROMOTED = "user_promoted"
EVENT_USER_DEMOTED = "user_demoted"
EVENT_REQUEST_OVERDUE = "request_overdue"
EVENT_REQUEST_DUE_SOON = "due_date_reminder"


def _as_utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_uuid_or_none(value: Any) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


def request_payload(request: ServiceRequest | None, actor_name: str | None = None) -> dict[str, Any]:
    if request is None:
        return {"actor_name": actor_name} if actor_name else {}
    return {
        "request_id": str(request.id),
        "service_queue_id": request.service_queue_id,
        "insured": request.insured,
        "actor_name": actor_name,
    }


def _queue_emails() -> bool:
    mode = str(settings.NOTIFICATION_DELIVERY or "auto").strip().lower()
    if mode == "auto":
        # Real transports go through the worker; mock delivery only logs.
        return str(settings.EMAIL_PROVIDER or "").strip().lower() not in MOCK_PROVIDERS
    return mode == "celery"


def dispatch_email(*, email: str | None, subject: str, body: str) -> bool:
    """Hand one email to the configured transport; failures are logged, never raised."""
    if not str(email or "").strip():
        return False
    try:
        if _queue_emails():
            from portal.workers.tasks.notifications import send_email_task

            send_email_task.delay(email=email, subject=subject, body=body)
        else:
            send_email_message(email=email, subject=subject, body=body)
    except Exception:
        logger.exception("Email delivery to %s failed (subject=%r)", email, subject)
        return False
    return True


def _create_notification(
    db: Session,
    *,
    user_id: uuid.UUID,
    event_type: str,
    title: str,
    message: str | None,
    payload: dict[str, Any],
    request_id: uuid.UUID | None,
    dedupe_key: str | None,
) -> Notification | None:
    normalized_dedupe = str(dedupe_key or "").strip() or None
    if normalized_dedupe:
        exists = db.query(Notification.id).filter(Notification.dedupe_key == normalized_dedupe).first()
        if exists is not None:
            return None
    row = Notification(
        user_id=user_id,
        request_id=request_id,
        type=event_type,
        title=str(title or "").strip()[:200] or event_type,
        message=str(message or "").strip() or None,
        payload=dict(payload or {}),
        is_read=False,
        read_at=None,
        dedupe_key=normalized_dedupe,
        responsible="Notification service",
    )
    db.add(row)
    return row


def notify_users(
    db: Session,
    *,
    user_ids: Iterable[uuid.UUID | str | None],
    event_type: str,
    title: str,
    message: str,
    request: ServiceRequest | None = None,
    actor_id: uuid.UUID | None = None,
    actor_name: str | None = None,
    send_email: bool = True,
    dedupe_prefix: str | None = None,
) -> dict[str, int]:
    """Create in-app notifications and queue emails for each distinct recipient.

    The actor never notifies themselves. Runs after the primary commit and
    swallows its own failures.
    """
    recipients: list[uuid.UUID] = []
    for raw in user_ids:
        user_uuid = _as_uuid_or_none(raw)
        if user_uuid is None or user_uuid == actor_id or user_uuid in recipients:
            continue
        recipients.append(user_uuid)
    if not recipients:
        return {"internal_created": 0, "emails_sent": 0}

    payload = request_payload(request, actor_name)
    payload["event_type"] = event_type
    created: list[uuid.UUID] = []
    try:
        for user_uuid in recipients:
            dedupe_key = f"{dedupe_prefix}:{user_uuid}" if dedupe_prefix else None
            row = _create_notification(
                db,
                user_id=user_uuid,
                event_type=event_type,
                title=title,
                message=message,
                payload=payload,
                request_id=request.id if request is not None else None,
                dedupe_key=dedupe_key,
            )
            if row is not None:
                created.append(user_uuid)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to store %s notifications", event_type)
        return {"internal_created": 0, "emails_sent": 0}

    emails_sent = 0
    if send_email and created:
        try:
            emails = [email for (email,) in db.query(User.email).filter(User.id.in_(created)).all()]
        except SQLAlchemyError:
            logger.exception("Failed to resolve notification recipients for %s", event_type)
            emails = []
        for email in emails:
            if dispatch_email(email=email, subject=title, body=message):
                emails_sent += 1
    return {"internal_created": len(created), "emails_sent": emails_sent}


def serialize_notification(row: Notification) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "user_id": str(row.user_id),
        "request_id": str(row.request_id) if row.request_id else None,
        "type": row.type,
        "title": row.title,
        "message": row.message,
        "metadata": row.payload or {},
        "is_read": bool(row.is_read),
        "read_at": row.read_at.isoformat() if row.read_at else None,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


def list_user_notifications(
    db: Session,
    *,
    user_id: uuid.UUID,
    unread_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Notification], int]:
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    total = query.count()
    rows = (
        query.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset(int(max(offset, 0)))
        .limit(int(min(max(limit, 1), 200)))
        .all()
    )
    return rows, int(total)


def get_user_notification(db: Session, *, user_id: uuid.UUID, notification_id: uuid.UUID) -> Notification | None:
    return (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .first()
    )


def mark_notifications_read(
    db: Session,
    *,
    user_id: uuid.UUID,
    notification_id: uuid.UUID | None = None,
    responsible: str = "Notification service",
) -> int:
    query = db.query(Notification).filter(Notification.user_id == user_id, Notification.is_read.is_(False))
    if notification_id is not None:
        query = query.filter(Notification.id == notification_id)
    rows = query.all()
    now = _as_utc_now()
    for row in rows:
        row.is_read = True
        row.read_at = now
        row.responsible = responsible
        db.add(row)
    return len(rows)
