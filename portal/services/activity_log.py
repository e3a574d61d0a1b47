from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portal.models.activity_log import ActivityLog

logger = logging.getLogger(__name__)

REQUEST_CREATED = "request_created"
REQUEST_UPDATED = "request_updated"
REQUEST_ASSIGNED = "request_assigned"
NOTE_ADDED = "note_added"
ATTACHMENT_UPLOADED = "attachment_uploaded"
STATUS_CHANGED = "status_changed"
USER_CREATED = "user_created"
USER_UPDATED = "user_updated"
COMPANY_UPDATED = "company_updated"
ASSIGNMENT_CHANGE_REQUESTED = "assignment_change_requested"
ASSIGNMENT_CHANGE_APPROVED = "assignment_change_approved"
ASSIGNMENT_CHANGE_REJECTED = "assignment_change_rejected"

ACTIVITY_TYPES = frozenset(
    {
        REQUEST_CREATED,
        REQUEST_UPDATED,
        REQUEST_ASSIGNED,
        NOTE_ADDED,
        ATTACHMENT_UPLOADED,
        STATUS_CHANGED,
        USER_CREATED,
        USER_UPDATED,
        COMPANY_UPDATED,
        ASSIGNMENT_CHANGE_REQUESTED,
        ASSIGNMENT_CHANGE_APPROVED,
        ASSIGNMENT_CHANGE_REJECTED,
    }
)


def record_activity(
    db: Session,
    *,
    activity_type: str,
    description: str,
    user_id: uuid.UUID | None = None,
    company_id: uuid.UUID | None = None,
    request_id: uuid.UUID | None = None,
    details: dict[str, Any] | None = None,
    responsible: str = "System",
) -> ActivityLog | None:
    """Append one activity row in its own commit.

    Called after the primary mutation is committed; a failure here is logged
    and never propagates to the caller.
    """
    if activity_type not in ACTIVITY_TYPES:
        logger.warning("Skipping unknown activity type %r", activity_type)
        return None
    row = ActivityLog(
        type=activity_type,
        description=str(description or "").strip() or activity_type,
        user_id=user_id,
        company_id=company_id,
        request_id=request_id,
        details=dict(details or {}),
        responsible=responsible,
    )
    try:
        db.add(row)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to record %s activity for request %s", activity_type, request_id)
        return None
    return row


def list_request_activity(db: Session, request_id: uuid.UUID) -> list[ActivityLog]:
    return (
        db.query(ActivityLog)
        .filter(ActivityLog.request_id == request_id)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .all()
    )


def list_company_activity(db: Session, company_id: uuid.UUID, *, limit: int = 100) -> list[ActivityLog]:
    return (
        db.query(ActivityLog)
        .filter(ActivityLog.company_id == company_id)
        .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .limit(int(min(max(limit, 1), 500)))
        .all()
    )


def serialize_activity(row: ActivityLog) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "type": row.type,
        "description": row.description,
        "user_id": str(row.user_id) if row.user_id else None,
        "company_id": str(row.company_id) if row.company_id else None,
        "request_id": str(row.request_id) if row.request_id else None,
        "metadata": row.details or {},
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }
