from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from portal.core.deps import ALL_ROLES, Principal, require_role
from portal.core.errors import NotFoundError
from portal.db.session import get_db
from portal.services.notifications import (
    get_user_notification,
    list_user_notifications,
    mark_notifications_read,
    serialize_notification,
)

from portal.api.requests_modules.common import uuid_or_400

router = APIRouter()


@router.get("")
def list_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(*ALL_ROLES)),
):
    rows, total = list_user_notifications(
        db,
        user_id=user.user_id,
        unread_only=unread_only,
        limit=limit,
        offset=offset,
    )
    _, unread_total = list_user_notifications(db, user_id=user.user_id, unread_only=True, limit=1, offset=0)
    return {
        "rows": [serialize_notification(row) for row in rows],
        "total": total,
        "unread_total": int(unread_total),
    }


@router.post("/read-all")
def read_all_notifications(db: Session = Depends(get_db), user: Principal = Depends(require_role(*ALL_ROLES))):
    changed = mark_notifications_read(db, user_id=user.user_id, responsible=user.responsible)
    db.commit()
    return {"status": "ok", "changed": int(changed)}


@router.post("/{notification_id}/read")
def read_single_notification(
    notification_id: str,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(*ALL_ROLES)),
):
    notification_uuid = uuid_or_400(notification_id, "notification_id")
    row = get_user_notification(db, user_id=user.user_id, notification_id=notification_uuid)
    if row is None:
        raise NotFoundError("Notification not found")

    changed = mark_notifications_read(
        db,
        user_id=user.user_id,
        notification_id=notification_uuid,
        responsible=user.responsible,
    )
    db.commit()
    refreshed = get_user_notification(db, user_id=user.user_id, notification_id=notification_uuid)
    return {
        "status": "ok",
        "changed": int(changed),
        "notification": serialize_notification(refreshed) if refreshed else None,
    }
