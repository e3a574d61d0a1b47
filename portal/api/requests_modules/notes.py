from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from portal.core.deps import Principal
from portal.core.errors import ValidationError
from portal.models.request_note import RequestNote
from portal.schemas.requests import NoteCreate
from portal.services import activity_log
from portal.services.notifications import EVENT_NOTE_ADDED, dispatch_email, notify_users
from portal.services.user_directory import users_by_id

from .permissions import request_for_user_or_404
from .service import serialize_note

NOTE_PREVIEW_CHARS = 100


def add_note_service(request_id: str, payload: NoteCreate, db: Session, user: Principal) -> dict[str, Any]:
    req = request_for_user_or_404(db, user, request_id)
    content = str(payload.note_content or "").strip()
    if not content:
        raise ValidationError("Note content is required")
    recipient_email = str(payload.recipient_email or "").strip() or None
    if recipient_email is not None and "@" not in recipient_email:
        raise ValidationError('"recipient_email" is not a valid email address')

    row = RequestNote(
        request_id=req.id,
        author_id=user.user_id,
        note_content=content,
        is_internal=bool(payload.is_internal),
        responsible=user.responsible,
    )
    db.add(row)
    db.commit()
    db.refresh(row)

    preview = content if len(content) <= NOTE_PREVIEW_CHARS else content[:NOTE_PREVIEW_CHARS] + "..."
    activity_log.record_activity(
        db,
        activity_type=activity_log.NOTE_ADDED,
        description=f"Note added to {req.service_queue_id}",
        user_id=user.user_id,
        company_id=req.company_id,
        request_id=req.id,
        details={"noteId": str(row.id), "preview": preview, "recipientEmail": recipient_email},
        responsible=user.responsible,
    )
    title = f"New note on {req.service_queue_id}"
    message = f"{user.name or user.email} wrote: {preview}"
    notify_users(
        db,
        user_ids=[req.assigned_to_id, req.assigned_by_id],
        event_type=EVENT_NOTE_ADDED,
        title=title,
        message=message,
        request=req,
        actor_id=user.user_id,
        actor_name=user.name or user.email,
    )
    if recipient_email:
        dispatch_email(email=recipient_email, subject=title, body=f"{message}\n\n{content}")
    return serialize_note(row, users_by_id(db, [row.author_id]))


def list_notes_service(request_id: str, db: Session, user: Principal) -> dict[str, Any]:
    req = request_for_user_or_404(db, user, request_id)
    rows = (
        db.query(RequestNote)
        .filter(RequestNote.request_id == req.id)
        .order_by(RequestNote.created_at.desc(), RequestNote.id.desc())
        .all()
    )
    users = users_by_id(db, [row.author_id for row in rows])
    return {"rows": [serialize_note(row, users) for row in rows], "total": len(rows)}
