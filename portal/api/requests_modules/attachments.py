from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote
from uuid import UUID

from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from portal.core.config import settings
from portal.core.deps import Principal
from portal.core.errors import NotFoundError, PermissionDeniedError, StorageError, ValidationError
from portal.models.request_attachment import RequestAttachment
from portal.models.service_request import ServiceRequest
from portal.services import activity_log
from portal.services.s3_storage import STORAGE_ERRORS, attachment_object_key, get_s3_storage

from .common import IncomingFile, uuid_or_400
from .permissions import can_view_request, request_for_user_or_404

logger = logging.getLogger(__name__)


def serialize_attachment(row: RequestAttachment) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "request_id": str(row.request_id),
        "file_name": row.file_name,
        "file_size": int(row.file_size or 0),
        "mime_type": row.mime_type,
        "uploaded_by_id": str(row.uploaded_by_id) if row.uploaded_by_id else None,
        "download_url": f"/api/attachments/{row.id}/download",
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


def validate_incoming_files_or_400(files: list[IncomingFile]) -> None:
    limit = settings.max_file_bytes
    for item in files:
        if item.size <= 0:
            raise ValidationError(f'File "{item.file_name}" is empty')
        if item.size > limit:
            raise ValidationError(f'File "{item.file_name}" exceeds the {settings.MAX_FILE_MB}MB limit')


def discard_stored_files(rows: list[RequestAttachment]) -> None:
    """Best-effort removal of blobs whose rows never made it into the database."""
    if not rows:
        return
    storage = get_s3_storage()
    for stored in rows:
        try:
            storage.delete_object(stored.file_path)
        except STORAGE_ERRORS:
            logger.warning("Could not remove orphaned object %s", stored.file_path)


def store_files(request_id: UUID, files: list[IncomingFile], user: Principal) -> list[RequestAttachment]:
    """Upload blobs and build (unsaved) attachment rows.

    Blobs already written are removed again if a later upload fails.
    """
    storage = get_s3_storage()
    rows: list[RequestAttachment] = []
    for item in files:
        key = attachment_object_key(request_id, item.file_name)
        try:
            storage.put_object(key, item.content, item.mime_type)
        except STORAGE_ERRORS as exc:
            logger.error("Upload of %s for request %s failed: %s", item.file_name, request_id, exc)
            discard_stored_files(rows)
            raise StorageError("Failed to store attachment") from exc
        rows.append(
            RequestAttachment(
                request_id=request_id,
                file_name=item.file_name,
                file_path=key,
                file_size=item.size,
                mime_type=item.mime_type,
                uploaded_by_id=user.user_id,
                responsible=user.responsible,
            )
        )
    return rows


def log_attachment_uploads(db: Session, req: ServiceRequest, rows: list[RequestAttachment], user: Principal) -> None:
    for row in rows:
        activity_log.record_activity(
            db,
            activity_type=activity_log.ATTACHMENT_UPLOADED,
            description=f"Attachment {row.file_name} uploaded to {req.service_queue_id}",
            user_id=user.user_id,
            company_id=req.company_id,
            request_id=req.id,
            details={"fileName": row.file_name, "fileSize": int(row.file_size or 0), "attachmentId": str(row.id)},
            responsible=user.responsible,
        )


def upload_attachments_service(request_id: str, files: list[IncomingFile], db: Session, user: Principal) -> dict[str, Any]:
    req = request_for_user_or_404(db, user, request_id)
    if not files:
        raise ValidationError("No files were provided")
    validate_incoming_files_or_400(files)
    rows = store_files(req.id, files, user)
    try:
        db.add_all(rows)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        discard_stored_files(rows)
        raise
    for row in rows:
        db.refresh(row)
    log_attachment_uploads(db, req, rows, user)
    return {"rows": [serialize_attachment(row) for row in rows], "total": len(rows)}


def list_attachments_service(request_id: str, db: Session, user: Principal) -> dict[str, Any]:
    req = request_for_user_or_404(db, user, request_id)
    rows = (
        db.query(RequestAttachment)
        .filter(RequestAttachment.request_id == req.id)
        .order_by(RequestAttachment.created_at.desc(), RequestAttachment.id.desc())
        .all()
    )
    return {"rows": [serialize_attachment(row) for row in rows], "total": len(rows)}


def _attachment_for_user_or_404(db: Session, user: Principal, attachment_id: str) -> tuple[RequestAttachment, ServiceRequest]:
    row = db.get(RequestAttachment, uuid_or_400(attachment_id, "attachment_id"))
    if row is None:
        raise NotFoundError("Attachment not found")
    req = db.get(ServiceRequest, row.request_id)
    if req is None or not can_view_request(db, user, req):
        raise NotFoundError("Attachment not found")
    return row, req


def download_attachment_service(attachment_id: str, db: Session, user: Principal) -> StreamingResponse:
    row, _ = _attachment_for_user_or_404(db, user, attachment_id)
    try:
        obj = get_s3_storage().get_object(row.file_path)
    except STORAGE_ERRORS as exc:
        logger.error("Download of %s failed: %s", row.file_path, exc)
        raise StorageError("Failed to read attachment") from exc

    body = obj["Body"]
    content_length = obj.get("ContentLength")
    media_type = obj.get("ContentType") or row.mime_type or "application/octet-stream"
    headers = {"Content-Disposition": f"attachment; filename*=UTF-8''{quote(row.file_name)}"}
    if content_length is not None:
        headers["Content-Length"] = str(content_length)
    return StreamingResponse(body.iter_chunks(chunk_size=64 * 1024), media_type=media_type, headers=headers)


def delete_attachment_service(attachment_id: str, db: Session, user: Principal) -> dict[str, Any]:
    row, _ = _attachment_for_user_or_404(db, user, attachment_id)
    # Visibility already covers agents servicing the company and super admins.
    if user.is_customer and row.uploaded_by_id != user.user_id:
        raise PermissionDeniedError("Only the uploader can delete this attachment")
    try:
        get_s3_storage().delete_object(row.file_path)
    except STORAGE_ERRORS as exc:
        logger.error("Delete of %s failed: %s", row.file_path, exc)
        raise StorageError("Failed to delete attachment") from exc
    db.delete(row)
    db.commit()
    return {"status": "deleted", "id": attachment_id}
