from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request as FastapiRequest
from sqlalchemy import false
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from portal.core.config import settings
from portal.core.deps import ALL_ROLES, ROLE_CUSTOMER_ADMIN, ROLE_SUPER_ADMIN, Principal, require_role
from portal.core.errors import NotFoundError, ValidationError
from portal.db.session import get_db
from portal.models.company import Company
from portal.models.insured_account import InsuredAccount
from portal.schemas.directory import InsuredAccountCreate, InsuredAccountPatch
from portal.services import activity_log
from portal.services.insured_import import parse_insured_rows
from portal.services.user_directory import normalize_email

from portal.api.requests_modules.common import IncomingFile, optional_uuid_or_400, read_request_payload, uuid_or_400
from portal.api.requests_modules.permissions import can_view_company, visible_company_ids

router = APIRouter()

ACCOUNT_NOT_FOUND = "Insured account not found"
EDITOR_ROLES = (ROLE_SUPER_ADMIN, ROLE_CUSTOMER_ADMIN)


def serialize_insured_account(row: InsuredAccount) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "company_id": str(row.company_id),
        "insured_name": row.insured_name,
        "primary_contact_name": row.primary_contact_name,
        "contact_email": row.contact_email,
        "phone": row.phone,
        "street": row.street,
        "city": row.city,
        "state": row.state,
        "zipcode": row.zipcode,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


def _target_company_id(db: Session, user: Principal, raw: object) -> UUID:
    """Company an account is written to: the caller's own, or the chosen one for super admins."""
    requested = raw if isinstance(raw, UUID) else optional_uuid_or_400(raw, "company_id")
    if not user.is_admin:
        if requested is not None and requested != user.company_id:
            raise NotFoundError("Company not found")
        if user.company_id is None:
            raise ValidationError("Your account is not linked to a company")
        return user.company_id
    if requested is None:
        raise ValidationError('"company_id" is required')
    if db.get(Company, requested) is None:
        raise NotFoundError("Company not found")
    return requested


def _scoped_query(db: Session, user: Principal, company_id: str | None):
    query = db.query(InsuredAccount)
    wanted = optional_uuid_or_400(company_id, "company_id")
    if wanted is not None:
        if not can_view_company(db, user, wanted):
            raise NotFoundError("Company not found")
        return query.filter(InsuredAccount.company_id == wanted)
    company_ids = visible_company_ids(db, user)
    if company_ids is None:
        return query
    if not company_ids:
        return query.filter(false())
    return query.filter(InsuredAccount.company_id.in_(company_ids))


def _account_or_404(db: Session, user: Principal, account_id: str) -> InsuredAccount:
    row = db.get(InsuredAccount, uuid_or_400(account_id, "account_id"))
    if row is None or not can_view_company(db, user, row.company_id):
        raise NotFoundError(ACCOUNT_NOT_FOUND)
    return row


def _clean_fields(data: dict[str, Any]) -> dict[str, Any]:
    cleaned = {key: str(value or "").strip() for key, value in data.items() if key != "company_id"}
    if any(not value for value in cleaned.values()):
        raise ValidationError("All fields are required")
    if "contact_email" in cleaned:
        cleaned["contact_email"] = normalize_email(cleaned["contact_email"])
        if "@" not in cleaned["contact_email"]:
            raise ValidationError("A valid contact email is required")
    return cleaned


@router.get("")
def list_insured_accounts(
    company_id: str | None = Query(default=None),
    q: str | None = Query(default=None),
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(*ALL_ROLES)),
):
    query = _scoped_query(db, user, company_id)
    if q and q.strip():
        query = query.filter(InsuredAccount.insured_name.ilike(f"%{q.strip()}%"))
    rows = query.order_by(InsuredAccount.insured_name.asc()).all()
    return {"rows": [serialize_insured_account(row) for row in rows], "total": len(rows)}


@router.get("/names")
def list_insured_names(
    company_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(*ALL_ROLES)),
):
    rows = (
        _scoped_query(db, user, company_id)
        .with_entities(InsuredAccount.insured_name)
        .distinct()
        .order_by(InsuredAccount.insured_name.asc())
        .all()
    )
    return {"names": [name for (name,) in rows]}


@router.post("", status_code=201)
def create_insured_account(
    payload: InsuredAccountCreate,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(*EDITOR_ROLES)),
):
    company_id = _target_company_id(db, user, payload.company_id)
    row = InsuredAccount(company_id=company_id, responsible=user.responsible, **_clean_fields(payload.model_dump()))
    db.add(row)
    db.commit()
    db.refresh(row)
    activity_log.record_activity(
        db,
        activity_type=activity_log.COMPANY_UPDATED,
        description=f"Insured account {row.insured_name} added",
        user_id=user.user_id,
        company_id=company_id,
        details={"action": "insured_created", "insuredAccountId": str(row.id)},
        responsible=user.responsible,
    )
    return serialize_insured_account(row)


def _bulk_upload_service(company_id: UUID, files: list[IncomingFile], db: Session, user: Principal) -> dict[str, Any]:
    if len(files) != 1:
        raise ValidationError("Upload exactly one .csv or .xlsx file")
    upload = files[0]
    if upload.size > settings.max_import_bytes:
        raise ValidationError(f'File "{upload.file_name}" exceeds the {settings.MAX_IMPORT_MB}MB limit')
    accounts, skipped = parse_insured_rows(upload.file_name, upload.content)
    if not accounts:
        raise ValidationError("No valid rows found in the uploaded file")
    db.add_all(InsuredAccount(company_id=company_id, responsible=user.responsible, **item) for item in accounts)
    db.commit()
    activity_log.record_activity(
        db,
        activity_type=activity_log.COMPANY_UPDATED,
        description=f"{len(accounts)} insured account(s) imported from {upload.file_name}",
        user_id=user.user_id,
        company_id=company_id,
        details={"action": "insured_imported", "count": len(accounts), "skipped": skipped},
        responsible=user.responsible,
    )
    return {"count": len(accounts), "skipped": skipped}


@router.post("/bulk-upload", status_code=201)
async def bulk_upload_insured_accounts(
    http_request: FastapiRequest,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(*EDITOR_ROLES)),
):
    fields, files = await read_request_payload(http_request)
    company_id = _target_company_id(db, user, fields.get("company_id"))
    return await run_in_threadpool(_bulk_upload_service, company_id, files, db, user)


@router.get("/{account_id}")
def get_insured_account(account_id: str, db: Session = Depends(get_db), user: Principal = Depends(require_role(*ALL_ROLES))):
    return serialize_insured_account(_account_or_404(db, user, account_id))


@router.put("/{account_id}")
def update_insured_account(
    account_id: str,
    payload: InsuredAccountPatch,
    db: Session = Depends(get_db),
    user: Principal = Depends(require_role(*EDITOR_ROLES)),
):
    row = _account_or_404(db, user, account_id)
    changes = _clean_fields(payload.model_dump(exclude_unset=True))
    for key, value in changes.items():
        setattr(row, key, value)
    row.updated_at = datetime.now(timezone.utc)
    row.responsible = user.responsible
    db.add(row)
    db.commit()
    db.refresh(row)
    return serialize_insured_account(row)


@router.delete("/{account_id}")
def delete_insured_account(account_id: str, db: Session = Depends(get_db), user: Principal = Depends(require_role(*EDITOR_ROLES))):
    row = _account_or_404(db, user, account_id)
    company_id, name = row.company_id, row.insured_name
    db.delete(row)
    db.commit()
    activity_log.record_activity(
        db,
        activity_type=activity_log.COMPANY_UPDATED,
        description=f"Insured account {name} removed",
        user_id=user.user_id,
        company_id=company_id,
        details={"action": "insured_deleted", "insuredAccountId": account_id},
        responsible=user.responsible,
    )
    return {"status": "deleted", "id": account_id}
