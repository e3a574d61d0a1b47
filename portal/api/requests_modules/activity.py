from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from portal.core.deps import Principal
from portal.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from portal.models.company import Company
from portal.services.activity_log import list_company_activity, list_request_activity, serialize_activity

from .common import uuid_or_400
from .permissions import request_for_user_or_404


def request_activity_service(request_id: str, db: Session, user: Principal) -> dict[str, Any]:
    req = request_for_user_or_404(db, user, request_id)
    rows = list_request_activity(db, req.id)
    return {"rows": [serialize_activity(row) for row in rows], "total": len(rows)}


def company_activity_service(company_id: str | None, db: Session, user: Principal, *, limit: int = 100) -> dict[str, Any]:
    if user.is_admin:
        if not str(company_id or "").strip():
            raise ValidationError('"company_id" is required')
        company_uuid = uuid_or_400(company_id, "company_id")
    else:
        if user.company_id is None:
            raise PermissionDeniedError("Account is not linked to a company")
        company_uuid = user.company_id
        if company_id and uuid_or_400(company_id, "company_id") != company_uuid:
            raise NotFoundError("Company not found")
    if db.get(Company, company_uuid) is None:
        raise NotFoundError("Company not found")
    rows = list_company_activity(db, company_uuid, limit=limit)
    return {"rows": [serialize_activity(row) for row in rows], "total": len(rows)}
