from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from portal.core.config import settings
from portal.core.errors import PermissionDeniedError
from portal.core.security import decode_jwt

ROLE_CUSTOMER = "customer"
ROLE_CUSTOMER_ADMIN = "customer_admin"
ROLE_AGENT = "agent"
ROLE_AGENT_MANAGER = "agent_manager"
ROLE_SUPER_ADMIN = "super_admin"

ALL_ROLES = (ROLE_CUSTOMER, ROLE_CUSTOMER_ADMIN, ROLE_AGENT, ROLE_AGENT_MANAGER, ROLE_SUPER_ADMIN)
CUSTOMER_ROLES = (ROLE_CUSTOMER, ROLE_CUSTOMER_ADMIN)
AGENT_ROLES = (ROLE_AGENT, ROLE_AGENT_MANAGER)

bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller resolved from the bearer token claims.

    Agents and agent managers share this one type; ``is_manager`` is the
    capability flag that separates them.
    """

    user_id: UUID
    role: str
    email: str
    company_id: UUID | None = None
    name: str = ""

    @property
    def is_manager(self) -> bool:
        return self.role == ROLE_AGENT_MANAGER

    @property
    def is_agent(self) -> bool:
        return self.role in AGENT_ROLES

    @property
    def is_customer(self) -> bool:
        return self.role in CUSTOMER_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_SUPER_ADMIN

    @property
    def responsible(self) -> str:
        return self.email or "System"


def principal_from_claims(claims: dict) -> Principal:
    role = str(claims.get("role") or "").strip().lower()
    if role not in ALL_ROLES:
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        user_id = UUID(str(claims.get("sub") or ""))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token")
    company_id = None
    raw_company = str(claims.get("company_id") or "").strip()
    if raw_company:
        try:
            company_id = UUID(raw_company)
        except ValueError:
            raise HTTPException(status_code=401, detail="Invalid token")
    return Principal(
        user_id=user_id,
        role=role,
        email=str(claims.get("email") or "").strip(),
        company_id=company_id,
        name=str(claims.get("name") or "").strip(),
    )


def get_current_user(creds: HTTPAuthorizationCredentials = Depends(bearer)) -> Principal:
    if not creds:
        raise HTTPException(status_code=401, detail="Missing authorization token")
    try:
        claims = decode_jwt(creds.credentials, settings.JWT_SECRET)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")
    return principal_from_claims(claims)


def require_role(*roles: str):
    def _inner(user: Principal = Depends(get_current_user)) -> Principal:
        if user.role not in roles:
            raise PermissionDeniedError("Insufficient permissions")
        return user
    return _inner
