import uuid

from sqlalchemy import Boolean, JSON
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from portal.db.session import Base
from portal.models.common import UUIDMixin, TimestampMixin

class Agent(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "agents"
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), unique=True, nullable=False, index=True)
    # Company ids stored as strings; an empty list means the agent services nobody.
    assigned_company_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
