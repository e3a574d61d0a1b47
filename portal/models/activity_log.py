import uuid
from sqlalchemy import JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import UUID
from portal.db.session import Base
from portal.models.common import UUIDMixin, TimestampMixin

class ActivityLog(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "activity_logs"
    type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    user_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    company_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    request_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    # "metadata" is reserved on declarative classes.
    details: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)
