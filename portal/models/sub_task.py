from datetime import date
import uuid

from sqlalchemy import Date, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from portal.db.session import Base
from portal.models.common import UUIDMixin, TimestampMixin

class SubTask(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "sub_tasks"
    task_id: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    request_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    task_description: Mapped[str] = mapped_column(Text, nullable=False)
    assigned_to_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    assigned_by_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    task_status: Mapped[str] = mapped_column(String(20), nullable=False, default="new")
