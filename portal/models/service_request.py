from datetime import date, datetime
import uuid

from sqlalchemy import Date, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from portal.db.session import Base
from portal.models.common import UUIDMixin, TimestampMixin

class ServiceRequest(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "service_requests"
    service_queue_id: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    insured: Mapped[str] = mapped_column(String(300), nullable=False)
    service_request_narrative: Mapped[str] = mapped_column(Text, nullable=False)
    service_queue_category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    company_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    task_status: Mapped[str] = mapped_column(String(20), nullable=False, default="new", index=True)
    assigned_to_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)
    assigned_by_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    modified_by_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    due_time: Mapped[str | None] = mapped_column(String(10), nullable=True)
    in_progress_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    time_spent: Mapped[int | None] = mapped_column(Integer, nullable=True)
