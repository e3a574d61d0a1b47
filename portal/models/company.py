from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column
from portal.db.session import Base
from portal.models.common import UUIDMixin, TimestampMixin

class Company(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "companies"
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    company_code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    primary_contact: Mapped[str | None] = mapped_column(String(200), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
