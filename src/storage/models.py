from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from src.storage.database import Base


class UserRole:
    SUPER_ADMIN = "SUPER_ADMIN"
    DEVELOPER = "DEVELOPER"
    OWNER = "OWNER"
    COMPANY_ADMIN = "COMPANY_ADMIN"
    MANAGER = "MANAGER"
    CLEANER = "CLEANER"


class TaskStatus:
    PLANNED = "PLANNED"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"
    RESERVED = "RESERVED"


TASK_STATUSES = {
    TaskStatus.PLANNED,
    TaskStatus.ASSIGNED,
    TaskStatus.IN_PROGRESS,
    TaskStatus.SUBMITTED,
    TaskStatus.APPROVED,
    TaskStatus.REJECTED,
    TaskStatus.COMPLETED,
    TaskStatus.RESERVED,
}

PROPERTY_TYPES = ("block", "apartment", "hmo", "house", "commercial")


class SheetSyncColumns:
    """Columns shared by every entity that can be fed from a Google Sheet."""

    google_sheet_url: Mapped[str | None] = mapped_column(Text)
    google_sheet_id: Mapped[str | None] = mapped_column(Text)
    google_sheet_name: Mapped[str | None] = mapped_column(Text)
    sheet_column_mapping: Mapped[str | None] = mapped_column(Text)
    sheet_unique_column: Mapped[str | None] = mapped_column(Text)
    sheet_sync_enabled: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    sheet_last_synced_at: Mapped[datetime | None] = mapped_column(DateTime, index=True)


class Company(SheetSyncColumns, Base):
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(Text)
    property_price_per_unit: Mapped[float | None] = mapped_column(Float)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(320), unique=True)
    name: Mapped[str | None] = mapped_column(Text)
    role: Mapped[str] = mapped_column(String(32), default=UserRole.CLEANER)
    company_id: Mapped[int | None] = mapped_column(ForeignKey("companies.id"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class Property(SheetSyncColumns, Base):
    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"), index=True)
    address: Mapped[str] = mapped_column(Text)
    postcode: Mapped[str | None] = mapped_column(String(32))
    property_type: Mapped[str] = mapped_column(String(32), default="house")
    unit_count: Mapped[int] = mapped_column(Integer, default=1)
    price_per_unit: Mapped[float] = mapped_column(Float, default=1.0)
    total_price: Mapped[float] = mapped_column(Float, default=1.0)
    notes: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)


class Task(Base):
    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id"))
    property_id: Mapped[int] = mapped_column(ForeignKey("properties.id"), index=True)
    title: Mapped[str] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(32), default=TaskStatus.PLANNED)
    scheduled_date: Mapped[datetime | None] = mapped_column(DateTime)
    move_in_date: Mapped[datetime | None] = mapped_column(DateTime)
    assigned_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    title: Mapped[str] = mapped_column(Text)
    message: Mapped[str] = mapped_column(Text)
    type: Mapped[str] = mapped_column(String(64))
    metadata_json: Mapped[str | None] = mapped_column(Text)
    screen_route: Mapped[str | None] = mapped_column(String(64))
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
