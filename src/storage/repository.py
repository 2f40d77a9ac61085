"""Queries used by the sheet import pipeline, kept in one place."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.storage.models import Company, Notification, Property, Task, User, UserRole

DEFAULT_PRICE_PER_UNIT = 1.0


class SheetSyncRepository:
    """Thin data-access layer over a SQLAlchemy session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def get_property(self, property_id: int) -> Optional[Property]:
        return self.session.get(Property, property_id)

    def get_company(self, company_id: int) -> Optional[Company]:
        return self.session.get(Company, company_id)

    def find_user_by_email(self, email: str) -> Optional[User]:
        return self.session.scalars(select(User).where(User.email == email)).first()

    def list_company_managers(self, company_id: int) -> List[User]:
        """Active owners and managers of a company, in id order."""

        statement = (
            select(User)
            .where(
                User.company_id == company_id,
                User.role.in_((UserRole.OWNER, UserRole.MANAGER)),
                User.is_active.is_(True),
            )
            .order_by(User.id)
        )
        return list(self.session.scalars(statement))

    def find_task_by_marker(self, property_id: int, marker: str) -> Optional[Task]:
        statement = (
            select(Task)
            .where(Task.property_id == property_id, Task.description.contains(marker, autoescape=True))
            .order_by(Task.id)
        )
        return self.session.scalars(statement).first()

    def find_task_by_title(
        self, property_id: int, title: str, scheduled_date: Optional[datetime]
    ) -> Optional[Task]:
        statement = select(Task).where(Task.property_id == property_id, Task.title == title)
        if scheduled_date is not None:
            statement = statement.where(Task.scheduled_date == scheduled_date)
        return self.session.scalars(statement.order_by(Task.id)).first()

    def find_property_by_marker(self, company_id: int, marker: str) -> Optional[Property]:
        statement = (
            select(Property)
            .where(Property.company_id == company_id, Property.notes.contains(marker, autoescape=True))
            .order_by(Property.id)
        )
        return self.session.scalars(statement).first()

    def find_property_by_address(
        self, company_id: int, address: str, postcode: Optional[str]
    ) -> Optional[Property]:
        statement = select(Property).where(Property.company_id == company_id, Property.address == address)
        if postcode is None:
            statement = statement.where(Property.postcode.is_(None))
        else:
            statement = statement.where(Property.postcode == postcode)
        return self.session.scalars(statement.order_by(Property.id)).first()

    def company_price_per_unit(self, company_id: int) -> float:
        company = self.get_company(company_id)
        if company is not None and company.property_price_per_unit:
            return float(company.property_price_per_unit)
        return DEFAULT_PRICE_PER_UNIT

    def create_task(self, data: Dict[str, Any]) -> Task:
        task = Task(**data)
        self.session.add(task)
        self.session.flush()
        return task

    def create_property(self, data: Dict[str, Any]) -> Property:
        prop = Property(**data)
        self.session.add(prop)
        self.session.flush()
        return prop

    def update(self, instance, data: Dict[str, Any]) -> None:
        for key, value in data.items():
            setattr(instance, key, value)
        self.session.flush()

    def list_sync_enabled_properties(self) -> List[Property]:
        statement = (
            select(Property)
            .where(Property.sheet_sync_enabled.is_(True), Property.google_sheet_id.is_not(None))
            .order_by(Property.id)
        )
        return list(self.session.scalars(statement))

    def list_sync_enabled_companies(self) -> List[Company]:
        statement = (
            select(Company)
            .where(Company.sheet_sync_enabled.is_(True), Company.google_sheet_id.is_not(None))
            .order_by(Company.id)
        )
        return list(self.session.scalars(statement))

    def mark_synced(self, instance, synced_at: Optional[datetime] = None) -> None:
        instance.sheet_last_synced_at = synced_at or datetime.utcnow()
        self.session.flush()

    def add_notification(self, notification: Notification) -> Notification:
        self.session.add(notification)
        self.session.flush()
        return notification
