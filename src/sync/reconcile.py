"""Create-or-update reconciliation of sheet rows against tasks and properties.

Rows are processed one at a time in sheet order. A row that fails for any
reason is reported in the result and the batch moves on; only problems that
make the whole sheet unusable (bad credentials or an empty sheet) propagate.

Duplicate detection runs in two tiers. When the sheet owner supplies a unique
column, its value is embedded in the stored text as ``[UNIQUE:<value>]`` and
later syncs look for that marker. Without a value the importer falls back to
matching on the mandatory field (plus scheduled date or postcode), which can
merge distinct rows or miss renamed ones; every such fallback is logged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from src.errors import EmptyDataError, NotFoundError
from src.storage.models import PROPERTY_TYPES, TASK_STATUSES, Property, Task, TaskStatus
from src.storage.repository import SheetSyncRepository
from src.sync.dates import ACCEPTED_FORMATS, parse_sheet_date
from src.sync.notifications import TaskNotifier
from src.sync.parsing import (
    PropertyImportRow,
    TaskImportRow,
    embed_unique_marker,
    parse_property_rows,
    parse_task_rows,
    unique_marker,
)

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"


class RowError(ValueError):
    """A single sheet row cannot be imported."""


@dataclass
class SyncResult:
    created: List[int] = field(default_factory=list)
    updated: List[int] = field(default_factory=list)
    error_details: List[Dict[str, Any]] = field(default_factory=list)
    success: bool = True

    def record(self, outcome: str, entity_id: int) -> None:
        (self.created if outcome == CREATED else self.updated).append(entity_id)

    def record_error(self, row: Dict[str, Any], message: str) -> None:
        self.error_details.append({"row": row, "error": message})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "created": len(self.created),
            "updated": len(self.updated),
            "errors": len(self.error_details),
            "errorDetails": list(self.error_details),
        }


def derive_task_status(
    sheet_status: Optional[str],
    scheduled_date: Optional[datetime],
    move_in_date: Optional[datetime],
) -> str:
    """Return the status to persist for an imported task.

    A unit whose move-in date falls on or after its next scheduled date (or
    that only has a move-in date) is already taken, so it becomes RESERVED
    whatever the sheet says.
    """

    if move_in_date is not None and (scheduled_date is None or move_in_date >= scheduled_date):
        return TaskStatus.RESERVED
    if not sheet_status:
        return TaskStatus.PLANNED

    normalized = sheet_status.strip().upper().replace(" ", "_")
    if normalized not in TASK_STATUSES:
        raise RowError(
            f"Invalid status: {sheet_status}. Must be one of: {', '.join(sorted(TASK_STATUSES))}"
        )
    return normalized


def import_tasks_from_sheet(
    session: Session,
    sheets_client,
    notifier: TaskNotifier,
    property_id: int,
    spreadsheet_id: str,
    sheet_name: str,
    column_mapping: Mapping[str, str],
    unique_column: Optional[str] = None,
) -> SyncResult:
    """Import task rows from one sheet into ``property_id``."""

    repository = SheetSyncRepository(session)
    prop = repository.get_property(property_id)
    if prop is None:
        raise NotFoundError("Property not found")

    rows = sheets_client.fetch_rows(spreadsheet_id, sheet_name)
    if not rows:
        raise EmptyDataError("No data found in sheet")

    task_rows = parse_task_rows(rows, column_mapping, rows[0] or [], unique_column)
    if not unique_column:
        logger.warning(
            "No unique column configured; duplicate detection falls back to title and date",
            extra={"property_id": property_id},
        )

    result = SyncResult()
    for task_row in task_rows:
        try:
            with session.begin_nested():
                outcome, task_id = _import_task_row(repository, notifier, prop, task_row, unique_column)
            result.record(outcome, task_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Task row rejected",
                extra={"property_id": property_id, "row_number": task_row.row_number, "error": str(exc)},
            )
            result.record_error(task_row.to_payload(), str(exc))

    repository.mark_synced(prop)
    logger.info(
        "Task import finished",
        extra={
            "property_id": property_id,
            "created_count": len(result.created),
            "updated_count": len(result.updated),
            "error_count": len(result.error_details),
        },
    )
    return result


def _import_task_row(
    repository: SheetSyncRepository,
    notifier: TaskNotifier,
    prop: Property,
    row: TaskImportRow,
    unique_column: Optional[str],
) -> tuple[str, int]:
    scheduled_date = _parse_row_date(row.scheduled_date, "scheduled")
    move_in_date = _parse_row_date(row.move_in_date, "move-in")
    assigned_user_id = _resolve_assignee(repository, row.assigned_user_email, prop.company_id)

    existing = _find_existing_task(repository, prop.id, row, scheduled_date, unique_column)
    data = {
        "company_id": prop.company_id,
        "property_id": prop.id,
        "title": row.title,
        "description": embed_unique_marker(row.unique_value, row.description),
        "status": derive_task_status(row.status, scheduled_date, move_in_date),
        "scheduled_date": scheduled_date,
        "move_in_date": move_in_date,
        "assigned_user_id": assigned_user_id,
    }

    if existing is not None:
        repository.update(existing, data)
        return UPDATED, existing.id

    task = repository.create_task(data)
    _notify_task_created(repository, notifier, prop, task)
    return CREATED, task.id


def _parse_row_date(value: Optional[str], label: str) -> Optional[datetime]:
    if not value:
        return None
    parsed = parse_sheet_date(value)
    if parsed is None:
        raise RowError(f"Invalid {label} date format: {value}. Expected {ACCEPTED_FORMATS}")
    return parsed


def _resolve_assignee(
    repository: SheetSyncRepository, email: Optional[str], company_id: int
) -> Optional[int]:
    """Return the user id for ``email`` only when the user belongs to ``company_id``."""

    if not email:
        return None
    user = repository.find_user_by_email(email)
    if user is None:
        return None
    if user.company_id != company_id:
        logger.info(
            "Ignoring assignee from another company",
            extra={"user_id": user.id, "company_id": company_id},
        )
        return None
    return user.id


def _find_existing_task(
    repository: SheetSyncRepository,
    property_id: int,
    row: TaskImportRow,
    scheduled_date: Optional[datetime],
    unique_column: Optional[str],
) -> Optional[Task]:
    if row.unique_value:
        existing = repository.find_task_by_marker(property_id, unique_marker(row.unique_value))
        if existing is not None:
            logger.info(
                "Matched existing task by unique value",
                extra={"task_id": existing.id, "unique_value": row.unique_value, "property_id": property_id},
            )
        return existing

    if unique_column:
        logger.warning(
            "Unique column is empty for this row; matching on title and date instead",
            extra={"unique_column": unique_column, "row_number": row.row_number, "title": row.title},
        )
    return repository.find_task_by_title(property_id, row.title, scheduled_date)


def _notify_task_created(
    repository: SheetSyncRepository, notifier: TaskNotifier, prop: Property, task: Task
) -> None:
    if task.assigned_user_id:
        try:
            notifier.send(
                repository,
                user_id=task.assigned_user_id,
                title="New Task Assigned",
                message=f"You have been assigned a new task: {task.title}",
                notification_type="task_assigned",
                task_id=task.id,
            )
        except Exception:  # noqa: BLE001
            logger.exception("Error sending notification", extra={"user_id": task.assigned_user_id})
        return

    try:
        recipients = repository.list_company_managers(prop.company_id)
    except Exception:  # noqa: BLE001
        logger.exception("Error loading owners and managers", extra={"company_id": prop.company_id})
        return

    for user in recipients:
        try:
            notifier.send(
                repository,
                user_id=user.id,
                title="New Task Created",
                message=f"A new task has been created: {task.title} at {prop.address}",
                notification_type="task_created",
                task_id=task.id,
            )
        except Exception:  # noqa: BLE001
            logger.exception("Error sending notification", extra={"user_id": user.id})


def import_properties_from_sheet(
    session: Session,
    sheets_client,
    company_id: int,
    spreadsheet_id: str,
    sheet_name: str,
    column_mapping: Mapping[str, str],
    unique_column: Optional[str] = None,
) -> SyncResult:
    """Import property rows from one sheet into ``company_id``."""

    repository = SheetSyncRepository(session)
    company = repository.get_company(company_id)
    if company is None:
        raise NotFoundError("Company not found")

    rows = sheets_client.fetch_rows(spreadsheet_id, sheet_name)
    if not rows:
        raise EmptyDataError("No data found in sheet")

    property_rows = parse_property_rows(rows, column_mapping, rows[0] or [], unique_column)
    if not unique_column:
        logger.warning(
            "No unique column configured; duplicate detection falls back to address and postcode",
            extra={"company_id": company_id},
        )
    price_per_unit = repository.company_price_per_unit(company_id)

    result = SyncResult()
    for property_row in property_rows:
        try:
            with session.begin_nested():
                outcome, property_id = _import_property_row(
                    repository, company_id, property_row, price_per_unit, unique_column
                )
            result.record(outcome, property_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Property row rejected",
                extra={"company_id": company_id, "row_number": property_row.row_number, "error": str(exc)},
            )
            result.record_error(property_row.to_payload(), str(exc))

    repository.mark_synced(company)
    logger.info(
        "Property import finished",
        extra={
            "company_id": company_id,
            "created_count": len(result.created),
            "updated_count": len(result.updated),
            "error_count": len(result.error_details),
        },
    )
    return result


def _import_property_row(
    repository: SheetSyncRepository,
    company_id: int,
    row: PropertyImportRow,
    price_per_unit: float,
    unique_column: Optional[str],
) -> tuple[str, int]:
    if not row.address:
        raise RowError("Address is required")
    if not row.property_type:
        raise RowError("Property type is required")

    property_type = row.property_type.lower()
    if property_type not in PROPERTY_TYPES:
        raise RowError(
            f"Invalid property type: {row.property_type}. Must be one of: {', '.join(PROPERTY_TYPES)}"
        )
    unit_count = _parse_unit_count(row.unit_count)

    if row.unique_value:
        existing = repository.find_property_by_marker(company_id, unique_marker(row.unique_value))
    else:
        if unique_column:
            logger.warning(
                "Unique column is empty for this row; matching on address and postcode instead",
                extra={"unique_column": unique_column, "row_number": row.row_number},
            )
        existing = repository.find_property_by_address(company_id, row.address, row.postcode)

    data = {
        "company_id": company_id,
        "address": row.address,
        "postcode": row.postcode,
        "property_type": property_type,
        "unit_count": unit_count,
        "price_per_unit": price_per_unit,
        "total_price": price_per_unit * unit_count,
        "notes": embed_unique_marker(row.unique_value, row.notes),
        "is_active": True,
    }

    if existing is not None:
        repository.update(existing, data)
        logger.info("Updated property from sheet", extra={"property_id": existing.id})
        return UPDATED, existing.id

    prop = repository.create_property(data)
    logger.info("Created property from sheet", extra={"property_id": prop.id})
    return CREATED, prop.id


def _parse_unit_count(value: Optional[str]) -> int:
    if not value:
        return 1
    try:
        unit_count = int(value)
    except ValueError as exc:
        raise RowError(f"Invalid unit count: {value}. Must be a positive whole number") from exc
    if unit_count < 1:
        raise RowError(f"Invalid unit count: {value}. Must be a positive whole number")
    return unit_count
