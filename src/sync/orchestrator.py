"""Entry points that tie persisted sheet settings to the importers."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy.orm import Session

from src.errors import NotFoundError
from src.storage.repository import SheetSyncRepository
from src.sync.notifications import TaskNotifier
from src.sync.parsing import dump_column_mapping, load_column_mapping
from src.sync.reconcile import import_properties_from_sheet, import_tasks_from_sheet

logger = logging.getLogger(__name__)

NOT_CONFIGURED_MESSAGE = "Sheet sync not enabled or configured"
NO_MAPPING_MESSAGE = "No column mapping configured"


def _apply_sheet_settings(
    instance,
    *,
    spreadsheet_id: str,
    sheet_name: str,
    column_mapping: Mapping[str, str],
    unique_column: Optional[str],
    sheet_url: Optional[str],
) -> None:
    instance.google_sheet_url = sheet_url or f"https://docs.google.com/spreadsheets/d/{spreadsheet_id}"
    instance.google_sheet_id = spreadsheet_id
    instance.google_sheet_name = sheet_name
    instance.sheet_column_mapping = dump_column_mapping(column_mapping)
    instance.sheet_unique_column = unique_column or None
    instance.sheet_sync_enabled = True


def configure_property_sheet(
    session: Session,
    sheets_client,
    notifier: TaskNotifier,
    property_id: int,
    *,
    spreadsheet_id: str,
    sheet_name: str,
    column_mapping: Mapping[str, str],
    unique_column: Optional[str] = None,
    sheet_url: Optional[str] = None,
) -> Dict[str, Any]:
    """Persist a property's sheet settings, enable sync and import once.

    Fatal import errors propagate so the caller can map them to a response.
    """

    repository = SheetSyncRepository(session)
    prop = repository.get_property(property_id)
    if prop is None:
        raise NotFoundError("Property not found")

    _apply_sheet_settings(
        prop,
        spreadsheet_id=spreadsheet_id,
        sheet_name=sheet_name,
        column_mapping=column_mapping,
        unique_column=unique_column,
        sheet_url=sheet_url,
    )
    session.flush()
    logger.info(
        "Property sheet configured",
        extra={"property_id": property_id, "spreadsheet_id": spreadsheet_id, "sheet_name": sheet_name},
    )

    result = import_tasks_from_sheet(
        session,
        sheets_client,
        notifier,
        property_id,
        spreadsheet_id,
        sheet_name,
        column_mapping,
        unique_column,
    )
    return result.to_dict()


def sync_property_sheet(
    session: Session, sheets_client, notifier: TaskNotifier, property_id: int
) -> Dict[str, Any]:
    """Re-import a property's tasks from its persisted sheet settings."""

    repository = SheetSyncRepository(session)
    prop = repository.get_property(property_id)
    if prop is None:
        raise NotFoundError("Property not found")

    if not prop.sheet_sync_enabled or not prop.google_sheet_id:
        return {"success": False, "message": NOT_CONFIGURED_MESSAGE}

    try:
        column_mapping = load_column_mapping(prop.sheet_column_mapping)
    except ValueError as exc:
        logger.warning("Stored column mapping is unreadable", extra={"property_id": property_id})
        return {"success": False, "error": str(exc)}
    if not column_mapping:
        return {"success": False, "message": NO_MAPPING_MESSAGE}

    try:
        result = import_tasks_from_sheet(
            session,
            sheets_client,
            notifier,
            property_id,
            prop.google_sheet_id,
            prop.google_sheet_name or sheets_client.default_sheet_name,
            column_mapping,
            prop.sheet_unique_column,
        )
    except Exception as exc:  # noqa: BLE001
        logger.exception("Property sheet sync failed", extra={"property_id": property_id})
        return {"success": False, "error": str(exc)}
    return result.to_dict()


def configure_company_sheet(
    session: Session,
    sheets_client,
    company_id: int,
    *,
    spreadsheet_id: str,
    sheet_name: str,
    column_mapping: Mapping[str, str],
    unique_column: Optional[str] = None,
    sheet_url: Optional[str] = None,
) -> Dict[str, Any]:
    """Persist a company's property-sheet settings, enable sync and import once."""

    repository = SheetSyncRepository(session)
    company = repository.get_company(company_id)
    if company is None:
        raise NotFoundError("Company not found")

    _apply_sheet_settings(
        company,
        spreadsheet_id=spreadsheet_id,
        sheet_name=sheet_name,
        column_mapping=column_mapping,
        unique_column=unique_column,
        sheet_url=sheet_url,
    )
    session.flush()
    logger.info(
        "Company sheet configured",
        extra={"company_id": company_id, "spreadsheet_id": spreadsheet_id, "sheet_name": sheet_name},
    )

    result = import_properties_from_sheet(
        session,
        sheets_client,
        company_id,
        spreadsheet_id,
        sheet_name,
        column_mapping,
        unique_column,
    )
    return result.to_dict()


def sync_company_sheet(session: Session, sheets_client, company_id: int) -> Dict[str, Any]:
    repository = SheetSyncRepository(session)
    company = repository.get_company(company_id)
    if company is None:
        raise NotFoundError("Company not found")

    if not company.sheet_sync_enabled or not company.google_sheet_id:
        return {"success": False, "message": NOT_CONFIGURED_MESSAGE}

    try:
        column_mapping = load_column_mapping(company.sheet_column_mapping)
    except ValueError as exc:
        logger.warning("Stored column mapping is unreadable", extra={"company_id": company_id})
        return {"success": False, "error": str(exc)}
    if not column_mapping:
        return {"success": False, "message": NO_MAPPING_MESSAGE}

    try:
        result = import_properties_from_sheet(
            session,
            sheets_client,
            company_id,
            company.google_sheet_id,
            company.google_sheet_name or sheets_client.default_sheet_name,
            column_mapping,
            company.sheet_unique_column,
        )
    except Exception as exc:  # noqa: BLE001
        logger.exception("Company sheet sync failed", extra={"company_id": company_id})
        return {"success": False, "error": str(exc)}
    return result.to_dict()


def sync_all_property_sheets(
    session: Session, sheets_client, notifier: TaskNotifier
) -> List[Dict[str, Any]]:
    """Sync every sync-enabled property in id order; one failure never stops the batch."""

    repository = SheetSyncRepository(session)
    properties = repository.list_sync_enabled_properties()
    logger.info("Starting scheduled property sheet sync", extra={"count": len(properties)})

    results: List[Dict[str, Any]] = []
    for prop in properties:
        try:
            with session.begin_nested():
                result = sync_property_sheet(session, sheets_client, notifier, prop.id)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Error syncing property sheet", extra={"property_id": prop.id})
            result = {"success": False, "error": str(exc)}
        results.append({"propertyId": prop.id, "propertyAddress": prop.address, **result})
    return results


def sync_all_company_sheets(session: Session, sheets_client) -> List[Dict[str, Any]]:
    repository = SheetSyncRepository(session)
    companies = repository.list_sync_enabled_companies()
    logger.info("Starting scheduled company sheet sync", extra={"count": len(companies)})

    results: List[Dict[str, Any]] = []
    for company in companies:
        try:
            with session.begin_nested():
                result = sync_company_sheet(session, sheets_client, company.id)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Error syncing company sheet", extra={"company_id": company.id})
            result = {"success": False, "error": str(exc)}
        results.append({"companyId": company.id, "companyName": company.name, **result})
    return results


def run_scheduled_sync(session: Session, sheets_client, notifier: TaskNotifier) -> Dict[str, List[Dict[str, Any]]]:
    """One pass of the scheduled path over properties, then companies."""

    return {
        "properties": sync_all_property_sheets(session, sheets_client, notifier),
        "companies": sync_all_company_sheets(session, sheets_client),
    }
