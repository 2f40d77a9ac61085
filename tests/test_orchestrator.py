import json

import pytest
from sqlalchemy import select

from src.errors import NotFoundError, SheetPermissionError
from src.storage.models import Company, Property, Task
from src.sync.notifications import TaskNotifier
from src.sync.orchestrator import (
    configure_company_sheet,
    configure_property_sheet,
    run_scheduled_sync,
    sync_all_company_sheets,
    sync_all_property_sheets,
    sync_company_sheet,
    sync_property_sheet,
)
from tests.fakes import FakeSheetsService, build_sheets_client, make_http_error

TASK_ROWS = [
    ["Task Name", "Date", "Unique ID"],
    ["Clean Flat 1", "2024-03-15", "U-100"],
    ["Clean Flat 2", "2024-03-16", "U-101"],
]
TASK_MAPPING = {"Task Name": "title", "Date": "scheduledDate"}


@pytest.fixture
def sheets():
    service = FakeSheetsService()
    service.add_sheet("tasks-sheet", "Schedule", TASK_ROWS)
    service.add_sheet(
        "properties-sheet",
        "Sheet1",
        [["Address", "Type", "Ref"], ["2 Mill Lane", "house", "P-1"]],
    )
    return service


@pytest.fixture
def client(sheets):
    return build_sheets_client(sheets)


@pytest.fixture
def notifier():
    return TaskNotifier()


def _configure_property(session, client, notifier, property_id, **overrides):
    options = {
        "spreadsheet_id": "tasks-sheet",
        "sheet_name": "Schedule",
        "column_mapping": TASK_MAPPING,
        "unique_column": "Unique ID",
    }
    options.update(overrides)
    return configure_property_sheet(session, client, notifier, property_id, **options)


def test_configure_property_sheet_persists_settings_and_imports(session, tenant, client, notifier):
    result = _configure_property(session, client, notifier, tenant.property.id)

    assert (result["success"], result["created"], result["updated"]) == (True, 2, 0)
    prop = tenant.property
    assert prop.sheet_sync_enabled is True
    assert prop.google_sheet_id == "tasks-sheet"
    assert prop.google_sheet_name == "Schedule"
    assert prop.google_sheet_url == "https://docs.google.com/spreadsheets/d/tasks-sheet"
    assert json.loads(prop.sheet_column_mapping) == TASK_MAPPING
    assert prop.sheet_unique_column == "Unique ID"


def test_sync_property_sheet_reuses_stored_settings(session, tenant, client, notifier):
    _configure_property(session, client, notifier, tenant.property.id)

    result = sync_property_sheet(session, client, notifier, tenant.property.id)

    assert (result["created"], result["updated"]) == (0, 2)
    assert len(session.scalars(select(Task)).all()) == 2


def test_sync_property_sheet_requires_configuration(session, tenant, client, notifier):
    result = sync_property_sheet(session, client, notifier, tenant.property.id)

    assert result == {"success": False, "message": "Sheet sync not enabled or configured"}


def test_sync_property_sheet_requires_a_mapping(session, tenant, client, notifier):
    tenant.property.sheet_sync_enabled = True
    tenant.property.google_sheet_id = "tasks-sheet"
    tenant.property.sheet_column_mapping = "{}"

    result = sync_property_sheet(session, client, notifier, tenant.property.id)

    assert result == {"success": False, "message": "No column mapping configured"}


def test_sync_property_sheet_reports_import_failures(session, tenant, sheets, client, notifier):
    _configure_property(session, client, notifier, tenant.property.id)
    sheets.fail_with("tasks-sheet", make_http_error(403, "Forbidden"))

    result = sync_property_sheet(session, client, notifier, tenant.property.id)

    assert result["success"] is False
    assert "Permission denied" in result["error"]


def test_sync_property_sheet_uses_default_sheet_name(session, tenant, sheets, notifier):
    sheets.add_sheet("tasks-sheet", "Rota", TASK_ROWS)
    client = build_sheets_client(sheets, default_sheet_name="Rota")
    tenant.property.sheet_sync_enabled = True
    tenant.property.google_sheet_id = "tasks-sheet"
    tenant.property.sheet_column_mapping = json.dumps(TASK_MAPPING)

    result = sync_property_sheet(session, client, notifier, tenant.property.id)

    assert result["created"] == 2
    assert ("tasks-sheet", "Rota!A:Z") in sheets.requested_ranges


def test_configure_property_sheet_propagates_fatal_errors(session, tenant, sheets, client, notifier):
    sheets.fail_with("tasks-sheet", make_http_error(404, "Not found"))

    with pytest.raises(SheetPermissionError):
        _configure_property(session, client, notifier, tenant.property.id)
    with pytest.raises(NotFoundError):
        _configure_property(session, client, notifier, 9999)


def test_configure_and_sync_company_sheet(session, tenant, client):
    created = configure_company_sheet(
        session,
        client,
        tenant.company.id,
        spreadsheet_id="properties-sheet",
        sheet_name="Sheet1",
        column_mapping={"Address": "address", "Type": "propertyType"},
        unique_column="Ref",
        sheet_url="https://docs.google.com/spreadsheets/d/properties-sheet/edit",
    )
    resynced = sync_company_sheet(session, client, tenant.company.id)

    assert created["created"] == 1
    assert (resynced["created"], resynced["updated"]) == (0, 1)
    assert tenant.company.google_sheet_url.endswith("/edit")
    assert sync_company_sheet(session, client, tenant.rival.id) == {
        "success": False,
        "message": "Sheet sync not enabled or configured",
    }


def test_sync_all_property_sheets_isolates_failures(session, tenant, sheets, client, notifier):
    broken = Property(company_id=tenant.company.id, address="2 Broken Road", property_type="house")
    session.add(broken)
    session.flush()
    _configure_property(session, client, notifier, tenant.property.id)
    broken.sheet_sync_enabled = True
    broken.google_sheet_id = "missing-sheet"
    broken.sheet_column_mapping = json.dumps(TASK_MAPPING)
    disabled = Property(company_id=tenant.company.id, address="3 Quiet Close", property_type="house")
    session.add(disabled)
    session.flush()

    results = sync_all_property_sheets(session, client, notifier)

    assert [entry["propertyId"] for entry in results] == [tenant.property.id, broken.id]
    healthy, failed = results
    assert healthy["propertyAddress"] == "1 High Street"
    assert (healthy["success"], healthy["updated"]) == (True, 2)
    assert failed["success"] is False
    assert "Permission denied" in failed["error"]


def test_run_scheduled_sync_covers_properties_and_companies(session, tenant, client, notifier):
    _configure_property(session, client, notifier, tenant.property.id)
    company = session.get(Company, tenant.company.id)
    company.sheet_sync_enabled = True
    company.google_sheet_id = "properties-sheet"
    company.google_sheet_name = "Sheet1"
    company.sheet_column_mapping = json.dumps({"Address": "address", "Type": "propertyType"})
    company.sheet_unique_column = "Ref"
    session.flush()

    summary = run_scheduled_sync(session, client, notifier)

    assert [entry["propertyId"] for entry in summary["properties"]] == [tenant.property.id]
    (company_result,) = summary["companies"]
    assert company_result["companyId"] == tenant.company.id
    assert company_result["companyName"] == "Sparkle Cleaning"
    assert company_result["created"] == 1


def test_sync_all_company_sheets_with_nothing_enabled(session, tenant, client):
    assert sync_all_company_sheets(session, client) == []
