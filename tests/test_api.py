import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from src.api import create_app
from src.config import Config
from src.storage.models import Property, Task
from src.sync.notifications import TaskNotifier
from tests.fakes import SERVICE_ACCOUNT_EMAIL, FakeSheetsService, build_sheets_client, make_http_error

SHEET_URL = "https://docs.google.com/spreadsheets/d/tasks-sheet/edit#gid=0"
MAP_BODY = {
    "spreadsheetId": "tasks-sheet",
    "sheetName": "Sheet1",
    "columnMapping": {"Task Name": "title", "Date": "scheduledDate"},
    "uniqueColumn": "Unique ID",
    "googleSheetUrl": SHEET_URL,
}


@pytest.fixture
def sheets():
    service = FakeSheetsService()
    service.add_sheet(
        "tasks-sheet",
        "Sheet1",
        [
            ["Task Name", "Date", "Unique ID"],
            ["Clean Flat 1", "2024-03-15", "U-100"],
            ["Clean Flat 2", "16/03/2024", "U-101"],
        ],
        title="Cleaning Rota",
    )
    service.add_sheet("tasks-sheet", "Archive", [])
    service.add_sheet("properties-sheet", "Sheet1", [["Address", "Type"], ["2 Mill Lane", "house"]])
    return service


@pytest.fixture
def seeded(session, tenant):
    session.commit()
    return tenant


@pytest.fixture
def api(session_factory, sheets, seeded):
    app = create_app(
        config=Config(cron_secret="s3cret"),
        session_factory=session_factory,
        sheets_client=build_sheets_client(sheets),
        notifier=TaskNotifier(),
    )
    return TestClient(app)


def _task_titles(session_factory):
    with session_factory() as check:
        return check.scalars(select(Task.title).order_by(Task.id)).all()


def test_verify_returns_tabs_and_headers(api, seeded):
    response = api.post(f"/properties/{seeded.property.id}/google-sheet/verify", json={"sheetUrl": SHEET_URL})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    data = body["data"]
    assert data["spreadsheetId"] == "tasks-sheet"
    assert data["spreadsheetTitle"] == "Cleaning Rota"
    assert [sheet["title"] for sheet in data["sheets"]] == ["Sheet1", "Archive"]
    assert data["headers"] == ["Task Name", "Date", "Unique ID"]
    assert data["defaultSheet"] == "Sheet1"


@pytest.mark.parametrize(
    "body, message",
    [
        ({}, "Sheet URL is required"),
        ({"sheetUrl": "https://example.com/not-a-sheet"}, "Invalid Google Sheets URL"),
    ],
)
def test_verify_rejects_bad_input(api, seeded, body, message):
    response = api.post(f"/properties/{seeded.property.id}/google-sheet/verify", json=body)

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": message}


def test_verify_reports_missing_share_permission(api, sheets, seeded):
    sheets.fail_with("tasks-sheet", make_http_error(403, "The caller does not have permission"))

    response = api.post(f"/properties/{seeded.property.id}/google-sheet/verify", json={"sheetUrl": SHEET_URL})

    assert response.status_code == 403
    body = response.json()
    assert body["serviceAccountEmail"] == SERVICE_ACCOUNT_EMAIL
    assert SERVICE_ACCOUNT_EMAIL in body["message"]


def test_unknown_property_is_404(api, seeded):
    response = api.post("/properties/9999/google-sheet/verify", json={"sheetUrl": SHEET_URL})
    mapped = api.post("/properties/9999/google-sheet/map", json=MAP_BODY)

    assert response.status_code == 404
    assert mapped.status_code == 404
    assert mapped.json()["message"] == "Property not found"


def test_map_then_sync(api, session_factory, seeded):
    mapped = api.post(f"/properties/{seeded.property.id}/google-sheet/map", json=MAP_BODY)

    assert mapped.status_code == 200
    data = mapped.json()["data"]
    assert data["propertyId"] == seeded.property.id
    assert data["importResult"]["created"] == 2
    assert _task_titles(session_factory) == ["Clean Flat 1", "Clean Flat 2"]
    with session_factory() as check:
        prop = check.get(Property, seeded.property.id)
        assert prop.sheet_sync_enabled is True
        assert prop.google_sheet_url == SHEET_URL

    synced = api.post(f"/properties/{seeded.property.id}/google-sheet/sync")

    assert synced.status_code == 200
    assert synced.json()["success"] is True
    assert (synced.json()["data"]["created"], synced.json()["data"]["updated"]) == (0, 2)


def test_map_requires_mapping_fields(api, seeded):
    response = api.post(
        f"/properties/{seeded.property.id}/google-sheet/map",
        json={"spreadsheetId": "tasks-sheet", "sheetName": "Sheet1"},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "spreadsheetId, sheetName, and columnMapping are required"


def test_map_empty_sheet_is_a_server_error_and_keeps_nothing(api, sheets, session_factory, seeded):
    sheets.set_rows("tasks-sheet", [])

    response = api.post(f"/properties/{seeded.property.id}/google-sheet/map", json=MAP_BODY)

    assert response.status_code == 500
    assert response.json() == {"success": False, "message": "No data found in sheet"}
    with session_factory() as check:
        assert check.get(Property, seeded.property.id).sheet_sync_enabled is False


def test_sync_without_configuration_reports_failure(api, seeded):
    response = api.post(f"/properties/{seeded.property.id}/google-sheet/sync")

    assert response.status_code == 200
    assert response.json() == {
        "success": False,
        "data": {"success": False, "message": "Sheet sync not enabled or configured"},
    }


def test_company_property_import(api, session_factory, seeded):
    response = api.post(
        f"/companies/{seeded.company.id}/google-sheet/import",
        json={
            "spreadsheetId": "properties-sheet",
            "sheetName": "Sheet1",
            "columnMapping": {"Address": "address", "Type": "propertyType"},
        },
    )

    assert response.status_code == 200
    assert response.json()["data"]["importResult"]["created"] == 1
    missing = api.post("/companies/9999/google-sheet/import", json=MAP_BODY)
    assert missing.status_code == 404


def test_cron_requires_bearer_secret(api, seeded):
    assert api.get("/cron/sync-property-sheets").status_code == 401
    wrong = api.get("/cron/sync-property-sheets", headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 401


def test_cron_runs_scheduled_sync(api, session_factory, seeded):
    api.post(f"/properties/{seeded.property.id}/google-sheet/map", json=MAP_BODY)

    response = api.get("/cron/sync-property-sheets", headers={"Authorization": "Bearer s3cret"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert "timestamp" in body
    (entry,) = body["results"]["properties"]
    assert entry["propertyId"] == seeded.property.id
    assert entry["propertyAddress"] == "1 High Street"
    assert entry["updated"] == 2
    assert body["results"]["companies"] == []
