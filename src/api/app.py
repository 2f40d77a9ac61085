"""HTTP endpoints for connecting Google Sheets and triggering imports."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, Header, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session, sessionmaker

from src.config import Config, load_config
from src.errors import ConfigurationError, EmptyDataError, NotFoundError, SheetPermissionError
from src.storage.database import build_engine, build_session_factory, init_db, session_scope
from src.storage.google_sheets_client import GoogleSheetsClient, extract_spreadsheet_id
from src.storage.repository import SheetSyncRepository
from src.sync.notifications import TaskNotifier
from src.sync.orchestrator import (
    configure_company_sheet,
    configure_property_sheet,
    run_scheduled_sync,
    sync_property_sheet,
)

logger = logging.getLogger(__name__)


class VerifyRequest(BaseModel):
    sheetUrl: Optional[str] = None


class MappingRequest(BaseModel):
    spreadsheetId: Optional[str] = None
    sheetName: Optional[str] = None
    columnMapping: Optional[Dict[str, str]] = None
    uniqueColumn: Optional[str] = None
    googleSheetUrl: Optional[str] = None

    def missing_fields_message(self) -> Optional[str]:
        if self.spreadsheetId and self.sheetName and self.columnMapping:
            return None
        return "spreadsheetId, sheetName, and columnMapping are required"


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message, **extra})


def create_app(
    config: Optional[Config] = None,
    session_factory: Optional[sessionmaker[Session]] = None,
    sheets_client: Optional[GoogleSheetsClient] = None,
    notifier: Optional[TaskNotifier] = None,
) -> FastAPI:
    """Create and configure the sheet import API."""

    cfg = config or load_config()
    if session_factory is None:
        engine = build_engine(cfg.database_url)
        init_db(engine)
        session_factory = build_session_factory(engine)
    client = sheets_client or GoogleSheetsClient(
        credentials_json=cfg.google_sheets_credentials,
        service_account_file=cfg.service_account_file,
        default_sheet_name=cfg.default_sheet_name,
    )
    task_notifier = notifier or TaskNotifier()

    app = FastAPI(
        title="Sheet Import Engine",
        description="Import tasks and properties from Google Sheets",
        version="0.1.0",
        docs_url=None,
        redoc_url=None,
    )
    app.state.config = cfg
    app.state.session_factory = session_factory
    app.state.sheets_client = client

    def _run(action: str, operation: Callable[[Session], Dict[str, Any]]) -> JSONResponse:
        """Run ``operation`` in a transaction and translate failures into responses."""

        try:
            with session_scope(session_factory) as session:
                data = operation(session)
        except NotFoundError as exc:
            return _error(status.HTTP_404_NOT_FOUND, str(exc))
        except SheetPermissionError as exc:
            logger.warning("Spreadsheet access denied", extra={"action": action})
            return _error(
                status.HTTP_403_FORBIDDEN,
                str(exc),
                serviceAccountEmail=exc.service_account_email,
            )
        except (ConfigurationError, EmptyDataError) as exc:
            logger.error("Sheet request failed", extra={"action": action, "error": str(exc)})
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error handling sheet request", extra={"action": action})
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or f"Failed to {action}")
        return JSONResponse(content={"success": data.get("success", True) is not False, "data": data})

    @app.post("/properties/{property_id}/google-sheet/verify")
    def verify_sheet(property_id: int, payload: VerifyRequest) -> JSONResponse:
        if not payload.sheetUrl:
            return _error(status.HTTP_400_BAD_REQUEST, "Sheet URL is required")
        spreadsheet_id = extract_spreadsheet_id(payload.sheetUrl)
        if not spreadsheet_id:
            return _error(status.HTTP_400_BAD_REQUEST, "Invalid Google Sheets URL")

        def _verify(session: Session) -> Dict[str, Any]:
            if SheetSyncRepository(session).get_property(property_id) is None:
                raise NotFoundError("Property not found")
            info = client.verify_spreadsheet(spreadsheet_id)
            if not info.sheets:
                raise EmptyDataError("No sheets found in spreadsheet")
            default_sheet = info.sheets[0].title
            return {
                "spreadsheetId": spreadsheet_id,
                "spreadsheetTitle": info.title,
                "sheets": [sheet.to_dict() for sheet in info.sheets],
                "headers": client.fetch_headers(spreadsheet_id, default_sheet),
                "defaultSheet": default_sheet,
            }

        return _run("verify Google Sheet", _verify)

    @app.post("/properties/{property_id}/google-sheet/map")
    def map_property_sheet(property_id: int, payload: MappingRequest) -> JSONResponse:
        missing = payload.missing_fields_message()
        if missing:
            return _error(status.HTTP_400_BAD_REQUEST, missing)

        def _configure(session: Session) -> Dict[str, Any]:
            result = configure_property_sheet(
                session,
                client,
                task_notifier,
                property_id,
                spreadsheet_id=payload.spreadsheetId,
                sheet_name=payload.sheetName,
                column_mapping=payload.columnMapping,
                unique_column=payload.uniqueColumn,
                sheet_url=payload.googleSheetUrl,
            )
            return {"propertyId": property_id, "importResult": result}

        return _run("map and import from Google Sheet", _configure)

    @app.post("/properties/{property_id}/google-sheet/sync")
    def sync_sheet(property_id: int) -> JSONResponse:
        return _run(
            "sync Google Sheet",
            lambda session: sync_property_sheet(session, client, task_notifier, property_id),
        )

    @app.post("/companies/{company_id}/google-sheet/import")
    def import_company_sheet(company_id: int, payload: MappingRequest) -> JSONResponse:
        missing = payload.missing_fields_message()
        if missing:
            return _error(status.HTTP_400_BAD_REQUEST, missing)

        def _configure(session: Session) -> Dict[str, Any]:
            result = configure_company_sheet(
                session,
                client,
                company_id,
                spreadsheet_id=payload.spreadsheetId,
                sheet_name=payload.sheetName,
                column_mapping=payload.columnMapping,
                unique_column=payload.uniqueColumn,
                sheet_url=payload.googleSheetUrl,
            )
            return {"companyId": company_id, "importResult": result}

        return _run("import properties from Google Sheet", _configure)

    @app.get("/cron/sync-property-sheets")
    def cron_sync(authorization: Optional[str] = Header(default=None)) -> JSONResponse:
        if cfg.cron_secret and authorization != f"Bearer {cfg.cron_secret}":
            logger.warning("Rejected cron request with a bad secret")
            return _error(status.HTTP_401_UNAUTHORIZED, "Unauthorized")

        try:
            with session_scope(session_factory) as session:
                results = run_scheduled_sync(session, client, task_notifier)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Error in cron sync")
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or "Failed to sync property sheets")
        return JSONResponse(
            content={
                "success": True,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "results": results,
            }
        )

    return app
