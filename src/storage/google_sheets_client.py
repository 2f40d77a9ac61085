import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from src.errors import ConfigurationError, EmptyDataError, SheetPermissionError


logger = logging.getLogger(__name__)

SCOPE = "https://www.googleapis.com/auth/spreadsheets.readonly"
DEFAULT_SHEET_NAME = "Sheet1"
DATA_COLUMNS = "A:Z"
REQUIRED_CREDENTIAL_FIELDS = ("client_email",)
PERMISSION_STATUSES = {403, 404}

SPREADSHEET_URL_PATTERN = re.compile(r"/spreadsheets/d/([a-zA-Z0-9-_]+)")
_PLAIN_SHEET_NAME = re.compile(r"^[A-Za-z0-9_]+$")


@dataclass
class SheetTab:
    id: Optional[int]
    title: str
    row_count: int = 0
    column_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "rowCount": self.row_count,
            "columnCount": self.column_count,
        }


@dataclass
class SpreadsheetInfo:
    title: str
    sheets: List[SheetTab] = field(default_factory=list)


def extract_spreadsheet_id(url: str) -> Optional[str]:
    """Return the spreadsheet id embedded in a Google Sheets URL.

    Handles ``/spreadsheets/d/<id>/edit`` with or without a ``#gid=`` suffix.
    """

    if not url or not isinstance(url, str):
        return None
    match = SPREADSHEET_URL_PATTERN.search(url)
    return match.group(1) if match else None


class GoogleSheetsClient:
    """Read-only client for pulling task and property rows out of Google Sheets."""

    def __init__(
        self,
        credentials_json: Optional[str] = None,
        service_account_file: Optional[str] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        service: Any | None = None,
        default_sheet_name: str = DEFAULT_SHEET_NAME,
    ) -> None:
        self.credentials_json = credentials_json
        self.service_account_file = service_account_file
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._service = service
        self.default_sheet_name = default_sheet_name
        self._service_account_info: Optional[Dict[str, Any]] = None

    @property
    def service_account_email(self) -> str:
        """Identity that has to be granted Viewer access on each spreadsheet."""

        if self._service_account_info is None:
            try:
                self._service_account_info = self._load_service_account_info()
            except ConfigurationError:
                return ""
        return self._service_account_info.get("client_email", "")

    def verify_spreadsheet(self, spreadsheet_id: str) -> SpreadsheetInfo:
        """Confirm the spreadsheet is readable and list its tabs."""

        def _execute_get_metadata():
            request = self._get_service().spreadsheets().get(spreadsheetId=spreadsheet_id)
            return request.execute()

        metadata = self._execute_with_retries(
            _execute_get_metadata, action="verify_spreadsheet", spreadsheet_id=spreadsheet_id
        )

        sheets: List[SheetTab] = []
        for sheet in metadata.get("sheets", []) or []:
            properties = sheet.get("properties", {}) or {}
            grid = properties.get("gridProperties", {}) or {}
            sheets.append(
                SheetTab(
                    id=properties.get("sheetId"),
                    title=properties.get("title", ""),
                    row_count=grid.get("rowCount") or 0,
                    column_count=grid.get("columnCount") or 0,
                )
            )

        title = (metadata.get("properties", {}) or {}).get("title") or "Untitled"
        logger.info(
            "Verified spreadsheet access",
            extra={"spreadsheet_id": spreadsheet_id, "sheet_count": len(sheets)},
        )
        return SpreadsheetInfo(title=title, sheets=sheets)

    def fetch_headers(self, spreadsheet_id: str, sheet_name: str = DEFAULT_SHEET_NAME) -> List[str]:
        """Return the trimmed column names from row 1 of ``sheet_name``."""

        range_ref = f"{self._quote_sheet_name(sheet_name)}!1:1"
        values = self._get_values(spreadsheet_id, range_ref, action="fetch_headers")
        if not values:
            raise EmptyDataError(
                "No headers found in sheet. Please ensure the first row contains column names."
            )
        return [str(cell if cell is not None else "").strip() for cell in values[0] or []]

    def fetch_rows(self, spreadsheet_id: str, sheet_name: str = DEFAULT_SHEET_NAME) -> List[List[Any]]:
        """Return every row in columns A-Z of ``sheet_name``; row 0 holds the headers."""

        range_ref = f"{self._quote_sheet_name(sheet_name)}!{DATA_COLUMNS}"
        values = self._get_values(spreadsheet_id, range_ref, action="fetch_rows")
        logger.info(
            "Fetched sheet rows",
            extra={"spreadsheet_id": spreadsheet_id, "sheet": sheet_name, "row_count": len(values)},
        )
        return values

    def _get_values(self, spreadsheet_id: str, range_ref: str, *, action: str) -> List[List[Any]]:
        def _execute_get():
            request = (
                self._get_service()
                .spreadsheets()
                .values()
                .get(spreadsheetId=spreadsheet_id, range=range_ref)
            )
            return request.execute()

        response = self._execute_with_retries(_execute_get, action=action, spreadsheet_id=spreadsheet_id)
        return response.get("values", []) or []

    @staticmethod
    def _quote_sheet_name(sheet_name: str) -> str:
        if _PLAIN_SHEET_NAME.match(sheet_name):
            return sheet_name
        escaped = sheet_name.replace("'", "''")
        return f"'{escaped}'"

    def _execute_with_retries(self, func, action: str, spreadsheet_id: str):
        delay = self.retry_delay
        for attempt in range(1, self.max_retries + 1):
            try:
                logger.debug(
                    "Calling Google Sheets API",
                    extra={"action": action, "attempt": attempt, "spreadsheet_id": spreadsheet_id},
                )
                return func()
            except HttpError as exc:
                if self._status_of(exc) in PERMISSION_STATUSES:
                    raise self._permission_error(spreadsheet_id) from exc
                self._log_failure(exc, action, attempt, spreadsheet_id)
                if attempt == self.max_retries:
                    raise
            except (ConfigurationError, SheetPermissionError):
                raise
            except Exception as exc:  # noqa: BLE001
                self._log_failure(exc, action, attempt, spreadsheet_id)
                if attempt == self.max_retries:
                    raise
            time.sleep(delay)
            delay *= 2

    def _log_failure(self, exc: Exception, action: str, attempt: int, spreadsheet_id: str) -> None:
        logger.warning(
            "Google Sheets API call failed",
            extra={"action": action, "attempt": attempt, "error": str(exc)},
        )
        if attempt == self.max_retries:
            logger.error(
                "Google Sheets API call exhausted retries",
                extra={"action": action, "attempt": attempt, "spreadsheet_id": spreadsheet_id},
            )

    @staticmethod
    def _status_of(exc: HttpError) -> Optional[int]:
        status = getattr(exc.resp, "status", None)
        try:
            return int(status) if status is not None else None
        except (TypeError, ValueError):
            return None

    def _permission_error(self, spreadsheet_id: str) -> SheetPermissionError:
        email = self.service_account_email
        logger.error(
            "Spreadsheet is not shared with the service account",
            extra={"spreadsheet_id": spreadsheet_id, "service_account": email},
        )
        return SheetPermissionError(
            f"Permission denied. Please share the spreadsheet with: {email} "
            "and grant at least 'Viewer' access.",
            service_account_email=email,
        )

    def _get_service(self):
        if self._service:
            return self._service

        credentials = self._load_credentials()
        self._service = build("sheets", "v4", credentials=credentials, cache_discovery=False)
        return self._service

    def _load_credentials(self):
        info = self._load_service_account_info()
        self._service_account_info = info
        try:
            return service_account.Credentials.from_service_account_info(info, scopes=[SCOPE])
        except ValueError as exc:
            raise ConfigurationError(f"Service account credentials are malformed: {exc}") from exc

    def _load_service_account_info(self) -> Dict[str, Any]:
        if self.credentials_json and self.credentials_json.strip() != "{}":
            try:
                info = json.loads(self.credentials_json)
            except json.JSONDecodeError as exc:
                raise ConfigurationError("GOOGLE_SHEETS_CREDENTIALS contains invalid JSON.") from exc
        elif self.service_account_file:
            try:
                with open(self.service_account_file, "r", encoding="utf-8") as fh:
                    info = json.load(fh)
            except OSError as exc:
                raise ConfigurationError(
                    f"Unable to read service account file: {self.service_account_file}"
                ) from exc
            except json.JSONDecodeError as exc:
                raise ConfigurationError("Service account file contains invalid JSON.") from exc
        else:
            raise ConfigurationError(
                "GOOGLE_SHEETS_CREDENTIALS environment variable is not set. "
                "Please configure your Google Service Account credentials."
            )

        self._validate_service_account_info(info)
        return info

    @staticmethod
    def _validate_service_account_info(info: Any) -> None:
        if not isinstance(info, dict):
            raise ConfigurationError("Service account credentials must be a JSON object")
        missing = [name for name in REQUIRED_CREDENTIAL_FIELDS if not info.get(name)]
        if missing:
            raise ConfigurationError(
                "Service account info missing required fields: " + ", ".join(sorted(missing))
            )
