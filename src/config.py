import json
import os
from dataclasses import dataclass
from typing import Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from src.errors import ConfigurationError


@dataclass
class Config:
    """Centralized configuration loaded from environment variables."""

    database_url: str = "sqlite:///./sheet_sync.db"
    google_sheets_credentials: Optional[str] = None
    service_account_file: Optional[str] = None
    log_level: str = "INFO"
    timezone: str = "UTC"
    sheet_sync_enabled: bool = True
    sheet_sync_interval_minutes: int = 6
    default_sheet_name: str = "Sheet1"
    cron_secret: Optional[str] = None
    api_host: str = "0.0.0.0"
    api_port: int = 8000


def load_config() -> Config:
    """Load configuration values from environment variables.

    The function also loads values from a local `.env` file when present to simplify
    development workflows.
    """

    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "sqlite:///./sheet_sync.db")
    google_sheets_credentials = os.getenv("GOOGLE_SHEETS_CREDENTIALS")
    service_account_file = os.getenv("SERVICE_ACCOUNT_FILE")
    if not (_has_credentials(google_sheets_credentials) or service_account_file):
        raise ConfigurationError(
            "Provide GOOGLE_SHEETS_CREDENTIALS or SERVICE_ACCOUNT_FILE for Google Sheets access",
        )

    _validate_json_payload(google_sheets_credentials)

    log_level = os.getenv("LOG_LEVEL", "INFO")
    timezone = os.getenv("TIMEZONE", "UTC")
    _validate_timezone(timezone)

    sheet_sync_enabled = os.getenv("SHEET_SYNC_ENABLED", "true").lower() not in {"false", "0", "no"}
    sheet_sync_interval_minutes = _parse_positive_int(
        os.getenv("SHEET_SYNC_INTERVAL_MINUTES", "6"), "SHEET_SYNC_INTERVAL_MINUTES"
    )
    default_sheet_name = os.getenv("DEFAULT_SHEET_NAME", "Sheet1").strip() or "Sheet1"
    cron_secret = os.getenv("CRON_SECRET") or None
    api_host = os.getenv("API_HOST", "0.0.0.0")
    api_port = _parse_positive_int(os.getenv("API_PORT", "8000"), "API_PORT")

    return Config(
        database_url=database_url,
        google_sheets_credentials=google_sheets_credentials,
        service_account_file=service_account_file,
        log_level=log_level,
        timezone=timezone,
        sheet_sync_enabled=sheet_sync_enabled,
        sheet_sync_interval_minutes=sheet_sync_interval_minutes,
        default_sheet_name=default_sheet_name,
        cron_secret=cron_secret,
        api_host=api_host,
        api_port=api_port,
    )


def _has_credentials(value: Optional[str]) -> bool:
    return bool(value) and value.strip() != "{}"


def _parse_positive_int(value: str, var_name: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:  # noqa: BLE001
        raise ConfigurationError(f"{var_name} must be an integer") from exc
    if parsed < 1:
        raise ConfigurationError(f"{var_name} must be a positive integer")
    return parsed


def _validate_timezone(value: str) -> None:
    """Ensure provided timezone is valid for ZoneInfo."""

    try:
        ZoneInfo(value)
    except Exception as exc:  # noqa: BLE001
        raise ConfigurationError(
            "TIMEZONE must be a valid IANA timezone, e.g., 'UTC' or 'Europe/London'"
        ) from exc


def _validate_json_payload(value: Optional[str]) -> None:
    """Validate that provided JSON string is parseable."""

    if not value:
        return
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as exc:
        raise ConfigurationError("GOOGLE_SHEETS_CREDENTIALS contains invalid JSON.") from exc

    if not isinstance(parsed, dict):
        raise ConfigurationError("GOOGLE_SHEETS_CREDENTIALS must represent a JSON object")
