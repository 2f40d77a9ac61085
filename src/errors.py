"""Exception types raised by the sheet import pipeline."""


class ConfigurationError(ValueError):
    """Google credentials or environment settings are missing or malformed."""


class SheetPermissionError(RuntimeError):
    """The service account cannot read the requested spreadsheet."""

    def __init__(self, message: str, service_account_email: str = "") -> None:
        super().__init__(message)
        self.service_account_email = service_account_email


class EmptyDataError(RuntimeError):
    """The sheet has no header row or no data to import."""


class NotFoundError(LookupError):
    """The property or company being synced does not exist."""
