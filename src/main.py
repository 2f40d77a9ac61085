import logging

import uvicorn
from fastapi import FastAPI

from src.api import create_app
from src.config import load_config
from src.logging_config import configure_logging
from src.storage.database import build_engine, build_session_factory, init_db
from src.storage.google_sheets_client import GoogleSheetsClient
from src.sync.notifications import TaskNotifier
from src.sync.scheduler import shutdown, start_scheduler_from_config


logger = logging.getLogger(__name__)


def build_application() -> FastAPI:
    """Create the API together with its database and background sync."""

    try:
        config = load_config()
    except ValueError as exc:
        logger.critical("Configuration error: %s", exc)
        raise
    configure_logging(config.log_level, config.timezone)

    engine = build_engine(config.database_url)
    init_db(engine)
    session_factory = build_session_factory(engine)

    sheets_client = GoogleSheetsClient(
        credentials_json=config.google_sheets_credentials,
        service_account_file=config.service_account_file,
        default_sheet_name=config.default_sheet_name,
    )
    logger.info(
        "Sheets client initialized",
        extra={"service_account": sheets_client.service_account_email},
    )
    notifier = TaskNotifier()

    app = create_app(
        config=config,
        session_factory=session_factory,
        sheets_client=sheets_client,
        notifier=notifier,
    )

    scheduler_state = start_scheduler_from_config(config, session_factory, sheets_client, notifier)
    app.state.scheduler_state = scheduler_state

    logger.info("Sheet import application initialized")
    return app


def main() -> None:
    """Entry point for serving the API with uvicorn."""

    app = build_application()
    config = app.state.config
    logger.info("Starting server...", extra={"host": config.api_host, "port": config.api_port})
    try:
        uvicorn.run(app, host=config.api_host, port=config.api_port, log_config=None)
    finally:
        if app.state.scheduler_state is not None:
            shutdown(app.state.scheduler_state)


if __name__ == "__main__":
    main()
