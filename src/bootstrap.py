#!/usr/bin/env python3
"""
TaskLedger program bootstrap: logging setup, configuration loading and
construction of the ledger service.

---
TaskLedger - Sheet-backed task time tracking

Author: Bastian Cerf
Copyright (C) 2025 Mecacerf SA
License: AGPL-3.0 <https://www.gnu.org/licenses/>
"""

# Standard libraries
import logging, logging.handlers
from typing import Any, Optional

# Internal libraries
from ledger_config import LedgerConfig, StoreSettings, BACKEND_GOOGLE
from common.resilience import RetryExecutor, RequestDeduplicator
from common.ttl_cache import TTLCache
from core.spreadsheets.sheet_store import SheetStore
from core.task_ledger import TaskLedger
from core.report_aggregator import ReportAggregator
from model.ledger_service import TaskLedgerService

logger = logging.getLogger(__name__)

# Logging configuration
LOGGING_FILE_NAME = "taskledger.log"
LOGGING_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


class ColorFormatter(logging.Formatter):
    """
    Custom log formatter that colors only the log level name.
    """

    COLORS = {
        "DEBUG": "\033[94m",  # Blue
        "INFO": "\033[92m",  # Green
        "WARNING": "\033[93m",  # Yellow
        "ERROR": "\033[91m",  # Red
        "CRITICAL": "\033[41m",  # White on Red
        "RESET": "\033[0m",  # Reset color
    }

    def __init__(self):
        super().__init__(LOGGING_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        # Color a copy, the file handler shares the record
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, self.COLORS["RESET"])
        record.levelname = f"{color}{record.levelname}{self.COLORS['RESET']}"
        return super().format(record)


def configure_logging(
    level: int = logging.INFO, log_file: Optional[str] = LOGGING_FILE_NAME
):
    """
    Configure the logging module.

    Logs are saved in log files with a time rotating strategy: a new
    file is created at midnight and files are kept 7 days. Logs are
    also printed on the standard error stream.

    Args:
        level (int): Minimal level to log.
        log_file (Optional[str]): Log file name or `None` to only log on
            the console.
    """
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(ColorFormatter())

    handlers: list[logging.Handler] = [console_handler]
    if log_file:
        handlers.append(
            logging.handlers.TimedRotatingFileHandler(
                filename=log_file,
                when="midnight",
                interval=1,
                backupCount=7,
                encoding="utf-8",
            )
        )

    # Configure logging once for all modules
    logging.basicConfig(
        level=level,
        format=LOGGING_FORMAT,
        encoding="utf-8",
        handlers=handlers,
        force=True,
    )


def load_config(path: Optional[str] = None) -> LedgerConfig:
    """
    Load and validate the ledger configuration. A default file is
    created if missing.
    """
    config = LedgerConfig(path)
    config.show_config()
    return config


def create_store(settings: StoreSettings) -> SheetStore:
    """
    Create the store client of the configured backend. Backend modules
    are imported on demand.
    """
    if settings.backend == BACKEND_GOOGLE:
        from core.spreadsheets.google_store import GoogleSheetStore

        logger.info("Using the Google Sheets store.")
        return GoogleSheetStore(settings.credentials_file)

    from core.spreadsheets.workbook_store import WorkbookSheetStore

    logger.info(f"Using the workbook store under '{settings.repository}'.")
    return WorkbookSheetStore(settings.repository)


def build_service(config: LedgerConfig) -> TaskLedgerService:
    """
    Build the ledger service and its collaborators: one retry executor,
    one cache and one de-duplication register for the whole process.

    Raises:
        LedgerConfigException: Missing spreadsheet id or credentials.
    """
    settings = config.store_settings()
    timezone = config.timezone()
    cache_conf = config.section("cache")

    executor = None
    cache = None
    try:
        store = create_store(settings)
        executor = RetryExecutor(config.retry_policy())
        cache = TTLCache(sweep_interval=cache_conf["sweep_interval"])

        ledger = TaskLedger(
            store,
            settings.spreadsheet_id,
            executor=executor,
            cache=cache,
            deduplicator=RequestDeduplicator(),
            active_ttl=cache_conf["active_task_ttl"],
            timezone=timezone,
        )
        aggregator = ReportAggregator(store, settings.spreadsheet_id, executor=executor)

    except Exception:
        # Try to close the modules that may have been created
        for module in (executor, cache):
            try_close(module)
        raise

    return _OwningService(ledger, aggregator, executor, cache)


def try_close(module: Any):
    try:
        if module:
            module.close()
    except Exception as ex:
        logger.warning(f"Exception closing '{module}': {ex}")


class _OwningService(TaskLedgerService):
    """
    Service closing the shared executor and cache with itself.
    """

    def __init__(
        self,
        ledger: TaskLedger,
        aggregator: ReportAggregator,
        executor: RetryExecutor,
        cache: TTLCache,
    ):
        super().__init__(ledger, aggregator)
        self._executor = executor
        self._cache = cache

    def close(self):
        super().close()
        try_close(self._executor)
        try_close(self._cache)
