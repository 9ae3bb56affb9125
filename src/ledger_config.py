#!/usr/bin/env python3
"""
Read, parse and validate the ledger configuration file
`ledger_config.ini` against its schema under
`assets/config/ledger_config_schema.json`.

The spreadsheet identifier and the credentials file are secrets: the
environment variables `TASKLEDGER_SPREADSHEET_ID` and
`TASKLEDGER_CREDENTIALS_FILE` take precedence over the file values.

---
TaskLedger - Sheet-backed task time tracking

Author: Bastian Cerf
Copyright (C) 2025 Mecacerf SA
License: AGPL-3.0 <https://www.gnu.org/licenses/>
"""

# Standard libraries
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional
import datetime as dt
import logging
import os
import zoneinfo

# Internal libraries
from common.config_parser import ConfigParser
from common.resilience import RetryPolicy
from core.errors import LedgerConfigException

logger = logging.getLogger(__name__)

SCHEMA_FILE_PATH = str(
    Path(__file__).resolve().parent.parent
    / "assets"
    / "config"
    / "ledger_config_schema.json"
)
CONFIG_FILE_PATH = "ledger_config.ini"

# Environment variables overriding the secrets
ENV_SPREADSHEET_ID = "TASKLEDGER_SPREADSHEET_ID"
ENV_CREDENTIALS_FILE = "TASKLEDGER_CREDENTIALS_FILE"

# Keys masked in logs
SECRET_KEYS = ("spreadsheet_id", "credentials_file")

BACKEND_WORKBOOK = "workbook"
BACKEND_GOOGLE = "google"


@dataclass(frozen=True)
class StoreSettings:
    """
    Attributes:
        backend (str): `workbook` or `google`.
        spreadsheet_id (str): Spreadsheet identifier.
        repository (str): Workbooks folder (workbook backend).
        credentials_file (str): Service account file (google backend).
    """

    backend: str
    spreadsheet_id: str
    repository: str = ""
    credentials_file: str = ""


class LedgerConfig:
    """
    Holds the application's configuration data.
    """

    def __init__(
        self,
        path: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
        schema: str = SCHEMA_FILE_PATH,
    ):
        """
        Args:
            path (Optional[str]): Configuration file, defaults to
                `CONFIG_FILE_PATH`. A default file is created if missing.
            environ (Optional[Mapping[str, str]]): Environment variables,
                defaults to `os.environ`.
            schema (str): Schema file.

        Raises:
            ConfigError: The file is invalid.
        """
        self._config_path = path or CONFIG_FILE_PATH
        self._environ = os.environ if environ is None else environ
        self._config = ConfigParser(schema, self._config_path, gen_default=True)
        self._view = self._config.get_view()

    def section(self, section: str) -> MappingProxyType[str, Any]:
        """
        Returns:
            MappingProxyType: A read-only view on a data section.
        """
        return self._view[section]

    def store_settings(self) -> StoreSettings:
        """
        Resolve the store settings, secrets included.

        Raises:
            LedgerConfigException: The spreadsheet identifier or the
                credentials of the selected backend are missing.
        """
        store = self.section("store")
        backend = store["backend"]

        spreadsheet_id = self.__secret(ENV_SPREADSHEET_ID, store["spreadsheet_id"])
        if not spreadsheet_id:
            raise LedgerConfigException(
                f"No spreadsheet id configured. Set [store] spreadsheet_id or "
                f"{ENV_SPREADSHEET_ID}."
            )

        if backend == BACKEND_GOOGLE:
            credentials = self.__secret(ENV_CREDENTIALS_FILE, store["credentials_file"])
            if not credentials:
                raise LedgerConfigException(
                    f"No Google credentials configured. Set [store] "
                    f"credentials_file or {ENV_CREDENTIALS_FILE}."
                )
            return StoreSettings(backend, spreadsheet_id, credentials_file=credentials)

        repository = store["repository"]
        if not repository:
            raise LedgerConfigException("No workbooks repository configured.")
        return StoreSettings(backend, spreadsheet_id, repository=repository)

    def retry_policy(self) -> RetryPolicy:
        resilience = self.section("resilience")
        return RetryPolicy(
            max_retries=resilience["max_retries"],
            base_delay=resilience["retry_delay"],
            timeout=resilience["request_timeout"],
        )

    def timezone(self) -> Optional[dt.tzinfo]:
        """
        Returns:
            Optional[dt.tzinfo]: The configured time zone or `None` for
                the system time zone.

        Raises:
            LedgerConfigException: Unknown time zone.
        """
        name = self.section("general")["timezone"]
        if not name:
            return None
        try:
            return zoneinfo.ZoneInfo(name)
        except (zoneinfo.ZoneInfoNotFoundError, ValueError) as e:
            raise LedgerConfigException(f"Unknown time zone '{name}'.") from e

    def __secret(self, variable: str, fallback: Optional[str]) -> str:
        value = self._environ.get(variable, "").strip()
        if value:
            logger.debug(f"Using {variable} from the environment.")
            return value
        return (fallback or "").strip()

    def show_config(self):
        """
        Log the configuration in use, section by section. Secrets are
        masked.
        """
        logger.info(f"Using ledger configuration '{self._config_path}'.")
        for section, values in self._view.items():
            shown = {
                key: "***" if key in SECRET_KEYS and value else value
                for key, value in values.items()
            }
            logger.info(f"Section [{section}] = {shown}")
