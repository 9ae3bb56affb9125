#!/usr/bin/env python3
"""
`SheetStore` implementation on Google Sheets, through gspread and a
service account credentials file.

gspread and the underlying `requests` session report failures with
their own exceptions. They are classified here:
- `APIError` with a 5xx, 408 or 429 status, connection errors and
    timeouts become `StoreTransientException`.
- Any other `APIError` becomes a terminal `StoreException` holding the
    response status code.
- A missing or invalid credentials file becomes a
    `LedgerConfigException`.

---
TaskLedger - Sheet-backed task time tracking

Author: Bastian Cerf
Copyright (C) 2025 Mecacerf SA
License: AGPL-3.0 <https://www.gnu.org/licenses/>
"""

# Standard libraries
from contextlib import contextmanager
from threading import Lock
from typing import Any, Iterator, Optional, Sequence
import logging

# Third-party libraries
import gspread
from gspread.exceptions import APIError, WorksheetNotFound
import requests

# Internal libraries
from core.errors import (
    LedgerConfigException,
    StoreException,
    StoreTransientException,
)
from ..layout import FULL_SHEET_RANGE, cell_address
from .sheet_store import SheetStore, CellUpdate

logger = logging.getLogger(__name__)

# Grid size of a newly created worksheet
NEW_SHEET_ROWS = 1000
NEW_SHEET_COLUMNS = 100

# Values are parsed as if typed in the Google Sheets UI
VALUE_INPUT_OPTION = "USER_ENTERED"

# Message returned by the API when adding a worksheet that exists
_ALREADY_EXISTS_MARKER = "already exists"


def _status_code(error: APIError) -> Optional[int]:
    code = getattr(error, "code", None)
    if isinstance(code, int):
        return code
    response = getattr(error, "response", None)
    return getattr(response, "status_code", None)


class GoogleSheetStore(SheetStore):
    """
    Stores the ledger worksheets in Google spreadsheets.
    """

    def __init__(self, credentials_file: str, client: Optional[Any] = None):
        """
        Args:
            credentials_file (str): Service account JSON file.
            client (Optional[Any]): Authorized gspread client. Built from
                the credentials file on first use when not given.
        """
        self._credentials_file = credentials_file
        self._client = client
        self._spreadsheets: dict[str, Any] = {}
        self._lock = Lock()

    def __client(self) -> Any:
        with self._lock:
            if self._client is None:
                try:
                    self._client = gspread.service_account(
                        filename=self._credentials_file
                    )
                except (OSError, ValueError) as e:
                    raise LedgerConfigException(
                        f"Cannot load the Google credentials file "
                        f"'{self._credentials_file}': {e}"
                    ) from e
                logger.info("Google Sheets client authorized.")
            return self._client

    def __spreadsheet(self, spreadsheet_id: str) -> Any:
        spreadsheet = self._spreadsheets.get(spreadsheet_id)
        if spreadsheet is None:
            spreadsheet = self.__client().open_by_key(spreadsheet_id)
            self._spreadsheets[spreadsheet_id] = spreadsheet
        return spreadsheet

    def __worksheet(self, spreadsheet_id: str, sheet_name: str) -> Any:
        try:
            return self.__spreadsheet(spreadsheet_id).worksheet(sheet_name)
        except WorksheetNotFound as e:
            raise StoreException(f"Sheet '{sheet_name}' doesn't exist.", 404) from e

    ### SheetStore implementation

    def sheet_exists(self, spreadsheet_id: str, sheet_name: str) -> bool:
        with self.__translate_errors(f"check sheet '{sheet_name}'"):
            titles = [
                worksheet.title
                for worksheet in self.__spreadsheet(spreadsheet_id).worksheets()
            ]
        return sheet_name in titles

    def create_sheet(self, spreadsheet_id: str, sheet_name: str):
        try:
            with self.__translate_errors(f"create sheet '{sheet_name}'"):
                self.__spreadsheet(spreadsheet_id).add_worksheet(
                    title=sheet_name, rows=NEW_SHEET_ROWS, cols=NEW_SHEET_COLUMNS
                )
        except StoreException as e:
            # Lost a benign race with another process
            if _ALREADY_EXISTS_MARKER in str(e).lower():
                logger.debug(f"Sheet '{sheet_name}' already exists.")
                return
            raise

        logger.info(f"Created sheet '{sheet_name}'.")

    def read_range(
        self, spreadsheet_id: str, sheet_name: str, cell_range: str = FULL_SHEET_RANGE
    ) -> list[list[Any]]:
        with self.__translate_errors(f"read '{sheet_name}!{cell_range}'"):
            values = self.__worksheet(spreadsheet_id, sheet_name).get(cell_range)
        return [list(row) for row in values]

    def write_row(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        row_index: int,
        values: Sequence[str],
        start_column: int = 0,
    ):
        address = cell_address(row_index, start_column)
        with self.__translate_errors(f"write row {row_index + 1} of '{sheet_name}'"):
            self.__worksheet(spreadsheet_id, sheet_name).update(
                values=[list(values)],
                range_name=address,
                value_input_option=VALUE_INPUT_OPTION,
            )

        logger.debug(f"Wrote {len(values)} cells from {address} of '{sheet_name}'.")

    def batch_write_cells(
        self, spreadsheet_id: str, sheet_name: str, updates: Sequence[CellUpdate]
    ):
        if not updates:
            return

        data = [{"range": u.address, "values": [[u.value]]} for u in updates]
        with self.__translate_errors(f"update cells of '{sheet_name}'"):
            self.__worksheet(spreadsheet_id, sheet_name).batch_update(
                data, value_input_option=VALUE_INPUT_OPTION
            )

        logger.debug(
            f"Updated cells {', '.join(u.address for u in updates)} of '{sheet_name}'."
        )

    @contextmanager
    def __translate_errors(self, description: str) -> Iterator[None]:
        """
        Convert gspread and requests failures to store exceptions.
        """
        try:
            yield

        except APIError as e:
            status = _status_code(e)
            message = f"Failed to {description} (status {status}): {e}"
            if status is not None and (status >= 500 or status in (408, 429)):
                raise StoreTransientException(message, status) from e
            raise StoreException(message, status) from e

        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise StoreTransientException(
                f"Failed to {description}: {e.__class__.__name__}"
            ) from e
