#!/usr/bin/env python3
"""
`SheetStore` implementation on `.xlsx` workbooks stored in a repository
folder. The folder can live on the local file system or on a network
mounted drive shared by several processes.

Each spreadsheet id maps to the workbook `<repository>/<id>.xlsx` and
each employee to a worksheet of that workbook.

Every mutation follows the same steps:
- Acquire the workbook lock by creating a `.lock` file next to it
- Load the workbook with openpyxl and apply the change
- Save it to a temporary file and atomically move it in place
- Release the lock

A lock that cannot be acquired before the timeout and file system
errors are reported as `StoreTransientException`: the workbook may be
in use by another process or the drive may be waking up. Missing
workbooks or worksheets are reported as terminal `StoreException`.

---
TaskLedger - Sheet-backed task time tracking

Author: Bastian Cerf
Copyright (C) 2025 Mecacerf SA
License: AGPL-3.0 <https://www.gnu.org/licenses/>
"""

# Standard libraries
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Sequence
import logging
import os
import re
import time

# Third-party libraries
import openpyxl
from openpyxl.utils import range_boundaries
from openpyxl.worksheet.worksheet import Worksheet

# Internal libraries
from core.errors import StoreException, StoreTransientException
from ..layout import FULL_SHEET_RANGE
from .sheet_store import SheetStore, CellUpdate

logger = logging.getLogger(__name__)

# Prevent PIL from spamming debug messages (seems used by openpyxl)
logging.getLogger("PIL").setLevel(logging.INFO)

# Workbook file extension
WORKBOOK_EXTENSION = ".xlsx"
# The extension is added as a suffix to the workbook file name
LOCK_FILE_EXTENSION = ".lock"
# Prefix of the temporary file used to save a workbook
TEMP_FILE_PREFIX = "~tmp_"

# Retry delay and timeout to acquire a workbook lock
FILE_LOCK_DELAY = 0.25
FILE_LOCK_TIMEOUT = 5.0

# Accepted spreadsheet identifiers, used as file names
SPREADSHEET_ID_REGEX = re.compile(r"^[\w\- .]+$")

# Status codes attached to terminal errors
STATUS_NOT_FOUND = 404
STATUS_BAD_REQUEST = 400


class WorkbookSheetStore(SheetStore):
    """
    Stores the ledger worksheets in openpyxl workbooks.
    """

    def __init__(self, repository: str, lock_timeout: float = FILE_LOCK_TIMEOUT):
        """
        Args:
            repository (str): Path to the workbooks folder. It is created
                if it doesn't exist.
            lock_timeout (float): Maximal time waited for a busy workbook
                lock (seconds).

        Raises:
            StoreTransientException: The folder cannot be accessed.
        """
        self._repository = Path(repository)
        self._lock_timeout = lock_timeout

        try:
            self._repository.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreTransientException(
                f"Cannot access the workbooks repository '{repository}'."
            ) from e

    @property
    def repository(self) -> Path:
        return self._repository

    def workbook_path(self, spreadsheet_id: str) -> Path:
        """
        Raises:
            StoreException: The identifier is not a valid file name.
        """
        if not SPREADSHEET_ID_REGEX.match(spreadsheet_id or "") or (
            spreadsheet_id.strip(". ") == ""
        ):
            raise StoreException(
                f"Invalid spreadsheet id '{spreadsheet_id}'.", STATUS_BAD_REQUEST
            )
        return self._repository / (spreadsheet_id + WORKBOOK_EXTENSION)

    ### SheetStore implementation

    def sheet_exists(self, spreadsheet_id: str, sheet_name: str) -> bool:
        path = self.workbook_path(spreadsheet_id)
        with self.__translate_errors(f"check sheet '{sheet_name}'"):
            if not path.exists():
                return False
            workbook = openpyxl.load_workbook(path, read_only=True)
            try:
                return sheet_name in workbook.sheetnames
            finally:
                workbook.close()

    def create_sheet(self, spreadsheet_id: str, sheet_name: str):
        path = self.workbook_path(spreadsheet_id)
        with self.__translate_errors(f"create sheet '{sheet_name}'"):
            with self.__locked(path):
                if path.exists():
                    workbook = openpyxl.load_workbook(path)
                    if sheet_name in workbook.sheetnames:
                        logger.debug(f"Sheet '{sheet_name}' already exists.")
                        return
                    workbook.create_sheet(sheet_name)
                else:
                    # A new workbook comes with a default sheet
                    workbook = openpyxl.Workbook()
                    default = workbook.active
                    workbook.create_sheet(sheet_name)
                    if default is not None:
                        workbook.remove(default)

                self.__save(workbook, path)
                logger.info(f"Created sheet '{sheet_name}' in '{path}'.")

    def read_range(
        self, spreadsheet_id: str, sheet_name: str, cell_range: str = FULL_SHEET_RANGE
    ) -> list[list[Any]]:
        path = self.workbook_path(spreadsheet_id)
        min_col, min_row, max_col, max_row = self.__boundaries(cell_range)

        with self.__translate_errors(f"read '{sheet_name}!{cell_range}'"):
            workbook = self.__load(path, data_only=True)
            sheet = self.__sheet(workbook, sheet_name)

            # Don't create cells past the used area
            max_row = min(max_row, sheet.max_row)
            max_col = min(max_col, sheet.max_column)
            if max_row < min_row or max_col < min_col:
                return []

            rows = [
                _trim(list(values))
                for values in sheet.iter_rows(
                    min_row=min_row,
                    max_row=max_row,
                    min_col=min_col,
                    max_col=max_col,
                    values_only=True,
                )
            ]

        while rows and not rows[-1]:
            rows.pop()
        return rows

    def write_row(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        row_index: int,
        values: Sequence[str],
        start_column: int = 0,
    ):
        path = self.workbook_path(spreadsheet_id)
        with self.__translate_errors(f"write row {row_index + 1} of '{sheet_name}'"):
            with self.__locked(path):
                workbook = self.__load(path)
                sheet = self.__sheet(workbook, sheet_name)
                for offset, value in enumerate(values):
                    sheet.cell(
                        row=row_index + 1,
                        column=start_column + offset + 1,
                        value=value if value != "" else None,
                    )
                self.__save(workbook, path)

        logger.debug(
            f"Wrote {len(values)} cells at row {row_index + 1} of '{sheet_name}'."
        )

    def batch_write_cells(
        self, spreadsheet_id: str, sheet_name: str, updates: Sequence[CellUpdate]
    ):
        if not updates:
            return

        path = self.workbook_path(spreadsheet_id)
        with self.__translate_errors(f"update cells of '{sheet_name}'"):
            with self.__locked(path):
                workbook = self.__load(path)
                sheet = self.__sheet(workbook, sheet_name)
                for update in updates:
                    sheet[update.address] = update.value if update.value != "" else None
                self.__save(workbook, path)

        logger.debug(
            f"Updated cells {', '.join(u.address for u in updates)} of '{sheet_name}'."
        )

    ### Internal helpers

    def __load(self, path: Path, data_only: bool = False) -> openpyxl.Workbook:
        if not path.exists():
            raise StoreException(f"Workbook '{path}' doesn't exist.", STATUS_NOT_FOUND)
        return openpyxl.load_workbook(path, data_only=data_only)

    def __sheet(self, workbook: openpyxl.Workbook, sheet_name: str) -> Worksheet:
        if sheet_name not in workbook.sheetnames:
            raise StoreException(
                f"Sheet '{sheet_name}' doesn't exist.", STATUS_NOT_FOUND
            )
        return workbook[sheet_name]

    def __boundaries(self, cell_range: str) -> tuple[int, int, int, int]:
        try:
            min_col, min_row, max_col, max_row = range_boundaries(cell_range)
        except (TypeError, ValueError) as e:
            raise StoreException(
                f"Invalid range '{cell_range}'.", STATUS_BAD_REQUEST
            ) from e
        if None in (min_col, min_row, max_col, max_row):
            raise StoreException(
                f"Unbounded range '{cell_range}' is not supported.", STATUS_BAD_REQUEST
            )
        return min_col, min_row, max_col, max_row  # type: ignore

    def __save(self, workbook: openpyxl.Workbook, path: Path):
        """
        Save the workbook next to its final location and atomically
        replace the previous version.
        """
        temp_path = path.with_name(TEMP_FILE_PREFIX + path.name)
        try:
            workbook.save(temp_path)
            os.replace(temp_path, path)
        finally:
            temp_path.unlink(missing_ok=True)

    @contextmanager
    def __locked(self, path: Path) -> Iterator[None]:
        """
        Hold the workbook lock file for the duration of the block.

        Raises:
            StoreTransientException: The lock is still busy after the
                timeout.
        """
        lock_path = path.with_name(path.name + LOCK_FILE_EXTENSION)
        # Check-and-create in one operation
        flags = os.O_CREAT | os.O_EXCL | os.O_WRONLY

        timeout = time.time() + self._lock_timeout
        while True:
            try:
                fd = os.open(lock_path, flags)
                os.close(fd)
                break
            except FileExistsError:
                if time.time() >= timeout:
                    raise StoreTransientException(
                        f"Workbook '{path.name}' is locked by another process "
                        f"('{lock_path.name}' exists)."
                    )
                time.sleep(FILE_LOCK_DELAY)

        try:
            yield
        finally:
            lock_path.unlink(missing_ok=True)

    @contextmanager
    def __translate_errors(self, description: str) -> Iterator[None]:
        """
        Report file system failures as transient store errors.
        """
        try:
            yield
        except StoreException:
            raise
        except OSError as e:
            raise StoreTransientException(
                f"Failed to {description}: {e.__class__.__name__}: {e}"
            ) from e


def _trim(values: list[Any]) -> list[Any]:
    """
    Drop trailing empty cells.
    """
    while values and (values[-1] is None or values[-1] == ""):
        values.pop()
    return values
