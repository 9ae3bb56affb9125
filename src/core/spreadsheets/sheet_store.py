#!/usr/bin/env python3
"""
Interface of the remote store holding the ledger worksheets.

A store hosts spreadsheets identified by a spreadsheet id, each holding
one worksheet per employee. Implementations raise
`StoreTransientException` for failures worth a retry (network, timeout,
server error, rate limit, busy file) and `StoreException` for terminal
failures. They never retry by themselves, retries are handled by the
`common.resilience` layer.

Row and column indexes are 0-based. Ranges and cell addresses use the
A1 notation.

---
TaskLedger - Sheet-backed task time tracking

Author: Bastian Cerf
Copyright (C) 2025 Mecacerf SA
License: AGPL-3.0 <https://www.gnu.org/licenses/>
"""

# Standard libraries
from abc import ABC, abstractmethod
from typing import Any, NamedTuple, Sequence

# Internal libraries
from ..layout import FULL_SHEET_RANGE, HEADER_ROW_COUNT


class CellUpdate(NamedTuple):
    """
    Attributes:
        address (str): Cell address in A1 notation (e.g. `F12`).
        value (str): Value to write.
    """

    address: str
    value: str


class SheetStore(ABC):
    """
    Abstract remote store client.
    """

    @abstractmethod
    def sheet_exists(self, spreadsheet_id: str, sheet_name: str) -> bool:
        """
        Returns:
            bool: `True` if the worksheet exists.
        """
        pass

    @abstractmethod
    def create_sheet(self, spreadsheet_id: str, sheet_name: str):
        """
        Create the worksheet. Creating a worksheet that already exists is
        not an error and doesn't duplicate it.
        """
        pass

    @abstractmethod
    def read_range(
        self, spreadsheet_id: str, sheet_name: str, cell_range: str = FULL_SHEET_RANGE
    ) -> list[list[Any]]:
        """
        Read a rectangular range.

        Returns:
            list[list[Any]]: Rows of raw cell values. Rows may be shorter
                than the range and trailing empty rows may be missing.
        """
        pass

    @abstractmethod
    def write_row(
        self,
        spreadsheet_id: str,
        sheet_name: str,
        row_index: int,
        values: Sequence[str],
        start_column: int = 0,
    ):
        """
        Write consecutive cells of a row, starting at `start_column`.
        Other cells of the row are left untouched.
        """
        pass

    @abstractmethod
    def batch_write_cells(
        self, spreadsheet_id: str, sheet_name: str, updates: Sequence[CellUpdate]
    ):
        """
        Write several cells in a single request.
        """
        pass

    def get_header_rows(self, spreadsheet_id: str, sheet_name: str) -> list[list[Any]]:
        """
        Returns:
            list[list[Any]]: The header rows, possibly ragged or missing.
        """
        return self.read_range(
            spreadsheet_id, sheet_name, f"A1:ZZ{HEADER_ROW_COUNT}"
        )[:HEADER_ROW_COUNT]

    def write_header_rows(
        self, spreadsheet_id: str, sheet_name: str, rows: Sequence[Sequence[str]]
    ):
        """
        Overwrite the header rows.
        """
        for index, values in enumerate(rows[:HEADER_ROW_COUNT]):
            self.write_row(spreadsheet_id, sheet_name, index, values)

    def __str__(self) -> str:
        return self.__class__.__name__

