#!/usr/bin/env python3

# Standard libraries
import logging
import threading
from collections import Counter, defaultdict, deque
from typing import Any, Optional, Sequence

# Third-party libraries
from openpyxl.utils import column_index_from_string, range_boundaries
from openpyxl.utils.cell import coordinate_from_string

# Internal libraries
from tests.test_constants import *
from core.errors import StoreException
from core.layout import TASK_COLUMN_WIDTH, block_start_column, header_rows, row_width
from core.spreadsheets.sheet_store import SheetStore, CellUpdate
from core.tasks import DEFAULT_CATALOG, TaskCatalog

logger = logging.getLogger(__name__)

########################################################################
#                         In-memory sheet store                        #
########################################################################


class MemorySheetStore(SheetStore):
    """
    `SheetStore` keeping the worksheets in memory.

    Every call is counted by method name in `calls`. Failures can be
    injected per method with `fail_next()`: the queued exceptions are
    raised by the next calls, in order, before anything is read or
    written. A call can also be held with `hold()` until `release()`.
    """

    def __init__(self):
        self._sheets: dict[tuple[str, str], list[list[Any]]] = {}
        self._lock = threading.Lock()
        self._failures: dict[str, deque[BaseException]] = defaultdict(deque)
        self._gates: dict[str, threading.Event] = {}
        self.calls: Counter[str] = Counter()

    ### Test helpers

    def fail_next(self, method: str, *errors: BaseException):
        with self._lock:
            self._failures[method].extend(errors)

    def hold(self, method: str):
        """
        Block the next calls of `method` until `release()`.
        """
        self._gates[method] = threading.Event()

    def release(self, method: str):
        gate = self._gates.pop(method, None)
        if gate:
            gate.set()

    def set_rows(self, spreadsheet_id: str, sheet_name: str, rows: list[list[Any]]):
        with self._lock:
            self._sheets[(spreadsheet_id, sheet_name)] = [list(r) for r in rows]

    def rows(self, spreadsheet_id: str, sheet_name: str) -> list[list[Any]]:
        with self._lock:
            return [list(r) for r in self._sheets[(spreadsheet_id, sheet_name)]]

    def sheet_names(self, spreadsheet_id: str) -> list[str]:
        with self._lock:
            return [name for ssid, name in self._sheets if ssid == spreadsheet_id]

    def delete_sheet(self, spreadsheet_id: str, sheet_name: str):
        with self._lock:
            del self._sheets[(spreadsheet_id, sheet_name)]

    @property
    def writes(self) -> int:
        return (
            self.calls["create_sheet"]
            + self.calls["write_row"]
            + self.calls["batch_write_cells"]
        )

    @property
    def reads(self) -> int:
        return self.calls["sheet_exists"] + self.calls["read_range"]

    ### SheetStore implementation

    def sheet_exists(self, spreadsheet_id: str, sheet_name: str) -> bool:
        self.__enter_call("sheet_exists")
        with self._lock:
            return (spreadsheet_id, sheet_name) in self._sheets

    def create_sheet(self, spreadsheet_id: str, sheet_name: str):
        self.__enter_call("create_sheet")
        with self._lock:
            self._sheets.setdefault((spreadsheet_id, sheet_name), [])

    def read_range(
        self, spreadsheet_id: str, sheet_name: str, cell_range: str = "A1:ZZ1000"
    ) -> list[list[Any]]:
        self.__enter_call("read_range")
        min_col, min_row, max_col, max_row = range_boundaries(cell_range)

        with self._lock:
            grid = self.__grid(spreadsheet_id, sheet_name)
            rows = []
            for row in grid[min_row - 1 : max_row]:
                cells = list(row[min_col - 1 : max_col])
                while cells and cells[-1] in (None, ""):
                    cells.pop()
                rows.append(cells)

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
        self.__enter_call("write_row")
        with self._lock:
            grid = self.__grid(spreadsheet_id, sheet_name)
            for offset, value in enumerate(values):
                self.__set(grid, row_index, start_column + offset, value)

    def batch_write_cells(
        self, spreadsheet_id: str, sheet_name: str, updates: Sequence[CellUpdate]
    ):
        self.__enter_call("batch_write_cells")
        with self._lock:
            grid = self.__grid(spreadsheet_id, sheet_name)
            for update in updates:
                letters, row = coordinate_from_string(update.address)
                column = column_index_from_string(letters)
                self.__set(grid, row - 1, column - 1, update.value)

    ### Internal helpers

    def __enter_call(self, method: str):
        with self._lock:
            self.calls[method] += 1
            failures = self._failures[method]
            error = failures.popleft() if failures else None
        if error is not None:
            logger.debug(f"Injected failure in {method}(): {error!r}")
            raise error

        gate = self._gates.get(method)
        if gate is not None:
            gate.wait(TEST_WAIT_TIMEOUT)

    def __grid(self, spreadsheet_id: str, sheet_name: str) -> list[list[Any]]:
        try:
            return self._sheets[(spreadsheet_id, sheet_name)]
        except KeyError:
            raise StoreException(f"Sheet '{sheet_name}' doesn't exist.", 404) from None

    @staticmethod
    def __set(grid: list[list[Any]], row: int, column: int, value: Any):
        while len(grid) <= row:
            grid.append([])
        cells = grid[row]
        while len(cells) <= column:
            cells.append("")
        cells[column] = value


########################################################################
#                           Ledger row helpers                         #
########################################################################


def task_block(
    label: str,
    quantity: Any,
    start: str,
    end: str = "",
    estimated_end: str = "",
    remark: str = "",
    final_remark: str = "",
) -> list[Any]:
    """
    Build the eight cells of a task block.
    """
    return [label, quantity, start, estimated_end, end, remark, "", final_remark]


def ledger_row(
    date_text: Any,
    blocks: dict[str, list[Any]],
    catalog: TaskCatalog = DEFAULT_CATALOG,
) -> list[Any]:
    """
    Build a full ledger row holding the given blocks by task name.
    """
    row: list[Any] = [""] * row_width(catalog)
    row[0] = date_text
    for name, cells in blocks.items():
        start = block_start_column(catalog.get(name).ordinal)
        row[start : start + TASK_COLUMN_WIDTH] = (
            list(cells) + [""] * TASK_COLUMN_WIDTH
        )[:TASK_COLUMN_WIDTH]
    return row


def sheet_with(*rows: list[Any], catalog: TaskCatalog = DEFAULT_CATALOG):
    """
    Full worksheet content: the header rows followed by the given rows.
    """
    return header_rows(catalog) + [list(r) for r in rows]


def find_block(
    rows: list[list[Any]], row_index: int, task_name: str
) -> Optional[list[Any]]:
    """
    Read a task block back from raw rows, padded to the block width.
    """
    if row_index >= len(rows):
        return None
    start = block_start_column(DEFAULT_CATALOG.get(task_name).ordinal)
    cells = list(rows[row_index][start : start + TASK_COLUMN_WIDTH])
    return cells + [""] * (TASK_COLUMN_WIDTH - len(cells))
