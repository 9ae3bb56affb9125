#!/usr/bin/env python3
"""
Fixed mapping between the logical ledger fields and the spreadsheet
coordinates.

One worksheet per employee. The first two rows hold the headers, data
rows start at index 2. Column 0 holds the row date and each task owns
a block of `TASK_COLUMN_WIDTH` columns starting at
`1 + ordinal * TASK_COLUMN_WIDTH`.

---
TaskLedger - Sheet-backed task time tracking

Author: Bastian Cerf
Copyright (C) 2025 Mecacerf SA
License: AGPL-3.0 <https://www.gnu.org/licenses/>
"""

# Standard libraries
from enum import IntEnum
import re

# Third-party libraries
from openpyxl.utils import get_column_letter

# Internal libraries
from .errors import LedgerValidationException
from .tasks import TaskCatalog

########################################################################
#                       Ledger layout constants                        #
########################################################################

# Number of columns per task block
TASK_COLUMN_WIDTH = 8

# Column holding the row date
DATE_COLUMN = 0

# Header rows (0-based) and first data row index
HEADER_ROW_COUNT = 2
FIRST_DATA_ROW = 2

# Date and time text formats
DATE_FORMAT = "%d/%m/%Y"
DATE_HEADER = "DATE"

# Range read when scanning a whole employee sheet
FULL_SHEET_RANGE = "A1:ZZ1000"

# Maximal worksheet title length
MAX_SHEET_NAME_LENGTH = 255

# Characters allowed in a worksheet title
_SHEET_NAME_FORBIDDEN = re.compile(r"[^a-zA-Z0-9\s\-_]")


class BlockField(IntEnum):
    """Offsets of the fields inside a task block."""

    LABEL = 0  # Portal name, or description for the freeform task
    QUANTITY = 1
    START = 2
    ESTIMATED_END = 3
    ACTUAL_END = 4  # Empty while the task is open
    FIRST_REMARK = 5
    SECONDARY = 6
    FINAL_REMARK = 7


# Second header row labels, one per block field
BLOCK_SUB_HEADERS = (
    "Portal",
    "No. Of Piece",
    "Start Time",
    "Estimated End Time",
    "Actual End Time",
    "Remarks",
    "Annotation",
    "Final Remarks",
)
FREEFORM_LABEL_HEADER = "Task Description"


def block_start_column(ordinal: int) -> int:
    """
    Returns:
        int: 0-based index of the first column of the task block.
    """
    return 1 + ordinal * TASK_COLUMN_WIDTH


def block_column(ordinal: int, field: BlockField) -> int:
    return block_start_column(ordinal) + int(field)


def row_width(catalog: TaskCatalog) -> int:
    """
    Returns:
        int: Number of columns of a full ledger row.
    """
    return 1 + len(catalog) * TASK_COLUMN_WIDTH


def cell_address(row_index: int, column_index: int) -> str:
    """
    Convert 0-based row and column indexes to an A1 address.

    >>> cell_address(11, 5)
    'F12'
    """
    return f"{get_column_letter(column_index + 1)}{row_index + 1}"


def header_rows(catalog: TaskCatalog) -> list[list[str]]:
    """
    Build the two expected header rows for the given catalog.
    """
    first = [DATE_HEADER]
    second = [""]
    for task in catalog:
        first.extend([task.name] + [""] * (TASK_COLUMN_WIDTH - 1))
        labels = list(BLOCK_SUB_HEADERS)
        if catalog.is_freeform(task):
            labels[BlockField.LABEL] = FREEFORM_LABEL_HEADER
        second.extend(labels)
    return [first, second]


def sanitize_sheet_name(name: str) -> str:
    """
    Build a worksheet title from an employee name. Only letters, digits,
    whitespace, hyphens and underscores are kept.

    Raises:
        LedgerValidationException: Empty name or nothing left after
            sanitization.
    """
    if not isinstance(name, str) or not name.strip():
        raise LedgerValidationException(
            "Sheet name must be a non-empty string.",
            {"employee_name": ["Please select your name."]},
        )

    sanitized = _SHEET_NAME_FORBIDDEN.sub("", name.strip())
    sanitized = sanitized[:MAX_SHEET_NAME_LENGTH]

    if not sanitized:
        raise LedgerValidationException(
            "Sheet name cannot be empty after sanitization.",
            {"employee_name": [f"'{name}' is not a valid employee name."]},
        )
    return sanitized
